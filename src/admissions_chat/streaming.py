from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Union, runtime_checkable

from admissions_chat.models import Message


class ChatStatus(str, Enum):
    READY = "ready"
    SUBMITTED = "submitted"
    STREAMING = "streaming"
    ERROR = "error"

    @property
    def in_flight(self) -> bool:
        return self in (ChatStatus.SUBMITTED, ChatStatus.STREAMING)


@dataclass(frozen=True)
class MessageStart:
    message_id: str


@dataclass(frozen=True)
class PartDelta:
    message_id: str
    part: dict


@dataclass(frozen=True)
class MessageComplete:
    message_id: str


@dataclass(frozen=True)
class StreamError:
    message: str


StreamEvent = Union[MessageStart, PartDelta, MessageComplete, StreamError]


@runtime_checkable
class ChatTransport(Protocol):
    def stream(self, messages: list[Message]) -> AsyncIterator[StreamEvent]:
        """Send the transcript to the model and yield its response as events.

        The last message is the new user message. Closing the iterator stops
        the upstream request.
        """
        ...
