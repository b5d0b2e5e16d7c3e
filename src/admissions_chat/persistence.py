from __future__ import annotations

import json
from dataclasses import dataclass, field
from numbers import Real

from loguru import logger

from admissions_chat.durations import DurationLedger
from admissions_chat.models import Message
from admissions_chat.storage import KeyValueStorage

STORAGE_KEY = "chat-messages"


@dataclass(frozen=True)
class PersistedDocument:
    messages: tuple[Message, ...] = field(default_factory=tuple)
    durations: DurationLedger = field(default_factory=DurationLedger)

    @property
    def is_empty(self) -> bool:
        return not self.messages and not self.durations

    def to_json(self) -> str:
        return json.dumps(
            {
                "messages": [m.to_dict() for m in self.messages],
                "durations": self.durations.to_dict(),
            },
            ensure_ascii=True,
            allow_nan=False,
        )


def empty_document() -> PersistedDocument:
    return PersistedDocument()


class PersistenceAdapter:
    """Mirrors the session transcript and duration ledger into a storage slot.

    Without a storage backend both operations are no-ops. Neither operation
    raises: a bad record loads as the empty document and a failed save is
    logged and dropped.
    """

    def __init__(self, storage: KeyValueStorage | None, *, key: str = STORAGE_KEY):
        self._storage = storage
        self._key = key

    @property
    def enabled(self) -> bool:
        return self._storage is not None

    def load(self) -> PersistedDocument:
        if self._storage is None:
            return empty_document()
        try:
            stored = self._storage.get_item(self._key)
            if not stored:
                return empty_document()
            return self._parse(stored)
        except Exception as ex:
            logger.error(f"Failed to load messages from storage: {ex}")
            return empty_document()

    def save(self, document: PersistedDocument) -> None:
        if self._storage is None:
            return
        try:
            self._storage.set_item(self._key, document.to_json())
        except Exception as ex:
            logger.error(f"Failed to save messages to storage: {ex}")

    def _parse(self, stored: str) -> PersistedDocument:
        parsed = json.loads(stored)
        if not isinstance(parsed, dict):
            raise ValueError(f"Stored document must be an object, got {type(parsed).__name__}")

        raw_messages = parsed.get("messages") or []
        raw_durations = parsed.get("durations") or {}
        if not isinstance(raw_messages, list):
            raise ValueError("Stored messages must be a list")
        if not isinstance(raw_durations, dict):
            raise ValueError("Stored durations must be an object")

        messages = tuple(Message.from_dict(m) for m in raw_messages)
        ledger = DurationLedger()
        for message_id, duration in raw_durations.items():
            if isinstance(duration, bool) or not isinstance(duration, Real):
                raise ValueError(f"Duration for {message_id} is not a number: {duration!r}")
            ledger = ledger.set(message_id, duration)

        logger.debug(f"Loaded {len(messages)} messages and {len(ledger)} durations from storage")
        return PersistedDocument(messages=messages, durations=ledger)
