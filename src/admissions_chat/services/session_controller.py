from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from uuid import uuid4

from loguru import logger

from admissions_chat.durations import DurationLedger
from admissions_chat.models import Message, is_text_part, text_part
from admissions_chat.persistence import PersistedDocument, PersistenceAdapter
from admissions_chat.streaming import (
    ChatStatus,
    ChatTransport,
    MessageComplete,
    MessageStart,
    PartDelta,
    StreamError,
    StreamEvent,
)


class SessionError(RuntimeError):
    pass


class SessionNotReadyError(SessionError):
    pass


class SessionBusyError(SessionError):
    pass


@dataclass(frozen=True)
class SessionSnapshot:
    messages: tuple[Message, ...]
    durations: DurationLedger
    status: ChatStatus
    hydrated: bool
    error: str | None = None


SnapshotListener = Callable[[SessionSnapshot], None]


def _new_message_id() -> str:
    return str(uuid4())


def _merge_part(parts: list[dict], part: dict) -> list[dict]:
    if is_text_part(part):
        delta = str(part.get("text", ""))
        if parts and is_text_part(parts[-1]):
            parts[-1] = text_part(str(parts[-1].get("text", "")) + delta)
        else:
            parts.append(text_part(delta))
        return parts

    call_id = part.get("toolCallId")
    if call_id:
        for i, existing in enumerate(parts):
            if existing.get("toolCallId") == call_id:
                parts[i] = {**existing, **part}
                return parts
    parts.append(dict(part))
    return parts


class SessionController:
    """Owns the live transcript, duration ledger and streaming status.

    Every mutation goes through ``_commit``, which mirrors the combined
    transcript and ledger to storage once the session is hydrated and then
    publishes a snapshot to subscribers. Transport events reach the controller
    through a queue drained by a single consumer task; each event is tagged
    with the exchange generation so events from a stopped exchange are dropped.
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        transport: ChatTransport,
        *,
        welcome_message: str,
        clock: Callable[[], float] = time.monotonic,
        id_factory: Callable[[], str] = _new_message_id,
    ):
        self._persistence = persistence
        self._transport = transport
        self._welcome_message = welcome_message
        self._clock = clock
        self._id_factory = id_factory

        self._messages: tuple[Message, ...] = ()
        self._durations = DurationLedger()
        self._status = ChatStatus.READY
        self._error: str | None = None
        self._hydrated = False
        self._welcome_shown = False

        self._listeners: list[SnapshotListener] = []
        self._queue: asyncio.Queue[tuple[int, StreamEvent | None]] = asyncio.Queue()
        self._consumer_task: asyncio.Task | None = None
        self._exchange_task: asyncio.Task | None = None
        self._generation = 0
        self._submitted_at: float | None = None
        self._pending: dict[str, Message] = {}

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._messages

    @property
    def durations(self) -> DurationLedger:
        return self._durations

    @property
    def status(self) -> ChatStatus:
        return self._status

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def hydrated(self) -> bool:
        return self._hydrated

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            messages=self._messages,
            durations=self._durations,
            status=self._status,
            hydrated=self._hydrated,
            error=self._error,
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def start(self) -> None:
        if self._consumer_task is None:
            self._consumer_task = asyncio.create_task(self._consume())

    async def close(self) -> None:
        self._generation += 1
        exchange = self._cancel_exchange()
        consumer, self._consumer_task = self._consumer_task, None
        if consumer is not None:
            consumer.cancel()
        for task in (exchange, consumer):
            if task is None:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass

    def hydrate(self) -> None:
        if not self._hydrated:
            document = self._persistence.load()
            self._messages = document.messages
            self._durations = document.durations
            self._hydrated = True
            logger.info(
                f"Hydrated session with {len(self._messages)} messages "
                f"and {len(self._durations)} durations"
            )
            self._notify()
        self._maybe_show_welcome()

    def submit(self, text: str) -> None:
        if not self._hydrated:
            raise SessionNotReadyError("Session is not hydrated yet")
        if self._consumer_task is None:
            raise SessionNotReadyError("Session controller is not started")
        if self._status.in_flight:
            raise SessionBusyError(f"A response is already in progress (status={self._status.value})")

        user_message = Message.from_text(self._id_factory(), "user", text)
        self._generation += 1
        self._pending.clear()
        self._error = None
        self._submitted_at = self._clock()
        self._commit(messages=self._messages + (user_message,), status=ChatStatus.SUBMITTED)

        logger.debug(f"Submitting message {user_message.id} (exchange {self._generation})")
        self._exchange_task = asyncio.create_task(
            self._run_exchange(self._generation, list(self._messages))
        )

    def stop(self) -> None:
        if not self._status.in_flight:
            return
        logger.info(f"Stopping exchange {self._generation} (status={self._status.value})")
        self._generation += 1
        self._cancel_exchange()
        self._pending.clear()
        self._commit(status=ChatStatus.READY)

    def clear(self) -> None:
        self._generation += 1
        self._cancel_exchange()
        self._pending.clear()
        self._welcome_shown = False
        self._error = None
        self._messages = ()
        self._durations = DurationLedger()
        self._status = ChatStatus.READY
        # Written even before hydration so a later load cannot resurrect old data.
        self._persist()
        self._notify()
        logger.info("Chat cleared")

    def record_duration(self, message_id: str, duration: float) -> None:
        self._commit(durations=self._durations.set(message_id, duration))

    async def wait_until_settled(self) -> None:
        task = self._exchange_task
        if task is not None:
            await asyncio.wait([task])
        if self._consumer_task is not None:
            await self._queue.join()

    def _maybe_show_welcome(self) -> None:
        if self._messages or self._welcome_shown:
            return
        welcome = Message.from_text(f"welcome-{int(time.time() * 1000)}", "assistant", self._welcome_message)
        self._welcome_shown = True
        self._commit(messages=(welcome,))

    def _commit(
        self,
        *,
        messages: tuple[Message, ...] | None = None,
        durations: DurationLedger | None = None,
        status: ChatStatus | None = None,
    ) -> None:
        if messages is not None:
            self._messages = messages
        if durations is not None:
            self._durations = durations
        if status is not None:
            self._status = status
        if self._hydrated:
            self._persist()
        self._notify()

    def _persist(self) -> None:
        self._persistence.save(PersistedDocument(messages=self._messages, durations=self._durations))

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as ex:
                logger.warning(f"Session listener {listener!r} failed: {ex}")

    def _cancel_exchange(self) -> asyncio.Task | None:
        task, self._exchange_task = self._exchange_task, None
        if task is not None and not task.done():
            task.cancel()
        return task

    async def _run_exchange(self, generation: int, history: list[Message]) -> None:
        stream = None
        try:
            stream = self._transport.stream(history)
            async for event in stream:
                await self._queue.put((generation, event))
        except asyncio.CancelledError:
            raise
        except Exception as ex:
            logger.error(f"Chat exchange {generation} failed: {ex}")
            await self._queue.put((generation, StreamError(str(ex) or type(ex).__name__)))
            return
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
        await self._queue.put((generation, None))

    async def _consume(self) -> None:
        while True:
            generation, event = await self._queue.get()
            try:
                if generation != self._generation:
                    logger.debug(f"Dropping {type(event).__name__} from stale exchange {generation}")
                    continue
                self._apply(event)
            except Exception as ex:
                logger.error(f"Failed to apply stream event {event!r}: {ex}")
            finally:
                self._queue.task_done()

    def _apply(self, event: StreamEvent | None) -> None:
        if event is None:
            if self._status.in_flight:
                self._commit(status=ChatStatus.READY)
        elif isinstance(event, MessageStart):
            self._pending[event.message_id] = Message(id=event.message_id, role="assistant")
        elif isinstance(event, PartDelta):
            self._apply_part(event)
        elif isinstance(event, MessageComplete):
            self._complete_message(event.message_id)
        elif isinstance(event, StreamError):
            logger.warning(f"Exchange {self._generation} ended with error: {event.message}")
            self._generation += 1
            self._cancel_exchange()
            self._pending.clear()
            self._error = event.message
            self._commit(status=ChatStatus.ERROR)
        else:
            logger.warning(f"Ignoring unknown stream event: {event!r}")

    def _apply_part(self, event: PartDelta) -> None:
        messages = list(self._messages)
        index = next(
            (i for i in range(len(messages) - 1, -1, -1) if messages[i].id == event.message_id),
            None,
        )
        if index is None:
            base = self._pending.pop(event.message_id, None) or Message(id=event.message_id, role="assistant")
            messages.append(base.with_parts(_merge_part([], event.part)))
        else:
            base = messages[index]
            messages[index] = base.with_parts(_merge_part(list(base.parts), event.part))

        status = ChatStatus.STREAMING if self._status is ChatStatus.SUBMITTED else None
        self._commit(messages=tuple(messages), status=status)

    def _complete_message(self, message_id: str) -> None:
        self._pending.pop(message_id, None)
        if self._submitted_at is None or not any(m.id == message_id for m in self._messages):
            return
        elapsed_ms = max(0.0, (self._clock() - self._submitted_at) * 1000)
        logger.info(f"Assistant message {message_id} completed in {elapsed_ms:.0f} ms")
        self._commit(durations=self._durations.set(message_id, elapsed_ms))
