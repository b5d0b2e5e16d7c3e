import asyncio
import itertools
import unittest

from admissions_chat.models import Message, text_part
from admissions_chat.persistence import PersistedDocument, PersistenceAdapter
from admissions_chat.services.session_controller import (
    SessionBusyError,
    SessionController,
    SessionNotReadyError,
)
from admissions_chat.storage import InMemoryStorage
from admissions_chat.streaming import (
    ChatStatus,
    MessageComplete,
    MessageStart,
    PartDelta,
    StreamError,
)

WELCOME = "Hi! Ask me about BITSoM admissions."


class _ScriptedTransport:
    def __init__(self, events: list, *, fail_with: Exception | None = None):
        self._events = events
        self._fail_with = fail_with
        self.calls: list[list[Message]] = []

    async def stream(self, messages):
        self.calls.append(list(messages))
        for event in self._events:
            yield event
        if self._fail_with is not None:
            raise self._fail_with


class _HangingTransport:
    """Sends a partial reply, then waits forever; emits late events when cancelled."""

    def __init__(self):
        self.cancelled = False

    async def stream(self, messages):
        yield MessageStart("a-partial")
        yield PartDelta("a-partial", text_part("Hel"))
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            yield PartDelta("a-partial", text_part("lo from a cancelled exchange"))
            yield MessageComplete("a-partial")
            raise


class _SilentTransport:
    """Waits before sending anything; replies late once cancelled."""

    def __init__(self):
        self.started = asyncio.Event()
        self.cancelled = False

    async def stream(self, messages):
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            for event in _reply("a-late", "too late"):
                yield event
            raise


class _FailingStorage:
    def get_item(self, key):
        return None

    def set_item(self, key, value):
        raise OSError("quota exceeded")

    def remove_item(self, key):
        return None


def _reply(message_id: str, *chunks: str) -> list:
    events: list = [MessageStart(message_id)]
    events.extend(PartDelta(message_id, text_part(chunk)) for chunk in chunks)
    events.append(MessageComplete(message_id))
    return events


async def _settle(controller: SessionController, spins: int = 20) -> None:
    for _ in range(spins):
        await asyncio.sleep(0)
    await controller.wait_until_settled()


class SessionControllerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._storage = InMemoryStorage()
        self._persistence = PersistenceAdapter(self._storage)
        ticks = itertools.count(start=100.0, step=0.5)
        self._clock = lambda: next(ticks)
        ids = itertools.count(start=1)
        self._id_factory = lambda: f"id-{next(ids)}"

    def _make(self, transport, persistence: PersistenceAdapter | None = None) -> SessionController:
        return SessionController(
            persistence or self._persistence,
            transport,
            welcome_message=WELCOME,
            clock=self._clock,
            id_factory=self._id_factory,
        )

    def _stored(self) -> PersistedDocument:
        return PersistenceAdapter(self._storage).load()


class HydrationTests(SessionControllerTestCase):
    def test_pre_hydration_state_is_empty_and_neutral(self) -> None:
        controller = self._make(_ScriptedTransport([]))
        snapshot = controller.snapshot()
        self.assertFalse(snapshot.hydrated)
        self.assertEqual((), snapshot.messages)
        self.assertEqual(0, len(snapshot.durations))
        self.assertIs(ChatStatus.READY, snapshot.status)
        self.assertIsNone(self._storage.get_item("chat-messages"))

    def test_welcome_message_is_added_once(self) -> None:
        controller = self._make(_ScriptedTransport([]))
        controller.hydrate()
        controller.hydrate()

        self.assertTrue(controller.hydrated)
        self.assertEqual(1, len(controller.messages))
        welcome = controller.messages[0]
        self.assertEqual("assistant", welcome.role)
        self.assertEqual(WELCOME, welcome.text)
        self.assertEqual(1, len(welcome.parts))
        self.assertTrue(welcome.id.startswith("welcome-"))
        self.assertEqual(controller.messages, self._stored().messages)

    def test_existing_history_is_adopted_without_welcome(self) -> None:
        history = PersistedDocument(
            messages=(
                Message.from_text("u1", "user", "Hello"),
                Message.from_text("a1", "assistant", "Hi, how can I help?"),
            ),
        )
        self._persistence.save(PersistedDocument(messages=history.messages, durations=history.durations.set("a1", 900)))

        controller = self._make(_ScriptedTransport([]))
        controller.hydrate()

        self.assertEqual(["u1", "a1"], [m.id for m in controller.messages])
        self.assertEqual({"a1": 900}, controller.durations.to_dict())

    def test_corrupt_storage_hydrates_to_welcome(self) -> None:
        self._storage.set_item("chat-messages", "{broken")
        controller = self._make(_ScriptedTransport([]))
        controller.hydrate()
        self.assertEqual([WELCOME], [m.text for m in controller.messages])

    def test_submit_before_hydration_is_rejected(self) -> None:
        controller = self._make(_ScriptedTransport([]))

        async def scenario() -> None:
            await controller.start()
            try:
                with self.assertRaises(SessionNotReadyError):
                    controller.submit("hello")
            finally:
                await controller.close()

        asyncio.run(scenario())


class ExchangeTests(SessionControllerTestCase):
    def test_end_to_end_exchange(self) -> None:
        transport = _ScriptedTransport(_reply("a1", "Candidates need ", "a bachelor's degree."))
        controller = self._make(transport)
        statuses: list[ChatStatus] = []

        def track(snapshot) -> None:
            if not statuses or statuses[-1] is not snapshot.status:
                statuses.append(snapshot.status)

        controller.subscribe(track)

        async def scenario() -> None:
            await controller.start()
            try:
                controller.hydrate()
                controller.submit("What are the eligibility criteria?")
                self.assertIs(ChatStatus.SUBMITTED, controller.status)
                await controller.wait_until_settled()
            finally:
                await controller.close()

        asyncio.run(scenario())

        self.assertEqual(
            [ChatStatus.READY, ChatStatus.SUBMITTED, ChatStatus.STREAMING, ChatStatus.READY],
            statuses,
        )
        roles = [m.role for m in controller.messages]
        self.assertEqual(["assistant", "user", "assistant"], roles)
        self.assertEqual("What are the eligibility criteria?", controller.messages[1].text)
        self.assertEqual("Candidates need a bachelor's degree.", controller.messages[2].text)
        self.assertEqual(1, len(controller.messages[2].parts))

        self.assertEqual(["a1"], list(controller.durations))
        self.assertEqual(500.0, controller.durations["a1"])

        stored = self._stored()
        self.assertEqual(controller.messages, stored.messages)
        self.assertEqual(controller.durations, stored.durations)

        sent = transport.calls[0]
        self.assertEqual("What are the eligibility criteria?", sent[-1].text)
        self.assertEqual(WELCOME, sent[0].text)

    def test_tool_result_replaces_its_call_in_place(self) -> None:
        call = {
            "type": "tool-webSearch",
            "toolCallId": "c1",
            "state": "input-available",
            "input": {"query": "BITSoM fees"},
        }
        result = {
            "type": "tool-webSearch",
            "toolCallId": "c1",
            "state": "output-available",
            "output": [{"title": "Fees", "url": "https://example.org"}],
        }
        events = [
            MessageStart("a1"),
            PartDelta("a1", call),
            PartDelta("a1", result),
            PartDelta("a1", text_part("The fee ")),
            PartDelta("a1", text_part("is listed online.")),
            MessageComplete("a1"),
        ]
        controller = self._make(_ScriptedTransport(events))

        async def scenario() -> None:
            await controller.start()
            try:
                controller.hydrate()
                controller.submit("How much are the fees?")
                await controller.wait_until_settled()
            finally:
                await controller.close()

        asyncio.run(scenario())

        parts = controller.messages[-1].parts
        self.assertEqual(2, len(parts))
        self.assertEqual("output-available", parts[0]["state"])
        self.assertEqual({"query": "BITSoM fees"}, parts[0]["input"])
        self.assertEqual({"type": "text", "text": "The fee is listed online."}, parts[1])
        self.assertEqual(parts, self._stored().messages[-1].parts)

    def test_message_without_parts_is_not_added(self) -> None:
        controller = self._make(_ScriptedTransport([MessageStart("a1"), MessageComplete("a1")]))

        async def scenario() -> None:
            await controller.start()
            try:
                controller.hydrate()
                controller.submit("Hello?")
                await controller.wait_until_settled()
            finally:
                await controller.close()

        asyncio.run(scenario())

        self.assertEqual(["assistant", "user"], [m.role for m in controller.messages])
        self.assertEqual(0, len(controller.durations))
        self.assertIs(ChatStatus.READY, controller.status)
        for message in self._stored().messages:
            self.assertTrue(message.parts)

    def test_submit_while_in_flight_is_rejected(self) -> None:
        controller = self._make(_HangingTransport())

        async def scenario() -> None:
            await controller.start()
            try:
                controller.hydrate()
                controller.submit("first")
                with self.assertRaises(SessionBusyError):
                    controller.submit("second")
            finally:
                await controller.close()

        asyncio.run(scenario())

    def test_transport_failure_sets_error_and_allows_retry(self) -> None:
        transport = _ScriptedTransport(
            [MessageStart("a1"), PartDelta("a1", text_part("Hel"))],
            fail_with=RuntimeError("connection reset"),
        )
        controller = self._make(transport)

        async def scenario() -> None:
            await controller.start()
            try:
                controller.hydrate()
                controller.submit("Tell me about placements")
                await controller.wait_until_settled()

                self.assertIs(ChatStatus.ERROR, controller.status)
                self.assertEqual("connection reset", controller.error)
                self.assertEqual("Hel", controller.messages[-1].text)

                transport._events = _reply("a2", "Placements were strong.")
                transport._fail_with = None
                controller.submit("Tell me about placements")
                self.assertIs(ChatStatus.SUBMITTED, controller.status)
                self.assertIsNone(controller.error)
                await controller.wait_until_settled()
            finally:
                await controller.close()

        asyncio.run(scenario())

        self.assertIs(ChatStatus.READY, controller.status)
        self.assertEqual("Placements were strong.", controller.messages[-1].text)
        self.assertEqual(["a2"], list(controller.durations))

    def test_stream_error_event_sets_error_status(self) -> None:
        events = [MessageStart("a1"), StreamError("model overloaded"), PartDelta("a1", text_part("ignored"))]
        controller = self._make(_ScriptedTransport(events))

        async def scenario() -> None:
            await controller.start()
            try:
                controller.hydrate()
                controller.submit("Hi")
                await _settle(controller)
            finally:
                await controller.close()

        asyncio.run(scenario())

        self.assertIs(ChatStatus.ERROR, controller.status)
        self.assertEqual("model overloaded", controller.error)
        self.assertEqual(["assistant", "user"], [m.role for m in controller.messages])

    def test_storage_failures_do_not_break_the_session(self) -> None:
        controller = self._make(_ScriptedTransport(_reply("a1", "Sure.")), PersistenceAdapter(_FailingStorage()))

        async def scenario() -> None:
            await controller.start()
            try:
                controller.hydrate()
                controller.submit("Can you help?")
                await controller.wait_until_settled()
            finally:
                await controller.close()

        asyncio.run(scenario())

        self.assertIs(ChatStatus.READY, controller.status)
        self.assertEqual("Sure.", controller.messages[-1].text)

    def test_listener_failure_is_contained(self) -> None:
        controller = self._make(_ScriptedTransport([]))

        def broken(snapshot) -> None:
            raise RuntimeError("render failed")

        unsubscribe = controller.subscribe(broken)
        controller.hydrate()
        unsubscribe()
        self.assertEqual(1, len(controller.messages))


class StopAndClearTests(SessionControllerTestCase):
    def test_stop_keeps_partial_reply_and_drops_late_events(self) -> None:
        transport = _HangingTransport()
        controller = self._make(transport)

        async def scenario() -> None:
            await controller.start()
            try:
                controller.hydrate()
                controller.submit("Say hello")
                for _ in range(50):
                    if controller.status is ChatStatus.STREAMING:
                        break
                    await asyncio.sleep(0)
                self.assertIs(ChatStatus.STREAMING, controller.status)

                controller.stop()
                self.assertIs(ChatStatus.READY, controller.status)

                await _settle(controller)
                self.assertTrue(transport.cancelled)
            finally:
                await controller.close()

        asyncio.run(scenario())

        self.assertIs(ChatStatus.READY, controller.status)
        partial = controller.messages[-1]
        self.assertEqual("a-partial", partial.id)
        self.assertEqual("Hel", partial.text)
        self.assertNotIn("a-partial", controller.durations)
        self.assertEqual("Hel", self._stored().messages[-1].text)

    def test_stop_before_first_token_returns_to_ready(self) -> None:
        transport = _SilentTransport()
        controller = self._make(transport)

        async def scenario() -> None:
            await controller.start()
            try:
                controller.hydrate()
                controller.submit("Is there a GMAT waiver?")
                await asyncio.wait_for(transport.started.wait(), timeout=1)
                self.assertIs(ChatStatus.SUBMITTED, controller.status)

                controller.stop()
                self.assertIs(ChatStatus.READY, controller.status)

                await _settle(controller)
                self.assertTrue(transport.cancelled)
            finally:
                await controller.close()

        asyncio.run(scenario())

        self.assertIs(ChatStatus.READY, controller.status)
        self.assertEqual(["assistant", "user"], [m.role for m in controller.messages])
        self.assertEqual(0, len(controller.durations))
        self.assertEqual(controller.messages, self._stored().messages)

    def test_stop_when_idle_is_a_noop(self) -> None:
        controller = self._make(_ScriptedTransport([]))
        controller.hydrate()
        controller.stop()
        self.assertIs(ChatStatus.READY, controller.status)
        self.assertEqual(1, len(controller.messages))

    def test_clear_empties_memory_and_storage(self) -> None:
        controller = self._make(_ScriptedTransport(_reply("a1", "Deadlines are in March.")))

        async def scenario() -> None:
            await controller.start()
            try:
                controller.hydrate()
                controller.submit("When are the deadlines?")
                await controller.wait_until_settled()
                self.assertEqual(1, len(controller.durations))

                controller.clear()
            finally:
                await controller.close()

        asyncio.run(scenario())

        self.assertEqual((), controller.messages)
        self.assertEqual(0, len(controller.durations))
        self.assertIs(ChatStatus.READY, controller.status)
        stored = self._stored()
        self.assertEqual((), stored.messages)
        self.assertEqual(0, len(stored.durations))

    def test_clear_during_exchange_discards_it(self) -> None:
        controller = self._make(_HangingTransport())

        async def scenario() -> None:
            await controller.start()
            try:
                controller.hydrate()
                controller.submit("Say hello")
                await asyncio.sleep(0)
                controller.clear()
                await _settle(controller)
            finally:
                await controller.close()

        asyncio.run(scenario())

        self.assertEqual((), controller.messages)
        self.assertIs(ChatStatus.READY, controller.status)
        self.assertTrue(self._stored().is_empty)

    def test_welcome_can_show_again_after_clear(self) -> None:
        controller = self._make(_ScriptedTransport([]))
        controller.hydrate()
        first_welcome = controller.messages[0]

        controller.clear()
        self.assertEqual((), controller.messages)
        controller.hydrate()

        self.assertEqual(1, len(controller.messages))
        self.assertEqual(WELCOME, controller.messages[0].text)
        self.assertEqual(first_welcome.text, self._stored().messages[0].text)

    def test_record_duration_is_persisted(self) -> None:
        controller = self._make(_ScriptedTransport([]))
        controller.hydrate()
        welcome_id = controller.messages[0].id

        controller.record_duration(welcome_id, 42.0)

        self.assertEqual({welcome_id: 42.0}, controller.durations.to_dict())
        self.assertEqual({welcome_id: 42.0}, self._stored().durations.to_dict())

    def test_record_duration_rejects_non_finite_values(self) -> None:
        controller = self._make(_ScriptedTransport([]))
        controller.hydrate()
        welcome_id = controller.messages[0].id

        for value in (float("nan"), float("inf")):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    controller.record_duration(welcome_id, value)

        self.assertEqual(0, len(controller.durations))
        self.assertEqual(0, len(self._stored().durations))


if __name__ == "__main__":
    unittest.main()
