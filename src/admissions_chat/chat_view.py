from __future__ import annotations

import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TextIO

from admissions_chat.durations import DurationLedger
from admissions_chat.llm_client import Spinner
from admissions_chat.models import Message, is_text_part
from admissions_chat.services.session_controller import SessionSnapshot
from admissions_chat.streaming import ChatStatus
from admissions_chat.tool_display import ToolPartView, describe_tool_part, is_tool_part

_ICONS = {
    "book": "\U0001F4D6",
    "presentation": "\U0001F4CA",
    "search": "\U0001F50D",
    "globe": "\U0001F310",
}


def format_duration(duration_ms: float) -> str:
    seconds = duration_ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, rest = divmod(int(round(seconds)), 60)
    return f"{minutes}m {rest:02d}s"


@dataclass
class _Progress:
    text_chars: dict[int, int] = field(default_factory=dict)
    tool_states: dict[int, bool] = field(default_factory=dict)


class ChatView:
    """Line-oriented terminal rendering of session snapshots.

    ``render_transcript`` prints a whole conversation. ``on_snapshot`` is the
    controller subscription that streams the assistant's reply of the current
    exchange as it grows; messages that appear outside an exchange are left
    for ``render_transcript``.
    """

    USER_PREFIX = "you> "
    ASSISTANT_PREFIX = "assistant> "

    def __init__(
        self,
        *,
        ai_name: str,
        out: TextIO | None = None,
        spinner_factory: Callable[..., Spinner] | None = Spinner,
    ):
        self._ai_name = ai_name
        self._out = out or sys.stdout
        self._spinner_factory = spinner_factory
        self._spinner: Spinner | None = None
        self._known: set[str] = set()
        self._progress: dict[str, _Progress] = {}
        self._in_exchange = False
        self._line_open = False
        self._line_has_text = False

    def format_tool_line(self, view: ToolPartView) -> str:
        icon = _ICONS.get(view.icon, "*")
        line = f"{self.ASSISTANT_PREFIX}{icon} {view.label}"
        if view.arguments:
            line += f": {view.arguments}"
        return line

    def format_message_lines(self, message: Message, duration_ms: float | None = None) -> list[str]:
        prefix = self.USER_PREFIX if message.role == "user" else self.ASSISTANT_PREFIX
        lines: list[str] = []
        for part in message.parts:
            if is_text_part(part):
                text = str(part.get("text", ""))
                if text:
                    lines.append(prefix + text)
            elif is_tool_part(part):
                lines.append(self.format_tool_line(describe_tool_part(part)))
        if duration_ms is not None:
            lines.append(f"{self.ASSISTANT_PREFIX}(responded in {format_duration(duration_ms)})")
        return lines

    def render_loading(self) -> None:
        self._write_line(f"Loading conversation with {self._ai_name}...")

    def render_transcript(self, snapshot: SessionSnapshot) -> None:
        if not snapshot.hydrated:
            self.render_loading()
            return
        for message in snapshot.messages:
            for line in self.format_message_lines(message, snapshot.durations.get(message.id)):
                self._write_line(line)
            self._write_line("")
        self._known = {m.id for m in snapshot.messages}
        self._progress.clear()

    def render_notice(self, text: str) -> None:
        self._write_line(f"{self.ASSISTANT_PREFIX}{text}")

    def render_help(self, lines: list[str]) -> None:
        for line in lines:
            self._write_line(f"  {line}")

    def on_snapshot(self, snapshot: SessionSnapshot) -> None:
        if not snapshot.hydrated:
            return
        if snapshot.status is ChatStatus.SUBMITTED and not self._in_exchange:
            self._in_exchange = True
            self._start_spinner()
        if not self._in_exchange:
            return

        for message in snapshot.messages:
            if message.id in self._known:
                continue
            if message.role != "assistant":
                self._known.add(message.id)
                continue
            self._render_progress(message)

        if not snapshot.status.in_flight:
            self._finish_exchange(snapshot)

    def _render_progress(self, message: Message) -> None:
        progress = self._progress.setdefault(message.id, _Progress())
        for index, part in enumerate(message.parts):
            if is_text_part(part):
                text = str(part.get("text", ""))
                printed = progress.text_chars.get(index, 0)
                if len(text) > printed:
                    self._write_text(text[printed:])
                    progress.text_chars[index] = len(text)
            elif is_tool_part(part):
                view = describe_tool_part(part)
                if progress.tool_states.get(index) != view.is_result:
                    self._emit_line(self.format_tool_line(view))
                    progress.tool_states[index] = view.is_result

    def _finish_exchange(self, snapshot: SessionSnapshot) -> None:
        live_ids = [m.id for m in snapshot.messages if m.id in self._progress]
        durations: DurationLedger = snapshot.durations
        timed = [durations[mid] for mid in live_ids if mid in durations]

        if snapshot.status is ChatStatus.ERROR:
            self._emit_line(
                f"{self.ASSISTANT_PREFIX}[Error: {snapshot.error or 'unknown error'}] "
                "Send your message again to retry."
            )
        elif timed:
            self._emit_line(f"{self.ASSISTANT_PREFIX}(responded in {format_duration(max(timed))})")
        else:
            self._emit_line(f"{self.ASSISTANT_PREFIX}[Stopped]")

        self._known.update(live_ids)
        self._progress.clear()
        self._in_exchange = False
        self._write_line("")

    def _start_spinner(self) -> None:
        if self._spinner_factory is None:
            return
        self._spinner = self._spinner_factory(prefix=self.ASSISTANT_PREFIX, out=self._out)
        self._spinner.start()

    def _stop_spinner(self) -> bool:
        spinner, self._spinner = self._spinner, None
        if spinner is None:
            return False
        spinner.stop()
        # Spinner.stop leaves the cursor after the prefix
        self._line_open = True
        self._line_has_text = False
        return True

    def _write_text(self, text: str) -> None:
        if not self._stop_spinner() and not self._line_open:
            self._out.write(self.ASSISTANT_PREFIX)
            self._line_open = True
        self._out.write(text)
        self._out.flush()
        self._line_has_text = True

    def _emit_line(self, line: str) -> None:
        self._stop_spinner()
        if self._line_open and self._line_has_text:
            self._out.write("\n")
        elif self._line_open:
            self._out.write("\r")
        self._out.write(line + "\n")
        self._out.flush()
        self._line_open = False
        self._line_has_text = False

    def _write_line(self, line: str) -> None:
        self._out.write(line + "\n")
        self._out.flush()
