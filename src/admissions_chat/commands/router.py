from __future__ import annotations

from collections.abc import Callable

HELP_LINES = [
    "/help   show this help",
    "/clear  clear the conversation and start over",
    "exit    quit (the conversation is kept for next time)",
    "Ctrl+C while a response is streaming stops it",
]


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], None],
        on_clear: Callable[[], None],
        on_unknown: Callable[[str], None],
        clear_aliases: tuple[str, ...] = ("/clear", "/new"),
    ) -> None:
        self._on_help = on_help
        self._on_clear = on_clear
        self._on_unknown = on_unknown
        self._clear_aliases = {alias.lower() for alias in clear_aliases}

    def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        command = trimmed.split(maxsplit=1)[0].lower()
        if command == "/help":
            self._on_help()
            return True
        if command in self._clear_aliases:
            self._on_clear()
            return True

        self._on_unknown(trimmed)
        return True
