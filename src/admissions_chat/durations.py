from __future__ import annotations

import math
from collections.abc import Iterator, Mapping


def _check_duration(message_id: str, duration: float) -> None:
    if not math.isfinite(duration) or duration < 0:
        raise ValueError(f"Duration must be a finite non-negative number, got {duration!r} for {message_id}")


class DurationLedger(Mapping[str, float]):
    """Response time per assistant message id, in milliseconds.

    Immutable: ``set`` returns a new ledger and leaves this one untouched.
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Mapping[str, float] | None = None):
        self._entries: dict[str, float] = dict(entries or {})
        for message_id, duration in self._entries.items():
            _check_duration(message_id, duration)

    def set(self, message_id: str, duration: float) -> DurationLedger:
        _check_duration(message_id, duration)
        entries = dict(self._entries)
        entries[message_id] = duration
        return DurationLedger(entries)

    def to_dict(self) -> dict[str, float]:
        return dict(self._entries)

    def __getitem__(self, message_id: str) -> float:
        return self._entries[message_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, DurationLedger):
            return self._entries == other._entries
        if isinstance(other, Mapping):
            return self._entries == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(frozenset(self._entries.items()))

    def __repr__(self) -> str:
        return f"DurationLedger({self._entries!r})"
