from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


@runtime_checkable
class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class InMemoryStorage:
    def __init__(self, items: dict[str, str] | None = None):
        self._items: dict[str, str] = dict(items or {})

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class JsonFileStorage:
    """One file per key under a directory; writes replace the file atomically."""

    def __init__(self, directory: str):
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self._directory / f"{key}.json"

    def get_item(self, key: str) -> str | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        path = self.path_for(key)
        fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def remove_item(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)
