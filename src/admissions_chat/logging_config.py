import sys
from pathlib import Path
from typing import Any

from loguru import logger

LOG_FILE_NAME = "admissions_chat.log"


class ConsoleLogConsumer:
    """stderr sink. Kept terse because it shares the terminal with the chat."""

    def register(self, level: str) -> None:
        logger.add(
            sys.stderr,
            level=level,
            format="<level>[{level}]</level> {message}",
        )

    def describe(self, level: str) -> str:
        return f"console (stderr, {level})"


class FileLogConsumer:
    def __init__(
        self,
        path: str = LOG_FILE_NAME,
        rotation: str = "10 MB",
        retention: int = 3,
        *,
        log_dir: Path | None = None,
    ):
        resolved = Path(path)
        if log_dir is not None and not resolved.is_absolute():
            resolved = log_dir / resolved
        self._path = resolved
        self._rotation = rotation
        self._retention = retention

    @property
    def path(self) -> Path:
        return self._path

    def register(self, level: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(self._path),
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}",
            rotation=self._rotation,
            retention=self._retention,
        )

    def describe(self, level: str) -> str:
        return f"file ({self._path}, {level})"


# The console is the chat surface, so only warnings go to stderr by default.
_DEFAULT_CONSUMERS: list[dict[str, Any]] = [
    {"type": "console", "level": "WARNING"},
    {"type": "file"},
]


def _build_consumer(sink_type: str, options: dict[str, Any], log_dir: Path | None):
    if sink_type == "console":
        return ConsoleLogConsumer(**options)
    if sink_type == "file":
        return FileLogConsumer(**options, log_dir=log_dir)
    return None


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
    *,
    log_dir: Path | None = None,
) -> list[str]:
    """Configure logging sinks. Returns a description of each registered consumer.

    Relative file paths land in ``log_dir``, the chat's storage directory, so
    the log sits next to the saved conversation.
    """
    logger.remove()

    if consumers is None:
        consumers = _DEFAULT_CONSUMERS

    descriptions: list[str] = []

    for config in consumers:
        sink_type = config.get("type", "")
        options = {k: v for k, v in config.items() if k not in ("type", "level")}
        sink_level = config.get("level", level)

        try:
            consumer = _build_consumer(sink_type, options, log_dir)
        except TypeError as ex:
            logger.warning(f"Invalid options for {sink_type} log consumer: {ex}")
            continue
        if consumer is None:
            logger.warning(f"Unknown log consumer type: {sink_type!r}")
            continue

        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))

    return descriptions
