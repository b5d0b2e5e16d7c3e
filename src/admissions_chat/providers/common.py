from __future__ import annotations

import json

from loguru import logger
from tenacity import retry_if_exception_type, stop_after_attempt, wait_exponential

from admissions_chat.llm_client import _on_retry
from admissions_chat.models import Message


def default_retry_kwargs(
    exception_types: tuple[type[Exception], ...],
    *,
    attempts: int = 3,
) -> dict:
    return {
        "retry": retry_if_exception_type(exception_types),
        "wait": wait_exponential(multiplier=2, min=2, max=30),
        "stop": stop_after_attempt(attempts),
        "before_sleep": _on_retry,
        "reraise": True,
    }


def to_chat_history(messages: list[Message]) -> list[dict]:
    """Reduce the transcript to alternating plain-text turns for a model request.

    Tool parts are not replayed, system messages are skipped, the history
    starts at the first user turn and consecutive turns of one role are joined.
    """
    history: list[dict] = []
    for message in messages:
        if message.role not in ("user", "assistant"):
            continue
        text = message.text.strip()
        if not text:
            continue
        if not history and message.role != "user":
            continue
        if history and history[-1]["role"] == message.role:
            history[-1]["content"] += "\n\n" + text
        else:
            history.append({"role": message.role, "content": text})
    return history


def parse_tool_input(raw_json: str) -> dict:
    if not raw_json:
        return {}
    try:
        parsed = json.loads(raw_json)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse tool call arguments: {raw_json[:200]}")
        return {}
    return parsed if isinstance(parsed, dict) else {}
