from __future__ import annotations

MAX_MESSAGE_CHARS = 2000


class MessageValidationError(ValueError):
    pass


def validate_message(text: str | None, *, max_chars: int = MAX_MESSAGE_CHARS) -> str:
    """Return the message to send, or raise MessageValidationError."""
    message = (text or "").strip()
    if not message:
        raise MessageValidationError("Message cannot be empty.")
    if len(message) > max_chars:
        raise MessageValidationError(f"Message must be at most {max_chars} characters.")
    return message
