from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

ROLES = ("user", "assistant", "system")


def text_part(text: str) -> dict:
    return {"type": "text", "text": text}


def is_text_part(part: dict) -> bool:
    return isinstance(part, dict) and part.get("type") == "text"


@dataclass(frozen=True)
class Message:
    id: str
    role: str
    parts: tuple[dict, ...] = field(default_factory=tuple)

    @classmethod
    def from_text(cls, message_id: str, role: str, text: str) -> Message:
        return cls(id=message_id, role=role, parts=(text_part(text),))

    @property
    def text(self) -> str:
        return "".join(str(p.get("text", "")) for p in self.parts if is_text_part(p))

    def with_parts(self, parts: list[dict] | tuple[dict, ...]) -> Message:
        return Message(id=self.id, role=self.role, parts=tuple(parts))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "parts": [copy.deepcopy(p) for p in self.parts],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        if not isinstance(data, dict):
            raise ValueError(f"Message record must be an object, got {type(data).__name__}")
        message_id = data.get("id")
        if not isinstance(message_id, str) or not message_id:
            raise ValueError("Message record has no id")
        role = data.get("role")
        if role not in ROLES:
            raise ValueError(f"Message {message_id} has unknown role: {role!r}")
        parts = data.get("parts") or []
        if not isinstance(parts, list) or not all(isinstance(p, dict) for p in parts):
            raise ValueError(f"Message {message_id} has malformed parts")
        return cls(id=message_id, role=role, parts=tuple(copy.deepcopy(p) for p in parts))
