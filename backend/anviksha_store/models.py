from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .time_utils import parse_iso, to_iso

MESSAGE_ROLES = {"user", "ai"}
SEX_VALUES = ("male", "female", "other", "unspecified")


@dataclass(frozen=True)
class ChatMessage:
    id: str
    role: str
    text: str
    timestamp: datetime
    image: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "text": self.text,
            "timestamp": to_iso(self.timestamp),
        }
        if self.image:
            payload["image"] = self.image
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ChatMessage":
        role = str(payload.get("role") or payload.get("sender") or "")
        if role not in MESSAGE_ROLES:
            raise ValueError(f"Unknown message role: {role!r}")
        timestamp = parse_iso(payload.get("timestamp"))
        if timestamp is None:
            raise ValueError("Message timestamp is missing or invalid")
        return cls(
            id=str(payload["id"]),
            role=role,
            text=str(payload.get("text") or ""),
            timestamp=timestamp,
            image=payload.get("image") or None,
        )


@dataclass
class ConversationSession:
    id: str
    title: str
    timestamp: datetime
    messages: list[ChatMessage] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "timestamp": to_iso(self.timestamp),
            "messages": [message.to_payload() for message in self.messages],
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ConversationSession":
        timestamp = parse_iso(payload.get("timestamp"))
        if timestamp is None:
            raise ValueError("Session timestamp is missing or invalid")
        raw_messages = payload.get("messages")
        messages: list[ChatMessage] = []
        for raw in raw_messages if isinstance(raw_messages, list) else []:
            if not isinstance(raw, dict):
                continue
            try:
                messages.append(ChatMessage.from_payload(raw))
            except (KeyError, TypeError, ValueError):
                continue
        return cls(
            id=str(payload["id"]),
            title=str(payload.get("title") or ""),
            timestamp=timestamp,
            messages=messages,
        )

    def user_message_count(self) -> int:
        return sum(1 for message in self.messages if message.role == "user")


@dataclass
class UserProfile:
    name: str = "Guest Patient"
    age: int = 0
    sex: str = "unspecified"
    blood_group: str = "Unknown"
    weight_kg: float = 0.0
    chronic_conditions: list[str] = field(default_factory=list)
    allergies: list[str] = field(default_factory=list)
    emergency_contact: str = ""

    def __post_init__(self) -> None:
        if self.sex not in SEX_VALUES:
            raise ValueError(f"Unsupported sex value: {self.sex!r}")
        if self.age < 0 or self.age > 150:
            raise ValueError("Age must be between 0 and 150")
        if self.weight_kg < 0:
            raise ValueError("Weight must not be negative")

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "age": self.age,
            "sex": self.sex,
            "bloodGroup": self.blood_group,
            "weight": self.weight_kg,
            "chronicConditions": list(self.chronic_conditions),
            "allergies": list(self.allergies),
            "emergencyContact": self.emergency_contact,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "UserProfile":
        defaults = cls()
        return cls(
            name=str(payload.get("name") or defaults.name),
            age=int(payload.get("age") or 0),
            sex=str(payload.get("sex") or defaults.sex),
            blood_group=str(payload.get("bloodGroup") or defaults.blood_group),
            weight_kg=float(payload.get("weight") or 0.0),
            chronic_conditions=[str(item) for item in payload.get("chronicConditions") or [] if str(item).strip()],
            allergies=[str(item) for item in payload.get("allergies") or [] if str(item).strip()],
            emergency_contact=str(payload.get("emergencyContact") or ""),
        )

    def history_summary(self) -> str:
        parts = [f"{self.age}y {self.sex}" if self.age else self.sex]
        if self.chronic_conditions:
            parts.append("conditions: " + ", ".join(self.chronic_conditions))
        if self.allergies:
            parts.append("allergies: " + ", ".join(self.allergies))
        return "; ".join(parts)
