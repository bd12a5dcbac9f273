"""
Data models for conversation storage.
These define the shape of records owned by the store. Attributes are
snake_case in Python; to_dict() produces the camelCase wire format the
HTTP API and the client speak.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

ROLES = ("user", "assistant")
THEMES = ("light", "dark", "auto")

DEFAULT_SETTINGS = {
    "theme": "auto",
    "language": "en",
    "weather_alerts": True,
    "sound_enabled": False,
    "location": None,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


def _iso(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts else None


@dataclass
class User:
    username: str
    password: str
    id: str = field(default_factory=_new_id)

    def to_dict(self) -> dict:
        # password stays server-side
        return {"id": self.id, "username": self.username}


@dataclass
class Conversation:
    """A chat thread. thread_id is the agent-side memory key and never changes."""
    title: str
    thread_id: str
    user_id: str
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "threadId": self.thread_id,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass
class Message:
    """A single turn. Metadata is opaque (weather cards, location, timestamp)."""
    conversation_id: str
    role: str               # "user" | "assistant"
    content: str
    metadata: dict | None = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "conversationId": self.conversation_id,
            "role": self.role,
            "content": self.content,
            "metadata": self.metadata,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class UserSettings:
    user_id: str
    theme: str = "auto"
    language: str = "en"
    weather_alerts: bool = True
    sound_enabled: bool = False
    location: dict | None = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "theme": self.theme,
            "language": self.language,
            "weatherAlerts": self.weather_alerts,
            "soundEnabled": self.sound_enabled,
            "location": self.location,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
