"""Request body schemas for the HTTP API (camelCase on the wire)."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ConversationIn(BaseModel):
    title: str
    threadId: str


class ConversationPatch(BaseModel):
    title: str


class MessageIn(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    metadata: dict[str, Any] | None = None


class SettingsPatch(BaseModel):
    """PATCH body. All fields optional; only the ones sent are applied."""

    model_config = ConfigDict(populate_by_name=True)

    theme: Literal["light", "dark", "auto"] | None = None
    language: str | None = None
    weather_alerts: bool | None = Field(None, alias="weatherAlerts")
    sound_enabled: bool | None = Field(None, alias="soundEnabled")
    location: dict[str, Any] | None = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class StreamRequest(BaseModel):
    """
    A chat turn for the relay. `messages` is forwarded untouched, so extra
    keys on each turn survive; only role and content are required.
    """

    messages: list[dict[str, Any]]
    threadId: str | None = None
    runId: str | None = None
    maxRetries: int | None = None
    maxSteps: int | None = None
    temperature: float | None = None
    topP: float | None = None
    runtimeContext: dict[str, Any] | None = None
    resourceId: str | None = None

    @field_validator("messages")
    @classmethod
    def _turns_have_role_and_content(cls, v):
        for turn in v:
            if "role" not in turn or "content" not in turn:
                raise ValueError("every message needs a role and content")
        return v

    def options(self) -> dict:
        """Execution parameters the caller actually set."""
        return self.model_dump(exclude_none=True, exclude={"messages", "threadId"})
