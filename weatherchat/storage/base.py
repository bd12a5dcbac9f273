"""
ConversationStore — abstract base for record stores.

Every backend implements the same keyed CRUD contract over four record
kinds: users, conversations, messages and per-user settings.

  conversations  listed most recently updated first
  messages       listed oldest first, removed with their conversation
  settings       at most one per user, patched in place

Errors: a missing record raises NotFoundError, malformed input raises
ValidationError. Nothing here knows about HTTP.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from weatherchat.errors import ValidationError
from weatherchat.storage.models import (
    ROLES,
    THEMES,
    Conversation,
    Message,
    User,
    UserSettings,
    utcnow,
)

CONVERSATION_FIELDS = {"title"}
SETTINGS_FIELDS = {"theme", "language", "weather_alerts", "sound_enabled", "location"}


def next_timestamp(previous: datetime | None) -> datetime:
    """now(), but never earlier than `previous` (clocks can step backwards)."""
    now = utcnow()
    if previous is not None and now < previous:
        return previous
    return now


def check_role(role: str):
    if role not in ROLES:
        raise ValidationError(f"role must be one of {', '.join(ROLES)}")


def check_conversation_changes(changes: dict):
    unknown = set(changes) - CONVERSATION_FIELDS
    if unknown:
        raise ValidationError(f"cannot update conversation fields: {', '.join(sorted(unknown))}")


def check_settings_changes(changes: dict):
    unknown = set(changes) - SETTINGS_FIELDS
    if unknown:
        raise ValidationError(f"unknown settings fields: {', '.join(sorted(unknown))}")
    if "theme" in changes and changes["theme"] not in THEMES:
        raise ValidationError(f"theme must be one of {', '.join(THEMES)}")
    for flag in ("weather_alerts", "sound_enabled"):
        if flag in changes and not isinstance(changes[flag], bool):
            raise ValidationError(f"{flag} must be true or false")


class ConversationStore(ABC):
    """Abstract conversation/message/settings store."""

    name = "base"

    # -- users ---------------------------------------------------------

    @abstractmethod
    def create_user(self, username: str, password: str) -> User:
        """Raises ValidationError if the username is taken."""
        ...

    @abstractmethod
    def get_user(self, user_id: str) -> User | None:
        ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> User | None:
        ...

    # -- conversations -------------------------------------------------

    @abstractmethod
    def create_conversation(self, title: str, thread_id: str, user_id: str) -> Conversation:
        """New conversation with created_at == updated_at == now."""
        ...

    @abstractmethod
    def get_conversation(self, conversation_id: str) -> Conversation | None:
        ...

    @abstractmethod
    def list_conversations(self, user_id: str) -> list[Conversation]:
        """All of a user's conversations, updated_at descending."""
        ...

    @abstractmethod
    def update_conversation(self, conversation_id: str, **changes) -> Conversation:
        """Apply changes and bump updated_at. Raises NotFoundError."""
        ...

    @abstractmethod
    def delete_conversation(self, conversation_id: str) -> bool:
        """Remove a conversation and its messages. Returns whether it existed."""
        ...

    # -- messages ------------------------------------------------------

    @abstractmethod
    def create_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: dict | None = None,
    ) -> Message:
        """
        Append a message. The conversation is not checked for existence,
        so a bad id leaves an orphaned record behind.
        """
        ...

    @abstractmethod
    def get_message(self, message_id: str) -> Message | None:
        ...

    @abstractmethod
    def list_messages(self, conversation_id: str) -> list[Message]:
        """Messages of one conversation, created_at ascending."""
        ...

    @abstractmethod
    def delete_messages(self, conversation_id: str) -> int:
        """Remove every message of a conversation. Returns how many went."""
        ...

    # -- settings ------------------------------------------------------

    @abstractmethod
    def get_settings(self, user_id: str) -> UserSettings | None:
        ...

    @abstractmethod
    def create_settings(self, user_id: str, **fields) -> UserSettings:
        ...

    @abstractmethod
    def update_settings(self, user_id: str, changes: dict) -> UserSettings:
        """Partial patch. Raises NotFoundError when no record exists yet."""
        ...

    def get_or_create_settings(self, user_id: str, defaults: dict) -> UserSettings:
        settings = self.get_settings(user_id)
        if settings is None:
            settings = self.create_settings(user_id, **defaults)
        return settings

    def close(self):
        """Release any held resources."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"
