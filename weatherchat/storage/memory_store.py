"""
In-memory store: plain dicts keyed by id, alive for the life of the process.

Dicts keep insertion order, and sorted() is stable, so records sharing a
timestamp come back in the order they were written.
"""

import logging
from dataclasses import replace

from weatherchat.errors import NotFoundError, ValidationError
from weatherchat.storage.base import (
    ConversationStore,
    check_conversation_changes,
    check_role,
    check_settings_changes,
    next_timestamp,
)
from weatherchat.storage.models import Conversation, Message, User, UserSettings

logger = logging.getLogger(__name__)


class MemoryStore(ConversationStore):
    """Process-lifetime record store."""

    name = "memory"

    def __init__(self):
        self._users: dict[str, User] = {}
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, Message] = {}
        self._settings: dict[str, UserSettings] = {}

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, username: str, password: str) -> User:
        if self.get_user_by_username(username) is not None:
            raise ValidationError(f"username {username!r} is taken")
        user = User(username=username, password=password)
        self._users[user.id] = user
        return user

    def get_user(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    def get_user_by_username(self, username: str) -> User | None:
        for user in self._users.values():
            if user.username == username:
                return user
        return None

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def create_conversation(self, title: str, thread_id: str, user_id: str) -> Conversation:
        conv = Conversation(title=title, thread_id=thread_id, user_id=user_id)
        conv.updated_at = conv.created_at
        self._conversations[conv.id] = conv
        logger.debug("Created conversation %s (thread=%s)", conv.id, thread_id)
        return conv

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    def list_conversations(self, user_id: str) -> list[Conversation]:
        # Newest insert first among equal timestamps
        owned = [c for c in reversed(self._conversations.values()) if c.user_id == user_id]
        return sorted(owned, key=lambda c: c.updated_at, reverse=True)

    def update_conversation(self, conversation_id: str, **changes) -> Conversation:
        check_conversation_changes(changes)
        conv = self._conversations.get(conversation_id)
        if conv is None:
            raise NotFoundError(f"conversation {conversation_id} not found")
        updated = replace(conv, **changes, updated_at=next_timestamp(conv.updated_at))
        self._conversations[conversation_id] = updated
        return updated

    def delete_conversation(self, conversation_id: str) -> bool:
        if self._conversations.pop(conversation_id, None) is None:
            return False
        removed = self.delete_messages(conversation_id)
        logger.debug("Deleted conversation %s and %d messages", conversation_id, removed)
        return True

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def create_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: dict | None = None,
    ) -> Message:
        check_role(role)
        msg = Message(
            conversation_id=conversation_id,
            role=role,
            content=content,
            metadata=metadata,
        )
        self._messages[msg.id] = msg
        return msg

    def get_message(self, message_id: str) -> Message | None:
        return self._messages.get(message_id)

    def list_messages(self, conversation_id: str) -> list[Message]:
        owned = [m for m in self._messages.values() if m.conversation_id == conversation_id]
        return sorted(owned, key=lambda m: m.created_at)

    def delete_messages(self, conversation_id: str) -> int:
        doomed = [mid for mid, m in self._messages.items() if m.conversation_id == conversation_id]
        for mid in doomed:
            del self._messages[mid]
        return len(doomed)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_settings(self, user_id: str) -> UserSettings | None:
        return self._settings.get(user_id)

    def create_settings(self, user_id: str, **fields) -> UserSettings:
        check_settings_changes(fields)
        settings = UserSettings(user_id=user_id, **fields)
        settings.updated_at = settings.created_at
        self._settings[user_id] = settings
        return settings

    def update_settings(self, user_id: str, changes: dict) -> UserSettings:
        check_settings_changes(changes)
        existing = self._settings.get(user_id)
        if existing is None:
            raise NotFoundError(f"settings for {user_id} not found")
        updated = replace(existing, **changes, updated_at=next_timestamp(existing.updated_at))
        self._settings[user_id] = updated
        return updated
