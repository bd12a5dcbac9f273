"""
SQLite storage: the durable counterpart of MemoryStore.
Same contract, one portable file. Timestamps are stored as fixed-width
ISO-8601 text so string order equals time order; rowid breaks ties.
"""

import sqlite3
import json
import logging
from datetime import datetime
from pathlib import Path
from contextlib import contextmanager

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

CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL UNIQUE,
    password TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    user_id TEXT,
    title TEXT NOT NULL,
    thread_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    metadata TEXT DEFAULT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_settings (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL UNIQUE,
    theme TEXT DEFAULT 'auto',
    language TEXT DEFAULT 'en',
    weather_alerts INTEGER DEFAULT 1,
    sound_enabled INTEGER DEFAULT 0,
    location TEXT DEFAULT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_conversations_user
    ON conversations(user_id);
CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON messages(conversation_id);
CREATE INDEX IF NOT EXISTS idx_messages_created
    ON messages(created_at);
"""


def _ts(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _dump(value) -> str | None:
    return None if value is None else json.dumps(value)


def _load(value: str | None):
    return None if value is None else json.loads(value)


class SQLiteStore(ConversationStore):
    """SQLite-backed conversation store."""

    name = "sqlite"

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        with self._connect() as conn:
            conn.executescript(CREATE_TABLES)
        logger.info("SQLite store initialized at %s", self.db_path)

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _user(row) -> User:
        return User(id=row["id"], username=row["username"], password=row["password"])

    @staticmethod
    def _conversation(row) -> Conversation:
        return Conversation(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            thread_id=row["thread_id"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _message(row) -> Message:
        return Message(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=row["role"],
            content=row["content"],
            metadata=_load(row["metadata"]),
            created_at=_parse_ts(row["created_at"]),
        )

    @staticmethod
    def _settings(row) -> UserSettings:
        return UserSettings(
            id=row["id"],
            user_id=row["user_id"],
            theme=row["theme"],
            language=row["language"],
            weather_alerts=bool(row["weather_alerts"]),
            sound_enabled=bool(row["sound_enabled"]),
            location=_load(row["location"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, username: str, password: str) -> User:
        user = User(username=username, password=password)
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO users (id, username, password) VALUES (?, ?, ?)",
                    (user.id, user.username, user.password),
                )
        except sqlite3.IntegrityError:
            raise ValidationError(f"username {username!r} is taken")
        return user

    def get_user(self, user_id: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._user(row) if row else None

    def get_user_by_username(self, username: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
        return self._user(row) if row else None

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def create_conversation(self, title: str, thread_id: str, user_id: str) -> Conversation:
        conv = Conversation(title=title, thread_id=thread_id, user_id=user_id)
        conv.updated_at = conv.created_at
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO conversations
                   (id, user_id, title, thread_id, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (conv.id, conv.user_id, conv.title, conv.thread_id,
                 _ts(conv.created_at), _ts(conv.updated_at)),
            )
        logger.debug("Created conversation %s (thread=%s)", conv.id, thread_id)
        return conv

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
        return self._conversation(row) if row else None

    def list_conversations(self, user_id: str) -> list[Conversation]:
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT * FROM conversations WHERE user_id = ?
                   ORDER BY updated_at DESC, rowid DESC""",
                (user_id,),
            ).fetchall()
        return [self._conversation(r) for r in rows]

    def update_conversation(self, conversation_id: str, **changes) -> Conversation:
        check_conversation_changes(changes)
        conv = self.get_conversation(conversation_id)
        if conv is None:
            raise NotFoundError(f"conversation {conversation_id} not found")
        conv.title = changes.get("title", conv.title)
        conv.updated_at = next_timestamp(conv.updated_at)
        with self._connect() as conn:
            conn.execute(
                "UPDATE conversations SET title = ?, updated_at = ? WHERE id = ?",
                (conv.title, _ts(conv.updated_at), conversation_id),
            )
        return conv

    def delete_conversation(self, conversation_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
            if cur.rowcount == 0:
                return False
            removed = conn.execute(
                "DELETE FROM messages WHERE conversation_id = ?", (conversation_id,)
            ).rowcount
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
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO messages
                   (id, conversation_id, role, content, metadata, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (msg.id, msg.conversation_id, msg.role, msg.content,
                 _dump(msg.metadata), _ts(msg.created_at)),
            )
        logger.debug("Stored message %s (role=%s, conv=%s)", msg.id, msg.role, msg.conversation_id)
        return msg

    def get_message(self, message_id: str) -> Message | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
        return self._message(row) if row else None

    def list_messages(self, conversation_id: str) -> list[Message]:
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT * FROM messages WHERE conversation_id = ?
                   ORDER BY created_at, rowid""",
                (conversation_id,),
            ).fetchall()
        return [self._message(r) for r in rows]

    def delete_messages(self, conversation_id: str) -> int:
        with self._connect() as conn:
            return conn.execute(
                "DELETE FROM messages WHERE conversation_id = ?", (conversation_id,)
            ).rowcount

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_settings(self, user_id: str) -> UserSettings | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM user_settings WHERE user_id = ?", (user_id,)
            ).fetchone()
        return self._settings(row) if row else None

    def create_settings(self, user_id: str, **fields) -> UserSettings:
        check_settings_changes(fields)
        s = UserSettings(user_id=user_id, **fields)
        s.updated_at = s.created_at
        with self._connect() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO user_settings
                   (id, user_id, theme, language, weather_alerts, sound_enabled,
                    location, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (s.id, s.user_id, s.theme, s.language, int(s.weather_alerts),
                 int(s.sound_enabled), _dump(s.location),
                 _ts(s.created_at), _ts(s.updated_at)),
            )
        return s

    def update_settings(self, user_id: str, changes: dict) -> UserSettings:
        check_settings_changes(changes)
        s = self.get_settings(user_id)
        if s is None:
            raise NotFoundError(f"settings for {user_id} not found")
        for key, value in changes.items():
            setattr(s, key, value)
        s.updated_at = next_timestamp(s.updated_at)
        with self._connect() as conn:
            conn.execute(
                """UPDATE user_settings
                   SET theme = ?, language = ?, weather_alerts = ?, sound_enabled = ?,
                       location = ?, updated_at = ?
                   WHERE user_id = ?""",
                (s.theme, s.language, int(s.weather_alerts), int(s.sound_enabled),
                 _dump(s.location), _ts(s.updated_at), user_id),
            )
        return s
