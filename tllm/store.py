import logging
import sqlite3
import time
from dataclasses import replace
from pathlib import Path
from typing import Iterator, List, Optional

from tllm.conversation import Conversation, ConversationSummary, Message, Role
from tllm.exceptions import NotFound

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id INTEGER NOT NULL REFERENCES conversations(id),
    role TEXT NOT NULL CHECK (role IN ('system', 'user', 'assistant')),
    content TEXT NOT NULL,
    provider TEXT NOT NULL DEFAULT '',
    truncated INTEGER NOT NULL DEFAULT 0,
    created_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, created_at);
CREATE INDEX IF NOT EXISTS idx_conversations_updated ON conversations(updated_at);
"""


class ConversationStore:
    """
    Durable, append-only log of conversations backed by a single SQLite file.

    One process is expected to hold the store for the length of an invocation.
    Appending is the only mutation after creation, and each append updates the
    message log and the conversation's ``updated_at`` in the same transaction.
    """

    def __init__(self, path):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.path)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.conn.executescript(SCHEMA)
        self._last_ts = self._max_timestamp()
        logger.debug("opened conversation store at %s", self.path)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def _max_timestamp(self) -> int:
        row = self.conn.execute(
            "SELECT MAX(ts) FROM ("
            " SELECT MAX(updated_at) AS ts FROM conversations"
            " UNION ALL SELECT MAX(created_at) AS ts FROM messages)"
        ).fetchone()
        return row[0] or 0

    def _now(self) -> int:
        # Strictly increasing, even when two writes land in the same clock tick
        self._last_ts = max(time.time_ns(), self._last_ts + 1)
        return self._last_ts

    def _insert_message(self, conversation_id, message, ts):
        cur = self.conn.execute(
            "INSERT INTO messages (conversation_id, role, content, provider, truncated, created_at)"
            " VALUES (?, ?, ?, ?, ?, ?)",
            (
                conversation_id,
                message.role.value,
                message.content,
                message.provider or "",
                int(message.truncated),
                ts,
            ),
        )
        return cur.lastrowid

    def create(self, system_prompt: Optional[str] = None) -> int:
        with self.conn:
            ts = self._now()
            cur = self.conn.execute(
                "INSERT INTO conversations (title, created_at, updated_at) VALUES (NULL, ?, ?)",
                (ts, ts),
            )
            conversation_id = cur.lastrowid
            if system_prompt:
                msg_ts = self._now()
                self._insert_message(conversation_id, Message(Role.SYSTEM, system_prompt), msg_ts)
                self.conn.execute(
                    "UPDATE conversations SET updated_at = ? WHERE id = ?",
                    (msg_ts, conversation_id),
                )
        logger.info("created conversation %s", conversation_id)
        return conversation_id

    def append(self, conversation_id: int, message: Message) -> Message:
        """Persist ``message`` as the newest turn and return the stored copy."""
        with self.conn:
            if not self._exists(conversation_id):
                raise NotFound(conversation_id)
            if message.role == Role.SYSTEM:
                (count,) = self.conn.execute(
                    "SELECT COUNT(*) FROM messages WHERE conversation_id = ?", (conversation_id,)
                ).fetchone()
                if count:
                    raise ValueError("a system message can only be the first message")
            ts = self._now()
            message_id = self._insert_message(conversation_id, message, ts)
            self.conn.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?", (ts, conversation_id)
            )
        logger.debug(
            "appended %s message %s to conversation %s",
            message.role.value,
            message_id,
            conversation_id,
        )
        return replace(message, id=message_id, created_at=ts)

    def _exists(self, conversation_id) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM conversations WHERE id = ?", (conversation_id,)
        ).fetchone()
        return row is not None

    def get(self, conversation_id: int) -> Conversation:
        row = self.conn.execute(
            "SELECT id, title, created_at, updated_at FROM conversations WHERE id = ?",
            (conversation_id,),
        ).fetchone()
        if row is None:
            raise NotFound(conversation_id)

        rows = self.conn.execute(
            "SELECT id, role, content, provider, truncated, created_at FROM messages"
            " WHERE conversation_id = ? ORDER BY created_at, id",
            (conversation_id,),
        ).fetchall()
        messages = [
            Message(
                role=Role(r["role"]),
                content=r["content"],
                provider=r["provider"],
                truncated=bool(r["truncated"]),
                created_at=r["created_at"],
                id=r["id"],
            )
            for r in rows
        ]
        return Conversation(
            id=row["id"],
            title=row["title"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            messages=messages,
        )

    def list_recent(self, limit: Optional[int] = None) -> List[ConversationSummary]:
        """Conversations ordered by last activity, most recent first."""
        sql = "SELECT id, updated_at, title FROM conversations ORDER BY updated_at DESC, id DESC"
        params = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        return [
            ConversationSummary(id=r["id"], updated_at=r["updated_at"], title=r["title"])
            for r in self.conn.execute(sql, params)
        ]

    def latest(self) -> Optional[Conversation]:
        recent = self.list_recent(limit=1)
        if not recent:
            return None
        return self.get(recent[0].id)

    def set_title(self, conversation_id: int, title: str):
        with self.conn:
            cur = self.conn.execute(
                "UPDATE conversations SET title = ? WHERE id = ?", (title, conversation_id)
            )
            if cur.rowcount == 0:
                raise NotFound(conversation_id)

    def export_all(self) -> Iterator[Conversation]:
        """Lazily materialize every conversation, oldest first."""
        ids = [r["id"] for r in self.conn.execute("SELECT id FROM conversations ORDER BY id")]
        for conversation_id in ids:
            yield self.get(conversation_id)
