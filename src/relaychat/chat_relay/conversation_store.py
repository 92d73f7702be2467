from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from .db import Database
from .models import StoredMessage

SENDERS = ("User", "Bot")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class ConversationStore:
    """Sessions, their messages, and the cumulative token counter."""

    def __init__(self, db: Database):
        self._db = db

    def create_session(self, session_id: str | None = None) -> str:
        sid = session_id or str(uuid4())
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT INTO chat_sessions (id, created_at) VALUES (?, ?)",
                (sid, utc_now()),
            )
        return sid

    def session_exists(self, session_id: str) -> bool:
        row = self._db.fetchone(
            "SELECT 1 FROM chat_sessions WHERE id = ? LIMIT 1", (session_id,)
        )
        return row is not None

    def list_sessions(self) -> list[dict]:
        rows = self._db.fetchall(
            """
            SELECT s.id, s.created_at, COUNT(m.id) AS message_count,
                   MAX(m.timestamp) AS last_message_at
            FROM chat_sessions s
            LEFT JOIN chat_messages m ON m.session_id = s.id
            GROUP BY s.id
            ORDER BY COALESCE(MAX(m.timestamp), s.created_at) DESC
            """
        )
        return [dict(row) for row in rows]

    def save_message(
        self, session_id: str, sender: str, body: str, tokens: int = 0
    ) -> StoredMessage:
        """Append a message; a session id seen for the first time is created."""
        if sender not in SENDERS:
            raise ValueError(f"sender must be one of {SENDERS}, got {sender!r}")
        if tokens < 0:
            raise ValueError("tokens must be non-negative")
        ts = utc_now()
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO chat_sessions (id, created_at) VALUES (?, ?)",
                (session_id, ts),
            )
            cursor = conn.execute(
                "INSERT INTO chat_messages (session_id, sender, message, tokens_used, timestamp) "
                "VALUES (?, ?, ?, ?, ?)",
                (session_id, sender, body, tokens, ts),
            )
            message_id = cursor.lastrowid
        return StoredMessage(message_id, session_id, sender, body, tokens, ts)

    def get_messages(self, session_id: str) -> list[StoredMessage]:
        rows = self._db.fetchall(
            "SELECT id, session_id, sender, message, tokens_used, timestamp "
            "FROM chat_messages WHERE session_id = ? ORDER BY timestamp ASC, id ASC",
            (session_id,),
        )
        return [StoredMessage(**dict(row)) for row in rows]

    def delete_session(self, session_id: str) -> bool:
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM chat_sessions WHERE id = ?", (session_id,))
        return cursor.rowcount > 0

    def add_token_usage(self, delta: int) -> int:
        """Atomically add ``delta`` to the running total and return the new total."""
        if delta < 0:
            raise ValueError("token usage delta must be non-negative")
        with self._db.transaction() as conn:
            conn.execute(
                "UPDATE token_usage SET total_tokens = total_tokens + ? WHERE id = 1",
                (delta,),
            )
            row = conn.execute(
                "SELECT total_tokens FROM token_usage WHERE id = 1"
            ).fetchone()
        return int(row["total_tokens"])

    def get_total_token_usage(self) -> int:
        row = self._db.fetchone("SELECT total_tokens FROM token_usage WHERE id = 1")
        return int(row["total_tokens"]) if row else 0
