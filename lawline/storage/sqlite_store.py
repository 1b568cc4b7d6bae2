"""
SQLite storage for accounts, conversations and the usage log.
Single portable file. Query with SQL.

Conversation documents are split into a `conversations` row plus ordered
`messages` rows; `seq` is the insertion order and therefore the
chronological order of a conversation. The usage log is append-only.
"""

import sqlite3
import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from lawline.storage.models import Account, Conversation, Message, UsageLogEntry, to_iso

logger = logging.getLogger(__name__)

CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL UNIQUE,
    name TEXT DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    title TEXT NOT NULL,
    time TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    seq INTEGER NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    FOREIGN KEY (conversation_id) REFERENCES conversations(id)
);

CREATE TABLE IF NOT EXISTS query_logs (
    id TEXT PRIMARY KEY,
    user_id TEXT DEFAULT '',
    is_guest BOOLEAN NOT NULL DEFAULT 0,
    timestamp TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_conversations_owner
    ON conversations(owner_id);
CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON messages(conversation_id, seq);
CREATE INDEX IF NOT EXISTS idx_messages_timestamp
    ON messages(timestamp);
CREATE INDEX IF NOT EXISTS idx_query_logs_timestamp
    ON query_logs(timestamp);
"""


class SQLiteStore:
    """Connection-per-call SQLite store for conversations and query logs."""

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

    # ─ Accounts ─────────────────────────────────────────────────────────────

    def create_account(self, account: Account) -> Account:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO accounts (id, username, name, created_at) VALUES (?, ?, ?, ?)",
                (account.id, account.username, account.name, account.created_at),
            )
        logger.info("Created account %s (%s)", account.username, account.id)
        return account

    def find_account(self, identifier: str) -> Account | None:
        """Find an account by login name or display name."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE username = ? OR name = ? "
                "ORDER BY created_at LIMIT 1",
                (identifier, identifier),
            ).fetchone()
        if not row:
            return None
        return Account(
            id=row["id"], username=row["username"],
            name=row["name"] or "", created_at=row["created_at"],
        )

    # ─ Conversations ────────────────────────────────────────────────────────

    @staticmethod
    def _load_messages(conn, conversation_id: str) -> tuple[Message, ...]:
        rows = conn.execute(
            "SELECT * FROM messages WHERE conversation_id = ? ORDER BY seq",
            (conversation_id,),
        ).fetchall()
        return tuple(
            Message(id=r["id"], role=r["role"], content=r["content"], timestamp=r["timestamp"])
            for r in rows
        )

    def _row_to_conversation(self, conn, row) -> Conversation:
        return Conversation(
            id=row["id"],
            title=row["title"],
            owner_id=row["owner_id"],
            time=row["time"],
            created_at=row["created_at"],
            messages=self._load_messages(conn, row["id"]),
        )

    @staticmethod
    def _insert_message(conn, conversation_id: str, msg: Message):
        seq = conn.execute(
            "SELECT COALESCE(MAX(seq), -1) + 1 FROM messages WHERE conversation_id = ?",
            (conversation_id,),
        ).fetchone()[0]
        conn.execute(
            """INSERT INTO messages (id, conversation_id, seq, role, content, timestamp)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (msg.id, conversation_id, seq, msg.role, msg.content, msg.timestamp),
        )

    def create_conversation(self, conv: Conversation):
        """Insert a conversation with its seed messages in one transaction."""
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO conversations (id, owner_id, title, time, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (conv.id, conv.owner_id, conv.title, conv.time, conv.created_at),
            )
            for msg in conv.messages:
                self._insert_message(conn, conv.id, msg)
        logger.debug("Created conversation %s (%d messages)", conv.id, len(conv.messages))

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,),
            ).fetchone()
            if not row:
                return None
            return self._row_to_conversation(conn, row)

    def find_unfinished_conversation(self, owner_id: str, title: str) -> Conversation | None:
        """
        Find a conversation of this owner with the given title that holds
        exactly two messages (priming + first question, no reply yet).
        Used to absorb duplicate submissions of the same opening message.
        """
        with self._connect() as conn:
            row = conn.execute(
                """SELECT c.* FROM conversations c
                   WHERE c.owner_id = ? AND c.title = ?
                     AND (SELECT COUNT(*) FROM messages m
                          WHERE m.conversation_id = c.id) = 2
                   ORDER BY c.created_at DESC
                   LIMIT 1""",
                (owner_id, title),
            ).fetchone()
            if not row:
                return None
            return self._row_to_conversation(conn, row)

    def list_conversations(self, owner_id: str) -> list[Conversation]:
        """All conversations of an owner, most recently created first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM conversations WHERE owner_id = ? ORDER BY created_at DESC",
                (owner_id,),
            ).fetchall()
            return [self._row_to_conversation(conn, r) for r in rows]

    def append_message(self, conversation_id: str, msg: Message, time: str | None = None):
        """Append one message, optionally updating the display time, atomically."""
        with self._connect() as conn:
            self._insert_message(conn, conversation_id, msg)
            if time is not None:
                conn.execute(
                    "UPDATE conversations SET time = ? WHERE id = ?",
                    (time, conversation_id),
                )
        logger.debug("Appended %s message to %s", msg.role, conversation_id)

    def remove_last_message(
        self, conversation_id: str, time: str | None = None, role: str | None = None,
    ) -> bool:
        """
        Remove the most recently appended message. With `role`, only remove it
        if it has that role. Returns False if nothing was removed.
        """
        sql = """DELETE FROM messages WHERE id = (
                     SELECT id FROM messages WHERE conversation_id = ?
                     ORDER BY seq DESC LIMIT 1)"""
        params: tuple = (conversation_id,)
        if role is not None:
            sql += " AND role = ?"
            params += (role,)
        with self._connect() as conn:
            cur = conn.execute(sql, params)
            removed = cur.rowcount > 0
            if removed and time is not None:
                conn.execute(
                    "UPDATE conversations SET time = ? WHERE id = ?",
                    (time, conversation_id),
                )
        return removed

    def delete_conversation(self, conversation_id: str) -> bool:
        with self._connect() as conn:
            conn.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
            cur = conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
            deleted = cur.rowcount > 0
        return deleted

    # ─ Usage log ────────────────────────────────────────────────────────────

    def log_query(self, entry: UsageLogEntry):
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO query_logs (id, user_id, is_guest, timestamp) VALUES (?, ?, ?, ?)",
                (entry.id, entry.actor_id, entry.is_guest, entry.timestamp),
            )

    def count_queries_since(self, since: datetime) -> int:
        with self._connect() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM query_logs WHERE timestamp >= ?",
                (to_iso(since),),
            ).fetchone()[0]

    def first_query_timestamp(self) -> datetime | None:
        """Timestamp of the earliest usage-log entry ever written."""
        with self._connect() as conn:
            first = conn.execute("SELECT MIN(timestamp) FROM query_logs").fetchone()[0]
        return datetime.fromisoformat(first) if first else None

    def count_user_messages(self, since: datetime, before: datetime | None = None) -> int:
        """Count user-role messages with since <= timestamp (< before, if given)."""
        sql = "SELECT COUNT(*) FROM messages WHERE role = 'user' AND timestamp >= ?"
        params: list = [to_iso(since)]
        if before is not None:
            sql += " AND timestamp < ?"
            params.append(to_iso(before))
        with self._connect() as conn:
            return conn.execute(sql, params).fetchone()[0]

    def get_stats(self) -> dict:
        """Return counts of stored data."""
        with self._connect() as conn:
            accounts = conn.execute("SELECT COUNT(*) FROM accounts").fetchone()[0]
            conv_count = conn.execute("SELECT COUNT(*) FROM conversations").fetchone()[0]
            user_count = conn.execute("SELECT COUNT(*) FROM messages WHERE role='user'").fetchone()[0]
            asst_count = conn.execute("SELECT COUNT(*) FROM messages WHERE role='assistant'").fetchone()[0]
            queries = conn.execute("SELECT COUNT(*) FROM query_logs").fetchone()[0]
            guest_queries = conn.execute(
                "SELECT COUNT(*) FROM query_logs WHERE is_guest = 1"
            ).fetchone()[0]

        return {
            "accounts": accounts,
            "conversations": conv_count,
            "user_messages": user_count,
            "assistant_messages": asst_count,
            "queries": {"total": queries, "guest": guest_queries},
        }
