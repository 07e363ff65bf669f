from __future__ import annotations

"""Message history: a keyed append/read log, volatile or sqlite-backed.

Also hosts the digest helpers used by the admin history views.
"""

import itertools
import logging
import sqlite3
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

from .utils import truncate

logger = logging.getLogger("shopbot.history")

DIGEST_MAX_LEN = 3900
DIGEST_ENTRY_LEN = 280
RECENT_ENTRY_LEN = 180
RECENT_PER_USER = 3


@dataclass
class MessageRecord:
    """One exchange: what the user asked and what the assistant answered."""
    user_id: str
    text: str
    response: str
    username: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    ts: float = field(default_factory=time.time)


@dataclass
class UserActivity:
    user_id: str
    username: str
    last_at: float
    count: int


class HistoryStore(Protocol):
    def append(self, user_id: str, username: str, text: str, response: str) -> MessageRecord:
        ...

    def recent(self, user_id: str, limit: int) -> List[MessageRecord]:
        ...

    def all_messages(self, limit: int = 0) -> List[MessageRecord]:
        ...

    def clear(self, user_id: str) -> None:
        ...

    def clear_all(self) -> None:
        ...


class MemoryHistoryStore:
    """Volatile history; per-user lists trimmed to the retention cap."""

    def __init__(self, max_per_user: int = 20) -> None:
        self._max_per_user = max_per_user
        self._lock = threading.Lock()
        self._messages: Dict[str, List[MessageRecord]] = {}
        self._order: Dict[str, int] = {}
        self._seq = itertools.count()

    def append(self, user_id: str, username: str, text: str, response: str) -> MessageRecord:
        record = MessageRecord(user_id=user_id, username=username, text=text, response=response)
        with self._lock:
            items = self._messages.setdefault(user_id, [])
            items.append(record)
            self._order[record.id] = next(self._seq)
            if self._max_per_user > 0 and len(items) > self._max_per_user:
                for dropped in items[: len(items) - self._max_per_user]:
                    self._order.pop(dropped.id, None)
                del items[: len(items) - self._max_per_user]
        return record

    def recent(self, user_id: str, limit: int) -> List[MessageRecord]:
        with self._lock:
            items = list(self._messages.get(user_id, []))
        return items[-limit:] if limit > 0 else items

    def all_messages(self, limit: int = 0) -> List[MessageRecord]:
        with self._lock:
            records = [record for items in self._messages.values() for record in items]
            records.sort(key=lambda record: (record.ts, self._order.get(record.id, 0)), reverse=True)
        return records[:limit] if limit > 0 else records

    def clear(self, user_id: str) -> None:
        with self._lock:
            for record in self._messages.pop(user_id, []):
                self._order.pop(record.id, None)

    def clear_all(self) -> None:
        with self._lock:
            self._messages.clear()
            self._order.clear()


class SqliteHistoryStore:
    """Durable history in one sqlite table, trimmed per user after each append."""

    def __init__(self, path: str, max_per_user: int = 20) -> None:
        """Purpose: Open (or create) the sqlite history database.
        Inputs/Outputs: Inputs are the db path and retention cap; no return value.
        Side Effects / State: Creates parent directories, the messages table and its index.
        Dependencies: stdlib sqlite3.
        Failure Modes: sqlite3.Error on an unwritable path propagates at start-up.
        If Removed: History does not survive restarts.
        Testing Notes: Use tmp_path; append past the cap and check the oldest rows are gone.
        """
        # One shared connection, serialized by a lock.
        self._path = path
        self._max_per_user = max_per_user
        self._lock = threading.Lock()
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock, self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    username TEXT,
                    text TEXT,
                    response TEXT,
                    ts REAL NOT NULL
                )
                """
            )
            self._conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_user_ts ON messages (user_id, ts)")
        logger.info("history db=%s", path)

    @staticmethod
    def _row(row: sqlite3.Row) -> MessageRecord:
        return MessageRecord(
            id=row["id"],
            user_id=row["user_id"],
            username=row["username"] or "",
            text=row["text"] or "",
            response=row["response"] or "",
            ts=row["ts"],
        )

    def append(self, user_id: str, username: str, text: str, response: str) -> MessageRecord:
        record = MessageRecord(user_id=user_id, username=username, text=text, response=response)
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO messages (id, user_id, username, text, response, ts) VALUES (?, ?, ?, ?, ?, ?)",
                (record.id, record.user_id, record.username, record.text, record.response, record.ts),
            )
            if self._max_per_user > 0:
                self._conn.execute(
                    """
                    DELETE FROM messages
                    WHERE user_id = ? AND id NOT IN (
                        SELECT id FROM messages WHERE user_id = ? ORDER BY ts DESC, rowid DESC LIMIT ?
                    )
                    """,
                    (user_id, user_id, self._max_per_user),
                )
        return record

    def recent(self, user_id: str, limit: int) -> List[MessageRecord]:
        query = "SELECT * FROM messages WHERE user_id = ? ORDER BY ts DESC, rowid DESC"
        params: tuple = (user_id,)
        if limit > 0:
            query += " LIMIT ?"
            params = (user_id, limit)
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [self._row(row) for row in reversed(rows)]

    def all_messages(self, limit: int = 0) -> List[MessageRecord]:
        query = "SELECT * FROM messages ORDER BY ts DESC, rowid DESC"
        params: tuple = ()
        if limit > 0:
            query += " LIMIT ?"
            params = (limit,)
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [self._row(row) for row in rows]

    def clear(self, user_id: str) -> None:
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM messages WHERE user_id = ?", (user_id,))

    def clear_all(self) -> None:
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM messages")

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def create_history_store(path: Optional[str], max_per_user: int) -> HistoryStore:
    if path:
        return SqliteHistoryStore(path, max_per_user=max_per_user)
    return MemoryHistoryStore(max_per_user=max_per_user)


def collect_users(messages: Sequence[MessageRecord]) -> List[UserActivity]:
    """Users seen in messages, most recently active first."""
    users: Dict[str, UserActivity] = {}
    for record in messages:
        entry = users.get(record.user_id)
        if entry is None:
            users[record.user_id] = UserActivity(record.user_id, record.username, record.ts, 1)
            continue
        entry.count += 1
        if record.ts > entry.last_at:
            entry.last_at = record.ts
            entry.username = record.username or entry.username
    return sorted(users.values(), key=lambda entry: entry.last_at, reverse=True)


def _label(record: MessageRecord) -> str:
    return f"@{record.username}" if record.username else record.user_id


def _cap(lines: List[str], max_len: int) -> str:
    text = "\n".join(lines).strip()
    return truncate(text, max_len)


def build_conversation_digest(messages: Sequence[MessageRecord], max_len: int = DIGEST_MAX_LEN) -> str:
    """Purpose: Render one user's exchanges for the admin history view.
    Inputs/Outputs: Inputs are records (any order) and a size cap; returns text.
    Side Effects / State: None.
    Dependencies: truncate from utils.
    Failure Modes: Empty input returns an empty string.
    If Removed: Admins cannot read a customer's recent conversation.
    Testing Notes: Long entries are cut at 280 characters; total stays under max_len.
    """
    # Oldest first so the conversation reads top to bottom.
    lines: List[str] = []
    for record in sorted(messages, key=lambda record: record.ts):
        stamp = time.strftime("%Y-%m-%d %H:%M", time.localtime(record.ts))
        lines.append(f"[{stamp}] {_label(record)}: {truncate(record.text, DIGEST_ENTRY_LEN)}")
        if record.response:
            lines.append(f"  -> {truncate(record.response, DIGEST_ENTRY_LEN)}")
    return _cap(lines, max_len)


def build_recent_digest(messages: Sequence[MessageRecord], max_len: int = DIGEST_MAX_LEN) -> str:
    by_user: Dict[str, List[MessageRecord]] = {}
    for record in messages:
        by_user.setdefault(record.user_id, []).append(record)

    lines: List[str] = []
    for activity in collect_users(messages):
        records = sorted(by_user[activity.user_id], key=lambda record: record.ts, reverse=True)
        name = f"@{activity.username}" if activity.username else activity.user_id
        lines.append(f"{name} ({activity.user_id}), messages: {activity.count}")
        for record in records[:RECENT_PER_USER]:
            lines.append(f"  - {truncate(record.text, RECENT_ENTRY_LEN)}")
        lines.append("")
    return _cap(lines, max_len)
