"""SQLite persistence layer."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterator

from norel.models import ChatSettings, Relationship, ReminderRecord, UserRecord

SCHEMA_VERSION = 1


class Database:
    """Small SQLite wrapper with explicit schema management."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate schema."""

        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                self._create_schema(conn)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row["version"] != SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {row['version']} (expected {SCHEMA_VERSION})"
                )

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY,
                username TEXT,
                first_name TEXT,
                reputation INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS facts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                fact TEXT NOT NULL,
                created_at TEXT NOT NULL,
                expires_at TEXT
            );

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                chat_id INTEGER NOT NULL,
                user_id INTEGER,
                role TEXT NOT NULL,
                name TEXT,
                content TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS conversations (
                chat_id INTEGER PRIMARY KEY,
                summary TEXT,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS chat_settings (
                chat_id INTEGER PRIMARY KEY,
                temperature REAL NOT NULL,
                mood TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS relationships (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                chat_id INTEGER NOT NULL,
                user_id_1 INTEGER NOT NULL,
                user_id_2 INTEGER NOT NULL,
                affection INTEGER NOT NULL DEFAULT 0,
                status TEXT,
                UNIQUE(chat_id, user_id_1, user_id_2)
            );

            CREATE TABLE IF NOT EXISTS reminders (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                chat_id INTEGER NOT NULL,
                user_id INTEGER,
                text TEXT NOT NULL,
                due_at TEXT NOT NULL,
                sent INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS tool_executions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                chat_id INTEGER NOT NULL,
                tool_name TEXT NOT NULL,
                input_json TEXT NOT NULL,
                output_json TEXT NOT NULL,
                succeeded INTEGER NOT NULL,
                created_at TEXT NOT NULL
            );
            """
        )

    # -- users ---------------------------------------------------------------

    def upsert_user(self, user_id: int, username: str | None, first_name: str | None) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO users(id, username, first_name)
                VALUES(?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    username=excluded.username,
                    first_name=excluded.first_name
                """,
                (user_id, username, first_name),
            )

    def get_user(self, user_id: int) -> UserRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, username, first_name, reputation FROM users WHERE id = ?", (user_id,)
            ).fetchone()
        return _to_user(row) if row else None

    def change_reputation(self, user_id: int, amount: int) -> int:
        """Add ``amount`` to a user's reputation and return the new value."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO users(id, reputation) VALUES(?, ?)
                ON CONFLICT(id) DO UPDATE SET reputation = reputation + excluded.reputation
                """,
                (user_id, amount),
            )
            row = conn.execute("SELECT reputation FROM users WHERE id = ?", (user_id,)).fetchone()
        return int(row["reputation"])

    def get_reputation(self, user_id: int) -> int:
        user = self.get_user(user_id)
        return user.reputation if user else 0

    def get_users_in_chat(self, chat_id: int) -> list[UserRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT u.id, u.username, u.first_name, u.reputation
                FROM users u
                WHERE u.id IN (
                    SELECT DISTINCT user_id FROM messages WHERE chat_id = ? AND user_id IS NOT NULL
                )
                ORDER BY u.id
                """,
                (chat_id,),
            ).fetchall()
        return [_to_user(row) for row in rows]

    # -- facts ---------------------------------------------------------------

    def add_fact(self, user_id: int, fact: str, ttl_seconds: float | None = None) -> int:
        now = datetime.now(timezone.utc)
        expires_at = (now + timedelta(seconds=ttl_seconds)).isoformat() if ttl_seconds else None
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO facts(user_id, fact, created_at, expires_at) VALUES (?, ?, ?, ?)",
                (user_id, fact, now.isoformat(), expires_at),
            )
            return int(cur.lastrowid)

    def get_facts(self, user_id: int, limit: int = 10) -> list[str]:
        """Return the newest unexpired facts about a user."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT fact FROM facts
                WHERE user_id = ? AND (expires_at IS NULL OR expires_at > ?)
                ORDER BY id DESC
                LIMIT ?
                """,
                (user_id, _utc_now_iso(), limit),
            ).fetchall()
        return [row["fact"] for row in rows]

    def delete_fact(self, user_id: int, fact: str) -> int:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM facts WHERE user_id = ? AND fact = ?", (user_id, fact))
            return cur.rowcount

    # -- history -------------------------------------------------------------

    def add_message(
        self,
        chat_id: int,
        role: str,
        content: str,
        name: str | None = None,
        user_id: int | None = None,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO messages(chat_id, user_id, role, name, content, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (chat_id, user_id, role, name, content, _utc_now_iso()),
            )

    def get_history(self, chat_id: int, limit: int) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT role, content, name, user_id
                FROM messages
                WHERE chat_id = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                (chat_id, limit),
            ).fetchall()
        ordered = list(reversed(rows))
        return [dict(row) for row in ordered]

    def save_summary(self, chat_id: int, summary: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO conversations(chat_id, summary, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(chat_id) DO UPDATE SET
                    summary=excluded.summary,
                    updated_at=excluded.updated_at
                """,
                (chat_id, summary, _utc_now_iso()),
            )

    def get_summary(self, chat_id: int) -> str | None:
        with self._connect() as conn:
            row = conn.execute("SELECT summary FROM conversations WHERE chat_id = ?", (chat_id,)).fetchone()
        return row["summary"] if row else None

    def clear_history(self, chat_id: int) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM messages WHERE chat_id = ?", (chat_id,))
            conn.execute("DELETE FROM conversations WHERE chat_id = ?", (chat_id,))

    # -- chat settings -------------------------------------------------------

    def get_chat_settings(self, chat_id: int) -> ChatSettings:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT temperature, mood FROM chat_settings WHERE chat_id = ?", (chat_id,)
            ).fetchone()
        if row is None:
            return ChatSettings(chat_id=chat_id)
        return ChatSettings(chat_id=chat_id, temperature=float(row["temperature"]), mood=row["mood"])

    def upsert_chat_settings(self, chat_id: int, temperature: float, mood: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO chat_settings(chat_id, temperature, mood) VALUES (?, ?, ?)
                ON CONFLICT(chat_id) DO UPDATE SET
                    temperature=excluded.temperature,
                    mood=excluded.mood
                """,
                (chat_id, temperature, mood),
            )

    # -- relationships -------------------------------------------------------

    def update_relationship(
        self,
        chat_id: int,
        user_id_1: int,
        user_id_2: int,
        affection_delta: int,
        status: str | None = None,
    ) -> Relationship:
        first, second = sorted((user_id_1, user_id_2))
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO relationships(chat_id, user_id_1, user_id_2, affection, status)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(chat_id, user_id_1, user_id_2) DO UPDATE SET
                    affection = affection + excluded.affection,
                    status = COALESCE(excluded.status, status)
                """,
                (chat_id, first, second, affection_delta, status),
            )
            row = conn.execute(
                """
                SELECT chat_id, user_id_1, user_id_2, affection, status FROM relationships
                WHERE chat_id = ? AND user_id_1 = ? AND user_id_2 = ?
                """,
                (chat_id, first, second),
            ).fetchone()
        return _to_relationship(row)

    def get_relationships(self, chat_id: int) -> list[Relationship]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT chat_id, user_id_1, user_id_2, affection, status
                FROM relationships WHERE chat_id = ? ORDER BY id
                """,
                (chat_id,),
            ).fetchall()
        return [_to_relationship(row) for row in rows]

    # -- reminders -----------------------------------------------------------

    def add_reminder(self, chat_id: int, user_id: int | None, text: str, due_at: datetime) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO reminders(chat_id, user_id, text, due_at, sent, created_at)
                VALUES (?, ?, ?, ?, 0, ?)
                """,
                (chat_id, user_id, text, due_at.astimezone(timezone.utc).isoformat(), _utc_now_iso()),
            )
            return int(cur.lastrowid)

    def get_pending_reminders(self, now: datetime | None = None) -> list[ReminderRecord]:
        """Return due reminders that have not been sent yet, oldest first."""

        now = now or datetime.now(timezone.utc)
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, chat_id, user_id, text, due_at, sent
                FROM reminders
                WHERE sent = 0 AND due_at <= ?
                ORDER BY due_at ASC
                """,
                (now.astimezone(timezone.utc).isoformat(),),
            ).fetchall()
        return [
            ReminderRecord(
                id=int(row["id"]),
                chat_id=int(row["chat_id"]),
                user_id=row["user_id"],
                text=row["text"],
                due_at=datetime.fromisoformat(row["due_at"]),
                sent=bool(row["sent"]),
            )
            for row in rows
        ]

    def mark_reminder_sent(self, reminder_id: int) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE reminders SET sent = 1 WHERE id = ?", (reminder_id,))

    # -- audit ---------------------------------------------------------------

    def log_tool_execution(
        self,
        chat_id: int,
        tool_name: str,
        tool_input: dict[str, Any],
        tool_output: Any,
        succeeded: bool,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tool_executions(chat_id, tool_name, input_json, output_json, succeeded, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    chat_id,
                    tool_name,
                    json.dumps(tool_input, ensure_ascii=False, default=str),
                    json.dumps(tool_output, ensure_ascii=False, default=str),
                    int(succeeded),
                    _utc_now_iso(),
                ),
            )

    def list_tool_executions(self, chat_id: int, limit: int = 20) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT tool_name, input_json, output_json, succeeded, created_at
                FROM tool_executions WHERE chat_id = ? ORDER BY id DESC LIMIT ?
                """,
                (chat_id, limit),
            ).fetchall()
        return [dict(row) for row in rows]


def _to_user(row: sqlite3.Row) -> UserRecord:
    return UserRecord(
        id=int(row["id"]),
        username=row["username"],
        first_name=row["first_name"],
        reputation=int(row["reputation"]),
    )


def _to_relationship(row: sqlite3.Row) -> Relationship:
    return Relationship(
        chat_id=int(row["chat_id"]),
        user_id_1=int(row["user_id_1"]),
        user_id_2=int(row["user_id_2"]),
        affection=int(row["affection"]),
        status=row["status"],
    )


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
