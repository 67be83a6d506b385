"""SQLite implementation of the conversation repository."""

from __future__ import annotations

import asyncio
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..contracts import HistoryTurn
from .models import Conversation, MessageRecord, RoundRecord, RunRecord
from .repository import USER_ROLE, ConversationRepository

ACTIVE_KEY = "active_conversation_id"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteConversationRepository(ConversationRepository):
    """Persist conversations using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                snapshot TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
                run_id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL,
                workflow_name TEXT,
                user_input TEXT NOT NULL,
                started_at TEXT NOT NULL,
                snapshot TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS rounds (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id TEXT NOT NULL,
                record TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def _touch(self, conversation_id: str) -> None:
        self._execute(
            "UPDATE conversations SET updated_at = ? WHERE id = ?", _now(), conversation_id
        )

    def _has_run(self, conversation_id: str, run_id: str) -> bool:
        row = self._fetchone(
            "SELECT 1 FROM runs WHERE run_id = ? AND conversation_id = ?",
            run_id,
            conversation_id,
        )
        return row is not None

    def _load_conversation(self, row: sqlite3.Row, with_details: bool) -> Conversation:
        conv = Conversation(
            id=row["id"],
            title=row["title"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            snapshot=row["snapshot"],
        )
        if not with_details:
            return conv
        conv.messages = [
            MessageRecord(
                id=r["id"],
                role=r["role"],
                content=r["content"],
                at=datetime.fromisoformat(r["at"]),
            )
            for r in self._fetchall(
                "SELECT id, role, content, at FROM messages WHERE conversation_id = ? ORDER BY id",
                conv.id,
            )
        ]
        for r in self._fetchall(
            "SELECT run_id, workflow_name, user_input, started_at, snapshot FROM runs WHERE conversation_id = ? ORDER BY started_at",
            conv.id,
        ):
            rounds = [
                RoundRecord.model_validate_json(rr["record"])
                for rr in self._fetchall(
                    "SELECT record FROM rounds WHERE run_id = ? ORDER BY id", r["run_id"]
                )
            ]
            conv.runs.append(
                RunRecord(
                    run_id=r["run_id"],
                    workflow_name=r["workflow_name"],
                    user_input=r["user_input"],
                    started_at=datetime.fromisoformat(r["started_at"]),
                    rounds=rounds,
                    snapshot=r["snapshot"],
                )
            )
        return conv

    def _get_conversation(self, conversation_id: str) -> Conversation | None:
        row = self._fetchone(
            "SELECT id, title, created_at, updated_at, snapshot FROM conversations WHERE id = ?",
            conversation_id,
        )
        if not row:
            return None
        return self._load_conversation(row, with_details=True)

    def _list_conversations(self) -> list[Conversation]:
        rows = self._fetchall(
            "SELECT id, title, created_at, updated_at, snapshot FROM conversations ORDER BY created_at"
        )
        return [self._load_conversation(r, with_details=False) for r in rows]

    def _begin_run(
        self,
        conversation_id: str,
        run_id: str,
        started_at: datetime,
        workflow_name: str | None,
        user_input: str,
    ) -> bool:
        if self._fetchone("SELECT 1 FROM conversations WHERE id = ?", conversation_id) is None:
            return False
        if self._has_run(conversation_id, run_id):
            return True
        self._execute(
            "INSERT INTO runs (run_id, conversation_id, workflow_name, user_input, started_at) VALUES (?, ?, ?, ?, ?)",
            run_id,
            conversation_id,
            workflow_name,
            user_input,
            started_at.isoformat(),
        )
        self._touch(conversation_id)
        return True

    def _append_round(self, conversation_id: str, run_id: str, record: RoundRecord) -> bool:
        if not self._has_run(conversation_id, run_id):
            return False
        self._execute(
            "INSERT INTO rounds (run_id, record) VALUES (?, ?)",
            run_id,
            record.model_dump_json(),
        )
        self._touch(conversation_id)
        return True

    def _save_snapshot(self, conversation_id: str, run_id: str, content: str) -> bool:
        if not self._has_run(conversation_id, run_id):
            return False
        self._execute("UPDATE runs SET snapshot = ? WHERE run_id = ?", content, run_id)
        self._execute(
            "UPDATE conversations SET snapshot = ?, updated_at = ? WHERE id = ?",
            content,
            _now(),
            conversation_id,
        )
        return True

    # ------------------------------------------------------------------
    # Repository API
    async def create_conversation(
        self, title: str = "New conversation", conversation_id: str | None = None
    ) -> Conversation:
        conversation_id = conversation_id or f"conv-{uuid.uuid4()}"
        now = _now()
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO conversations (id, title, created_at, updated_at) VALUES (?, ?, ?, ?)",
            conversation_id,
            title,
            now,
            now,
        )
        if self.active_conversation_id() is None:
            await self.set_active_conversation(conversation_id)
        return Conversation(
            id=conversation_id,
            title=title,
            created_at=datetime.fromisoformat(now),
            updated_at=datetime.fromisoformat(now),
        )

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return await asyncio.to_thread(self._get_conversation, conversation_id)

    async def list_conversations(self) -> list[Conversation]:
        return await asyncio.to_thread(self._list_conversations)

    def active_conversation_id(self) -> Optional[str]:
        row = self._fetchone("SELECT value FROM settings WHERE key = ?", ACTIVE_KEY)
        return row["value"] if row and row["value"] else None

    async def set_active_conversation(self, conversation_id: str | None) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            ACTIVE_KEY,
            conversation_id,
        )

    async def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        at: datetime | None = None,
    ) -> bool:
        timestamp = (at or datetime.now(timezone.utc)).isoformat()
        updated = await asyncio.to_thread(
            self._execute,
            "INSERT INTO messages (conversation_id, role, content, at) "
            "SELECT ?, ?, ?, ? WHERE EXISTS (SELECT 1 FROM conversations WHERE id = ?)",
            conversation_id,
            role,
            content,
            timestamp,
            conversation_id,
        )
        if updated:
            await asyncio.to_thread(self._touch, conversation_id)
        return bool(updated)

    async def user_history(self, conversation_id: str) -> list[HistoryTurn]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT content, at FROM messages WHERE conversation_id = ? AND role = ? ORDER BY id",
            conversation_id,
            USER_ROLE,
        )
        return [
            HistoryTurn(content=r["content"], at=datetime.fromisoformat(r["at"]))
            for r in rows
        ]

    async def begin_run(
        self,
        conversation_id: str,
        run_id: str,
        started_at: datetime,
        workflow_name: str | None = None,
        user_input: str = "",
    ) -> bool:
        return await asyncio.to_thread(
            self._begin_run, conversation_id, run_id, started_at, workflow_name, user_input
        )

    async def append_round(
        self, conversation_id: str, run_id: str, record: RoundRecord
    ) -> bool:
        return await asyncio.to_thread(self._append_round, conversation_id, run_id, record)

    async def save_snapshot(
        self, conversation_id: str, run_id: str, content: str
    ) -> bool:
        return await asyncio.to_thread(self._save_snapshot, conversation_id, run_id, content)
