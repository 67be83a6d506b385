"""In-memory implementation of the conversation repository."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Dict, Optional

from ..contracts import HistoryTurn
from .models import Conversation, MessageRecord, RoundRecord, RunRecord
from .repository import USER_ROLE, ConversationRepository


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryConversationRepository(ConversationRepository):
    """Store conversations in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._conversations: Dict[str, Conversation] = {}
        self._active_id: Optional[str] = None
        self._message_id = 0

    # ------------------------------------------------------------------
    def _run(self, conversation_id: str, run_id: str) -> RunRecord | None:
        conv = self._conversations.get(conversation_id)
        if not conv:
            return None
        return next((r for r in conv.runs if r.run_id == run_id), None)

    async def create_conversation(
        self, title: str = "New conversation", conversation_id: str | None = None
    ) -> Conversation:
        now = _now()
        conv = Conversation(
            id=conversation_id or f"conv-{uuid.uuid4()}",
            title=title,
            created_at=now,
            updated_at=now,
        )
        self._conversations[conv.id] = conv
        if self._active_id is None:
            self._active_id = conv.id
        return conv

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    async def list_conversations(self) -> list[Conversation]:
        return list(self._conversations.values())

    def active_conversation_id(self) -> Optional[str]:
        return self._active_id

    async def set_active_conversation(self, conversation_id: str | None) -> None:
        self._active_id = conversation_id

    async def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        at: datetime | None = None,
    ) -> bool:
        conv = self._conversations.get(conversation_id)
        if not conv:
            return False
        self._message_id += 1
        conv.messages.append(
            MessageRecord(id=self._message_id, role=role, content=content, at=at or _now())
        )
        conv.updated_at = _now()
        return True

    async def user_history(self, conversation_id: str) -> list[HistoryTurn]:
        conv = self._conversations.get(conversation_id)
        if not conv:
            return []
        return [
            HistoryTurn(content=m.content, at=m.at)
            for m in conv.messages
            if m.role == USER_ROLE
        ]

    async def begin_run(
        self,
        conversation_id: str,
        run_id: str,
        started_at: datetime,
        workflow_name: str | None = None,
        user_input: str = "",
    ) -> bool:
        conv = self._conversations.get(conversation_id)
        if not conv:
            return False
        # already open; treat as success
        if self._run(conversation_id, run_id) is not None:
            return True
        conv.runs.append(
            RunRecord(
                run_id=run_id,
                workflow_name=workflow_name,
                user_input=user_input,
                started_at=started_at,
            )
        )
        conv.updated_at = _now()
        return True

    async def append_round(
        self, conversation_id: str, run_id: str, record: RoundRecord
    ) -> bool:
        run = self._run(conversation_id, run_id)
        if run is None:
            return False
        run.rounds.append(record)
        self._conversations[conversation_id].updated_at = _now()
        return True

    async def save_snapshot(
        self, conversation_id: str, run_id: str, content: str
    ) -> bool:
        run = self._run(conversation_id, run_id)
        if run is None:
            return False
        run.snapshot = content
        conv = self._conversations[conversation_id]
        conv.snapshot = content
        conv.updated_at = _now()
        return True
