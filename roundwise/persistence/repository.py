"""Repository abstraction for conversation persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from ..contracts import HistoryTurn
from .models import Conversation, RoundRecord

USER_ROLE = "user"


class ConversationRepository(Protocol):
    """Protocol for conversation storage backends.

    Writes are best-effort appends; the last writer wins per record.
    Methods that target a conversation or run return ``False`` when it does
    not exist.
    """

    async def create_conversation(
        self, title: str = "New conversation", conversation_id: str | None = None
    ) -> Conversation:
        """Persist a new, empty conversation."""

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Retrieve a conversation with its messages and runs."""

    async def list_conversations(self) -> list[Conversation]:
        """Return all conversations (without requiring their runs)."""

    def active_conversation_id(self) -> Optional[str]:
        """Return the currently selected conversation id (synchronous)."""

    async def set_active_conversation(self, conversation_id: str | None) -> None:
        """Select the conversation future runs bind to."""

    async def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        at: datetime | None = None,
    ) -> bool:
        """Append a message to the conversation timeline."""

    async def user_history(self, conversation_id: str) -> list[HistoryTurn]:
        """Return the real user turns of a conversation, oldest first."""

    async def begin_run(
        self,
        conversation_id: str,
        run_id: str,
        started_at: datetime,
        workflow_name: str | None = None,
        user_input: str = "",
    ) -> bool:
        """Open a run record (idempotent by ``run_id``)."""

    async def append_round(
        self, conversation_id: str, run_id: str, record: RoundRecord
    ) -> bool:
        """Append a completed round to a run."""

    async def save_snapshot(
        self, conversation_id: str, run_id: str, content: str
    ) -> bool:
        """Store the final snapshot of a run and of the conversation."""
