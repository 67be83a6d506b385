"""Data models for persisted conversation state."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class MessageRecord(BaseModel):
    """A message shown in the conversation timeline."""

    id: Optional[int] = None
    role: str
    content: str
    at: datetime


class StepRecord(BaseModel):
    """Outcome of one role in one round."""

    role_name: str
    status: str
    text: Optional[str] = None
    duration_ms: float = 0.0
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class RoundRecord(BaseModel):
    """Structured result of a completed round."""

    round_index: int
    steps: list[StepRecord] = Field(default_factory=list)
    completed_at: Optional[datetime] = None


class RunRecord(BaseModel):
    """Persisted workflow run inside a conversation."""

    run_id: str
    workflow_name: Optional[str] = None
    user_input: str = ""
    started_at: datetime
    rounds: list[RoundRecord] = Field(default_factory=list)
    snapshot: Optional[str] = None


class Conversation(BaseModel):
    """Persisted conversation with its messages and workflow runs."""

    id: str
    title: str = "New conversation"
    created_at: datetime
    updated_at: datetime
    messages: list[MessageRecord] = Field(default_factory=list)
    runs: list[RunRecord] = Field(default_factory=list)
    snapshot: Optional[str] = None
