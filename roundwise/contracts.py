"""Core data contracts for roundwise workflows."""

from __future__ import annotations

import os
from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ErrorCode

MAX_ROLES_PER_ROUND = 4
HISTORY_DEPTHS = (0, 2, 4, 6, 8)


class ProviderKind(str, Enum):
    """Wire protocol spoken by a backend."""

    PLAIN = "plain"
    CHAT = "chat"


class ProviderCapabilities(BaseModel):
    supports_system_instruction: bool = True
    supports_images: bool = False


class ProviderBinding(BaseModel):
    """Backend endpoint and credential a role is bound to."""

    id: str
    name: Optional[str] = None
    kind: ProviderKind = ProviderKind.CHAT
    base_url: str = ""
    api_key: Optional[str] = None
    api_key_env: Optional[str] = Field(
        default=None, description="Environment variable holding the credential"
    )
    timeout_seconds: Optional[float] = 120.0
    capabilities: ProviderCapabilities = Field(default_factory=ProviderCapabilities)

    def credential(self) -> Optional[str]:
        """Return the configured credential, falling back to ``api_key_env``."""
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.getenv(self.api_key_env) or None
        return None


class RoleParameters(BaseModel):
    """Optional sampling parameters; unset values are never sent."""

    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    top_p: Optional[float] = Field(default=None, ge=0, le=1)
    reasoning_effort: Optional[Literal["low", "medium", "high"]] = None
    verbosity: Optional[Literal["low", "medium", "high"]] = None


class Role(BaseModel):
    """Named model configuration from the role library."""

    name: str
    display_name: Optional[str] = None
    provider_id: str
    model_id: str
    system_prompt: Optional[str] = None
    parameters: Optional[RoleParameters] = None
    streaming: bool = True

    @property
    def label(self) -> str:
        return self.display_name or self.name


class RoleSlot(BaseModel):
    """Placement of a role inside one round."""

    name: str
    history_n: int = 0
    receive_from: List[str] = Field(default_factory=list)

    @field_validator("history_n")
    @classmethod
    def _check_history_depth(cls, v: int) -> int:
        if v not in HISTORY_DEPTHS:
            raise ValueError(f"history_n must be one of {HISTORY_DEPTHS}")
        return v


class Round(BaseModel):
    """Role slots that execute concurrently."""

    roles: List[RoleSlot] = Field(..., min_length=1, max_length=MAX_ROLES_PER_ROUND)

    @field_validator("roles")
    @classmethod
    def _unique_names(cls, v: List[RoleSlot]) -> List[RoleSlot]:
        names = [slot.name for slot in v]
        if len(names) != len(set(names)):
            raise ValueError("a role may appear only once per round")
        return v


class Workflow(BaseModel):
    """Ordered rounds executed for one user input."""

    name: str
    rounds: List[Round] = Field(default_factory=list)


class ChatMessage(BaseModel):
    """One input segment of a model call."""

    role: Literal["system", "user", "assistant"]
    content: str
    name: Optional[str] = None


class HistoryTurn(BaseModel):
    """A real user turn read from conversation history."""

    content: str
    at: datetime


class RoleDone(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["done"] = "done"
    text: str
    duration_ms: float = 0.0


class RoleFailed(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["error"] = "error"
    code: ErrorCode
    message: str
    duration_ms: float = 0.0


RoleOutcome = Annotated[Union[RoleDone, RoleFailed], Field(discriminator="status")]

# Provider calls resolve to the same tagged shape as role outcomes.
CallOutcome = RoleOutcome


class RoleDelta(BaseModel):
    run_id: str
    round_index: int
    role_name: str
    text: str


class RoleOutcomeEvent(BaseModel):
    run_id: str
    round_index: int
    role_name: str
    outcome: RoleOutcome


class StreamingFallback(BaseModel):
    run_id: str
    round_index: int
    role_name: str
    message: str


class MessagesPreview(BaseModel):
    run_id: str
    round_index: int
    role_name: str
    preview: List[Dict[str, str]] = Field(default_factory=list)


class RunOutputs:
    """Append-only multimap of role name to ``(round_index, text)`` entries.

    Scoped to a single run; ``latest_before`` resolves ``receive_from``
    references by scanning backwards for the newest entry recorded in a
    strictly earlier round.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, List[Tuple[int, str]]] = {}

    def record(self, role_name: str, round_index: int, text: str) -> None:
        self._entries.setdefault(role_name, []).append((round_index, text))

    def latest_before(self, role_name: str, round_index: int) -> Optional[str]:
        for recorded_round, text in reversed(self._entries.get(role_name, [])):
            if recorded_round < round_index:
                return text
        return None

    def entries(self, role_name: str) -> List[Tuple[int, str]]:
        return list(self._entries.get(role_name, []))

    def __contains__(self, role_name: object) -> bool:
        return role_name in self._entries
