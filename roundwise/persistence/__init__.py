"""Conversation storage backends and the shared repository instance."""

from __future__ import annotations

import os
from typing import Optional

from ..config import RoundwiseConfig, load_config
from .inmemory import InMemoryConversationRepository
from .models import Conversation, MessageRecord, RoundRecord, RunRecord, StepRecord
from .repository import ConversationRepository
from .sqlite import SQLiteConversationRepository

SQLITE_SCHEME = "sqlite://"

_repository_instance: ConversationRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[RoundwiseConfig] = None
) -> ConversationRepository:
    """Return the process-wide conversation repository.

    The first call, or any call naming a URL or config, picks the backend:
    ``sqlite://<path>`` opens SQLite and no URL at all keeps conversations in
    memory. ``ROUNDWISE_DATABASE_URL`` is consulted before the config file.
    """
    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    url = database_url or os.getenv("ROUNDWISE_DATABASE_URL")
    if url is None:
        url = (config or load_config()).database_url

    if not url:
        repository: ConversationRepository = InMemoryConversationRepository()
    elif url.startswith(SQLITE_SCHEME):
        repository = SQLiteConversationRepository(url[len(SQLITE_SCHEME) :])
    else:
        raise ValueError(f"Unsupported conversation store: {url}")

    _repository_instance = repository
    return repository


__all__ = [
    "Conversation",
    "ConversationRepository",
    "InMemoryConversationRepository",
    "MessageRecord",
    "RoundRecord",
    "RunRecord",
    "SQLiteConversationRepository",
    "StepRecord",
    "get_repository",
]
