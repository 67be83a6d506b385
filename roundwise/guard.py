"""Guard that keeps a run from writing into a conversation the user has left."""

from __future__ import annotations

import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def is_same_conversation(bound: Optional[str], current: Optional[str]) -> bool:
    """Return ``True`` when both ids are set and identical."""
    return bool(bound) and bool(current) and bound == current


class PersistenceGuard:
    """Compare the conversation captured at run start with the active one.

    ``active`` is the single accessor for "what is selected now"; the guard
    holds no other state.
    """

    def __init__(self, active: Callable[[], Optional[str]]) -> None:
        self._active = active

    def capture(self) -> Optional[str]:
        """Return the conversation id to bind a new run to."""
        return self._active()

    def is_still_active(self, bound: Optional[str]) -> bool:
        current = self._active()
        if is_same_conversation(bound, current):
            return True
        logger.debug(
            f"Skipping write: run bound to conversation {bound!r}, active is {current!r}"
        )
        return False
