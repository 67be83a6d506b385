"""Cancellation token and per-role cancel handle registry."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Tuple

logger = logging.getLogger(__name__)

SlotKey = Tuple[int, str]


class CancellationToken:
    """One-way flag checked at round boundaries and before dispatch."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class CancelRegistry:
    """Callbacks that interrupt in-flight work, keyed by ``(round, role)``."""

    def __init__(self) -> None:
        self._callbacks: Dict[SlotKey, List[Callable[[], None]]] = {}

    def register(self, round_index: int, role_name: str, callback: Callable[[], None]) -> None:
        self._callbacks.setdefault((round_index, role_name), []).append(callback)

    def unregister(self, round_index: int, role_name: str) -> None:
        self._callbacks.pop((round_index, role_name), None)

    def cancel_all(self) -> int:
        """Invoke and drop every registered callback; return how many ran."""
        pending = self._callbacks
        self._callbacks = {}
        count = 0
        for (round_index, role_name), callbacks in pending.items():
            for callback in callbacks:
                try:
                    callback()
                    count += 1
                except Exception as e:
                    logger.error(
                        f"Cancel callback failed for round {round_index} role {role_name}: {e}"
                    )
        return count

    def __len__(self) -> int:
        return len(self._callbacks)
