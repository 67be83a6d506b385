"""Tests for the cancellation token, registry and persistence guard."""

import logging

from roundwise.cancellation import CancellationToken, CancelRegistry
from roundwise.guard import PersistenceGuard, is_same_conversation


def test_token_is_one_way():
    token = CancellationToken()
    assert not token.cancelled
    token.cancel()
    token.cancel()
    assert token.cancelled


def test_cancel_all_invokes_and_clears_callbacks():
    registry = CancelRegistry()
    calls = []
    registry.register(0, "a", lambda: calls.append("a1"))
    registry.register(0, "a", lambda: calls.append("a2"))
    registry.register(0, "b", lambda: calls.append("b"))
    registry.unregister(0, "b")

    assert registry.cancel_all() == 2
    assert calls == ["a1", "a2"]
    assert len(registry) == 0
    assert registry.cancel_all() == 0


def test_cancel_all_continues_after_failing_callback(caplog):
    registry = CancelRegistry()
    calls = []

    def boom():
        raise RuntimeError("already closed")

    registry.register(0, "a", boom)
    registry.register(0, "b", lambda: calls.append("b"))
    with caplog.at_level(logging.ERROR):
        assert registry.cancel_all() == 1
    assert calls == ["b"]
    assert "already closed" in caplog.text


def test_is_same_conversation():
    assert is_same_conversation("a", "a")
    assert not is_same_conversation("a", "b")
    assert not is_same_conversation(None, None)
    assert not is_same_conversation("a", None)
    assert not is_same_conversation("", "")


def test_guard_reads_active_conversation_each_time():
    active = {"id": "A"}
    guard = PersistenceGuard(lambda: active["id"])
    bound = guard.capture()
    assert guard.is_still_active(bound)
    active["id"] = "B"
    assert not guard.is_still_active(bound)
    active["id"] = "A"
    assert guard.is_still_active(bound)
