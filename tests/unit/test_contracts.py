"""Tests for workflow contracts and run outputs."""

import pytest
from pydantic import TypeAdapter, ValidationError

from roundwise.contracts import (
    ProviderBinding,
    RoleDone,
    RoleFailed,
    RoleOutcome,
    RoleSlot,
    Round,
    RunOutputs,
)
from roundwise.errors import ErrorCode


def test_round_rejects_more_than_four_roles():
    slots = [RoleSlot(name=f"r{i}") for i in range(5)]
    with pytest.raises(ValidationError):
        Round(roles=slots)


def test_round_rejects_empty_and_duplicate_roles():
    with pytest.raises(ValidationError):
        Round(roles=[])
    with pytest.raises(ValidationError):
        Round(roles=[RoleSlot(name="a"), RoleSlot(name="a")])


def test_history_depth_restricted():
    assert RoleSlot(name="a", history_n=4).history_n == 4
    with pytest.raises(ValidationError):
        RoleSlot(name="a", history_n=3)


def test_outcome_union_discriminates_on_status():
    adapter = TypeAdapter(RoleOutcome)
    done = adapter.validate_python({"status": "done", "text": "hi"})
    failed = adapter.validate_python(
        {"status": "error", "code": "TIMEOUT", "message": "slow"}
    )
    assert isinstance(done, RoleDone)
    assert isinstance(failed, RoleFailed)
    assert failed.code is ErrorCode.TIMEOUT


def test_credential_falls_back_to_env(monkeypatch):
    monkeypatch.setenv("TEST_PROVIDER_KEY", "secret")
    binding = ProviderBinding(id="p", api_key_env="TEST_PROVIDER_KEY")
    assert binding.credential() == "secret"
    assert ProviderBinding(id="p", api_key="inline").credential() == "inline"
    assert ProviderBinding(id="p").credential() is None


def test_run_outputs_latest_before_is_strict():
    outputs = RunOutputs()
    outputs.record("writer", 0, "draft")
    outputs.record("writer", 2, "final")

    assert outputs.latest_before("writer", 0) is None
    assert outputs.latest_before("writer", 1) == "draft"
    assert outputs.latest_before("writer", 2) == "draft"
    assert outputs.latest_before("writer", 3) == "final"
    assert outputs.latest_before("missing", 3) is None
    assert "writer" in outputs
    assert outputs.entries("writer") == [(0, "draft"), (2, "final")]
