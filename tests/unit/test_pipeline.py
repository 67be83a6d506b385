"""Tests for the fixed proposer/critic/summarizer pipeline."""

import asyncio

import pytest

from roundwise.contracts import ProviderBinding, Role, RoleDone
from roundwise.execute import RoundExecutor
from roundwise.pipeline import (
    SUMMARIZER_STAGE,
    PipelinePreset,
    PipelineRunner,
    build_pipeline_workflow,
    run_pipeline,
)
from roundwise.providers import BaseProviderClient, ConnectionCheck

BINDING = ProviderBinding(id="p", base_url="https://api.test")
PRESET = PipelinePreset(
    name="debate",
    proposer_a="pa",
    proposer_b="pb",
    critic_a="ca",
    critic_b="cb",
    summarizer="sum",
)


class NamingClient(BaseProviderClient):
    """Replies with the model id; records calls in arrival order."""

    def __init__(self, binding, delay=0.0):
        super().__init__(binding)
        self.delay = delay
        self.calls = []
        self.started = asyncio.Event()

    async def complete(self, model_id, messages, parameters=None):
        self.calls.append((model_id, list(messages)))
        call_number = len(self.calls)
        self.started.set()
        await asyncio.sleep(self.delay)
        return RoleDone(text=f"{model_id} says hi #{call_number}")

    async def check_connection(self):
        return ConnectionCheck(ok=True, latency_ms=0.0)


def _executor(client, *names):
    roles = {name: Role(name=name, provider_id="p", model_id=name) for name in names}
    return RoundExecutor(roles.get, {"p": BINDING}.get, client_factory=lambda b: client)


def _calls_for(client, model_id):
    return [messages for model, messages in client.calls if model == model_id]


def test_pipeline_expands_to_three_rounds():
    workflow = build_pipeline_workflow(PRESET)
    assert [[slot.name for slot in r.roles] for r in workflow.rounds] == [
        ["proposer_a", "proposer_b"],
        ["critic_a", "critic_b"],
        ["summarizer"],
    ]
    assert workflow.rounds[1].roles[0].receive_from == ["proposer_a"]
    assert workflow.rounds[1].roles[1].receive_from == ["proposer_b"]
    assert workflow.rounds[2].roles[0].receive_from == [
        "proposer_a",
        "proposer_b",
        "critic_a",
        "critic_b",
    ]


@pytest.mark.asyncio
async def test_run_pipeline_collects_every_stage():
    client = NamingClient(BINDING)
    executor = _executor(client, "pa", "pb", "ca", "cb", "sum")

    result = await run_pipeline(PRESET, executor, "Plan a launch")

    assert set(result.stages) == {
        "proposer_a",
        "proposer_b",
        "critic_a",
        "critic_b",
        SUMMARIZER_STAGE,
    }
    assert not result.cancelled
    assert result.stages[SUMMARIZER_STAGE].text.startswith("sum says hi")
    assert result.total_duration_ms >= 0
    critic_a = _calls_for(client, "ca")[0]
    assert [m.name for m in critic_a[1:]] == ["proposer_a"]
    summary = _calls_for(client, "sum")[0]
    assert [m.name for m in summary[1:]] == ["proposer_a", "proposer_b", "critic_a", "critic_b"]
    assert summary[0].content == "Original request:\nPlan a launch"


@pytest.mark.asyncio
async def test_one_role_may_fill_several_stages():
    preset = PipelinePreset(
        name="same-model",
        proposer_a="gpt",
        proposer_b="gpt",
        critic_a="judge",
        critic_b="judge",
        summarizer="gpt",
    )
    client = NamingClient(BINDING)
    result = await run_pipeline(preset, _executor(client, "gpt", "judge"), "Plan a launch")

    assert all(outcome.status == "done" for outcome in result.stages.values())
    assert result.stages["proposer_a"].text != result.stages["proposer_b"].text
    summary = _calls_for(client, "gpt")[-1]
    injected = {m.name: m.content for m in summary[1:]}
    assert injected["proposer_a"].endswith(result.stages["proposer_a"].text)
    assert injected["proposer_b"].endswith(result.stages["proposer_b"].text)


@pytest.mark.asyncio
async def test_pipeline_reports_failed_stage_without_aborting():
    client = NamingClient(BINDING)
    executor = _executor(client, "pa", "ca", "cb", "sum")

    result = await run_pipeline(PRESET, executor, "Plan a launch")

    assert result.stages["proposer_b"].status == "error"
    assert result.stages[SUMMARIZER_STAGE].status == "done"
    assert [m.name for m in _calls_for(client, "cb")[0][1:]] == []


@pytest.mark.asyncio
async def test_stop_returns_stages_completed_so_far():
    client = NamingClient(BINDING, delay=5)
    runner = PipelineRunner(PRESET, _executor(client, "pa", "pb", "ca", "cb", "sum"))

    task = asyncio.ensure_future(runner.start("Plan a launch"))
    await client.started.wait()
    assert runner.is_running
    assert await runner.start("again") is None
    runner.stop()
    result = await asyncio.wait_for(task, timeout=1)

    assert result.cancelled
    assert result.stages == {}
    assert {model for model, _ in client.calls} <= {"pa", "pb"}
    assert not runner.is_running
    runner.stop()
