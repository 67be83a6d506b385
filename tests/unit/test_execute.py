"""Tests for round execution, streaming and fallback."""

import asyncio
import time
from datetime import datetime, timezone

import pytest

from roundwise.contracts import (
    ProviderBinding,
    Role,
    RoleDone,
    RoleFailed,
    RoleSlot,
    Round,
)
from roundwise.errors import ErrorCode
from roundwise.execute import DeltaBuffer, RoundExecutor, RunContext, WorkflowListener
from roundwise.providers import BaseProviderClient, ConnectionCheck, StreamHandle


class RecordingListener(WorkflowListener):
    def __init__(self):
        self.deltas = []
        self.outcomes = []
        self.fallbacks = []
        self.previews = []

    def on_delta(self, event):
        self.deltas.append((event.role_name, event.text))

    def on_outcome(self, event):
        self.outcomes.append((event.role_name, event.outcome))

    def on_fallback(self, event):
        self.fallbacks.append(event)

    def on_preview(self, event):
        self.previews.append(event)


class ScriptedClient(BaseProviderClient):
    """Answers by model id; ``stream_script`` entries drive the streaming path."""

    supports_streaming = True

    def __init__(self, binding, replies, stream_script=None, delay=0.0):
        super().__init__(binding)
        self.replies = replies
        self.stream_script = stream_script or {}
        self.delay = delay
        self.complete_calls = []
        self.stream_calls = []

    async def complete(self, model_id, messages, parameters=None):
        self.complete_calls.append((model_id, list(messages)))
        await asyncio.sleep(self.delay)
        reply = self.replies[model_id]
        if isinstance(reply, Exception):
            raise reply
        return RoleDone(text=reply)

    def stream(self, model_id, messages, parameters=None, on_delta=None, on_error=None):
        self.stream_calls.append((model_id, list(messages)))
        chunks, failure = self.stream_script[model_id]

        async def run():
            for chunk in chunks:
                await asyncio.sleep(0)
                on_delta(chunk)
            if failure is not None:
                return failure
            return RoleDone(text="".join(chunks))

        return StreamHandle(asyncio.ensure_future(run()))

    async def check_connection(self):
        return ConnectionCheck(ok=True, latency_ms=0.0)


BINDING = ProviderBinding(id="p", base_url="https://api.test")


def _roles(*names, streaming=False):
    return {
        name: Role(name=name, provider_id="p", model_id=name, streaming=streaming)
        for name in names
    }


def _ctx(listener=None):
    return RunContext(
        run_id="run-1",
        user_input="ping",
        started_at=datetime.now(timezone.utc),
        listener=listener or WorkflowListener(),
    )


def _executor(roles, client, streaming=True, providers=None):
    providers = providers if providers is not None else {"p": BINDING}
    return RoundExecutor(
        roles.get,
        providers.get,
        client_factory=lambda binding: client,
        streaming_enabled=streaming,
        stream_interval_ms=5,
    )


@pytest.mark.asyncio
async def test_roles_in_a_round_run_concurrently():
    names = ("a", "b", "c", "d")
    client = ScriptedClient(BINDING, {n: n.upper() for n in names}, delay=0.2)
    executor = _executor(_roles(*names), client)
    round_ = Round(roles=[RoleSlot(name=n) for n in names])

    started = time.perf_counter()
    outcomes = await executor.run_round(0, round_, _ctx())
    elapsed = time.perf_counter() - started

    assert elapsed < 0.6
    assert {n: o.text for n, o in outcomes.items()} == {"a": "A", "b": "B", "c": "C", "d": "D"}


@pytest.mark.asyncio
async def test_outputs_recorded_and_outcomes_emitted():
    listener = RecordingListener()
    ctx = _ctx(listener)
    client = ScriptedClient(BINDING, {"a": "pong"})
    await _executor(_roles("a"), client).run_round(0, Round(roles=[RoleSlot(name="a")]), ctx)

    assert ctx.outputs.latest_before("a", 1) == "pong"
    assert [name for name, _ in listener.outcomes] == ["a"]
    assert listener.previews[0].preview == [{"role": "user", "content": "ping"}]


@pytest.mark.asyncio
async def test_missing_role_or_provider_is_invalid_request():
    roles = _roles("a")
    roles["orphan"] = Role(name="orphan", provider_id="nowhere", model_id="x")
    client = ScriptedClient(BINDING, {"a": "ok"})
    round_ = Round(roles=[RoleSlot(name="a"), RoleSlot(name="ghost"), RoleSlot(name="orphan")])

    outcomes = await _executor(roles, client).run_round(0, round_, _ctx())

    assert isinstance(outcomes["a"], RoleDone)
    assert outcomes["ghost"].code is ErrorCode.INVALID_REQUEST
    assert outcomes["orphan"].code is ErrorCode.INVALID_REQUEST


@pytest.mark.asyncio
async def test_one_role_crash_does_not_affect_siblings():
    client = ScriptedClient(BINDING, {"a": RuntimeError("boom"), "b": "fine"})
    round_ = Round(roles=[RoleSlot(name="a"), RoleSlot(name="b")])
    outcomes = await _executor(_roles("a", "b"), client).run_round(0, round_, _ctx())

    assert isinstance(outcomes["a"], RoleFailed)
    assert outcomes["a"].code is ErrorCode.UNKNOWN
    assert outcomes["b"].text == "fine"


@pytest.mark.asyncio
async def test_streaming_emits_coalesced_deltas():
    listener = RecordingListener()
    client = ScriptedClient(BINDING, {}, stream_script={"a": (["Hel", "lo"], None)})
    round_ = Round(roles=[RoleSlot(name="a")])
    outcomes = await _executor(_roles("a", streaming=True), client).run_round(
        0, round_, _ctx(listener)
    )

    assert outcomes["a"].text == "Hello"
    assert "".join(text for _, text in listener.deltas) == "Hello"
    assert client.complete_calls == []


@pytest.mark.asyncio
async def test_stream_failure_falls_back_with_same_messages():
    listener = RecordingListener()
    failure = RoleFailed(code=ErrorCode.NETWORK, message="stream dropped")
    client = ScriptedClient(
        BINDING, {"a": "Hello world"}, stream_script={"a": (["Hello "], failure)}
    )
    round_ = Round(roles=[RoleSlot(name="a")])
    outcomes = await _executor(_roles("a", streaming=True), client).run_round(
        0, round_, _ctx(listener)
    )

    assert outcomes["a"].text == "Hello world"
    assert listener.deltas == [("a", "Hello ")]
    assert len(listener.fallbacks) == 1
    assert "falling back" in listener.fallbacks[0].message
    assert client.complete_calls[0][1] == client.stream_calls[0][1]


@pytest.mark.asyncio
async def test_streaming_disabled_uses_complete():
    client = ScriptedClient(BINDING, {"a": "plain"}, stream_script={"a": (["x"], None)})
    outcomes = await _executor(_roles("a", streaming=True), client, streaming=False).run_round(
        0, Round(roles=[RoleSlot(name="a")]), _ctx()
    )
    assert outcomes["a"].text == "plain"
    assert client.stream_calls == []


@pytest.mark.asyncio
async def test_cancelled_context_skips_round():
    client = ScriptedClient(BINDING, {"a": "never"})
    ctx = _ctx()
    ctx.token.cancel()
    outcomes = await _executor(_roles("a"), client).run_round(
        0, Round(roles=[RoleSlot(name="a")]), ctx
    )
    assert outcomes == {}
    assert client.complete_calls == []


@pytest.mark.asyncio
async def test_cancel_interrupts_in_flight_call_and_suppresses_events():
    listener = RecordingListener()
    client = ScriptedClient(BINDING, {"a": "late"}, delay=5)
    ctx = _ctx(listener)
    task = asyncio.ensure_future(
        _executor(_roles("a"), client).run_round(0, Round(roles=[RoleSlot(name="a")]), ctx)
    )
    await asyncio.sleep(0.05)
    ctx.token.cancel()
    assert ctx.registry.cancel_all() == 1

    outcomes = await asyncio.wait_for(task, timeout=1)
    assert isinstance(outcomes["a"], RoleFailed)
    assert listener.outcomes == []


@pytest.mark.asyncio
async def test_delta_buffer_coalesces_and_discards():
    emitted = []
    buffer = DeltaBuffer(emitted.append, interval_ms=10)
    buffer.push("a")
    buffer.push("b")
    assert buffer.pending == "ab"
    await asyncio.sleep(0.05)
    assert emitted == ["ab"]

    buffer.push("c")
    buffer.discard()
    buffer.push("d")
    await asyncio.sleep(0.05)
    assert emitted == ["ab"]
    assert buffer.pending == ""
