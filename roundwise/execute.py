"""Round execution engine for roundwise workflows."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .cancellation import CancellationToken, CancelRegistry
from .contracts import (
    ChatMessage,
    HistoryTurn,
    MessagesPreview,
    ProviderBinding,
    Role,
    RoleDelta,
    RoleDone,
    RoleFailed,
    RoleOutcome,
    RoleOutcomeEvent,
    RoleSlot,
    Round,
    RunOutputs,
    StreamingFallback,
)
from .errors import ErrorCode
from .prompting import build_messages, preview_messages
from .providers import BaseProviderClient, StreamHandle, get_client

logger = logging.getLogger(__name__)

RoleLookup = Callable[[str], Optional[Role]]
ProviderLookup = Callable[[str], Optional[ProviderBinding]]
ClientFactory = Callable[[ProviderBinding], BaseProviderClient]

DEFAULT_STREAM_INTERVAL_MS = 30


class WorkflowListener:
    """Receives run events; every hook is a no-op by default."""

    def on_delta(self, event: RoleDelta) -> None:
        pass

    def on_outcome(self, event: RoleOutcomeEvent) -> None:
        pass

    def on_fallback(self, event: StreamingFallback) -> None:
        pass

    def on_preview(self, event: MessagesPreview) -> None:
        pass

    def on_round_complete(self, round_index: int, outcomes: Dict[str, RoleOutcome]) -> None:
        pass


class DeltaBuffer:
    """Coalesce streamed fragments and flush them on a fixed interval."""

    def __init__(self, emit: Callable[[str], None], interval_ms: int) -> None:
        self._emit = emit
        self._interval = interval_ms / 1000.0
        self._parts: List[str] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._closed = False

    @property
    def pending(self) -> str:
        return "".join(self._parts)

    def push(self, text: str) -> None:
        if self._closed or not text:
            return
        self._parts.append(text)
        if self._timer is None:
            self._timer = asyncio.get_running_loop().call_later(self._interval, self.flush)

    def flush(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._parts:
            return
        text = "".join(self._parts)
        self._parts.clear()
        self._emit(text)

    def discard(self) -> None:
        """Drop buffered text, cancel the timer and ignore later pushes."""
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._parts.clear()


@dataclass
class RunContext:
    """State shared by every role task of one run."""

    run_id: str
    user_input: str
    started_at: datetime
    history: List[HistoryTurn] = field(default_factory=list)
    outputs: RunOutputs = field(default_factory=RunOutputs)
    token: CancellationToken = field(default_factory=CancellationToken)
    registry: CancelRegistry = field(default_factory=CancelRegistry)
    listener: WorkflowListener = field(default_factory=WorkflowListener)

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def cancel(self) -> int:
        """Set the token and interrupt every registered in-flight call."""
        self.token.cancel()
        return self.registry.cancel_all()


class RoundExecutor:
    """Runs every role slot of a round concurrently and joins the results."""

    def __init__(
        self,
        role_lookup: RoleLookup,
        provider_lookup: ProviderLookup,
        client_factory: ClientFactory = get_client,
        streaming_enabled: bool = True,
        stream_interval_ms: int = DEFAULT_STREAM_INTERVAL_MS,
    ) -> None:
        self._role_lookup = role_lookup
        self._provider_lookup = provider_lookup
        self._client_factory = client_factory
        self.streaming_enabled = streaming_enabled
        self.stream_interval_ms = stream_interval_ms

    def resolve_role(self, name: str) -> Optional[Role]:
        return self._role_lookup(name)

    def with_role_lookup(self, role_lookup: RoleLookup) -> "RoundExecutor":
        """Copy of this executor resolving slot names through ``role_lookup``."""
        return RoundExecutor(
            role_lookup,
            self._provider_lookup,
            client_factory=self._client_factory,
            streaming_enabled=self.streaming_enabled,
            stream_interval_ms=self.stream_interval_ms,
        )

    async def run_round(
        self, round_index: int, round_: Round, ctx: RunContext
    ) -> Dict[str, RoleOutcome]:
        """Execute ``round_`` and return each role's outcome keyed by name.

        One role's failure never cancels its siblings.
        """
        if ctx.token.cancelled:
            return {}
        slots = list(round_.roles)
        logger.debug(
            f"Dispatching round {round_index} with roles {[s.name for s in slots]} for run_id={ctx.run_id}"
        )
        results = await asyncio.gather(
            *(self._run_slot(round_index, slot, ctx) for slot in slots)
        )
        return {slot.name: outcome for slot, outcome in zip(slots, results)}

    async def _run_slot(self, round_index: int, slot: RoleSlot, ctx: RunContext) -> RoleOutcome:
        try:
            outcome = await self._execute_slot(round_index, slot, ctx)
        except Exception as e:
            logger.exception(
                f"Role {slot.name} crashed in round {round_index} for run_id={ctx.run_id}"
            )
            outcome = RoleFailed(code=ErrorCode.UNKNOWN, message=str(e))
        finally:
            ctx.registry.unregister(round_index, slot.name)

        if isinstance(outcome, RoleDone):
            ctx.outputs.record(slot.name, round_index, outcome.text)
        if not ctx.token.cancelled:
            ctx.listener.on_outcome(
                RoleOutcomeEvent(
                    run_id=ctx.run_id,
                    round_index=round_index,
                    role_name=slot.name,
                    outcome=outcome,
                )
            )
        return outcome

    async def _execute_slot(
        self, round_index: int, slot: RoleSlot, ctx: RunContext
    ) -> RoleOutcome:
        role = self._role_lookup(slot.name)
        if role is None:
            return RoleFailed(code=ErrorCode.INVALID_REQUEST, message=f"Role not found: {slot.name}")
        binding = self._provider_lookup(role.provider_id)
        if binding is None:
            return RoleFailed(
                code=ErrorCode.INVALID_REQUEST,
                message=f"Provider not found: {role.provider_id}",
            )

        messages = build_messages(
            role,
            round_index,
            ctx.user_input,
            slot.history_n,
            slot.receive_from,
            ctx.outputs,
            ctx.history,
            ctx.started_at,
        )
        ctx.listener.on_preview(
            MessagesPreview(
                run_id=ctx.run_id,
                round_index=round_index,
                role_name=slot.name,
                preview=preview_messages(messages),
            )
        )

        if ctx.token.cancelled:
            return RoleFailed(code=ErrorCode.UNKNOWN, message="Run cancelled")

        client = self._client_factory(binding)
        if self.streaming_enabled and role.streaming and client.supports_streaming:
            return await self._stream_with_fallback(client, role, round_index, slot, messages, ctx)
        return await self._complete(client, role, round_index, slot, messages, ctx)

    async def _complete(
        self,
        client: BaseProviderClient,
        role: Role,
        round_index: int,
        slot: RoleSlot,
        messages: List[ChatMessage],
        ctx: RunContext,
    ) -> RoleOutcome:
        handle = StreamHandle(
            asyncio.ensure_future(client.complete(role.model_id, messages, role.parameters))
        )
        ctx.registry.register(round_index, slot.name, handle.cancel)
        return await handle.wait()

    async def _stream_with_fallback(
        self,
        client: BaseProviderClient,
        role: Role,
        round_index: int,
        slot: RoleSlot,
        messages: List[ChatMessage],
        ctx: RunContext,
    ) -> RoleOutcome:
        def emit(text: str) -> None:
            if not ctx.token.cancelled:
                ctx.listener.on_delta(
                    RoleDelta(
                        run_id=ctx.run_id,
                        round_index=round_index,
                        role_name=slot.name,
                        text=text,
                    )
                )

        def on_error(exc: Exception) -> None:
            logger.warning(f"Stream error for role {slot.name} in round {round_index}: {exc}")

        buffer = DeltaBuffer(emit, self.stream_interval_ms)
        handle = client.stream(
            role.model_id,
            messages,
            role.parameters,
            on_delta=buffer.push,
            on_error=on_error,
        )
        ctx.registry.register(round_index, slot.name, handle.cancel)
        ctx.registry.register(round_index, slot.name, buffer.discard)

        result = await handle.wait()
        if ctx.token.cancelled:
            buffer.discard()
            return result

        buffer.flush()
        if isinstance(result, RoleDone):
            return result

        message = (
            f"Streaming failed for role '{slot.name}' ({result.code.value}: {result.message}); "
            "falling back to non-streaming."
        )
        logger.warning(message)
        ctx.listener.on_fallback(
            StreamingFallback(
                run_id=ctx.run_id,
                round_index=round_index,
                role_name=slot.name,
                message=message,
            )
        )
        return await self._complete(client, role, round_index, slot, messages, ctx)
