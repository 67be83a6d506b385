"""Workflow orchestrator: sequential rounds, run lifecycle and cancellation."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from .contracts import RoleDone, RoleOutcome, Workflow
from .execute import RoundExecutor, RunContext, WorkflowListener
from .guard import PersistenceGuard
from .persistence import ConversationRepository, RoundRecord, StepRecord
from .persistence.repository import USER_ROLE

logger = logging.getLogger(__name__)

ROUND_MESSAGE_ROLE = "workflow"

RoundOutcomes = Dict[str, RoleOutcome]
SnapshotFn = Callable[[List[RoundOutcomes]], str]


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RunResult(BaseModel):
    """In-memory record of a finished (or stopped) run."""

    run_id: str
    workflow_name: str
    conversation_id: Optional[str] = None
    started_at: datetime
    state: RunState
    rounds: List[Dict[str, RoleOutcome]] = Field(default_factory=list)
    snapshot: Optional[str] = None


def combined_round_text(round_index: int, outcomes: RoundOutcomes) -> str:
    """Render one round for the conversation timeline."""
    blocks = [f"Round {round_index + 1}"]
    for role_name, outcome in outcomes.items():
        if isinstance(outcome, RoleDone):
            blocks.append(f"[{role_name}]\n{outcome.text}")
        else:
            blocks.append(f"[{role_name}] error {outcome.code.value}: {outcome.message}")
    return "\n\n".join(blocks)


def round_record(round_index: int, outcomes: RoundOutcomes) -> RoundRecord:
    steps = []
    for role_name, outcome in outcomes.items():
        if isinstance(outcome, RoleDone):
            steps.append(
                StepRecord(
                    role_name=role_name,
                    status=outcome.status,
                    text=outcome.text,
                    duration_ms=outcome.duration_ms,
                )
            )
        else:
            steps.append(
                StepRecord(
                    role_name=role_name,
                    status=outcome.status,
                    duration_ms=outcome.duration_ms,
                    error_code=outcome.code.value,
                    error_message=outcome.message,
                )
            )
    return RoundRecord(
        round_index=round_index, steps=steps, completed_at=datetime.now(timezone.utc)
    )


def last_round_snapshot(rounds: List[RoundOutcomes]) -> str:
    """Default snapshot: the successful outputs of the final round."""
    if not rounds:
        return ""
    texts = [o.text for o in rounds[-1].values() if isinstance(o, RoleDone) and o.text]
    return "\n\n".join(texts)


class WorkflowOrchestrator:
    """Runs a workflow's rounds in order, one run at a time."""

    def __init__(
        self,
        workflow: Workflow,
        executor: RoundExecutor,
        repository: ConversationRepository,
        listener: Optional[WorkflowListener] = None,
        snapshot: Optional[SnapshotFn] = None,
        active_conversation: Optional[Callable[[], Optional[str]]] = None,
    ) -> None:
        self._workflow = workflow
        self._executor = executor
        self._repository = repository
        self._listener = listener or WorkflowListener()
        self._snapshot = snapshot or last_round_snapshot
        self._guard = PersistenceGuard(
            active_conversation or repository.active_conversation_id
        )
        self._ctx: Optional[RunContext] = None
        self.state = RunState.IDLE

    @property
    def is_running(self) -> bool:
        return self.state is RunState.RUNNING

    @property
    def workflow(self) -> Workflow:
        return self._workflow

    def set_workflow(self, workflow: Workflow) -> None:
        """Replace the workflow; a run already in progress keeps its copy."""
        self._workflow = workflow

    async def start(
        self, user_input: str, conversation_id: Optional[str] = None
    ) -> Optional[RunResult]:
        """Execute every round for ``user_input``.

        Args:
            user_input: The message that triggers the run.
            conversation_id: Conversation to bind to. Defaults to the
                conversation active at call time.

        Returns:
            The run result, or ``None`` when a run is already in progress or
            the workflow has no rounds.
        """
        if self.state is RunState.RUNNING:
            logger.debug("Start ignored: a run is already in progress")
            return None
        workflow = self._workflow.model_copy(deep=True)
        if not workflow.rounds:
            logger.debug(f"Start ignored: workflow {workflow.name} has no rounds")
            return None

        self.state = RunState.RUNNING
        bound = conversation_id if conversation_id is not None else self._guard.capture()
        # stop() reads self._ctx, so it is set before the first await.
        ctx = RunContext(
            run_id=str(uuid.uuid4()),
            user_input=user_input,
            started_at=datetime.now(timezone.utc),
            listener=self._listener,
        )
        self._ctx = ctx
        run_id = ctx.run_id

        try:
            if bound:
                ctx.history = await self._repository.user_history(bound)
            logger.info(
                f"Starting workflow {workflow.name} run_id={run_id} conversation={bound}"
            )

            if not ctx.cancelled:
                await self._write(
                    bound,
                    "run start",
                    lambda: self._repository.begin_run(
                        bound,
                        run_id,
                        ctx.started_at,
                        workflow_name=workflow.name,
                        user_input=user_input,
                    ),
                )
                await self._write(
                    bound,
                    "user message",
                    lambda: self._repository.append_message(
                        bound, USER_ROLE, user_input, at=ctx.started_at
                    ),
                )

            completed: List[RoundOutcomes] = []
            total = len(workflow.rounds)
            for round_index, round_ in enumerate(workflow.rounds):
                if ctx.cancelled:
                    break
                logger.info(f"Starting round {round_index + 1}/{total} for run_id={run_id}")
                outcomes = await self._executor.run_round(round_index, round_, ctx)
                if ctx.cancelled:
                    break
                completed.append(outcomes)
                self._listener.on_round_complete(round_index, outcomes)
                await self._persist_round(bound, run_id, round_index, outcomes)

            snapshot: Optional[str] = None
            if ctx.cancelled:
                self.state = RunState.CANCELLED
                logger.info(f"Workflow run_id={run_id} cancelled after {len(completed)} rounds")
            else:
                snapshot = self._snapshot(completed)
                await self._write(
                    bound,
                    "snapshot",
                    lambda: self._repository.save_snapshot(bound, run_id, snapshot),
                )
                self.state = RunState.COMPLETED
                logger.info(f"Workflow run_id={run_id} completed")

            return RunResult(
                run_id=run_id,
                workflow_name=workflow.name,
                conversation_id=bound,
                started_at=ctx.started_at,
                state=self.state,
                rounds=completed,
                snapshot=snapshot,
            )
        finally:
            self._ctx = None
            if self.state is RunState.RUNNING:
                self.state = RunState.IDLE

    def stop(self) -> None:
        """Cancel the current run; safe to call when idle."""
        ctx = self._ctx
        if ctx is None:
            return
        interrupted = ctx.cancel()
        logger.info(
            f"Stop requested for run_id={ctx.run_id}; interrupted {interrupted} in-flight handles"
        )

    async def _persist_round(
        self,
        bound: Optional[str],
        run_id: str,
        round_index: int,
        outcomes: RoundOutcomes,
    ) -> None:
        await self._write(
            bound,
            f"round {round_index}",
            lambda: self._repository.append_round(
                bound, run_id, round_record(round_index, outcomes)
            ),
        )
        await self._write(
            bound,
            f"round {round_index} message",
            lambda: self._repository.append_message(
                bound, ROUND_MESSAGE_ROLE, combined_round_text(round_index, outcomes)
            ),
        )

    async def _write(
        self,
        bound: Optional[str],
        what: str,
        operation: Callable[[], Awaitable[bool]],
    ) -> None:
        """Run one repository write if ``bound`` is still the active conversation."""
        if not self._guard.is_still_active(bound):
            return
        try:
            stored = await operation()
        except Exception as e:
            logger.error(f"Failed to persist {what}: {e}")
            return
        if stored is False:
            logger.warning(f"Persisting {what} had no effect; conversation or run missing")
