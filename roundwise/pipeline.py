"""Fixed five-stage pipeline expressed through the round executor.

Two proposers answer in parallel, two critics each review one proposer, and
a summarizer reads all four results. Slots are named after stages, so one
role may fill several stages and its outputs stay apart.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel

from .contracts import HistoryTurn, Role, RoleOutcome, RoleSlot, Round, Workflow
from .execute import RoundExecutor, RunContext, WorkflowListener

logger = logging.getLogger(__name__)

PROPOSER_A = "proposer_a"
PROPOSER_B = "proposer_b"
CRITIC_A = "critic_a"
CRITIC_B = "critic_b"
SUMMARIZER_STAGE = "summarizer"


class PipelinePreset(BaseModel):
    """Role names filling each fixed stage."""

    name: str
    proposer_a: str
    proposer_b: str
    critic_a: str
    critic_b: str
    summarizer: str

    def stage_roles(self) -> Dict[str, str]:
        return {
            PROPOSER_A: self.proposer_a,
            PROPOSER_B: self.proposer_b,
            CRITIC_A: self.critic_a,
            CRITIC_B: self.critic_b,
            SUMMARIZER_STAGE: self.summarizer,
        }


class PipelineResult(BaseModel):
    run_id: str
    stages: Dict[str, RoleOutcome]
    total_duration_ms: float
    cancelled: bool = False


def build_pipeline_workflow(preset: PipelinePreset) -> Workflow:
    """Expand ``preset`` into a three-round workflow whose slots are stage names."""
    return Workflow(
        name=preset.name,
        rounds=[
            Round(roles=[RoleSlot(name=PROPOSER_A), RoleSlot(name=PROPOSER_B)]),
            Round(
                roles=[
                    RoleSlot(name=CRITIC_A, receive_from=[PROPOSER_A]),
                    RoleSlot(name=CRITIC_B, receive_from=[PROPOSER_B]),
                ]
            ),
            Round(
                roles=[
                    RoleSlot(
                        name=SUMMARIZER_STAGE,
                        receive_from=[PROPOSER_A, PROPOSER_B, CRITIC_A, CRITIC_B],
                    )
                ]
            ),
        ],
    )


class PipelineRunner:
    """Runs a preset once at a time and can be stopped between or during rounds."""

    def __init__(
        self,
        preset: PipelinePreset,
        executor: RoundExecutor,
        listener: Optional[WorkflowListener] = None,
    ) -> None:
        self.preset = preset
        stage_roles = preset.stage_roles()

        def lookup(stage: str) -> Optional[Role]:
            role_name = stage_roles.get(stage)
            return executor.resolve_role(role_name) if role_name else None

        self._executor = executor.with_role_lookup(lookup)
        self._listener = listener or WorkflowListener()
        self._ctx: Optional[RunContext] = None

    @property
    def is_running(self) -> bool:
        return self._ctx is not None

    async def start(
        self, user_input: str, history: Optional[List[HistoryTurn]] = None
    ) -> Optional[PipelineResult]:
        """Run every stage; returns ``None`` when a run is already in progress."""
        if self._ctx is not None:
            return None
        started = time.perf_counter()
        ctx = RunContext(
            run_id=str(uuid.uuid4()),
            user_input=user_input,
            started_at=datetime.now(timezone.utc),
            history=list(history or []),
            listener=self._listener,
        )
        self._ctx = ctx
        try:
            stages: Dict[str, RoleOutcome] = {}
            for round_index, round_ in enumerate(build_pipeline_workflow(self.preset).rounds):
                if ctx.cancelled:
                    break
                outcomes = await self._executor.run_round(round_index, round_, ctx)
                if ctx.cancelled:
                    break
                stages.update(outcomes)
            if ctx.cancelled:
                logger.info(f"Pipeline {self.preset.name} run_id={ctx.run_id} cancelled")
            return PipelineResult(
                run_id=ctx.run_id,
                stages=stages,
                total_duration_ms=(time.perf_counter() - started) * 1000.0,
                cancelled=ctx.cancelled,
            )
        finally:
            self._ctx = None

    def stop(self) -> None:
        ctx = self._ctx
        if ctx is not None:
            ctx.cancel()


async def run_pipeline(
    preset: PipelinePreset,
    executor: RoundExecutor,
    user_input: str,
    listener: Optional[WorkflowListener] = None,
    history: Optional[List[HistoryTurn]] = None,
) -> PipelineResult:
    """Run the pipeline once and return every stage's outcome."""
    return await PipelineRunner(preset, executor, listener).start(
        user_input, history
    )
