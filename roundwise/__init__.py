"""Roundwise: round-based multi-role workflow execution for chat models."""

from .config import Library, RoundwiseConfig, load_config
from .contracts import (
    ChatMessage,
    ProviderBinding,
    Role,
    RoleDone,
    RoleFailed,
    RoleSlot,
    Round,
    RunOutputs,
    Workflow,
)
from .errors import ErrorCode
from .execute import RoundExecutor, RunContext, WorkflowListener
from .orchestrator import RunResult, RunState, WorkflowOrchestrator
from .persistence import get_repository
from .pipeline import PipelinePreset, PipelineRunner, build_pipeline_workflow, run_pipeline
from .prompting import build_messages
from .providers import call_model, get_client

__version__ = "0.1.0"
__all__ = [
    "ChatMessage",
    "ErrorCode",
    "Library",
    "PipelinePreset",
    "PipelineRunner",
    "ProviderBinding",
    "Role",
    "RoleDone",
    "RoleFailed",
    "RoleSlot",
    "Round",
    "RoundExecutor",
    "RoundwiseConfig",
    "RunContext",
    "RunOutputs",
    "RunResult",
    "RunState",
    "Workflow",
    "WorkflowListener",
    "WorkflowOrchestrator",
    "build_messages",
    "build_pipeline_workflow",
    "call_model",
    "get_client",
    "get_repository",
    "load_config",
    "run_pipeline",
]
