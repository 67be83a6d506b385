"""Command line interface for running roundwise workflows."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer

from roundwise.config import Library, RoundwiseConfig, load_config
from roundwise.contracts import RoleDelta, RoleDone, RoleOutcomeEvent, RunOutputs, StreamingFallback
from roundwise.errors import ConfigError, WorkflowNotFound, friendly_message
from roundwise.execute import RoundExecutor, WorkflowListener
from roundwise.orchestrator import WorkflowOrchestrator
from roundwise.persistence import ConversationRepository, get_repository
from roundwise.pipeline import run_pipeline
from roundwise.prompting import build_messages
from roundwise.providers import get_client

app = typer.Typer(help="CLI for roundwise workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for inspecting workflows")
conversation_app = typer.Typer(help="Commands for managing conversations")
provider_app = typer.Typer(help="Commands for provider bindings")

app.add_typer(workflow_app, name="workflow")
app.add_typer(conversation_app, name="conversation")
app.add_typer(provider_app, name="provider")

ConfigOption = typer.Option(None, "--config", help="Path to roundwise.yaml")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", help="Logging level for engine output"),
) -> None:
    """Roundwise CLI entry point."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class EchoListener(WorkflowListener):
    """Print run events to the terminal."""

    def __init__(self) -> None:
        self._streamed: set[tuple[int, str]] = set()

    def on_delta(self, event: RoleDelta) -> None:
        key = (event.round_index, event.role_name)
        if key not in self._streamed:
            self._streamed.add(key)
            typer.echo(f"\n[round {event.round_index + 1}] {event.role_name}:")
        typer.echo(event.text, nl=False)

    def on_fallback(self, event: StreamingFallback) -> None:
        typer.secho(f"\n[workflow] {event.message}", fg=typer.colors.YELLOW)

    def on_outcome(self, event: RoleOutcomeEvent) -> None:
        outcome = event.outcome
        header = f"[round {event.round_index + 1}] {event.role_name}"
        if isinstance(outcome, RoleDone):
            if (event.round_index, event.role_name) in self._streamed:
                typer.echo(f"\n{header} done ({outcome.duration_ms:.0f} ms)")
            else:
                typer.echo(f"\n{header} ({outcome.duration_ms:.0f} ms):\n{outcome.text}")
        else:
            typer.secho(
                f"\n{header} failed: {outcome.code.value} - {outcome.message} "
                f"({friendly_message(outcome.code)})",
                fg=typer.colors.RED,
            )


def _load(config_path: Optional[Path]) -> RoundwiseConfig:
    try:
        return load_config(str(config_path) if config_path else None)
    except ConfigError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _executor(library: Library, streaming: bool) -> RoundExecutor:
    config = library.config
    return RoundExecutor(
        library.role,
        library.provider,
        client_factory=get_client,
        streaming_enabled=streaming and config.streaming.enabled,
        stream_interval_ms=config.streaming.interval_ms,
    )


async def _ensure_conversation(repo: ConversationRepository, conversation_id: Optional[str]) -> str:
    if conversation_id is None:
        conversation_id = repo.active_conversation_id()
    if conversation_id is None or await repo.get_conversation(conversation_id) is None:
        conversation = await repo.create_conversation(conversation_id=conversation_id)
        conversation_id = conversation.id
    await repo.set_active_conversation(conversation_id)
    return conversation_id


@app.command("run")
def run_workflow(
    workflow_name: str,
    user_input: str,
    conversation: Optional[str] = typer.Option(None, help="Conversation id to run in"),
    stream: bool = typer.Option(True, help="Stream partial output when supported"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """
    Run a configured workflow for one user input.

    Rounds execute in order and roles within a round run concurrently. Output
    is streamed per role where the role and provider allow it.

    Example:
        roundwise run review "Summarise the attached design"
        roundwise run review "ping" --conversation conv-123 --no-stream
    """
    cfg = _load(config)
    library = Library(cfg)
    try:
        workflow = library.workflow(workflow_name)
    except WorkflowNotFound as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    repo = get_repository(database_url=cfg.database_url)
    orchestrator = WorkflowOrchestrator(
        workflow, _executor(library, stream), repo, listener=EchoListener()
    )

    async def _run():
        conversation_id = await _ensure_conversation(repo, conversation)
        return await orchestrator.start(user_input, conversation_id=conversation_id)

    result = asyncio.run(_run())
    if result is None:
        typer.echo("Workflow has no rounds; nothing to run.")
        return
    typer.echo(f"\nRun {result.run_id}: {result.state.value}")


@app.command("pipeline")
def run_pipeline_command(
    preset_name: str,
    user_input: str,
    stream: bool = typer.Option(True, help="Stream partial output when supported"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """Run the fixed proposer/critic/summarizer pipeline."""
    cfg = _load(config)
    library = Library(cfg)
    try:
        preset = library.pipeline(preset_name)
    except WorkflowNotFound as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    result = asyncio.run(
        run_pipeline(preset, _executor(library, stream), user_input, listener=EchoListener())
    )
    typer.echo(f"\nPipeline {preset.name} finished in {result.total_duration_ms:.0f} ms")


@app.command("preview")
def preview(
    workflow_name: str,
    user_input: str,
    config: Optional[Path] = ConfigOption,
) -> None:
    """
    Print the message list each role would receive.

    Outputs of earlier rounds are replaced by placeholders; conversation
    history is not included.
    """
    cfg = _load(config)
    library = Library(cfg)
    try:
        workflow = library.workflow(workflow_name)
    except WorkflowNotFound as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    started_at = datetime.now(timezone.utc)
    outputs = RunOutputs()
    for round_index, round_ in enumerate(workflow.rounds):
        typer.echo(f"Round {round_index + 1}")
        for slot in round_.roles:
            role = library.role(slot.name)
            if role is None:
                typer.secho(f"  {slot.name}: role not found", fg=typer.colors.RED)
                continue
            typer.echo(f"  {slot.name} ({role.model_id}):")
            messages = build_messages(
                role, round_index, user_input, 0, slot.receive_from, outputs, [], started_at
            )
            for message in messages:
                label = f"{message.role}:{message.name}" if message.name else message.role
                typer.echo(f"    - {label}: {message.content!r}")
        for slot in round_.roles:
            outputs.record(slot.name, round_index, f"<output of {slot.name}>")


@workflow_app.command("list")
def workflow_list(config: Optional[Path] = ConfigOption) -> None:
    """List configured workflows and pipeline presets."""
    library = Library(_load(config))
    names = library.workflow_names()
    pipelines = library.pipeline_names()
    if not names and not pipelines:
        typer.echo("No workflows configured")
        return
    for name in names:
        workflow = library.workflow(name)
        typer.echo(f"{name}\t{len(workflow.rounds)} rounds")
    for name in pipelines:
        typer.echo(f"{name}\tpipeline")


@conversation_app.command("list")
def conversation_list() -> None:
    """List conversations, marking the active one with ``*``."""
    repo = get_repository()
    conversations = asyncio.run(repo.list_conversations())
    if not conversations:
        typer.echo("No conversations found")
        return
    active = repo.active_conversation_id()
    for conv in conversations:
        marker = "*" if conv.id == active else " "
        typer.echo(f"{marker} {conv.id}\t{conv.title}")


@conversation_app.command("show")
def conversation_show(conversation_id: str) -> None:
    """Show messages and workflow runs of a conversation."""
    repo = get_repository()
    conv = asyncio.run(repo.get_conversation(conversation_id))
    if conv is None:
        typer.echo("Conversation not found")
        raise typer.Exit(code=1)
    typer.echo(f"Conversation {conv.id}: {conv.title}")
    for message in conv.messages:
        typer.echo(f"- {message.role} ({message.at:%Y-%m-%d %H:%M:%S}): {message.content}")
    for run in conv.runs:
        typer.echo(f"Run {run.run_id} ({run.workflow_name or 'workflow'})")
        for record in run.rounds:
            for step in record.steps:
                typer.echo(
                    f"  round {record.round_index + 1} {step.role_name}: {step.status}"
                    + (f" ({step.error_code})" if step.error_code else "")
                )
    if conv.snapshot:
        typer.echo(f"Snapshot:\n{conv.snapshot}")


@conversation_app.command("new")
def conversation_new(title: str = typer.Option("New conversation", help="Title")) -> None:
    """Create a conversation and make it active."""
    repo = get_repository()

    async def _create():
        conv = await repo.create_conversation(title=title)
        await repo.set_active_conversation(conv.id)
        return conv

    conv = asyncio.run(_create())
    typer.echo(conv.id)


@conversation_app.command("use")
def conversation_use(conversation_id: str) -> None:
    """Make an existing conversation the active one."""
    repo = get_repository()
    if asyncio.run(repo.get_conversation(conversation_id)) is None:
        typer.echo("Conversation not found")
        raise typer.Exit(code=1)
    asyncio.run(repo.set_active_conversation(conversation_id))
    typer.echo(f"Active conversation: {conversation_id}")


@provider_app.command("check")
def provider_check(provider_id: str, config: Optional[Path] = ConfigOption) -> None:
    """Probe a provider binding's model listing endpoint."""
    library = Library(_load(config))
    binding = library.provider(provider_id)
    if binding is None:
        typer.secho(f"Provider not found: {provider_id}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    result = asyncio.run(get_client(binding).check_connection())
    if result.ok:
        typer.echo(f"{provider_id}: ok ({result.latency_ms:.0f} ms)")
    else:
        typer.secho(f"{provider_id}: failed - {result.message}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
