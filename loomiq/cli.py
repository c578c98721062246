#!/usr/bin/env python3
"""LoomIQ orchestration CLI.

Command-line interface for running tasks against the configured agent pool,
inspecting agents and their ranking for a task, and showing configuration.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .agents import build_agent
from .config import get_settings
from .core.agent_protocol import AgentExecutionError
from .core.agent_registry import AgentRegistry
from .core.communication import CommunicationHub, Event
from .core.errors import OrchestrationError
from .core.heuristics import determine_collaboration_strategy, requires_collaboration
from .core.orchestrator import TaskOrchestrator, generate_title
from .database import create_db_and_tables, create_db_engine
from .repositories import InMemoryTaskRepository, SQLTaskRepository, TaskStore
from .schemas.unified_models import (
    CollaborationSession,
    ExecutionResult,
    TaskCore,
    TaskPriority,
    TaskType,
)


app = typer.Typer(help="LoomIQ multi-agent orchestration CLI")
console = Console()
logger = logging.getLogger(__name__)

AgentsFileOption = typer.Option(
    None, "--agents-file", "-a", help="YAML file with agent definitions"
)


def setup_logging(level: str) -> None:
    """Route log records through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )


@app.callback()
def main(
    log_level: str | None = typer.Option(
        None, "--log-level", "-l", help="Override the configured log level"
    ),
):
    """Configure logging for every command."""
    setup_logging((log_level or get_settings().log_level).upper())


async def build_registry(
    agents_file: Path | None, initialize: bool = True
) -> AgentRegistry:
    """Load agent configurations and register an adapter for each."""
    registry = AgentRegistry(CommunicationHub(), get_settings())

    for config in registry.load_configurations(agents_file):
        agent = build_agent(config)
        if not await registry.register_agent(agent):
            continue
        if not initialize:
            continue
        try:
            await agent.initialize()
        except AgentExecutionError as e:
            logger.warning(f"Agent {agent.id} unavailable: {e.reason}")
            await registry.deregister(agent.id)

    return registry


def build_store() -> TaskStore:
    """Task store selected by the database settings."""
    settings = get_settings()
    if not settings.database.enabled:
        return InMemoryTaskRepository()

    engine = create_db_engine(settings.database)
    create_db_and_tables(engine)
    return SQLTaskRepository(engine)


def _log_event(event: Event) -> None:
    logger.debug(f"[event] {event.name} {event.payload}")


def _print_result(result: ExecutionResult, verbose: bool) -> None:
    if result.success:
        console.print(
            f"[bold green]✓ Task {result.task_id} completed in "
            f"{result.duration}ms[/bold green]"
        )
    else:
        console.print(
            f"[bold red]✗ Task {result.task_id} failed after {result.attempts} "
            f"attempts: {result.error}[/bold red]"
        )

    if verbose and result.output is not None:
        console.print(
            Panel(json.dumps(result.output, indent=2, default=str), title="Output")
        )


def _sessions_table(sessions: list[CollaborationSession]) -> Table:
    table = Table(
        title="Collaboration Sessions", show_header=True, header_style="bold magenta"
    )
    table.add_column("Session", style="cyan")
    table.add_column("Task", style="white")
    table.add_column("Strategy", style="yellow")
    table.add_column("Status", style="green")
    table.add_column("Agents", style="white")
    table.add_column("Results", justify="right")

    for session in sessions:
        table.add_row(
            session.id[:8],
            session.task_id[:8],
            session.strategy.value,
            session.status.value.upper(),
            ", ".join(session.agents),
            str(len(session.results)),
        )
    return table


def _tasks_table(tasks: list[TaskCore]) -> Table:
    table = Table(title="Tasks", show_header=True, header_style="bold blue")
    table.add_column("Task", style="cyan")
    table.add_column("Title", style="white")
    table.add_column("Priority", style="yellow")
    table.add_column("Status", style="green")
    table.add_column("Agent", style="white")

    for task in tasks:
        table.add_row(
            task.id[:8],
            task.title,
            task.priority.value,
            task.status.value.upper(),
            task.assigned_agent_id or "-",
        )
    return table


@app.command()
def run(
    description: str = typer.Argument(..., help="What the task should accomplish"),
    task_type: TaskType = typer.Option(TaskType.IMPLEMENTATION, "--type", "-t"),
    priority: TaskPriority = typer.Option(TaskPriority.MEDIUM, "--priority", "-p"),
    collaborate: bool = typer.Option(
        False, "--collaborate", "-c", help="Force a collaboration session"
    ),
    agents_file: Path | None = AgentsFileOption,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show task output"),
):
    """Create a task and execute it immediately."""

    async def _run() -> bool:
        registry = await build_registry(agents_file)
        orchestrator = TaskOrchestrator(registry, store=build_store())
        orchestrator.hub.subscribe("*", _log_event)

        try:
            task = await orchestrator.create_task(
                description, type=task_type, priority=priority
            )
            console.print(f"[bold blue]Executing task {task.id}...[/bold blue]")

            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
                transient=True,
            ) as progress:
                spinner = progress.add_task("Executing task...", total=None)
                result = await orchestrator.execute_task(
                    task.id, force_collaboration=collaborate
                )
                progress.remove_task(spinner)

            _print_result(result, verbose)
            sessions = orchestrator.get_collaboration_sessions()
            if sessions:
                console.print(_sessions_table(sessions))
            return result.success
        except OrchestrationError as e:
            console.print(f"[bold red]Error executing task: {e}[/bold red]")
            return False
        finally:
            await registry.cleanup_all()

    if not asyncio.run(_run()):
        raise typer.Exit(code=1)


@app.command()
def batch(
    tasks_file: Path = typer.Argument(..., help="YAML file with a list of tasks"),
    agents_file: Path | None = AgentsFileOption,
    max_passes: int = typer.Option(
        10, "--max-passes", help="Scheduling passes before giving up"
    ),
):
    """Queue tasks from a file and run them through the scheduler.

    Tasks may reference earlier entries of the file in ``depends_on`` by
    their zero-based position.
    """

    async def _batch() -> list[TaskCore]:
        with tasks_file.open(encoding="utf-8") as f:
            entries: list[dict[str, Any]] = yaml.safe_load(f) or []

        registry = await build_registry(agents_file)
        orchestrator = TaskOrchestrator(registry, store=build_store())
        orchestrator.hub.subscribe("*", _log_event)

        try:
            created: list[TaskCore] = []
            for position, entry in enumerate(entries):
                depends_on = entry.get("depends_on", [])
                invalid = [
                    i for i in depends_on if not isinstance(i, int) or not 0 <= i < position
                ]
                if invalid:
                    console.print(
                        f"[bold red]Entry {position} depends on {invalid}, which are not "
                        f"earlier entries[/bold red]"
                    )
                    raise typer.Exit(code=1)
                created.append(
                    await orchestrator.create_task(
                        entry["description"],
                        type=entry.get("type", TaskType.IMPLEMENTATION),
                        priority=entry.get("priority", TaskPriority.MEDIUM),
                        dependencies=[created[i].id for i in depends_on],
                        context=entry.get("context"),
                        use_collaboration=entry.get("collaborate", False),
                    )
                )

            for _ in range(max_passes):
                if not await orchestrator.process_pending_tasks():
                    break
                await orchestrator.wait_for_dispatched()

            console.print(_sessions_table(orchestrator.get_collaboration_sessions()))
            return [await orchestrator.get_task(task.id) for task in created]
        finally:
            await orchestrator.shutdown()
            await registry.cleanup_all()

    tasks = asyncio.run(_batch())
    console.print(_tasks_table(tasks))
    if any(not task.is_terminal or task.error for task in tasks):
        raise typer.Exit(code=1)


@app.command()
def agents(agents_file: Path | None = AgentsFileOption):
    """List configured agents."""
    registry = AgentRegistry(settings=get_settings())
    configs = registry.load_configurations(agents_file)

    table = Table(title="Agents", show_header=True, header_style="bold magenta")
    table.add_column("Agent", style="cyan")
    table.add_column("Provider", style="white")
    table.add_column("Model", style="yellow")
    table.add_column("Enabled", style="green")
    table.add_column("Capabilities", style="white")

    for config in configs:
        table.add_row(
            config.id,
            config.provider,
            config.model,
            "yes" if config.enabled else "no",
            ", ".join(config.capabilities),
        )
    console.print(table)


@app.command()
def rank(
    description: str = typer.Argument(..., help="Task description to rank for"),
    task_type: TaskType = typer.Option(TaskType.IMPLEMENTATION, "--type", "-t"),
    priority: TaskPriority = typer.Option(TaskPriority.MEDIUM, "--priority", "-p"),
    agents_file: Path | None = AgentsFileOption,
):
    """Show how the registry scores each agent for a task."""

    async def _rank() -> None:
        registry = await build_registry(agents_file, initialize=False)
        task = TaskCore(
            title=generate_title(description),
            description=description,
            type=task_type,
            priority=priority,
        )
        scores = registry.find_best_agent_for_task(task)

        table = Table(title="Agent Ranking", show_header=True, header_style="bold blue")
        table.add_column("#", justify="right")
        table.add_column("Agent", style="cyan")
        table.add_column("Score", justify="right", style="green")
        table.add_column("Reasons", style="white")
        for position, score in enumerate(scores, start=1):
            table.add_row(
                str(position),
                score.agent_id,
                f"{score.score:.1f}",
                "; ".join(score.reasons),
            )
        console.print(table)

        if requires_collaboration(task):
            strategy = determine_collaboration_strategy(task)
            console.print(f"Collaboration: [bold]{strategy.value}[/bold]")
        else:
            console.print("Collaboration: [dim]not required[/dim]")

    asyncio.run(_rank())


@app.command()
def config():
    """Show the effective configuration."""
    settings = get_settings()
    console.print(
        Panel(
            json.dumps(settings.model_dump(mode="json"), indent=2),
            title="LoomIQ Configuration",
        )
    )


if __name__ == "__main__":
    app()
