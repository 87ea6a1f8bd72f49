"""
Command-line entry point: ``sync-work <command>``.
"""
import asyncio
import json
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import Settings
from .coordination.models import format_timestamp
from .exceptions import SyncWorkError
from .log import setup_logging
from .orchestrator import SyncAgent


app = typer.Typer(help="Coordinate two agents through a shared git repository.", no_args_is_help=True)
console = Console()


def _parse_json(value: Optional[str], name: str) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"{name} must be valid JSON: {e}")


def _fail(error: Exception):
    console.print(f"[red]Error: {escape(str(error))}[/red]")
    raise typer.Exit(1)


def _agent(ctx: typer.Context) -> SyncAgent:
    """Build and initialize the agent; help output never reaches here."""
    settings: Settings = ctx.obj
    setup_logging(settings)

    agent = SyncAgent(settings)
    try:
        agent.initialize()
    except SyncWorkError as e:
        _fail(e)
    return agent


@app.callback()
def main(
    ctx: typer.Context,
    agent_id: Optional[str] = typer.Option(None, "--agent-id", help="Agent identity (default: AGENT_ID or agent-1)"),
    project_root: Optional[Path] = typer.Option(None, "--project-root", help="Shared repository checkout"),
):
    """Resolve settings for the selected command."""
    overrides = {}
    if agent_id:
        overrides["agent_id"] = agent_id
    if project_root:
        overrides["project_root"] = project_root

    ctx.obj = Settings(**overrides)


@app.command()
def start(ctx: typer.Context):
    """Start the heartbeat and sync loops until interrupted."""
    agent = _agent(ctx)
    console.print(f"[cyan]Starting {agent.agent_id}[/cyan] (Ctrl+C to stop)")
    try:
        asyncio.run(agent.run_forever())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")


@app.command()
def stop(ctx: typer.Context):
    """Mark this agent offline and publish it."""
    agent = _agent(ctx)
    try:
        agent.mark_offline()
    except SyncWorkError as e:
        _fail(e)
    console.print(f"[green]✓[/green] {agent.agent_id} marked offline")


@app.command()
def status(ctx: typer.Context):
    """Show the aggregated status as JSON."""
    agent = _agent(ctx)
    try:
        console.print_json(data=agent.get_status())
    except SyncWorkError as e:
        _fail(e)


@app.command("add-task")
def add_task(
    ctx: typer.Context,
    description: str = typer.Argument(..., help="What needs doing"),
    metadata: Optional[str] = typer.Option(None, "--metadata", help="Extra task data as a JSON object"),
):
    """Add a task to the shared backlog."""
    data = _parse_json(metadata, "--metadata")
    if data is not None and not isinstance(data, dict):
        raise typer.BadParameter("--metadata must be a JSON object")
    agent = _agent(ctx)
    try:
        task = agent.add_task(description, data)
    except SyncWorkError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Task added: {task.id}")


@app.command("list-tasks")
def list_tasks(
    ctx: typer.Context,
    status: Optional[str] = typer.Option(None, "--status", help="pending, in-progress or completed"),
    assigned_to: Optional[str] = typer.Option(None, "--assigned-to", help="Agent id"),
):
    """List tasks, optionally filtered."""
    agent = _agent(ctx)
    try:
        tasks = agent.list_tasks(status=status, assigned_to=assigned_to)
    except ValueError:
        raise typer.BadParameter(f"unknown status: {status}")
    except SyncWorkError as e:
        _fail(e)

    table = Table(title="Tasks")
    table.add_column("ID", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Assigned To", style="magenta")
    table.add_column("Description", style="yellow")
    for task in tasks:
        table.add_row(task.id, task.status.value, task.assigned_to or "-", task.description)
    console.print(table)


@app.command("next-task")
def next_task(ctx: typer.Context):
    """Claim the next pending task."""
    agent = _agent(ctx)
    try:
        task = agent.process_next_task()
    except SyncWorkError as e:
        _fail(e)
    if task is None:
        console.print("[yellow]No tasks available[/yellow]")
        return
    console.print_json(data=task.to_json_dict())


@app.command("complete-task")
def complete_task(
    ctx: typer.Context,
    result: Optional[str] = typer.Option(None, "--result", help="Result payload as JSON"),
):
    """Complete the task this agent is working on."""
    payload = _parse_json(result, "--result")
    agent = _agent(ctx)
    try:
        task = agent.complete_task(payload)
    except SyncWorkError as e:
        _fail(e)
    if task is None:
        console.print("[yellow]No current task to complete[/yellow]")
        return
    console.print(f"[green]✓[/green] Completed {task.id}")


@app.command()
def locks(ctx: typer.Context):
    """List lock files currently present."""
    agent = _agent(ctx)
    table = Table(title="Locks")
    table.add_column("Resource", style="cyan")
    table.add_column("Owner", style="magenta")
    table.add_column("Acquired At", style="yellow")
    table.add_column("Stale", style="red")
    for record in agent.locks.list_locks():
        table.add_row(
            record.file,
            record.agent_id,
            format_timestamp(record.acquired_at),
            "yes" if agent.locks.is_stale(record) else "no",
        )
    console.print(table)


if __name__ == "__main__":
    app()
