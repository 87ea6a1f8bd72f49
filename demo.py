#!/usr/bin/env python3
"""
Demo script for sync-work two-agent coordination.

Walks through the coordination primitives with two agents in one process:
1. Shared document and task claiming (local transport, one working tree)
2. Lock files between the agents
3. Replication through a throwaway git remote with two clones

Usage:
    python3 demo.py --local   # Shared working tree only
    python3 demo.py --git     # Bare remote + two clones (requires git)
"""
import shutil
import sys
import tempfile
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sync_work.coordination import DocumentStore, LockManager, TaskQueue
from sync_work.exceptions import LockTimeout
from sync_work.replication import GitClient, GitTransport, LocalTransport


console = Console()


def show_tasks(store: DocumentStore, title: str):
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Assigned To", style="magenta")
    table.add_column("Description", style="yellow")
    for task in store.get_tasks():
        table.add_row(task.id, task.status.value, task.assigned_to or "-", task.description)
    console.print(table)


def demo_local(root: Path):
    """Both agents on one working tree."""
    console.print(Panel("[bold cyan]Demo 1: Shared Document and Tasks[/bold cyan]"))

    transport = LocalTransport()
    store_1 = DocumentStore(root, "agent-1")
    store_2 = DocumentStore(root, "agent-2")
    store_1.initialize()
    console.print(f"[green]✓[/green] Shared document created at {store_1.path}")

    queue_1 = TaskQueue(store_1, transport)
    queue_2 = TaskQueue(store_2, transport)

    console.print("\n[yellow]agent-1 adds two tasks...[/yellow]")
    queue_1.add_task("Write the parser", {"priority": "high"})
    queue_1.add_task("Write the tests")

    console.print("[yellow]Both agents claim work...[/yellow]")
    first = queue_2.get_next_task()
    second = queue_1.get_next_task()
    console.print(f"[green]✓[/green] agent-2 claimed: {first.description}")
    console.print(f"[green]✓[/green] agent-1 claimed: {second.description}")

    if queue_2.get_next_task() is None:
        console.print("[green]✓[/green] Nothing left to claim")

    queue_2.complete_current_task({"files": ["parser.py"]})
    console.print("[green]✓[/green] agent-2 completed its task")
    show_tasks(store_1, "Tasks")

    console.print(Panel("[bold cyan]Demo 2: Lock Files[/bold cyan]"))
    locks_1 = LockManager(root, "agent-1", transport, poll_interval=0.1)
    locks_2 = LockManager(root, "agent-2", transport, poll_interval=0.1)

    locks_1.acquire("src/parser.py")
    console.print("[green]✓[/green] agent-1 acquired lock on src/parser.py")

    try:
        locks_2.acquire("src/parser.py", timeout=0.3)
        console.print("[red]✗[/red] agent-2 should have been blocked!")
    except LockTimeout as e:
        console.print(f"[green]✓[/green] agent-2 correctly blocked: {e}")

    locks_1.release("src/parser.py")
    console.print("[green]✓[/green] agent-1 released lock")

    locks_2.with_lock("src/parser.py", lambda: console.print("[green]✓[/green] agent-2 editing under lock"))
    console.print("[green]✓ Local coordination works![/green]")


def demo_git(root: Path):
    """Each agent in its own clone of a bare remote."""
    console.print(Panel("[bold cyan]Demo 3: Replication Through Git[/bold cyan]"))

    if shutil.which("git") is None:
        console.print("[red]git is not installed, skipping[/red]")
        return

    remote = root / "remote.git"
    setup = GitClient(root, author="demo")
    setup.run(["init", "--bare", str(remote)])

    seed = root / "seed"
    setup.run(["clone", str(remote), str(seed)])
    DocumentStore(seed, "agent-1").initialize()
    seed_client = GitClient(seed, author="demo")
    seed_client.add()
    seed_client.commit("Initial shared document")
    seed_client.push("origin", "HEAD", set_upstream=True)

    clones = {}
    for agent_id in ("agent-1", "agent-2"):
        path = root / agent_id
        setup.run(["clone", str(remote), str(path)])
        transport = GitTransport(
            GitClient(path, author=agent_id),
            agent_id,
            auto_resolve=(".sync-state.json", ".sync-locks/"),
        )
        clones[agent_id] = (DocumentStore(path, agent_id), transport)
        console.print(f"[green]✓[/green] Cloned for {agent_id}: {path}")

    store_1, transport_1 = clones["agent-1"]
    store_2, transport_2 = clones["agent-2"]

    console.print("\n[yellow]agent-1 adds a task and pushes...[/yellow]")
    TaskQueue(store_1, transport_1).add_task("Review the replication log")

    console.print("[yellow]agent-2 pulls and claims it...[/yellow]")
    transport_2.pull()
    task = TaskQueue(store_2, transport_2).get_next_task()
    console.print(f"[green]✓[/green] agent-2 claimed: {task.description}")

    transport_1.pull()
    show_tasks(store_1, "Tasks as seen by agent-1")

    table = Table(title="Recent Commits")
    table.add_column("Hash", style="cyan")
    table.add_column("Author", style="magenta")
    table.add_column("Message", style="yellow")
    for commit in transport_1.recent_commits(5):
        entry = commit.to_dict()
        table.add_row(entry["hash"], entry["author"], entry["message"])
    console.print(table)
    console.print("[green]✓ Git replication works![/green]")


def main():
    """Main demo runner."""
    console.print("[bold cyan]═══════════════════════════════════════════════════════[/bold cyan]")
    console.print("[bold cyan]        Sync Work - Two-Agent Coordination Demo        [/bold cyan]")
    console.print("[bold cyan]═══════════════════════════════════════════════════════[/bold cyan]\n")

    arg = sys.argv[1] if len(sys.argv) > 1 else None
    if arg not in (None, "--local", "--git"):
        console.print(f"[red]Unknown argument: {arg}[/red]")
        console.print("Usage: python3 demo.py [--local|--git]")
        return

    with tempfile.TemporaryDirectory(prefix="sync-work-demo-") as tmp:
        root = Path(tmp)
        try:
            if arg in (None, "--local"):
                local_root = root / "local"
                local_root.mkdir()
                demo_local(local_root)
                console.print("\n" + "=" * 60 + "\n")

            if arg in (None, "--git"):
                demo_git(root)
        except KeyboardInterrupt:
            console.print("\n[yellow]Demo interrupted[/yellow]")


if __name__ == "__main__":
    main()
