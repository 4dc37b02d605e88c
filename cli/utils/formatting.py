"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "processing": "blue",
    "completed": "green",
    "failed": "red",
    "retrying": "magenta",
    "active": "green",
    "paused": "yellow",
    "error": "red",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def _status(value: str | None) -> str:
    if not value:
        return "—"
    style = STATUS_STYLES.get(value, "white")
    return f"[{style}]{value}[/{style}]"


def _short_time(value: str | None) -> str:
    # ISO timestamps trimmed to minutes
    return value[:16].replace("T", " ") if value else "—"


def create_jobs_table(queue_name: str, jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for a queue's jobs"""
    table = Table(title=f"Jobs in {queue_name}", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Priority", justify="center", style="magenta")
    table.add_column("Attempts", justify="center")
    table.add_column("Updated", justify="center", style="yellow")
    table.add_column("Error", justify="left", style="white")

    for job in jobs:
        error = job.get("error") or ""
        table.add_row(
            job.get("id", "")[:8],
            _status(job.get("status")),
            str(job.get("priority", 0)),
            f"{job.get('attempts', 0)}/{job.get('max_attempts', 0)}",
            _short_time(job.get("updated_at")),
            error[:50] + "..." if len(error) > 50 else (error or "—"),
        )

    return table


def create_queue_stats_table(entries: list[dict[str, Any]]) -> Table:
    """Create formatted table of per-queue stats"""
    table = Table(title="Queues", box=box.ROUNDED)

    table.add_column("Queue", justify="left", style="cyan")
    for column in ("pending", "processing", "retrying", "completed", "failed", "total"):
        table.add_column(column.capitalize(), justify="right")
    table.add_column("Note", justify="left", style="red")

    for entry in entries:
        stats = entry.get("stats", {})
        table.add_row(
            entry.get("queue_name", ""),
            *(
                str(stats.get(column, 0))
                for column in ("pending", "processing", "retrying", "completed", "failed", "total")
            ),
            entry.get("error") or "",
        )

    return table


def create_scheduled_tasks_table(tasks: list[dict[str, Any]]) -> Table:
    """Create formatted table of scheduled task states"""
    table = Table(title="Scheduled Tasks", box=box.ROUNDED)

    table.add_column("Name", justify="left", style="cyan")
    table.add_column("Cron", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Runs", justify="right")
    table.add_column("Last Run", justify="center", style="yellow")
    table.add_column("Next Run", justify="center", style="green")
    table.add_column("Last Error", justify="left", style="red")

    for task in tasks:
        name = task.get("name", "")
        if not task.get("persisted", True):
            name += " [dim](static)[/dim]"
        table.add_row(
            name,
            task.get("cron_expression", ""),
            _status(task.get("status")),
            str(task.get("run_count", 0)),
            _short_time(task.get("last_run_at")),
            _short_time(task.get("next_run_at")),
            task.get("last_error_message") or "",
        )

    return table
