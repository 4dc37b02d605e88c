"""Queue Commands - Inspect and manage queued jobs"""

import json

import typer
from rich.console import Console
from rich.panel import Panel

from ..client.base import HubJobsError
from ..client.endpoints import HubJobsClient
from ..utils.config_manager import config
from ..utils.formatting import (
    create_jobs_table,
    create_queue_stats_table,
    print_error,
    print_info,
    print_success,
    print_warning,
)

console = Console()
app = typer.Typer(name="queue", help="Queue job management commands")


@app.command("stats")
def stats(
    queue_name: str | None = typer.Argument(
        None, help="Queue name (defaults to every queue in display.queues)"
    ),
):
    """📊 Show per-status job counts of one or more queues"""
    try:
        with HubJobsClient(config.get("api.base_url")) as client:
            if queue_name is None:
                rows = [client.queue_stats(name) for name in config.get("display.queues", [])]
                console.print(create_queue_stats_table(rows))
                return

            data = client.queue_stats(queue_name)
            console.print(create_queue_stats_table([data]))
            state = "processing" if data.get("processing") else "idle"
            console.print(
                f"\nRegistered: [cyan]{data.get('registered', False)}[/cyan]  "
                f"State: [cyan]{state}[/cyan]  "
                f"In flight: [cyan]{data.get('in_flight', 0)}[/cyan]"
            )
    except HubJobsError as e:
        print_error(f"Failed to get queue stats: {e}")
        raise typer.Exit(1) from None


@app.command("list")
def list_jobs(
    queue_name: str = typer.Argument(..., help="Queue name"),
    status: str | None = typer.Option(
        None, "--status", "-s", help="Comma-separated statuses (e.g. failed,retrying)"
    ),
    limit: int | None = typer.Option(
        None, "--limit", "-l", help="Number of jobs to show (default: display.jobs_per_page)"
    ),
    offset: int = typer.Option(0, "--offset", "-o", help="Skip first N jobs"),
):
    """📋 List jobs of a queue, most recently updated first"""
    limit = limit or config.get("display.jobs_per_page", 20)
    try:
        with HubJobsClient(config.get("api.base_url")) as client:
            data = client.list_jobs(queue_name, status=status, limit=limit, offset=offset)
            jobs = data.get("jobs", [])

            if not jobs:
                console.print(
                    Panel(
                        f"📭 [yellow]No jobs found in {queue_name}[/yellow]\n\n"
                        f"Status filter: {status or 'all'}",
                        title="Empty Results",
                        border_style="yellow",
                    )
                )
                return

            console.print(create_jobs_table(queue_name, jobs))
            if len(jobs) == limit:
                console.print(f"💡 Use [cyan]--offset {offset + limit}[/cyan] to see more")
    except HubJobsError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None


@app.command("show")
def show_job(
    queue_name: str = typer.Argument(..., help="Queue name"),
    job_id: str = typer.Argument(..., help="Job ID"),
):
    """🔍 Show one job in full"""
    try:
        with HubJobsClient(config.get("api.base_url")) as client:
            job = client.get_job(queue_name, job_id)
            console.print(
                Panel(json.dumps(job, indent=2), title=f"Job {job_id}", border_style="blue")
            )
    except HubJobsError as e:
        print_error(f"Failed to get job: {e}")
        raise typer.Exit(1) from None


@app.command("add")
def add_job(
    queue_name: str = typer.Argument(..., help="Queue name"),
    payload: str = typer.Argument("{}", help="JSON payload"),
    priority: int = typer.Option(0, "--priority", "-p", min=0, max=10, help="Higher runs first"),
    max_attempts: int = typer.Option(3, "--max-attempts", min=1, max=10),
    delay: int = typer.Option(0, "--delay", min=0, max=86400, help="Initial delay in seconds"),
):
    """➕ Add a job to a queue"""
    try:
        payload_data = json.loads(payload)
    except json.JSONDecodeError as e:
        print_error(f"Payload is not valid JSON: {e}")
        raise typer.Exit(1) from None
    if not isinstance(payload_data, dict):
        print_error("Payload must be a JSON object")
        raise typer.Exit(1)

    try:
        with HubJobsClient(config.get("api.base_url")) as client:
            job = client.add_job(
                queue_name,
                payload_data,
                priority=priority,
                max_attempts=max_attempts,
                delay_seconds=delay,
            )
            print_success(f"Added job {job.get('id')} to {queue_name}")
    except HubJobsError as e:
        print_error(f"Failed to add job: {e}")
        raise typer.Exit(1) from None


@app.command("retry")
def retry_job(
    queue_name: str = typer.Argument(..., help="Queue name"),
    job_id: str = typer.Argument(..., help="ID of a failed job"),
):
    """🔁 Send a failed job back to its queue"""
    try:
        with HubJobsClient(config.get("api.base_url")) as client:
            client.retry_job(queue_name, job_id)
            print_success(f"Job {job_id} marked for retry")
    except HubJobsError as e:
        print_error(f"Failed to retry job: {e}")
        raise typer.Exit(1) from None


@app.command("delete")
def delete_job(
    queue_name: str = typer.Argument(..., help="Queue name"),
    job_id: str = typer.Argument(..., help="Job ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """🗑️ Delete a job record"""
    if not yes and not typer.confirm(f"Delete job {job_id} from {queue_name}?"):
        print_warning("Aborted")
        raise typer.Exit()

    try:
        with HubJobsClient(config.get("api.base_url")) as client:
            client.delete_job(queue_name, job_id)
            print_success(f"Job {job_id} deleted")
    except HubJobsError as e:
        print_error(f"Failed to delete job: {e}")
        raise typer.Exit(1) from None


@app.command("cleanup")
def cleanup(
    queue_name: str = typer.Argument(..., help="Queue name"),
    older_than_days: int = typer.Option(7, "--older-than-days", "-d", min=0),
):
    """🧹 Delete old completed and failed jobs"""
    try:
        with HubJobsClient(config.get("api.base_url")) as client:
            print_info(f"Removing finished jobs older than {older_than_days} days")
            result = client.cleanup_jobs(queue_name, older_than_days)
            print_success(f"Deleted {result.get('deleted_count', 0)} jobs from {queue_name}")
    except HubJobsError as e:
        print_error(f"Cleanup failed: {e}")
        raise typer.Exit(1) from None
