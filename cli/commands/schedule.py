"""Schedule Commands - Manage cron-scheduled tasks"""

import typer
from rich.console import Console

from ..client.base import HubJobsError
from ..client.endpoints import HubJobsClient
from ..utils.config_manager import config
from ..utils.formatting import (
    create_scheduled_tasks_table,
    print_error,
    print_success,
    print_warning,
)

console = Console()
app = typer.Typer(name="schedule", help="Scheduled task management commands")


@app.command("list")
def list_tasks():
    """📋 List scheduled tasks and their timer state"""
    try:
        with HubJobsClient(config.get("api.base_url")) as client:
            data = client.list_scheduled_jobs()
            tasks = data.get("tasks", [])
            if not tasks:
                print_warning("No scheduled tasks are running")
                return
            console.print(create_scheduled_tasks_table(tasks))
    except HubJobsError as e:
        print_error(f"Failed to list scheduled tasks: {e}")
        raise typer.Exit(1) from None


@app.command("create")
def create_task(
    name: str = typer.Argument(..., help="Registered handler name"),
    cron_expression: str = typer.Argument(..., help="5-field cron expression, quoted"),
    paused: bool = typer.Option(False, "--paused", help="Create without starting the timer"),
):
    """➕ Schedule a registered handler"""
    try:
        with HubJobsClient(config.get("api.base_url")) as client:
            job = client.create_scheduled_job(
                name, cron_expression, status="paused" if paused else "active"
            )
            print_success(f"Scheduled {job.get('name')} at '{job.get('cron_expression')}'")
    except HubJobsError as e:
        print_error(f"Failed to create scheduled task: {e}")
        raise typer.Exit(1) from None


@app.command("update")
def update_task(
    ref: str = typer.Argument(..., help="Task name or id"),
    cron_expression: str = typer.Argument(..., help="New 5-field cron expression"),
):
    """✏️ Change the cron expression of a task"""
    try:
        with HubJobsClient(config.get("api.base_url")) as client:
            job = client.update_scheduled_job(ref, cron_expression=cron_expression)
            print_success(f"{job.get('name')} now runs at '{job.get('cron_expression')}'")
    except HubJobsError as e:
        print_error(f"Failed to update scheduled task: {e}")
        raise typer.Exit(1) from None


@app.command("delete")
def delete_task(
    ref: str = typer.Argument(..., help="Task name or id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """🗑️ Delete a scheduled task"""
    if not yes and not typer.confirm(f"Delete scheduled task {ref}?"):
        print_warning("Aborted")
        raise typer.Exit()

    try:
        with HubJobsClient(config.get("api.base_url")) as client:
            client.delete_scheduled_job(ref)
            print_success(f"Scheduled task {ref} deleted")
    except HubJobsError as e:
        print_error(f"Failed to delete scheduled task: {e}")
        raise typer.Exit(1) from None


@app.command("trigger")
def trigger_task(
    ref: str = typer.Argument(..., help="Task name or id"),
):
    """▶️ Run a task now"""
    try:
        with HubJobsClient(config.get("api.base_url")) as client:
            outcome = client.trigger_scheduled_job(ref)
            if outcome.get("success"):
                print_success(f"{ref}: {outcome.get('message')}")
            else:
                print_error(f"{ref}: {outcome.get('message')}")
                raise typer.Exit(1)
    except HubJobsError as e:
        print_error(f"Failed to trigger scheduled task: {e}")
        raise typer.Exit(1) from None


@app.command("pause")
def pause_task(
    ref: str = typer.Argument(..., help="Task name or id"),
):
    """⏸️ Pause a task"""
    try:
        with HubJobsClient(config.get("api.base_url")) as client:
            client.pause_scheduled_job(ref)
            print_success(f"Scheduled task {ref} paused")
    except HubJobsError as e:
        print_error(f"Failed to pause scheduled task: {e}")
        raise typer.Exit(1) from None


@app.command("resume")
def resume_task(
    ref: str = typer.Argument(..., help="Task name or id"),
):
    """⏯️ Resume a paused task"""
    try:
        with HubJobsClient(config.get("api.base_url")) as client:
            status = client.resume_scheduled_job(ref)
            print_success(f"Scheduled task {ref} resumed, next run {status.get('next_run_at')}")
    except HubJobsError as e:
        print_error(f"Failed to resume scheduled task: {e}")
        raise typer.Exit(1) from None
