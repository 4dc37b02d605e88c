"""HubJobs CLI - Main Entry Point"""

import typer
from rich.console import Console
from rich.panel import Panel

from .client.base import HubJobsError
from .client.endpoints import HubJobsClient
from .commands import config, maintenance, queue, schedule
from .utils.config_manager import config as config_manager
from .utils.formatting import (
    create_queue_stats_table,
    create_scheduled_tasks_table,
    print_error,
    print_info,
)

console = Console()

app = typer.Typer(
    name="hubjobs",
    help="⚙️ HubJobs - background job queues and scheduled tasks",
    rich_markup_mode="rich",
)

app.add_typer(queue.app, name="queue")
app.add_typer(schedule.app, name="schedule")
app.add_typer(maintenance.app, name="maintenance")
app.add_typer(config.app, name="config")


@app.command()
def status():
    """📊 Check connectivity, queues and scheduled tasks"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with HubJobsClient(base_url) as client:
            health = client.health_check()
            system = client.system_status()
    except HubJobsError as e:
        print_error(f"Failed to connect: {e}")
        console.print(
            Panel(
                f"🚫 [red]Connection Failed[/red]\n\n"
                f"Make sure the HubJobs API is running at:\n"
                f"[blue]{base_url}[/blue]\n\n"
                f"You can update the API URL with:\n"
                f"[cyan]hubjobs config set api.base_url <url>[/cyan]",
                title="Connection Error",
                border_style="red",
            )
        )
        raise typer.Exit(1) from None

    database = "[green]connected[/green]" if health.get("database", {}).get("connected") else "[red]down[/red]"
    console.print(
        Panel(
            f"🚀 [green]Connected Successfully![/green]\n\n"
            f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
            f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
            f"• Database: {database}\n"
            f"• API URL: [blue]{base_url}[/blue]",
            title="System Status",
            border_style="green",
        )
    )
    console.print(create_queue_stats_table(system.get("queues", [])))
    console.print(create_scheduled_tasks_table(system.get("scheduler", [])))


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """🖥️ Run the API server with its queues and scheduler"""
    import uvicorn

    from hubjobs.config.settings import settings

    uvicorn.run(
        "hubjobs.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


@app.command()
def quickstart():
    """🚀 Quick start guide"""
    console.print(
        Panel(
            "⚙️ [bold cyan]HubJobs Quick Start[/bold cyan]\n\n"
            "[bold]1. Start the server[/bold]\n"
            "   [dim]hubjobs serve[/dim]\n\n"
            "[bold]2. Check status[/bold]\n"
            "   [dim]hubjobs status[/dim]\n\n"
            "[bold]3. Inspect failed jobs[/bold]\n"
            "   [dim]hubjobs queue list emailQueue --status failed[/dim]\n\n"
            "[bold]4. Run a scheduled task now[/bold]\n"
            "   [dim]hubjobs schedule trigger cleanupExpiredSessions[/dim]\n\n"
            "[bold yellow]Tip:[/bold yellow] Use [cyan]--help[/cyan] with any command for more options!",
            title="Quick Start Guide",
            border_style="green",
        )
    )


if __name__ == "__main__":
    app()
