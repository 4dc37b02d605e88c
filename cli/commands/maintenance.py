"""Maintenance Commands - File cleanup sweeps"""

import typer
from rich.console import Console
from rich.panel import Panel

from ..client.base import HubJobsError
from ..client.endpoints import HubJobsClient
from ..utils.config_manager import config
from ..utils.formatting import print_error, print_info, print_success, print_warning

console = Console()
app = typer.Typer(name="maintenance", help="File maintenance commands")

CLEANUP_TYPES = ("expired", "temp", "quarantine", "optimize", "all")


@app.command("cleanup")
def cleanup(
    cleanup_type: str = typer.Argument("all", help=f"One of: {', '.join(CLEANUP_TYPES)}"),
):
    """🧹 Run file cleanup sweeps now"""
    if cleanup_type not in CLEANUP_TYPES:
        print_error(f"Unknown cleanup type '{cleanup_type}'")
        raise typer.Exit(1)

    try:
        with HubJobsClient(config.get("api.base_url")) as client:
            print_info(f"Running {cleanup_type} cleanup")
            result = client.run_cleanup(cleanup_type)
    except HubJobsError as e:
        print_error(f"Cleanup failed: {e}")
        raise typer.Exit(1) from None

    for key, count in result.get("results", {}).items():
        console.print(f"• {key}: [cyan]{count}[/cyan]")
    for error in result.get("errors", []):
        print_warning(error)

    if result.get("success"):
        print_success("Cleanup completed")
    else:
        print_error("Cleanup completed with errors")
        raise typer.Exit(1)


@app.command("stats")
def stats():
    """📊 Show what the cleanup sweeps would act on"""
    try:
        with HubJobsClient(config.get("api.base_url")) as client:
            data = client.cleanup_stats()
    except HubJobsError as e:
        print_error(f"Failed to get cleanup stats: {e}")
        raise typer.Exit(1) from None

    megabytes = data.get("totalStorageUsed", 0) / (1024 * 1024)
    console.print(
        Panel(
            f"• Expired files: [yellow]{data.get('expiredFiles', 0)}[/yellow]\n"
            f"• Temp files: [yellow]{data.get('tempFiles', 0)}[/yellow]\n"
            f"• Quarantined files: [red]{data.get('quarantinedFiles', 0)}[/red]\n"
            f"• Duplicate files: [magenta]{data.get('duplicateFiles', 0)}[/magenta]\n"
            f"• Storage used: [cyan]{megabytes:.1f} MB[/cyan]",
            title="Cleanup Stats",
            border_style="blue",
        )
    )
