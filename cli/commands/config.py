"""Config Commands - where the CLI finds the admin API and how it displays results"""

import typer
from rich.console import Console
from rich.prompt import Confirm

from ..utils.config_manager import coerce_value, config
from ..utils.formatting import print_error, print_info, print_success

console = Console()
app = typer.Typer(name="config", help="CLI configuration management")


def _validate(key: str, value) -> str | None:
    if key == "api.base_url" and not str(value).startswith(("http://", "https://")):
        return "API base URL must start with http:// or https://"
    if key in ("api.timeout", "display.jobs_per_page") and (
        not isinstance(value, int) or isinstance(value, bool) or value <= 0
    ):
        return f"{key} must be a positive integer"
    if key == "display.queues" and not isinstance(value, (list, str)):
        return "display.queues takes a comma-separated list of queue names"
    return None


@app.command("set")
def set_config(
    key: str = typer.Argument(..., help="Dotted key, e.g. api.base_url or display.queues"),
    value: str = typer.Argument(..., help="Value; commas make a list"),
):
    """⚙️ Set a configuration value"""
    parsed = coerce_value(value)
    if key == "display.queues" and isinstance(parsed, str):
        parsed = [parsed]

    if error := _validate(key, parsed):
        print_error(error)
        raise typer.Exit(1)

    try:
        config.set(key, parsed)
    except OSError as e:
        print_error(f"Failed to write {config.config_file}: {e}")
        raise typer.Exit(1) from None

    print_success(f"Set {key} = {parsed}")
    if key == "api.base_url":
        print_info("Check the connection with: hubjobs status")


@app.command("get")
def get_config(key: str = typer.Argument(..., help="Dotted key, e.g. api.timeout")):
    """📋 Print one configuration value"""
    value = config.get(key)
    if value is None:
        print_error(f"Key '{key}' is not set. Run 'hubjobs config show' to list keys.")
        raise typer.Exit(1)
    console.print(f"[cyan]{key}[/cyan] = [yellow]{value}[/yellow]")


@app.command("show")
def show_all_config():
    """📊 Print the effective configuration"""
    console.print(f"[dim]# {config.config_file}[/dim]")
    config.show_all()


@app.command("reset")
def reset_config(yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")):
    """🔄 Restore the default configuration"""
    if not yes and not Confirm.ask("Reset the CLI configuration to defaults?"):
        console.print("Aborted.")
        return

    try:
        config.reset()
    except OSError as e:
        print_error(f"Failed to reset configuration: {e}")
        raise typer.Exit(1) from None
