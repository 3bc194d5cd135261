"""Main CLI application using Typer."""

import sys

import typer
from rich.console import Console

from smart_proxy import __version__

app = typer.Typer(
    name="smart-proxy",
    help="Smart Proxy - privacy-preserving gateway between local and remote LLMs",
    no_args_is_help=True,
)

console = Console()

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to config file (default: ~/.smart_proxy/smart-proxy.yaml)",
)


@app.command()
def version():
    """Show smart-proxy version."""
    console.print(f"smart-proxy version {__version__}")


@app.command()
def start(config_path: str = ConfigOption):
    """Start the gateway API server."""
    from smart_proxy.cli.server_cmd import start_command

    start_command(config_path=config_path)


@app.command()
def status(config_path: str = ConfigOption):
    """Check gateway server status."""
    from smart_proxy.cli.server_cmd import status_command

    if not status_command(config_path=config_path):
        raise typer.Exit(code=1)


@app.command()
def route(
    prompt: str = typer.Argument(..., help="Prompt text to classify"),
    privacy: str = typer.Option(None, "--privacy", help="Privacy level (e.g. high)"),
    cost: str = typer.Option(None, "--cost", help="Maximum cost tier (e.g. low)"),
    research: bool = typer.Option(False, "--research", help="Request live research"),
    config_path: str = ConfigOption,
):
    """Show which backend a prompt would be routed to."""
    from smart_proxy.cli.server_cmd import route_command

    route_command(prompt, privacy=privacy, cost=cost, research=research, config_path=config_path)


def main():
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
