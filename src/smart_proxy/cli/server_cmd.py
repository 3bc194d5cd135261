"""Server management commands."""

from pathlib import Path

import httpx
from rich.console import Console
from rich.table import Table

from smart_proxy.config.loader import load_config
from smart_proxy.routing.policy import RoutingPolicy

console = Console()


def start_command(config_path: str | None = None) -> None:
    """Run the gateway in the foreground.

    Args:
        config_path: Optional path to config file
    """
    import uvicorn

    from smart_proxy.logs import configure_logging
    from smart_proxy.server.app import create_app

    path = Path(config_path) if config_path else None
    config = load_config(path)
    configure_logging(config.logging)

    app = create_app(config)

    console.print(
        f"[green]Starting smart-proxy on {config.server.host}:{config.server.port}[/green]"
    )
    console.print(f"Local model:  {config.ollama.model} ({config.ollama.host})")
    console.print(f"Remote model: {config.remote.default_model} ({config.remote.base_url})")
    console.print("\nPress Ctrl+C to stop")

    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
    )


def status_command(config_path: str | None = None) -> bool:
    """Check whether a gateway answers on the configured address.

    Returns:
        True if the health endpoint responded
    """
    config = load_config(Path(config_path) if config_path else None)
    host = "127.0.0.1" if config.server.host == "0.0.0.0" else config.server.host
    url = f"http://{host}:{config.server.port}"

    try:
        resp = httpx.get(f"{url}/health", timeout=3.0)
        resp.raise_for_status()
    except httpx.HTTPError:
        console.print("[yellow]smart-proxy is not running.[/yellow]")
        console.print(f"  URL: {url}")
        console.print("Start with: [bold]smart-proxy start[/bold]")
        return False

    console.print("[green]smart-proxy is running[/green]")
    console.print(f"  URL:    {url}")
    console.print(f"  Status: {resp.json().get('status', 'unknown')}")
    return True


def route_command(
    prompt: str,
    privacy: str | None = None,
    cost: str | None = None,
    research: bool = False,
    config_path: str | None = None,
) -> None:
    """Print the routing decision for a prompt without calling any backend."""
    config = load_config(Path(config_path) if config_path else None)
    policy = RoutingPolicy.from_config(config)
    decision = policy.decide(
        prompt,
        research_requested=research,
        privacy_level=privacy,
        max_cost_tier=cost,
    )

    table = Table(title="Routing decision")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in decision.to_dict().items():
        table.add_row(key, "unbounded" if value is None else str(value))
    console.print(table)
