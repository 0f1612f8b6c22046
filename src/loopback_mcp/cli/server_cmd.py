"""Server commands: run in the foreground and check health."""

import json
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel

from loopback_mcp.config import ServerConfig, Settings, get_settings
from loopback_mcp.daemon.health import check_health
from loopback_mcp.daemon.lifecycle import LifecycleManager
from loopback_mcp.daemon.logging_setup import setup_logging

console = Console()


def _resolve_server_config(
    config_path: Path | None,
    host: str | None,
    port: int | None,
    transport: str | None,
) -> tuple[ServerConfig, Settings]:
    settings = get_settings(config_path) if config_path else get_settings()
    overrides = {
        key: value
        for key, value in {"host": host, "port": port, "transport": transport}.items()
        if value is not None
    }
    server_config = ServerConfig(**{**settings.server.model_dump(), **overrides})
    return server_config, settings


def serve(
    host: str | None = typer.Option(None, "--host", help="Host to bind (localhost/127.0.0.1 keep the request gate on)"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to listen on"),
    transport: str | None = typer.Option(None, "--transport", "-t", help="MCP transport: sse or http"),
    config_path: Path | None = typer.Option(None, "--config", "-c", help="JSON config file"),
    log_level: str | None = typer.Option(None, "--log-level", help="Override the configured log level"),
):
    """Run the MCP server in the foreground until interrupted."""
    from loopback_mcp.server import run_foreground

    try:
        server_config, settings = _resolve_server_config(config_path, host, port, transport)
    except ValidationError as e:
        console.print("[red]Invalid server configuration:[/red]")
        for error in e.errors():
            loc = " -> ".join(str(x) for x in error["loc"])
            console.print(f"  [yellow]{loc}:[/yellow] {error['msg']}")
        raise typer.Exit(code=1)
    except Exception as e:
        console.print(f"[red]Failed to load configuration:[/red] {e}")
        raise typer.Exit(code=1)

    setup_logging(
        log_level=log_level or settings.logging.log_level,
        console=settings.logging.console,
        file=settings.logging.file,
        log_dir=settings.logging.log_dir,
    )

    manager = LifecycleManager.from_config(settings.lifecycle)
    exit_code = run_foreground(server_config, manager)
    if exit_code != 0:
        console.print(f"[red]Server failed to start on {server_config.host}:{server_config.port}[/red]")
        raise typer.Exit(code=exit_code)


def status(
    host: str | None = typer.Option(None, "--host", help="Host to check (defaults to configured host)"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to check (defaults to configured port)"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Check server health status."""
    try:
        settings = get_settings()
        health = check_health(host or settings.server.host, port or settings.server.port)

        if json_output:
            typer.echo(json.dumps(health, indent=2))
            return

        if health["status"] == "healthy":
            status_color = "green"
        elif health["status"] == "degraded":
            status_color = "yellow"
        else:
            status_color = "red"

        lines = [
            f"[{status_color}]Status: {health['status'].upper()}[/{status_color}]",
            f"Message: {health.get('message', 'N/A')}",
            "",
            f"Host: {health['host']}",
            f"Port: {health['port']}",
            f"External access: {health['external_access']}",
            f"Port listening: {health.get('port_listening', 'N/A')}",
        ]

        panel = Panel("\n".join(lines), title="Server Health", border_style=status_color)
        console.print(panel)

        if health["status"] == "unhealthy":
            raise typer.Exit(code=1)

    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"[red]Status check failed:[/red] {e}")
        raise typer.Exit(code=1)
