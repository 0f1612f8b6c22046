"""Config subcommand group for configuration management."""

import json
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.json import JSON
from rich.panel import Panel

from loopback_mcp.config import Settings, get_settings
from loopback_mcp.daemon.paths import get_config_file_path

app = typer.Typer(help="Configuration management")
console = Console()


def generate_default_config(port: int | None = None) -> dict:
    """Default config document, with a comment key stripped on load."""
    config = {"_comment": "loopback-mcp configuration", **Settings().model_dump(mode="json")}
    if port is not None:
        config["server"]["port"] = port
    return config


@app.command()
def init(
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite existing config"),
    port: int | None = typer.Option(None, "--port", "-p", help="Server port number"),
    config_path: Path | None = typer.Option(None, "--path", help="Where to write the config file"),
):
    """Write a default configuration file."""
    try:
        target = config_path or get_config_file_path()
        if target.exists() and not force:
            console.print(f"[yellow]Config already exists:[/yellow] {target}")
            console.print("[dim]Use --force to overwrite[/dim]")
            raise typer.Exit(code=1)

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(generate_default_config(port), indent=2), encoding="utf-8")
        console.print(f"[green]Configuration initialized:[/green] {target}")

    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"[red]Configuration initialization failed:[/red] {e}")
        raise typer.Exit(code=1)


@app.command()
def show(
    config_path: Path | None = typer.Option(None, "--path", help="Config file to merge (defaults to env + defaults only)"),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON instead of formatted panel"),
):
    """Show the effective configuration."""
    try:
        settings = get_settings(config_path) if config_path else get_settings(_force_reload=True)
        data = settings.model_dump(mode="json")

        if json_output:
            typer.echo(json.dumps(data, indent=2))
        else:
            title = f"Configuration: {config_path}" if config_path else "Configuration (environment + defaults)"
            console.print(Panel(JSON(json.dumps(data, indent=2)), title=title, border_style="cyan"))

    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(code=1)
    except Exception as e:
        console.print(f"[red]Failed to read config:[/red] {e}")
        raise typer.Exit(code=1)


@app.command()
def validate(
    config_path: Path | None = typer.Option(None, "--path", help="Config file to validate"),
):
    """Validate a configuration file."""
    try:
        target = config_path or get_config_file_path()

        if not target.exists():
            console.print(f"[yellow]Config file not found:[/yellow] {target}")
            console.print("[dim]Run 'loopback-mcp config init' to create one[/dim]")
            raise typer.Exit(code=1)

        settings = get_settings(target)

        console.print("[green]Configuration is valid[/green]")
        console.print(f"[dim]Server: {settings.server.host}:{settings.server.port} ({settings.server.transport})[/dim]")

    except typer.Exit:
        raise
    except ValidationError as e:
        console.print("[red]Configuration validation failed:[/red]")
        for error in e.errors():
            loc = " -> ".join(str(x) for x in error["loc"])
            console.print(f"  [yellow]{loc}:[/yellow] {error['msg']}")
        raise typer.Exit(code=1)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON in config file:[/red] {e}")
        raise typer.Exit(code=1)
    except Exception as e:
        console.print(f"[red]Validation failed:[/red] {e}")
        raise typer.Exit(code=1)
