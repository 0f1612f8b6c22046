"""CLI package for loopback-mcp."""

import typer

from loopback_mcp.cli import config_cmd, server_cmd

app = typer.Typer(
    name="loopback-mcp",
    help="Loopback-guarded MCP server CLI",
    no_args_is_help=True,
)

app.add_typer(config_cmd.app, name="config", help="Configuration management")

app.command(name="serve", help="Run the MCP server in the foreground")(server_cmd.serve)
app.command(name="status", help="Check server health status")(server_cmd.status)


@app.command()
def version():
    """Show version information."""
    from loopback_mcp import __version__
    typer.echo(f"loopback-mcp {__version__}")


if __name__ == "__main__":
    app()
