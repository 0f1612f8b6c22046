"""Loopback-guarded MCP server with a serialized start/stop lifecycle."""

__version__ = "1.1.2"
