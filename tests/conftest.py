"""Shared pytest fixtures."""

import os

import pytest

import loopback_mcp.config as config_module


@pytest.fixture(autouse=True)
def reset_settings_cache(monkeypatch):
    """Keep cached settings and LOOPBACK_MCP_ env vars from leaking between tests."""
    for name in list(os.environ):
        if name.startswith("LOOPBACK_MCP_"):
            monkeypatch.delenv(name)
    monkeypatch.setattr(config_module, "_settings_cache", None)
    monkeypatch.setattr(config_module, "_json_config_file", None)
