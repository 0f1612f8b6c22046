"""Per-platform locations of the config file and log directory.

Nothing here creates directories; writers call ``mkdir(parents=True,
exist_ok=True)`` themselves.
"""

import os
import sys
from pathlib import Path

from ..config import APP_NAME

__all__ = [
    'APP_NAME',
    'get_config_dir',
    'get_logs_dir',
    'get_config_file_path',
]

CONFIG_FILE_NAME = 'config.json'


def _windows_app_dir() -> Path:
    base = os.environ.get('LOCALAPPDATA')
    root = Path(base) if base else Path.home() / 'AppData' / 'Local'
    return root / APP_NAME


def _xdg_dir(env_var: str, fallback: str) -> Path:
    """``$env_var/APP_NAME``, or ``~/fallback/APP_NAME`` when unset or empty."""
    base = os.environ.get(env_var)
    root = Path(base) if base else Path.home() / fallback
    return root / APP_NAME


def get_config_dir() -> Path:
    """Directory holding config.json.

    - Windows: %LOCALAPPDATA%\\loopback-mcp\\config
    - macOS: ~/Library/Preferences/loopback-mcp
    - Linux: $XDG_CONFIG_HOME/loopback-mcp (default ~/.config)
    """
    if sys.platform == 'win32':
        return _windows_app_dir() / 'config'
    if sys.platform == 'darwin':
        return Path.home() / 'Library' / 'Preferences' / APP_NAME
    return _xdg_dir('XDG_CONFIG_HOME', '.config')


def get_logs_dir() -> Path:
    """Directory for the rotating server log.

    - Windows: %LOCALAPPDATA%\\loopback-mcp\\logs
    - macOS: ~/Library/Logs/loopback-mcp
    - Linux: $XDG_STATE_HOME/loopback-mcp/logs (default ~/.local/state)
    """
    if sys.platform == 'win32':
        return _windows_app_dir() / 'logs'
    if sys.platform == 'darwin':
        return Path.home() / 'Library' / 'Logs' / APP_NAME
    return _xdg_dir('XDG_STATE_HOME', '.local/state') / 'logs'


def get_config_file_path() -> Path:
    return get_config_dir() / CONFIG_FILE_NAME
