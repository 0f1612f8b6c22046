"""Daemon infrastructure for loopback-mcp.

This package provides:
- The serialized lifecycle manager and its observable states
- Graceful shutdown handling (signals, two-phase server stop)
- Health checking
- Path management and logging setup
"""

from .graceful_shutdown import ShutdownHandler, StopTimeout, graceful_stop
from .health import check_health
from .lifecycle import (
    LifecycleClosedError,
    LifecycleError,
    LifecycleManager,
    ServerFactory,
    ServerHandle,
)
from .logging_setup import setup_logging
from .paths import APP_NAME, get_config_dir, get_config_file_path, get_logs_dir
from .server_state import (
    IDLE,
    RUNNING,
    STARTING,
    STOPPED,
    STOPPING,
    ServerState,
    StateKind,
    failed,
)

__all__ = [
    # Lifecycle
    'LifecycleClosedError',
    'LifecycleError',
    'LifecycleManager',
    'ServerFactory',
    'ServerHandle',
    # States
    'IDLE',
    'RUNNING',
    'STARTING',
    'STOPPED',
    'STOPPING',
    'ServerState',
    'StateKind',
    'failed',
    # Shutdown
    'ShutdownHandler',
    'StopTimeout',
    'graceful_stop',
    # Health
    'check_health',
    # Logging
    'setup_logging',
    # Paths
    'APP_NAME',
    'get_config_dir',
    'get_config_file_path',
    'get_logs_dir',
]
