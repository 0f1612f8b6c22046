"""Health reporting for a configured loopback MCP endpoint.

Shared by the ``status`` CLI command (which probes the port from outside)
and by the server's own ``/health`` route and ``health_tool`` (which skip
the probe, since answering proves the port is up).
"""

import socket
import sys
import time
from typing import Any

from ..core.request_gate import BindPolicy

MIN_PYTHON = (3, 10)

_IMPORTED_AT = time.time()


def _is_port_listening(host: str, port: int, timeout: float = 2.0) -> bool:
    """Whether a TCP connect to ``host:port`` succeeds within ``timeout``."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def _check_python_version() -> dict[str, Any]:
    running = ".".join(str(part) for part in sys.version_info[:3])
    if sys.version_info >= MIN_PYTHON:
        return {'ok': True, 'version': running}
    wanted = ".".join(str(part) for part in MIN_PYTHON)
    return {'ok': False, 'version': running, 'message': f"Python >= {wanted} required, found {running}"}


def _get_uptime_seconds() -> float:
    return time.time() - _IMPORTED_AT


def check_health(host: str, port: int, probe: bool = True) -> dict[str, Any]:
    """Report on the server configured for ``host:port``.

    ``status`` is ``unhealthy`` when the probe finds nothing listening,
    ``degraded`` when the Python version is too old or the host turns the
    request gate off, and ``healthy`` otherwise.

    Args:
        host: Configured host, as passed to the lifecycle
        port: Configured port
        probe: Try to connect to the port. An endpoint bound to every
            interface is probed over 127.0.0.1.

    Returns:
        Dict with ``status``, ``host``, ``port``, ``external_access``,
        ``port_listening`` (None when not probed), ``python``,
        ``uptime_seconds`` and a human-readable ``message``
    """
    policy = BindPolicy.from_host(host)
    python = _check_python_version()

    listening = None
    if probe:
        listening = _is_port_listening('127.0.0.1' if policy.allow_external_access else host, port)

    if listening is False:
        status = 'unhealthy'
        message = f'Port {port} is not listening on {host} - server may have failed to start'
    elif not python['ok']:
        status, message = 'degraded', python['message']
    elif policy.allow_external_access:
        status = 'degraded'
        message = f'Server is reachable beyond loopback via {policy.bind_address}'
    else:
        status, message = 'healthy', 'Server is healthy'

    return {
        'status': status,
        'host': host,
        'port': port,
        'external_access': policy.allow_external_access,
        'port_listening': listening,
        'python': python,
        'uptime_seconds': round(_get_uptime_seconds(), 1),
        'message': message,
    }
