"""FastMCP server module for loopback-mcp.

This module provides the embedded MCP server with:
- A fresh FastMCP instance per start, with a health tool and ``GET /health``
- The request gate installed as the outermost ASGI middleware
- CORS preflight handling for browser clients on the loopback port
- ``EmbeddedServer``: a uvicorn server on a background thread with a
  two-phase (grace period, hard deadline) stop

Entry point: python -m loopback_mcp.server
"""

import socket
import sys
import threading
import time
from typing import Any, Callable, Optional

import uvicorn
from fastmcp import FastMCP
from loguru import logger
from starlette.datastructures import Headers, MutableHeaders
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from loopback_mcp import __version__
from loopback_mcp.config import APP_NAME, ServerConfig, get_settings
from loopback_mcp.core.request_gate import (
    CORS_ALLOWED_HEADERS,
    CORS_ALLOWED_METHODS,
    CORS_MAX_AGE,
    BindPolicy,
    RequestGate,
    cors_allowed_origins,
)
from loopback_mcp.daemon.graceful_shutdown import ShutdownHandler, StopTimeout, graceful_stop
from loopback_mcp.daemon.health import check_health
from loopback_mcp.daemon.lifecycle import LifecycleError, LifecycleManager

ToolRegistrar = Callable[[FastMCP, ServerConfig], None]

LISTEN_BACKLOG = 128


class ServerStartError(LifecycleError):
    """Raised when the HTTP engine does not come up after binding."""
    pass


class ServerStopTimeout(LifecycleError):
    """Raised when the HTTP engine is still running after the hard deadline."""
    pass


class RequestGateMiddleware:
    """ASGI middleware applying a RequestGate verdict to every HTTP request.

    Rejected requests get a bare 403 (no body, no explanation). Allowed
    requests continue down the stack and their response carries the
    gate's security headers.
    """

    def __init__(self, app: ASGIApp, gate: RequestGate) -> None:
        self.app = app
        self.gate = gate

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        verdict = self.gate.evaluate(Headers(scope=scope))
        if not verdict.allowed:
            response = Response(status_code=verdict.status_code)
            await response(scope, receive, send)
            return

        async def send_with_security_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in verdict.security_headers.items():
                    headers[name] = value
            await send(message)

        await self.app(scope, receive, send_with_security_headers)


class LoopbackCORSMiddleware(CORSMiddleware):
    """CORSMiddleware whose failed preflights are a bare 403.

    Starlette answers a disallowed origin, method or header with a 400 that
    names the failure; clients of this server get no explanation.
    """

    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers)
        if response.status_code != 200:
            logger.warning(
                "Blocked CORS preflight: origin={!r} method={!r}",
                request_headers.get("origin"),
                request_headers.get("access-control-request-method"),
            )
            return Response(status_code=403)
        return response


def _server_info(config: ServerConfig, started_at: float) -> dict[str, Any]:
    health = check_health(config.host, config.port, probe=False)
    health["version"] = __version__
    health["uptime"] = round(time.monotonic() - started_at, 1)
    return health


def create_mcp_server(
    config: ServerConfig,
    register_tools: Optional[ToolRegistrar] = None,
) -> FastMCP:
    """Build the FastMCP instance served for one lifecycle start.

    Args:
        config: Configuration of the start this server belongs to
        register_tools: Optional hook the embedding host uses to add its tools

    Returns:
        FastMCP instance with the built-in health tool and route registered
    """
    mcp = FastMCP(APP_NAME)
    started_at = time.monotonic()

    @mcp.tool()
    async def health_tool():
        """Check the health status of the server.

        Returns:
            Health check results with status, version, uptime and bind details
        """
        return _server_info(config, started_at)

    @mcp.custom_route("/health", methods=["GET"])
    async def health_http_endpoint(request: Request) -> JSONResponse:
        """HTTP GET /health endpoint for plain HTTP health checks."""
        return JSONResponse(_server_info(config, started_at))

    if register_tools is not None:
        register_tools(mcp, config)

    return mcp


def build_app(
    config: ServerConfig,
    policy: BindPolicy,
    register_tools: Optional[ToolRegistrar] = None,
) -> ASGIApp:
    """Assemble the ASGI application for a bound server.

    The gate is the outermost middleware so a hostile CORS preflight is
    rejected with a 403 before CORSMiddleware answers it.
    """
    mcp = create_mcp_server(config, register_tools)
    gate = RequestGate(policy, config.port)
    middleware = [
        Middleware(RequestGateMiddleware, gate=gate),
        Middleware(
            LoopbackCORSMiddleware,
            allow_origins=cors_allowed_origins(config.port),
            allow_methods=list(CORS_ALLOWED_METHODS),
            allow_headers=list(CORS_ALLOWED_HEADERS),
            allow_credentials=False,
            max_age=CORS_MAX_AGE,
        ),
    ]
    return mcp.http_app(transport=config.transport, middleware=middleware)


def _bind_socket(address: str, port: int) -> socket.socket:
    """Bind a listening TCP socket, raising OSError if the port is taken.

    Binding before uvicorn starts turns EADDRINUSE into an exception the
    lifecycle can report, instead of uvicorn's sys.exit on its own thread.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        if sys.platform != "win32":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((address, port))
        sock.listen(LISTEN_BACKLOG)
    except OSError:
        sock.close()
        raise
    return sock


class EmbeddedServer:
    """A uvicorn server running the MCP app on a background thread.

    Instances are single-use: start once, stop once. The lifecycle manager
    creates a new one for every start.

    Args:
        config: Host/port/transport to serve
        policy: Bind policy derived from ``config.host``
        register_tools: Optional hook for host-provided MCP tools
        startup_timeout: Seconds to wait for uvicorn to report started
    """

    def __init__(
        self,
        config: ServerConfig,
        policy: BindPolicy,
        *,
        register_tools: Optional[ToolRegistrar] = None,
        startup_timeout: float = 5.0,
    ):
        self.config = config
        self.policy = policy
        self.startup_timeout = startup_timeout
        self.app = build_app(config, policy, register_tools)
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None
        self._socket: Optional[socket.socket] = None
        self._error: Optional[BaseException] = None

    @property
    def started(self) -> bool:
        return self._server is not None and self._server.started

    def start(self) -> None:
        """Bind and serve; returns once uvicorn reports it is accepting.

        Raises:
            OSError: If the address cannot be bound
            ServerStartError: If the server exits or stalls during startup
        """
        if self._thread is not None:
            raise RuntimeError("EmbeddedServer instances cannot be restarted")

        self._socket = _bind_socket(self.policy.bind_address, self.config.port)
        uv_config = uvicorn.Config(
            self.app,
            host=self.policy.bind_address,
            port=self.config.port,
            log_config=None,
            log_level="warning",
            access_log=False,
            ws="none",
        )
        self._server = uvicorn.Server(uv_config)
        self._thread = threading.Thread(
            target=self._serve,
            name=f"mcp-http-{self.config.port}",
            daemon=True,
        )
        self._thread.start()

        deadline = time.monotonic() + self.startup_timeout
        while not self.started:
            if not self._thread.is_alive():
                self._close_socket()
                raise ServerStartError(
                    f"MCP server exited during startup on {self.policy.bind_address}:{self.config.port}"
                ) from self._error
            if time.monotonic() >= deadline:
                self.force_stop()
                self.wait_stopped(1.0)
                self._close_socket()
                raise ServerStartError(
                    f"MCP server did not start within {self.startup_timeout}s"
                )
            time.sleep(0.01)

    def _serve(self) -> None:
        try:
            self._server.run(sockets=[self._socket])
        except (Exception, SystemExit) as e:
            # uvicorn reports startup failures with sys.exit(1)
            self._error = e
            logger.error("MCP server thread exited with error: {}", e)

    def request_stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True

    def force_stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
            self._server.force_exit = True

    def wait_stopped(self, timeout: float) -> bool:
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def stop(self, grace_period: float = 1.0, hard_deadline: float = 5.0) -> None:
        """Drain for ``grace_period``, then force; fail after ``hard_deadline``.

        Raises:
            ServerStopTimeout: If the server thread is still alive at the deadline
        """
        try:
            if not graceful_stop(self, grace_period, hard_deadline):
                logger.warning("MCP server on port {} was force-stopped", self.config.port)
        except StopTimeout as e:
            raise ServerStopTimeout(str(e)) from e
        finally:
            self._close_socket()

    def _close_socket(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None


# =============================================================================
# Main entry point
# =============================================================================

def run_foreground(
    config: ServerConfig,
    manager: LifecycleManager,
    handler: Optional[ShutdownHandler] = None,
) -> int:
    """Start ``config`` through ``manager`` and block until a shutdown signal.

    Returns:
        Process exit code: 0 after a clean run, 1 if the start failed
    """
    handler = handler or ShutdownHandler()
    handler.register()

    outcome = manager.start(config).result()
    if outcome.error is not None:
        logger.error("MCP server failed to start: {}", outcome.error)
        manager.shutdown()
        return 1

    logger.info("Serving MCP on {}:{} ({} transport)", config.host, config.port, config.transport)
    handler.wait_for_shutdown(timeout=None)
    manager.shutdown()
    return 0


def main():
    """Entry point for ``python -m loopback_mcp.server``."""
    from loopback_mcp.daemon.logging_setup import setup_logging

    settings = get_settings()
    setup_logging(
        log_level=settings.logging.log_level,
        console=settings.logging.console,
        file=settings.logging.file,
        log_dir=settings.logging.log_dir,
    )
    manager = LifecycleManager.from_config(settings.lifecycle)
    sys.exit(run_foreground(settings.server, manager))


if __name__ == "__main__":
    main()
