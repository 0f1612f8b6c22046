"""Serialized start/stop/shutdown of the embedded MCP server.

The manager owns the single server handle and one strictly serial worker
(a one-thread executor). Every mutation of the handle happens in a task on
that worker, so two servers never bind the same port at once and a stop
never races a start. Callers see a two-step protocol per call:

1. ``Starting`` / ``Stopping`` is reported synchronously, before the call
   returns.
2. Exactly one terminal state (``Running``, ``Stopped`` or ``Failed``) is
   reported later from the worker thread, and is also the result of the
   returned future.

Every transition is additionally published to listeners registered with
``add_listener``, which gives the host application a single event stream.

Usage:
    manager = LifecycleManager()
    manager.start(ServerConfig(host="127.0.0.1", port=9876), on_state=print)
    ...
    manager.shutdown()
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from functools import partial
from typing import Callable, List, Optional, Protocol

from loguru import logger

from ..config import LifecycleConfig, ServerConfig
from ..core.request_gate import BindPolicy
from .server_state import IDLE, RUNNING, STARTING, STOPPED, STOPPING, ServerState, failed

StateCallback = Callable[[ServerState], None]


class LifecycleError(Exception):
    """Base class for lifecycle failures reported through Failed states."""
    pass


class LifecycleClosedError(LifecycleError):
    """Raised for start/stop requests issued after shutdown()."""
    pass


class ServerHandle(Protocol):
    """A bound server the manager can start once and stop once."""

    def start(self) -> None: ...

    def stop(self, grace_period: float, hard_deadline: float) -> None: ...


ServerFactory = Callable[[ServerConfig, BindPolicy], ServerHandle]


def _default_server_factory(
    config: ServerConfig,
    policy: BindPolicy,
    startup_timeout: float = 5.0,
) -> ServerHandle:
    from ..server import EmbeddedServer

    return EmbeddedServer(config, policy, startup_timeout=startup_timeout)


class LifecycleManager:
    """Owns the server handle and serializes every change to it.

    Args:
        server_factory: Builds an unstarted handle for a config and bind
            policy. Defaults to the uvicorn-backed EmbeddedServer.
        grace_period: Seconds a stopping server gets to drain requests
        hard_deadline: Seconds after which a stop is reported as failed
        shutdown_timeout: Seconds shutdown() waits for the worker
    """

    def __init__(
        self,
        server_factory: Optional[ServerFactory] = None,
        *,
        grace_period: float = 1.0,
        hard_deadline: float = 5.0,
        shutdown_timeout: float = 10.0,
    ):
        self._server_factory = server_factory or _default_server_factory
        self.grace_period = grace_period
        self.hard_deadline = hard_deadline
        self.shutdown_timeout = shutdown_timeout

        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="mcp-lifecycle",
            initializer=self._mark_worker_thread,
        )
        self._worker_thread: Optional[threading.Thread] = None
        self._server: Optional[ServerHandle] = None
        self._state: ServerState = IDLE
        self._listeners: List[StateCallback] = []
        self._lock = threading.Lock()
        self._closed = False

    @classmethod
    def from_config(
        cls,
        lifecycle: LifecycleConfig,
        server_factory: Optional[ServerFactory] = None,
    ) -> "LifecycleManager":
        """Build a manager using the timeouts of a LifecycleConfig."""
        if server_factory is None:
            server_factory = partial(_default_server_factory, startup_timeout=lifecycle.startup_timeout)
        return cls(
            server_factory,
            grace_period=lifecycle.grace_period,
            hard_deadline=lifecycle.hard_deadline,
            shutdown_timeout=lifecycle.shutdown_timeout,
        )

    @property
    def state(self) -> ServerState:
        """Most recently reported state."""
        return self._state

    @property
    def is_running(self) -> bool:
        """Whether a server handle is currently held."""
        return self._server is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def add_listener(self, listener: StateCallback) -> None:
        """Subscribe to every state transition, from any call."""
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: StateCallback) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Public lifecycle operations
    # ------------------------------------------------------------------

    def start(self, config: ServerConfig, on_state: Optional[StateCallback] = None) -> "Future[ServerState]":
        """Replace any running server with one bound per ``config``.

        Reports Starting before returning; the returned future resolves to
        Running or Failed once the queued task has run.
        """
        self._emit(STARTING, on_state)
        return self._submit(partial(self._run_start, config, on_state), on_state)

    def stop(self, on_state: Optional[StateCallback] = None) -> "Future[ServerState]":
        """Stop and discard the running server, if any.

        Reports Stopping before returning; the returned future resolves to
        Stopped or Failed once the queued task has run.
        """
        self._emit(STOPPING, on_state)
        return self._submit(partial(self._run_stop, on_state), on_state)

    def shutdown(self) -> None:
        """Tear everything down for process exit.

        Stops the running server through the serial worker, then retires the
        worker for good. Blocks for at most ``shutdown_timeout`` seconds and
        never raises; from a state callback on the worker it does not block.
        Calling it again is a no-op.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            teardown = self._executor.submit(self._run_teardown)
        self._executor.shutdown(wait=False)

        if threading.current_thread() is self._worker_thread:
            # Called from a state callback; teardown runs once the current task returns
            logger.debug("shutdown() called on the lifecycle worker, not waiting for teardown")
            return

        try:
            teardown.result(timeout=self.shutdown_timeout)
        except FuturesTimeoutError:
            logger.warning(
                "Lifecycle worker still busy after {}s, abandoning shutdown wait",
                self.shutdown_timeout,
            )
        except Exception:
            logger.exception("Unexpected error during lifecycle shutdown")

    # ------------------------------------------------------------------
    # Worker-side tasks
    # ------------------------------------------------------------------

    def _mark_worker_thread(self) -> None:
        self._worker_thread = threading.current_thread()

    def _submit(self, task: Callable[[], ServerState], on_state: Optional[StateCallback]) -> "Future[ServerState]":
        with self._lock:
            if not self._closed:
                return self._executor.submit(task)

        error = LifecycleClosedError("lifecycle manager has been shut down")
        logger.warning("Rejected lifecycle request: {}", error)
        future: "Future[ServerState]" = Future()
        future.set_result(self._emit(failed(error), on_state))
        return future

    def _run_start(self, config: ServerConfig, on_state: Optional[StateCallback]) -> ServerState:
        try:
            self._release_handle()

            policy = BindPolicy.from_host(config.host)
            if policy.allow_external_access:
                logger.warning(
                    "Security: host {} binds {}; origin/host checks are disabled",
                    config.host,
                    policy.bind_address,
                )

            server = self._server_factory(config, policy)
            server.start()
            self._server = server
        except Exception as e:
            logger.exception("Failed to start MCP server on {}:{}", config.host, config.port)
            return self._emit(failed(e), on_state)

        logger.info("Started MCP server on {}:{}", config.host, config.port)
        return self._emit(RUNNING, on_state)

    def _run_stop(self, on_state: Optional[StateCallback]) -> ServerState:
        try:
            self._release_handle()
        except Exception as e:
            logger.exception("Failed to stop MCP server")
            return self._emit(failed(e), on_state)

        logger.info("Stopped MCP server")
        return self._emit(STOPPED, on_state)

    def _run_teardown(self) -> None:
        try:
            if self._server is not None:
                self._release_handle()
                self._emit(STOPPED, None)
        except Exception:
            logger.exception("Error stopping MCP server during shutdown")

    def _release_handle(self) -> None:
        """Stop the current handle; the reference is dropped even if stop fails."""
        server, self._server = self._server, None
        if server is not None:
            server.stop(self.grace_period, self.hard_deadline)

    def _emit(self, state: ServerState, on_state: Optional[StateCallback]) -> ServerState:
        with self._lock:
            self._state = state
            listeners = list(self._listeners)

        for callback in ([on_state] if on_state is not None else []) + listeners:
            try:
                callback(state)
            except Exception:
                logger.exception("State callback raised while reporting {}", state)
        return state
