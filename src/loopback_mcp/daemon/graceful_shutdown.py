"""Process signals and two-phase server stop.

Usage:
    from loopback_mcp.daemon.graceful_shutdown import ShutdownHandler, graceful_stop

    with ShutdownHandler() as handler:
        handler.wait_for_shutdown(timeout=None)

    graceful_stop(server, grace_period=1.0, hard_deadline=5.0)

``graceful_stop`` gives in-flight requests a grace period, then forces the
server closed and reports failure if it is still alive at the hard deadline.
"""

import signal
import threading
from typing import Optional, Protocol

from loguru import logger

# SIGHUP does not exist on Windows
SHUTDOWN_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGTERM", "SIGINT", "SIGHUP") if hasattr(signal, name)
)


class StopTimeout(Exception):
    """Raised when a server is still running after the hard deadline."""
    pass


class Stoppable(Protocol):
    """What ``graceful_stop`` needs from a server."""

    def request_stop(self) -> None: ...

    def force_stop(self) -> None: ...

    def wait_stopped(self, timeout: float) -> bool: ...


class ShutdownHandler:
    """Turns SIGTERM/SIGINT/SIGHUP into an event the main thread can wait on.

    ``trigger()`` does the same thing programmatically, which is also the
    only route when ``register()`` ran off the main thread.

    Args:
        timeout: Wait used by ``wait_for_shutdown()`` when none is given
    """

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._requested = threading.Event()
        self._registered = False

    def register(self) -> None:
        """Install the handler for every shutdown signal. Idempotent."""
        if self._registered:
            return
        try:
            for signum in SHUTDOWN_SIGNALS:
                signal.signal(signum, self._handle_signal)
        except ValueError:
            # signal.signal() only works on the main thread
            logger.debug("Not on the main thread, shutdown signals not captured")
            return
        self._registered = True

    def _handle_signal(self, signum: int, frame) -> None:
        logger.info("Received {}, shutting down", signal.Signals(signum).name)
        self.trigger()

    def trigger(self) -> None:
        """Mark shutdown as requested."""
        self._requested.set()

    def wait_for_shutdown(self, timeout: Optional[float] = -1) -> bool:
        """Block until shutdown is requested.

        Args:
            timeout: Seconds to wait; -1 means ``self.timeout``, None means
                no limit

        Returns:
            Whether shutdown was requested before the wait ran out
        """
        return self._requested.wait(self.timeout if timeout == -1 else timeout)

    def __enter__(self) -> "ShutdownHandler":
        self.register()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        return None


def graceful_stop(
    server: Stoppable,
    grace_period: float = 1.0,
    hard_deadline: float = 5.0,
) -> bool:
    """Stop a server, giving in-flight requests a chance to finish.

    Asks the server to stop and waits ``grace_period``. If it is still
    running, forces it and waits until ``hard_deadline`` (measured from the
    start of the call).

    Args:
        server: Object implementing request_stop/force_stop/wait_stopped
        grace_period: Time to wait for a graceful stop
        hard_deadline: Total time allowed before giving up

    Returns:
        True if stopped gracefully, False if it had to be forced

    Raises:
        StopTimeout: If the server is still running after hard_deadline

    Example:
        >>> graceful_stop(embedded_server, grace_period=1.0, hard_deadline=5.0)
        True
    """
    server.request_stop()
    if server.wait_stopped(grace_period):
        return True

    logger.warning("Graceful stop timed out after {}s, forcing", grace_period)
    server.force_stop()

    if server.wait_stopped(max(hard_deadline - grace_period, 0.0)):
        return False

    raise StopTimeout(f"Server still running {hard_deadline}s after stop was requested")
