"""Observable lifecycle states of the embedded server."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class StateKind(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


TERMINAL_KINDS = frozenset({StateKind.RUNNING, StateKind.STOPPED, StateKind.FAILED})


@dataclass(frozen=True)
class ServerState:
    """One lifecycle state; ``error`` is set only for FAILED."""

    kind: StateKind
    error: Optional[BaseException] = None

    @property
    def is_terminal(self) -> bool:
        """Whether this state completes a start or stop call."""
        return self.kind in TERMINAL_KINDS

    def __str__(self) -> str:
        if self.error is not None:
            return f"{self.kind.value} ({type(self.error).__name__}: {self.error})"
        return self.kind.value


IDLE = ServerState(StateKind.IDLE)
STARTING = ServerState(StateKind.STARTING)
RUNNING = ServerState(StateKind.RUNNING)
STOPPING = ServerState(StateKind.STOPPING)
STOPPED = ServerState(StateKind.STOPPED)


def failed(error: BaseException) -> ServerState:
    """Build a FAILED state carrying the error that caused it."""
    return ServerState(StateKind.FAILED, error)
