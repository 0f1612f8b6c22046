"""Per-request admission policy for the loopback MCP endpoint.

The gate runs before any protocol handling. Given a request's headers and
the server's bind policy it returns either ``Allow`` (carrying the security
headers to attach to the response) or ``Reject`` (status code and reason).
Verdicts are computed fresh per request; the gate keeps no mutable state and
can be shared by every request-handling thread.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Union

from loguru import logger

from .origin_validator import (
    LOOPBACK_HOSTS,
    is_browser_request,
    is_valid_host,
    is_valid_origin,
    is_valid_referer,
)

WILDCARD_ADDRESS = "0.0.0.0"

SECURITY_HEADERS: Mapping[str, str] = MappingProxyType({
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "same-origin",
    "Content-Security-Policy": "default-src 'none'",
})

# CORS preflight policy for browser clients served from the loopback port
CORS_ALLOWED_METHODS = ("GET", "POST")
CORS_ALLOWED_HEADERS = ("Content-Type", "Accept", "Last-Event-ID")
CORS_MAX_AGE = 3600

REASON_INVALID_ORIGIN = "invalid origin - possible DNS rebinding"
REASON_BROWSER_WITHOUT_ORIGIN = "browser request without Origin header"
REASON_INVALID_HOST = "invalid host - possible DNS rebinding"
REASON_SUSPICIOUS_REFERER = "suspicious referer"
REASON_CROSS_ORIGIN = "origin not allowed by CORS policy"


@dataclass(frozen=True)
class BindPolicy:
    """Where the server listens and whether the gate checks are active."""

    allow_external_access: bool
    bind_address: str

    @classmethod
    def from_host(cls, host: str) -> "BindPolicy":
        """Derive the policy from a configured host.

        ``localhost`` and ``127.0.0.1`` bind to themselves and keep the
        gate on. Any other value binds every interface and turns the
        header checks off.
        """
        allow_external = host not in LOOPBACK_HOSTS
        return cls(
            allow_external_access=allow_external,
            bind_address=WILDCARD_ADDRESS if allow_external else host,
        )


@dataclass(frozen=True)
class Allow:
    """Admit the request; ``security_headers`` go on its response."""

    security_headers: Mapping[str, str] = field(default_factory=lambda: dict(SECURITY_HEADERS))

    @property
    def allowed(self) -> bool:
        return True


@dataclass(frozen=True)
class Reject:
    """Refuse the request before protocol handling.

    ``reason`` is for the log only; the client sees a bare ``status_code``.
    """

    status_code: int
    reason: str

    @property
    def allowed(self) -> bool:
        return False


RequestVerdict = Union[Allow, Reject]


def cors_allowed_origins(port: int) -> list[str]:
    """Origins permitted to issue cross-origin GET/POST to ``port``."""
    return [f"http://{host}:{port}" for host in ("localhost", "127.0.0.1")]


class RequestGate:
    """Admission decision for a single bound server.

    Args:
        policy: Bind policy of the server this gate protects
        expected_port: Port the server listens on; Host headers naming a
            different port are rejected, and an Origin must be one of
            ``cors_allowed_origins(expected_port)``

    Example:
        gate = RequestGate(BindPolicy.from_host("127.0.0.1"), 9876)
        verdict = gate.evaluate({"Origin": "http://evil.com"})
        verdict.status_code  # 403
    """

    def __init__(self, policy: BindPolicy, expected_port: int):
        self.policy = policy
        self.expected_port = expected_port
        self.allowed_origins = frozenset(cors_allowed_origins(expected_port))

    def evaluate(self, headers: Mapping[str, str]) -> RequestVerdict:
        """Decide whether a request may proceed.

        Args:
            headers: Request headers; lookup is case-insensitive

        Returns:
            Allow with the security headers, or Reject(403, reason)
        """
        if self.policy.allow_external_access:
            return Allow()

        lowered = {k.lower(): v for k, v in headers.items()}
        origin = lowered.get("origin")
        host = lowered.get("host")
        referer = lowered.get("referer")
        user_agent = lowered.get("user-agent")

        if origin is not None:
            if not is_valid_origin(origin):
                return self._reject(REASON_INVALID_ORIGIN, "origin", origin)
            if origin.lower().rstrip("/") not in self.allowed_origins:
                return self._reject(REASON_CROSS_ORIGIN, "origin", origin)
        elif is_browser_request(user_agent):
            return self._reject(REASON_BROWSER_WITHOUT_ORIGIN, "user-agent", user_agent)

        if host is not None and not is_valid_host(host, self.expected_port):
            return self._reject(REASON_INVALID_HOST, "host", host)
        if referer is not None and not is_valid_referer(referer):
            return self._reject(REASON_SUSPICIOUS_REFERER, "referer", referer)

        return Allow()

    @staticmethod
    def _reject(reason: str, header: str, value: Optional[str]) -> Reject:
        logger.warning("Blocked request ({}): {}={!r}", reason, header, value)
        return Reject(403, reason)
