"""Header classification for loopback clients.

Decides whether Origin, Referer, Host and User-Agent values are consistent
with a trusted local client. Everything here is string/URL parsing: no
state, no I/O, and no function raises. Parsing produces an explicit
``ParsedHost`` or ``ParseError`` value and every validator treats a
``ParseError`` as invalid.
"""

import re
from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import urlsplit

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1"})
URL_SCHEMES = frozenset({"http", "https"})

# Substrings of browser-engine User-Agent tokens. Matching is a heuristic:
# non-browser clients can send these and browsers can strip them, so this
# only backs up the Origin/Host/Referer checks.
BROWSER_UA_TOKENS = (
    "mozilla/",
    "chrome/",
    "safari/",
    "webkit/",
    "gecko/",
    "firefox/",
    "edge/",
    "opera/",
    "browser",
)

_PORT_RE = re.compile(r"[+-]?\d+")


@dataclass(frozen=True)
class ParsedHost:
    """Case-folded hostname with its port, if the value carried one."""

    hostname: str
    port: Optional[int] = None


@dataclass(frozen=True)
class ParseError:
    """A header value that could not be parsed."""

    value: str
    message: str


ParseResult = Union[ParsedHost, ParseError]


def parse_url_host(value: str) -> ParseResult:
    """Extract the host of an absolute URL such as an Origin or Referer.

    Args:
        value: Raw header value

    Returns:
        ParsedHost on success, ParseError when the value has no http(s)
        scheme, no host, or a malformed authority.
    """
    if not value or any(ch.isspace() for ch in value):
        return ParseError(value, "not a URL")
    try:
        parts = urlsplit(value)
        hostname = parts.hostname
        port = parts.port
    except ValueError as e:
        return ParseError(value, str(e))
    if not parts.scheme:
        return ParseError(value, "missing scheme")
    if parts.scheme not in URL_SCHEMES:
        return ParseError(value, f"unsupported scheme {parts.scheme!r}")
    if not hostname:
        return ParseError(value, "missing host")
    return ParsedHost(hostname.lower(), port)


def parse_host_header(value: str) -> ParseResult:
    """Split a Host header into hostname and port at its first ':'.

    The port is the text up to the next ':', so ``localhost:9999:x`` has
    port 9999. A port segment that is not an integer is dropped rather than
    reported, so ``localhost:abc`` parses to ``ParsedHost("localhost", None)``.
    """
    if not value:
        return ParseError(value, "empty host")
    hostname, sep, rest = value.partition(":")
    port_segment = rest.split(":", 1)[0]
    port = None
    if sep and _PORT_RE.fullmatch(port_segment):
        port = int(port_segment)
    return ParsedHost(hostname.lower(), port)


def _is_loopback(result: ParseResult) -> bool:
    return isinstance(result, ParsedHost) and result.hostname in LOOPBACK_HOSTS


def is_valid_origin(origin: str) -> bool:
    """True iff the Origin URL's host is localhost or 127.0.0.1."""
    return _is_loopback(parse_url_host(origin))


def is_valid_referer(referer: str) -> bool:
    """True iff the Referer URL's host is localhost or 127.0.0.1."""
    return _is_loopback(parse_url_host(referer))


def is_valid_host(host_header: str, expected_port: int) -> bool:
    """Check a Host header against the loopback names and the bound port.

    A missing or non-numeric port segment passes; only an explicit integer
    port different from ``expected_port`` fails.

    Args:
        host_header: Raw Host header value
        expected_port: Port the server is listening on

    Returns:
        True if the header names a loopback host on the expected port
    """
    result = parse_host_header(host_header)
    if not _is_loopback(result):
        return False
    return result.port is None or result.port == expected_port


def is_browser_request(user_agent: Optional[str]) -> bool:
    """Best-effort guess whether a User-Agent belongs to a web browser.

    An absent User-Agent is treated as "not a browser".
    """
    if user_agent is None:
        return False
    lowered = user_agent.lower()
    return any(token in lowered for token in BROWSER_UA_TOKENS)
