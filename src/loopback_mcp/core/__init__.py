"""Request admission: header validators and the per-request gate."""

from .origin_validator import (
    ParsedHost,
    ParseError,
    is_browser_request,
    is_valid_host,
    is_valid_origin,
    is_valid_referer,
    parse_host_header,
    parse_url_host,
)
from .request_gate import (
    SECURITY_HEADERS,
    Allow,
    BindPolicy,
    Reject,
    RequestGate,
    RequestVerdict,
    cors_allowed_origins,
)

__all__ = [
    "Allow",
    "BindPolicy",
    "ParsedHost",
    "ParseError",
    "Reject",
    "RequestGate",
    "RequestVerdict",
    "SECURITY_HEADERS",
    "cors_allowed_origins",
    "is_browser_request",
    "is_valid_host",
    "is_valid_origin",
    "is_valid_referer",
    "parse_host_header",
    "parse_url_host",
]
