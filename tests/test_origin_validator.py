"""Tests for Origin/Referer/Host/User-Agent classification."""

import pytest

from loopback_mcp.core.origin_validator import (
    ParsedHost,
    ParseError,
    is_browser_request,
    is_valid_host,
    is_valid_origin,
    is_valid_referer,
    parse_host_header,
    parse_url_host,
)


class TestParseUrlHost:
    """Test URL parsing into explicit result values."""

    def test_parses_host_and_port(self):
        """Scheme, host and port are extracted and the host is case-folded."""
        assert parse_url_host("http://LocalHost:8181") == ParsedHost("localhost", 8181)

    def test_parses_host_without_port(self):
        """A URL without a port yields port None."""
        assert parse_url_host("https://127.0.0.1/path?q=1") == ParsedHost("127.0.0.1", None)

    @pytest.mark.parametrize("value", [
        "not a url",
        "",
        "null",
        "localhost:8181",
        "http://",
        "http://localhost:notaport",
        "http://[::1",
        "foo://localhost",
        "file://localhost/etc/hosts",
    ])
    def test_malformed_values_are_parse_errors(self, value):
        """Malformed values produce ParseError instead of raising."""
        assert isinstance(parse_url_host(value), ParseError)


class TestParseHostHeader:
    """Test Host header splitting."""

    def test_splits_on_first_colon(self):
        """Hostname and integer port are separated."""
        assert parse_host_header("127.0.0.1:8181") == ParsedHost("127.0.0.1", 8181)

    def test_unparseable_port_is_dropped(self):
        """A non-integer port segment leaves port as None."""
        assert parse_host_header("localhost:abc") == ParsedHost("localhost", None)

    def test_port_ends_at_next_colon(self):
        """Only the text between the first and second ':' is the port."""
        assert parse_host_header("localhost:8181:x") == ParsedHost("localhost", 8181)

    def test_empty_header_is_parse_error(self):
        """An empty Host header cannot be parsed."""
        assert isinstance(parse_host_header(""), ParseError)


class TestIsValidOrigin:
    """Test Origin validation."""

    @pytest.mark.parametrize("origin", [
        "http://localhost",
        "http://localhost:8181",
        "http://127.0.0.1:8181",
        "https://LOCALHOST:443",
        "HTTP://127.0.0.1",
    ])
    def test_loopback_origins_are_valid(self, origin):
        """Origins naming localhost or 127.0.0.1 are accepted in any case."""
        assert is_valid_origin(origin) is True

    @pytest.mark.parametrize("origin", [
        "http://evil.com",
        "http://localhost.evil.com",
        "http://127.0.0.1.nip.io",
        "http://localhost@evil.com",
        "http://0.0.0.0:8181",
        "http://[::1]:8181",
    ])
    def test_other_hosts_are_invalid(self, origin):
        """Any other host is rejected, including lookalikes."""
        assert is_valid_origin(origin) is False

    @pytest.mark.parametrize("origin", ["not a url", "null", "", "://", "localhost", "foo://localhost", "ws://127.0.0.1:8181"])
    def test_malformed_origin_fails_closed(self, origin):
        """Malformed origin strings are invalid, never an exception."""
        assert is_valid_origin(origin) is False


class TestIsValidReferer:
    """Test Referer validation, which follows the Origin rule."""

    def test_loopback_referer_with_path_is_valid(self):
        """A full loopback page URL is accepted."""
        assert is_valid_referer("http://localhost:8181/some/page.html?x=1") is True

    def test_foreign_referer_is_invalid(self):
        """A foreign page URL is rejected."""
        assert is_valid_referer("https://attacker.example/exploit") is False

    def test_malformed_referer_is_invalid(self):
        """A malformed referer fails closed."""
        assert is_valid_referer("not a url") is False


class TestIsValidHost:
    """Test Host header validation against the bound port."""

    def test_matching_port_is_valid(self):
        assert is_valid_host("127.0.0.1:8181", 8181) is True

    def test_mismatched_port_is_invalid(self):
        assert is_valid_host("127.0.0.1:9999", 8181) is False

    def test_foreign_host_is_invalid(self):
        assert is_valid_host("evil.com", 8181) is False

    def test_missing_port_is_valid(self):
        """No port segment passes regardless of the expected port."""
        assert is_valid_host("localhost", 8181) is True

    def test_hostname_is_case_folded(self):
        assert is_valid_host("LocalHost:8181", 8181) is True

    def test_unparseable_port_does_not_invalidate(self):
        """Only an explicit mismatched integer port fails."""
        assert is_valid_host("localhost:abc", 8181) is True

    def test_foreign_host_with_matching_port_is_invalid(self):
        assert is_valid_host("evil.com:8181", 8181) is False

    def test_extra_segment_does_not_hide_port(self):
        assert is_valid_host("localhost:9999:x", 8181) is False

    def test_empty_host_is_invalid(self):
        assert is_valid_host("", 8181) is False


class TestIsBrowserRequest:
    """Test the User-Agent browser heuristic."""

    def test_absent_user_agent_is_not_browser(self):
        assert is_browser_request(None) is False

    @pytest.mark.parametrize("user_agent", [
        "curl/8.0",
        "python-httpx/0.27.0",
        "claude-desktop-mcp",
        "",
    ])
    def test_cli_clients_are_not_browsers(self, user_agent):
        assert is_browser_request(user_agent) is False

    @pytest.mark.parametrize("user_agent", [
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) Gecko/20100101 Firefox/121.0",
        "Opera/9.80 (Windows NT 6.1)",
        "SomeEmbeddedBrowser 1.0",
    ])
    def test_browser_tokens_are_detected(self, user_agent):
        assert is_browser_request(user_agent) is True

    def test_detection_is_case_insensitive(self):
        assert is_browser_request("CHROME/120") is True
