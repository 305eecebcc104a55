"""
Unit tests for HTTP request head parsing.
"""

import pytest

from helloserver.http.request import (
    HTTPRequest,
    RequestParser,
    HTTPParseError,
    parse_request,
)
from helloserver.http.status_codes import HTTPStatus


class TestRequestParser:
    """Tests for RequestParser class."""

    def test_parse_simple_get(self, sample_get_request: bytes):
        """Test parsing a simple GET request head."""
        parser = RequestParser()
        request = parser.parse(sample_get_request, ("127.0.0.1", 12345))

        assert request.method == "GET"
        assert request.target == "/api/users?page=1&limit=10"
        assert request.version == "HTTP/1.1"
        assert request.client_address == ("127.0.0.1", 12345)

    def test_header_names_are_lowercased(self, sample_get_request: bytes):
        request = parse_request(sample_get_request)

        assert request.headers["host"] == "127.0.0.1:3000"
        assert request.headers["user-agent"] == "pytest"
        assert request.headers["accept"] == "application/json"

    def test_parse_post_head(self, sample_post_request: bytes):
        request = parse_request(sample_post_request)

        assert request.method == "POST"
        assert request.target == "/api/train"
        assert request.content_length == 17
        assert request.is_keep_alive is False

    @pytest.mark.parametrize("method", ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS", "BREW", "M-SEARCH"])
    def test_any_token_is_a_method(self, method: str):
        """Unknown methods are still requests."""
        request = parse_request(f"{method} / HTTP/1.1\r\nHost: x".encode())
        assert request.method == method

    def test_no_headers(self):
        request = parse_request(b"GET / HTTP/1.0")
        assert request.headers == {}
        assert request.version == "HTTP/1.0"

    def test_leading_blank_lines_ignored(self):
        request = parse_request(b"\r\n\r\nGET / HTTP/1.1\r\nHost: x")
        assert request.method == "GET"

    def test_bare_lf_line_endings(self):
        request = parse_request(b"GET /x HTTP/1.1\nHost: x\r\nAccept: */*")

        assert request.target == "/x"
        assert request.headers == {"host": "x", "accept": "*/*"}

    def test_duplicate_headers_are_joined(self):
        raw = b"GET / HTTP/1.1\r\nAccept: text/html\r\nAccept: text/plain"
        request = parse_request(raw)
        assert request.headers["accept"] == "text/html, text/plain"

    def test_header_whitespace_is_trimmed(self):
        request = parse_request(b"GET / HTTP/1.1\r\nX-Custom:   value  ")
        assert request.headers["x-custom"] == "value"

    def test_non_ascii_header_value(self):
        request = parse_request("GET / HTTP/1.1\r\nX-Name: caf\xe9".encode("latin-1"))
        assert request.headers["x-name"] == "caf\xe9"

    @pytest.mark.parametrize("raw", [
        b"GET\r\nHost: test",
        b"GET / HTTP/2.0",
        b"GET / HTTP/1.1 extra",
        b"GET  / HTTP/1.1",
        b"\x16\x03\x01\x02\x00\x01\x00\x01\xfc\x03\x03",
        b"",
    ])
    def test_invalid_request_line(self, raw: bytes):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(raw)

        assert exc_info.value.status_code == HTTPStatus.BAD_REQUEST

    def test_invalid_header_line(self):
        with pytest.raises(HTTPParseError):
            parse_request(b"GET / HTTP/1.1\r\nno colon here")

    def test_obsolete_line_folding_rejected(self):
        with pytest.raises(HTTPParseError):
            parse_request(b"GET / HTTP/1.1\r\nX-Long: one\r\n  two")

    @pytest.mark.parametrize("value", [b"abc", b"-1", b"1, 2", b"\xb2"])
    def test_invalid_content_length(self, value: bytes):
        with pytest.raises(HTTPParseError):
            parse_request(b"POST / HTTP/1.1\r\nContent-Length: " + value)

    def test_repeated_equal_content_length_accepted(self):
        raw = b"POST / HTTP/1.1\r\nContent-Length: 5\r\nContent-Length: 5"
        assert parse_request(raw).content_length == 5

    def test_oversized_head(self):
        parser = RequestParser(max_header_size=1024)
        raw = b"GET / HTTP/1.1\r\nX-Big: " + b"a" * 2048

        with pytest.raises(HTTPParseError) as exc_info:
            parser.parse(raw)

        assert exc_info.value.status_code == HTTPStatus.REQUEST_HEADER_FIELDS_TOO_LARGE


class TestHTTPRequest:
    """Tests for HTTPRequest properties."""

    def _request(self, version: str = "HTTP/1.1", **headers) -> HTTPRequest:
        return HTTPRequest(
            method="GET",
            target="/",
            version=version,
            headers={k.replace("_", "-"): v for k, v in headers.items()},
        )

    def test_keep_alive_http11_default(self):
        assert self._request().is_keep_alive is True

    def test_keep_alive_http11_close(self):
        assert self._request(connection="close").is_keep_alive is False
        assert self._request(connection="Upgrade, Close").is_keep_alive is False

    def test_keep_alive_http10_default(self):
        assert self._request("HTTP/1.0").is_keep_alive is False

    def test_keep_alive_http10_explicit(self):
        assert self._request("HTTP/1.0", connection="Keep-Alive").is_keep_alive is True

    def test_chunked(self):
        assert self._request(transfer_encoding="chunked").is_chunked is True
        assert self._request(transfer_encoding="gzip, chunked").is_chunked is True
        assert self._request(transfer_encoding="gzip").is_chunked is False
        assert self._request().is_chunked is False

    def test_expects_continue(self):
        assert self._request(expect="100-continue").expects_continue is True
        assert self._request(expect="100-Continue").expects_continue is True
        assert self._request().expects_continue is False

    def test_content_length_default(self):
        assert self._request().content_length == 0

    def test_is_head(self):
        request = self._request()
        request.method = "HEAD"
        assert request.is_head is True
