"""
=============================================================================
HTTP REQUEST HEAD PARSING
=============================================================================

The responder answers every request the same way, so it never needs a
request's body, query parameters or path segments. What it DOES need is
enough of the head to:

    1. Tell an HTTP request apart from garbage      → 400 otherwise
    2. Decide keep-alive vs close                   → Connection header
    3. Know how many body bytes to skip             → Content-Length /
                                                      Transfer-Encoding
    4. Suppress the body for HEAD                   → method

=============================================================================
REQUEST HEAD FORMAT (RFC 7230)
=============================================================================

    POST /api/train?epochs=3 HTTP/1.1\r\n       ← request line
    Host: 127.0.0.1:3000\r\n                    ← header fields
    Content-Type: application/json\r\n
    Content-Length: 17\r\n
    \r\n                                        ← end of head
    {"model": "tiny"}                           ← body (never parsed)

Any token is accepted as a method. Unknown methods are still requests,
and still get the hello response.

=============================================================================
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from .status_codes import HTTPStatus


LINE_END_PATTERN = re.compile(r"\r?\n")


class HTTPParseError(Exception):
    """
    Raised when bytes on the wire are not a valid HTTP request head.

    Carries the status code the connection should answer with before it
    is closed.
    """

    def __init__(self, message: str, status_code: HTTPStatus = HTTPStatus.BAD_REQUEST):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    A parsed request head.

    Header names are stored lowercase. The body is not part of this
    object: the connection skips it without handing it to anyone.
    """

    method: str
    target: str
    version: str
    headers: Dict[str, str] = field(default_factory=dict)
    client_address: Tuple[str, int] = ("", 0)

    @property
    def is_head(self) -> bool:
        return self.method == "HEAD"

    @property
    def is_chunked(self) -> bool:
        encoding = self.headers.get("transfer-encoding", "")
        return encoding.lower().split(",")[-1].strip() == "chunked"

    @property
    def content_length(self) -> int:
        """Declared body length, 0 if absent."""
        return int(self.headers.get("content-length", 0))

    @property
    def expects_continue(self) -> bool:
        """
        True for "Expect: 100-continue": the client holds the body back
        until it sees an interim 100 or a final response.
        """
        return "100-continue" in self.headers.get("expect", "").lower()

    @property
    def is_keep_alive(self) -> bool:
        """
        Check if the connection may be reused after this request.

            HTTP/1.1: keep alive unless "Connection: close"
            HTTP/1.0: close unless "Connection: keep-alive"
        """
        tokens = {t.strip().lower() for t in self.headers.get("connection", "").split(",")}

        if self.version == "HTTP/1.1":
            return "close" not in tokens
        return "keep-alive" in tokens


class RequestParser:
    """
    Parses the request line and header fields of one request.

    Usage:
        parser = RequestParser()
        request = parser.parse(head_bytes, ("127.0.0.1", 53122))
    """

    # token = 1*tchar (RFC 7230 section 3.2.6)
    REQUEST_LINE_PATTERN = re.compile(
        r"^([!#$%&'*+\-.^_`|~0-9A-Za-z]+) (\S+) (HTTP/1\.[01])$"
    )
    HEADER_PATTERN = re.compile(r"^([!#$%&'*+\-.^_`|~0-9A-Za-z]+):[ \t]*(.*?)[ \t]*$")
    DIGITS_PATTERN = re.compile(r"^[0-9]{1,18}$")

    def __init__(self, max_header_size: int = 16 * 1024):
        self.max_header_size = max_header_size

    def parse(
        self,
        head: bytes,
        client_address: Tuple[str, int] = ("", 0),
    ) -> HTTPRequest:
        """
        Parse raw request head bytes into an HTTPRequest.

        Args:
            head: Bytes up to and excluding the blank line that ends the head.
            client_address: Client's (ip, port) tuple.

        Returns:
            Parsed HTTPRequest.

        Raises:
            HTTPParseError: If the head is oversized or malformed.
        """
        if len(head) > self.max_header_size:
            raise HTTPParseError(
                f"Request head too large: {len(head)} bytes",
                status_code=HTTPStatus.REQUEST_HEADER_FIELDS_TOO_LARGE,
            )

        # HTTP heads are ISO-8859-1 on the wire; decoding cannot fail.
        text = head.decode("latin-1")

        # RFC 7230 section 3.5: ignore at least one empty line before the
        # request line, and accept a bare LF as a line terminator.
        lines = LINE_END_PATTERN.split(text.lstrip("\r\n"))

        method, target, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        return HTTPRequest(
            method=method,
            target=target,
            version=version,
            headers=headers,
            client_address=client_address,
        )

    def _parse_request_line(self, line: str) -> Tuple[str, str, str]:
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line[:80]!r}")
        return match.group(1), match.group(2), match.group(3)

    def _parse_headers(self, lines: list) -> Dict[str, str]:
        """
        Parse header lines into a dict with lowercase names.

        Repeated headers are joined with ", " (RFC 7230 section 3.2.2).
        Obsolete line folding is rejected, as is any line that is not
        "name: value". A request with conflicting Content-Length values
        is rejected too, since its body cannot be skipped reliably.
        """
        headers: Dict[str, str] = {}

        for line in lines:
            if not line:
                continue

            if line[0] in (" ", "\t"):
                raise HTTPParseError("Obsolete header line folding")

            match = self.HEADER_PATTERN.match(line)
            if not match:
                raise HTTPParseError(f"Invalid header line: {line[:80]!r}")

            name, value = match.group(1).lower(), match.group(2)

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        length = headers.get("content-length")
        if length is not None:
            headers["content-length"] = str(self._parse_content_length(length))

        return headers

    @classmethod
    def _parse_content_length(cls, value: str) -> int:
        values = {v.strip() for v in value.split(",")}
        if len(values) != 1:
            raise HTTPParseError(f"Conflicting Content-Length: {value!r}")

        length = values.pop()
        if not cls.DIGITS_PATTERN.match(length):
            raise HTTPParseError(f"Invalid Content-Length: {length!r}")
        return int(length)


def parse_request(
    head: bytes,
    client_address: Tuple[str, int] = ("", 0),
    max_header_size: Optional[int] = None,
) -> HTTPRequest:
    """Convenience wrapper around RequestParser().parse()."""
    parser = RequestParser() if max_header_size is None else RequestParser(max_header_size)
    return parser.parse(head, client_address)
