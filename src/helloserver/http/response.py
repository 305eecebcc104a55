"""
=============================================================================
HTTP RESPONSE SERIALIZATION
=============================================================================

    Handler returns          to_bytes()              Socket sends
    HTTPResponse    ─────►   serializes    ─────►    raw bytes

        HTTPResponse(            b"HTTP/1.1 200 OK\r\n
          status=200,              Content-Type: text/plain\r\n
          headers={...},           Content-Length: 14\r\n
          body=b"..."              Date: ...\r\n
        )                          Server: helloserver/1.0\r\n
                                   \r\n
                                   Hello, World!\n"

Content-Length, Date and Server are filled in at serialization time when
the handler did not set them. For HEAD the body is dropped but
Content-Length still describes what a GET would have returned.

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict

from .status_codes import HTTPStatus


DEFAULT_SERVER_NAME = "helloserver/1.0"


@dataclass
class HTTPResponse:
    """An HTTP response waiting to be written to a socket."""

    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        """Example: "HTTP/1.1 200 OK"."""
        return f"{self.version} {int(self.status)} {self.status.phrase}"

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        """Set a header, returning self for chaining."""
        self.headers[name] = value
        return self

    def to_bytes(
        self,
        server_name: str = DEFAULT_SERVER_NAME,
        include_body: bool = True,
    ) -> bytes:
        """
        Serialize the response for socket.sendall().

        Args:
            server_name: Value for the Server header if none is set.
            include_body: False for responses to HEAD requests.

        Returns:
            Status line, headers, blank line and (optionally) the body.
        """
        response_headers = dict(self.headers)

        response_headers.setdefault("Content-Length", str(len(self.body)))
        response_headers.setdefault("Date", format_http_date(datetime.now(timezone.utc)))
        response_headers.setdefault("Server", server_name)

        lines = [self.status_line]
        for name, value in response_headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")

        head = "\r\n".join(lines).encode("latin-1") + b"\r\n"

        if not include_body:
            return head
        return head + self.body


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an IMF-fixdate (RFC 7231 section 7.1.1.1).

    Example: "Sun, 18 Oct 2026 12:30:45 GMT"

    Day and month names are hard-coded so the result does not depend on
    the process locale.
    """
    weekday = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"][dt.weekday()]
    month = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
             "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"][dt.month - 1]
    return f"{weekday}, {dt.day:02d} {month} {dt.year} {dt:%H:%M:%S} GMT"


def error_response(status: HTTPStatus, message: str = "") -> HTTPResponse:
    """
    Build the plain-text response sent for protocol-level failures.

    These are answered by the connection layer, never by the handler,
    and always close the connection.
    """
    body = f"{message or status.phrase}\n".encode("utf-8")
    return HTTPResponse(
        status=status,
        headers={
            "Content-Type": "text/plain; charset=utf-8",
            "Connection": "close",
        },
        body=body,
    )
