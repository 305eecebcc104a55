"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

This module wraps one accepted client socket with the little bit of
HTTP framing the responder needs.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL
=============================================================================

    Client sends:                       Server might receive:
        "GET / HTTP/1.1\r\n"                recv() → "GET / HT"
        "Host: x\r\n"                       recv() → "TP/1.1\r\nHost: x\r\n\r\n"
        "\r\n"

We buffer received bytes and look for the blank line that ends the
request head. Anything after it belongs to the body or to the next
request on the same connection. Bare LF line endings (what netcat and
telnet send) are accepted as well as CRLF (RFC 7230 section 3.5).

=============================================================================
WAITING WITHOUT A THREAD
=============================================================================

A connection that has not sent a complete head does not hold a worker:

    accept ──► selector ──readable──► worker: fill() + next_head()
                  ▲                        │
                  └────── park() ◄─────────┘  head incomplete, or
                                              keep-alive response sent

The deadline for the next head starts when the connection first waits
for it (timeout for the first request, keep_alive_timeout after that)
and is not pushed back by partial data, so a client dribbling a head
one byte at a time is still cut off on schedule.

=============================================================================
SKIPPING THE BODY
=============================================================================

The handler never looks at the body, but on a keep-alive connection the
body bytes still sit between this request and the next one. After the
response is written we skip exactly the body, framed either by

    Content-Length: 17                → skip 17 bytes
    Transfer-Encoding: chunked        → skip chunks up to "0\r\n\r\n"

so the next head starts on a request line. The bytes are thrown away as
they arrive; a large upload never accumulates in memory.

=============================================================================
"""

import re
import socket
import time
import uuid
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from ..http.request import HTTPRequest, HTTPParseError
from ..http.status_codes import HTTPStatus


logger = logging.getLogger(__name__)


# Blank line ending the head: CRLF CRLF, or the bare-LF equivalents.
HEAD_END_PATTERN = re.compile(rb"\r?\n\r?\n")
MAX_CHUNK_LINE = 4096
DRAIN_TIMEOUT = 0.5


class ConnectionState(Enum):
    """Connection lifecycle states, used for logging and close bookkeeping."""
    NEW = "new"                # Just accepted
    READING = "reading"        # Waiting for a request head
    PROCESSING = "processing"  # Handler is running
    WRITING = "writing"        # Sending the response
    KEEP_ALIVE = "keep_alive"  # Response sent, waiting for the next request
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    A client connection.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Connection Responsibilities                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  1. BUFFERED READING                                                 │
    │     └── fill() once per readable event, next_head() from buffer      │
    │                                                                      │
    │  2. DEADLINES                                                        │
    │     └── First request: config.timeout                                │
    │     └── Keep-alive idle: config.keep_alive_timeout                   │
    │                                                                      │
    │  3. BODY SKIPPING                                                    │
    │     └── Content-Length or chunked, discarded as it arrives           │
    │                                                                      │
    │  4. CLEAN CLOSE                                                      │
    │     └── SHUT_WR, drain, close                                        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘
    """

    socket: socket.socket
    address: Tuple[str, int]
    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0
    max_header_size: int = 16 * 1024

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    state: ConnectionState = ConnectionState.NEW
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0
    deadline: Optional[float] = None

    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    # =========================================================================
    # WAITING
    # =========================================================================

    def start_waiting(self):
        """
        Start the clock for the next request head.

        Calling it again while the same head is still incomplete keeps
        the original deadline.
        """
        self.state = ConnectionState.READING if self.requests_handled == 0 else ConnectionState.KEEP_ALIVE
        if self.deadline is not None:
            return

        limit = self.keep_alive_timeout if self.requests_handled else self.timeout
        self.deadline = time.time() + limit if limit else float("inf")

    def expired(self, now: Optional[float] = None) -> bool:
        if self.deadline is None:
            return False
        return (now if now is not None else time.time()) >= self.deadline

    @property
    def has_partial_head(self) -> bool:
        """True if some bytes of a request head have arrived."""
        return bool(self._buffer.lstrip(b"\r\n"))

    # =========================================================================
    # READING
    # =========================================================================

    def fill(self) -> bool:
        """
        Read once from a socket the selector reported readable.

        Returns:
            False if the client closed the connection.
        """
        chunk = self._recv()
        if not chunk:
            return False
        self._buffer += chunk
        return True

    def next_head(self) -> Optional[bytes]:
        """
        Take one complete request head out of the buffer.

        Returns:
            The head bytes without the terminating blank line, or None
            if the buffer does not hold a complete head yet.

        Raises:
            HTTPParseError: The head grew past max_header_size (431).
        """
        # Stray CRLFs between requests are allowed (RFC 7230 3.5).
        self._buffer = self._buffer.lstrip(b"\r\n")

        match = HEAD_END_PATTERN.search(self._buffer)
        if match is None:
            if len(self._buffer) > self.max_header_size:
                raise HTTPParseError(
                    f"Request head exceeds {self.max_header_size} bytes",
                    status_code=HTTPStatus.REQUEST_HEADER_FIELDS_TOO_LARGE,
                )
            return None

        head = self._buffer[:match.start()]
        self._buffer = self._buffer[match.end():]

        self.requests_handled += 1
        self.deadline = None
        self.last_activity = time.time()
        return head

    def discard_body(self, request: HTTPRequest) -> bool:
        """
        Skip the body of `request` so the next request can be read.

        Returns:
            True if the body was skipped completely, False if the
            connection can no longer be reused (peer closed, timeout or
            malformed chunk framing).
        """
        try:
            if request.is_chunked:
                self._skip_chunked()
            elif request.content_length:
                self._skip(request.content_length)
            return True
        except (HTTPParseError, OSError) as e:
            logger.debug(f"[{self.id}] Could not skip request body: {e}")
            return False

    def _skip(self, count: int) -> None:
        """Discard exactly `count` bytes from the stream."""
        from_buffer = min(count, len(self._buffer))
        self._buffer = self._buffer[from_buffer:]
        remaining = count - from_buffer

        while remaining > 0:
            chunk = self._recv(min(self.buffer_size, remaining))
            if not chunk:
                raise ConnectionError("Connection closed inside request body")
            remaining -= len(chunk)

    def _read_line(self) -> bytes:
        """Read one LF-terminated line, without the CRLF or LF."""
        while b"\n" not in self._buffer:
            if len(self._buffer) > MAX_CHUNK_LINE:
                raise HTTPParseError("Chunk line too long")
            chunk = self._recv()
            if not chunk:
                raise ConnectionError("Connection closed inside request body")
            self._buffer += chunk

        line, _, self._buffer = self._buffer.partition(b"\n")
        return line.rstrip(b"\r")

    def _skip_chunked(self) -> None:
        """
        Skip a chunked body.

            1a;ext=1\r\n          ← size in hex, extensions ignored
            <26 bytes>\r\n
            0\r\n                 ← last chunk
            Trailer: x\r\n        ← optional trailers
            \r\n
        """
        while True:
            size_field = self._read_line().split(b";", 1)[0].strip()
            try:
                size = int(size_field, 16)
            except ValueError:
                raise HTTPParseError(f"Invalid chunk size: {size_field[:20]!r}")

            if size == 0:
                break
            self._skip(size)
            self._read_line()  # CRLF after the chunk data

        while self._read_line():
            pass  # trailer fields

    def _recv(self, size: Optional[int] = None) -> bytes:
        """socket.recv() that reports a reset peer as a closed one."""
        try:
            data = self.socket.recv(size or self.buffer_size)
            self.last_activity = time.time()
            return data
        except (ConnectionResetError, BrokenPipeError):
            return b""

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(self, data: bytes) -> bool:
        """
        Send response bytes with sendall().

        Returns:
            True if sent, False if the connection was lost.
        """
        self.state = ConnectionState.WRITING
        self.last_activity = time.time()

        try:
            self.socket.sendall(data)
            self.last_activity = time.time()
            return True
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self, linger: bool = True):
        """
        Close the connection gracefully.

        1. shutdown(SHUT_WR) sends FIN: the client sees the end of the
           response.
        2. Drain whatever the client is still sending (an unread body),
           so the kernel does not answer with RST and destroy the
           response before the client has read it. Skipped with
           linger=False, for idle connections with nothing in flight.
        3. close() releases the descriptor.
        """
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # Peer already gone

        if linger:
            deadline = time.time() + DRAIN_TIMEOUT
            try:
                self.socket.settimeout(DRAIN_TIMEOUT)
                while self.socket.recv(self.buffer_size) and time.time() < deadline:
                    pass
            except OSError:
                pass  # Includes socket.timeout

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")
