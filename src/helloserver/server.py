"""
=============================================================================
THE STATIC RESPONDER SERVER
=============================================================================

Ties the pieces together into the whole program:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        HelloServer                                   │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    SocketServer ──accept──► ThreadPool ──worker──► Connection        │
    │                                                        │             │
    │                                   RequestParser ◄──────┘             │
    │                                        │                             │
    │                                        ▼                             │
    │                                   HelloHandler  →  200 Hello, World! │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
STATES
=============================================================================

    UNBOUND ──start()──► LISTENING ──(signal / shutdown())──► STOPPED

start() is the only way out of UNBOUND and it cannot be undone: there is
no route back to UNBOUND. A failed bind leaves the server UNBOUND and
raises BindError to the caller.

=============================================================================
REQUEST LIFECYCLE
=============================================================================

    1. Wait in the selector for bytes (408 if the head is not complete
       in time; idle keep-alive connections are just closed)
    2. Worker: read what arrived, take a complete head (431 if too big)
       or park the connection again
    3. Parse request line + headers   (400 if not HTTP)
    4. Call the handler               (always 200 "Hello, World!\\n")
    5. Add Connection / Keep-Alive headers
    6. Send (headers only for HEAD)
    7. Keep-alive: skip the request body, serve any pipelined head,
       then park; otherwise close

"Expect: 100-continue" requests get their answer at once and the
connection is closed: the body is never sent, so there is nothing to skip.

=============================================================================
"""

import logging
import time
from enum import Enum
from typing import Optional, Callable, Tuple

from .config import ServerConfig
from .core import SocketServer, Connection, ConnectionState, ThreadPool
from .handlers import HelloHandler
from .http import (
    HTTPRequest, RequestParser, HTTPParseError,
    HTTPResponse, HTTPStatus, error_response,
)


logger = logging.getLogger(__name__)
access_logger = logging.getLogger("helloserver.access")


class ServerState(Enum):
    UNBOUND = "unbound"
    LISTENING = "listening"
    STOPPED = "stopped"


class HelloServer:
    """
    HTTP server that answers every request with "Hello, World!".

    =========================================================================
    USAGE
    =========================================================================

        server = HelloServer()                 # 127.0.0.1:3000
        server.run()                           # blocks until Ctrl+C

        # or, in two steps
        server = HelloServer(ServerConfig(port=0))
        host, port = server.start()            # may raise BindError
        server.serve_forever()

    =========================================================================
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        handler: Optional[Callable[[HTTPRequest], HTTPResponse]] = None,
    ):
        """
        Args:
            config: Server configuration. Defaults reproduce 127.0.0.1:3000.
            handler: Request handler. Defaults to HelloHandler().
        """
        self.config = config or ServerConfig()
        self.config.validate()

        self._socket_server = SocketServer(self.config)
        self._thread_pool = ThreadPool(
            min_workers=self.config.min_workers,
            max_workers=self.config.max_workers,
            queue_size=self.config.backlog,
        )
        self._parser = RequestParser(max_header_size=self.config.max_header_size)
        self._handler = handler or HelloHandler()

        self._state = ServerState.UNBOUND
        self._serving = False

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port), or the configured one before start()."""
        return self._socket_server.address

    @property
    def url(self) -> str:
        host, port = self.address
        if ":" in host:
            host = f"[{host}]"
        return f"http://{host}:{port}/"

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self, host: Optional[str] = None, port: Optional[int] = None) -> Tuple[str, int]:
        """
        Bind the listening socket and announce the server.

        Args:
            host: Override config host.
            port: Override config port.

        Returns:
            The bound (host, port).

        Raises:
            BindError: The address/port cannot be acquired.
            RuntimeError: start() was already called.
        """
        if self._state is not ServerState.UNBOUND:
            raise RuntimeError(f"Cannot start a server that is {self._state.value}")

        if host is not None:
            self.config.host = host
        if port is not None:
            self.config.port = port
        self.config.validate()

        self._setup_logging()

        self._socket_server.bind()
        self._thread_pool.start()
        self._state = ServerState.LISTENING

        logger.info(f"Server listening on {self.address[0]}:{self.address[1]}")
        print(f"Server running at {self.url}", flush=True)

        return self.address

    def serve_forever(self):
        """
        Answer requests until the process is signalled or shutdown() is called.

        Raises:
            OSError: The listening socket stopped accepting connections.
                     The server is STOPPED by then.
        """
        if self._state is not ServerState.LISTENING:
            raise RuntimeError("start() must succeed before serve_forever()")

        self._serving = True
        try:
            self._socket_server.serve(self._handle_connection, self._handle_expired)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._serving = False
            self._shutdown()

    def run(self, host: Optional[str] = None, port: Optional[int] = None):
        """start() then serve_forever()."""
        self.start(host, port)
        self.serve_forever()

    def shutdown(self):
        """
        Stop the server from another thread.

        The program itself never calls this; it ends on SIGINT/SIGTERM.
        """
        if self._serving:
            self._socket_server.shutdown()
        elif self._state is ServerState.LISTENING:
            # Bound but never served: release the socket directly.
            self._socket_server.shutdown()
            self._socket_server.close()
            self._shutdown()

    def _shutdown(self):
        if self._state is ServerState.STOPPED:
            return

        logger.info("Shutting down server...")
        self._thread_pool.shutdown(wait=True, timeout=self.config.keep_alive_timeout + 5.0)
        self._state = ServerState.STOPPED
        logger.info("Server stopped")

    def _setup_logging(self):
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        logging.getLogger("helloserver").setLevel(level)

    # =========================================================================
    # REQUEST HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """Queue a readable connection on the thread pool (event loop thread)."""
        if self._thread_pool.submit(self._process_connection, args=(conn,)):
            return

        logger.warning(f"[{conn.id}] Thread pool full, rejecting connection")
        # Consume what already arrived so closing does not reset the
        # connection before the client reads the 503.
        conn.fill()
        self._send_error(conn, HTTPStatus.SERVICE_UNAVAILABLE)
        conn.close(linger=False)

    def _handle_expired(self, conn: Connection):
        """A parked connection ran out of time (event loop thread)."""
        if conn.requests_handled and not conn.has_partial_head:
            logger.debug(f"[{conn.id}] Keep-alive timeout")
        else:
            logger.debug(f"[{conn.id}] Request head timeout")
            self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT)
        conn.close(linger=False)

    def _process_connection(self, conn: Connection):
        """Serve the requests that arrived on one connection (worker thread)."""
        try:
            wait_for_more = self._serve_buffered(conn)
        except Exception as e:
            logger.exception(f"[{conn.id}] Connection error: {e}")
            wait_for_more = False

        if wait_for_more:
            self._socket_server.park(conn)
        else:
            conn.close()

    def _serve_buffered(self, conn: Connection) -> bool:
        """
        Read once, then answer every complete request head in the buffer.

        Returns:
            True if the connection should be parked until more bytes arrive.
        """
        if not conn.fill():
            return False

        while self._socket_server.is_running:
            try:
                head = conn.next_head()
            except HTTPParseError as e:
                logger.debug(f"[{conn.id}] Rejected request head: {e}")
                self._send_error(conn, e.status_code)
                return False

            if head is None:
                return True

            if not self._process_request(conn, head):
                return False

        return False

    def _process_request(self, conn: Connection, head: bytes) -> bool:
        """
        Answer and finish one request.

        Returns:
            True if the connection may carry another request.
        """
        try:
            request = self._parser.parse(head, conn.address)
        except HTTPParseError as e:
            logger.debug(f"[{conn.id}] Rejected request: {e}")
            self._send_error(conn, e.status_code)
            return False

        conn.state = ConnectionState.PROCESSING
        start_time = time.time()

        try:
            response = self._handler(request)
        except Exception as e:
            logger.exception(f"[{conn.id}] Handler error: {e}")
            response = error_response(HTTPStatus.INTERNAL_SERVER_ERROR)

        keep_alive = (
            self.config.keep_alive
            and request.is_keep_alive
            and not request.expects_continue
            and response.headers.get("Connection") != "close"
        )
        if keep_alive:
            response.headers.setdefault("Connection", "keep-alive")
            response.headers.setdefault("Keep-Alive", f"timeout={int(self.config.keep_alive_timeout)}")
        else:
            response.headers["Connection"] = "close"

        sent = conn.send_response(
            response.to_bytes(self.config.server_name, include_body=not request.is_head)
        )
        self._log_access(request, response, start_time)

        if not sent or not keep_alive:
            return False

        return conn.discard_body(request)

    def _send_error(self, conn: Connection, status: HTTPStatus):
        """Answer a request that never reached the handler."""
        response = error_response(status)
        conn.send_response(response.to_bytes(self.config.server_name))

    def _log_access(self, request: HTTPRequest, response: HTTPResponse, start_time: float):
        if not access_logger.isEnabledFor(logging.DEBUG):
            return

        duration_ms = (time.time() - start_time) * 1000
        timestamp = time.strftime("%d/%b/%Y:%H:%M:%S", time.localtime(start_time))
        access_logger.debug(
            f'{request.client_address[0]} - - [{timestamp}] '
            f'"{request.method} {request.target} {request.version}" '
            f'{int(response.status)} {len(response.body)} {duration_ms:.2f}ms'
        )


def create_server(config: Optional[ServerConfig] = None) -> HelloServer:
    """Factory used by the CLI and by tests."""
    return HelloServer(config)
