"""
=============================================================================
LOW-LEVEL TCP SOCKET SERVER
=============================================================================

Owns the one process-wide resource: the listening socket.

SOCKET LIFECYCLE (Server Side):
────────────────────────────────

    1. socket()    Create the socket
    2. bind()      Reserve HOST:PORT           ← the only step that can fail
    3. listen()    Let the OS queue connections
    4. accept()    Hand each client to the HTTP layer (loop)
    5. close()     Release HOST:PORT on shutdown

Binding is split from serving so the caller learns about a failed bind
(port taken, privileged port) before it commits to the accept loop.

=============================================================================
THE EVENT LOOP
=============================================================================

One selector watches three kinds of file descriptor:

    listening socket   → accept(), park the new connection
    wakeup socketpair  → a worker parked a connection, register it
    parked connection  → readable: hand it to a worker

Connections waiting for their next request head sit in the selector
rather than on a worker thread, so idle clients cost a file descriptor
and nothing else. Each parked connection has a deadline; when it passes
the connection is handed to the expiry callback instead.

=============================================================================
ADDRESS REUSE
=============================================================================

SO_REUSEADDR lets a restarted server bind while old connections linger
in TIME_WAIT. It does NOT let two live listeners share a port, which is
what makes a second instance fail with BindError. SO_REUSEPORT would
allow exactly that, so it is never set.

On Windows SO_REUSEADDR means something else (it permits port hijacking);
SO_EXCLUSIVEADDRUSE is used there instead.

=============================================================================
SIGNALS
=============================================================================

    SIGINT (Ctrl+C), SIGTERM (kill, docker stop)
        → stop accepting
        → let in-flight connections finish
        → close the listening socket

Signal handlers can only be installed from the main thread. When the
server runs in a background thread (tests, embedding) the caller stops
it with shutdown() instead.

=============================================================================
"""

import errno
import socket
import signal
import logging
import selectors
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)


# accept() failures that concern one connection, or a momentary resource
# shortage, rather than the listening socket itself.
TRANSIENT_ACCEPT_ERRORS = frozenset({
    errno.ECONNABORTED,
    errno.EMFILE,
    errno.ENFILE,
    errno.ENOBUFS,
    errno.ENOMEM,
})
DESCRIPTOR_EXHAUSTION = frozenset({errno.EMFILE, errno.ENFILE})
ACCEPT_BACKOFF = 0.1


class BindError(OSError):
    """
    The listening socket could not be acquired.

    Raised by SocketServer.bind() when the address is already in use,
    the process may not bind the port, or the host cannot be resolved.
    It is fatal: nothing retries it.
    """

    def __init__(self, host: str, port: int, cause: OSError):
        super().__init__(cause.errno, f"Cannot bind to {host}:{port}: {cause.strerror or cause}")
        self.host = host
        self.port = port

    @property
    def address_in_use(self) -> bool:
        return self.errno == errno.EADDRINUSE

    @property
    def permission_denied(self) -> bool:
        return self.errno in (errno.EACCES, errno.EPERM)


class SocketServer:
    """
    TCP listener with a selector-driven accept loop.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SocketServer Internals                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    bind()            socket → setsockopt → bind → listen             │
    │        │             raises BindError                                │
    │        ▼                                                             │
    │    serve(on_readable, on_expired)                                    │
    │        │             install signal handlers                         │
    │        │             select: accept / readable / deadline passed     │
    │        ▼                                                             │
    │    park(conn)        any thread: wait for conn's next request        │
    │    shutdown()        _running = False (any thread, idempotent)       │
    │        │                                                             │
    │        ▼                                                             │
    │    close()           restore signals, close parked connections,      │
    │                      close socket                                    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Usage:
        server = SocketServer(config)
        server.bind()                                  # may raise BindError
        server.serve(handle_connection, handle_idle)   # blocks until shutdown()
    """

    def __init__(self, config: ServerConfig, poll_interval: float = 0.5):
        """
        Args:
            config: Host, port, backlog and per-connection settings.
            poll_interval: Longest select() wait; how quickly shutdown() is
                           noticed when no wakeup arrives.
        """
        self.config = config
        self.poll_interval = poll_interval

        self._socket: Optional[socket.socket] = None
        self._selector: Optional[selectors.BaseSelector] = None
        self._wakeup_r: Optional[socket.socket] = None
        self._wakeup_w: Optional[socket.socket] = None

        # Touched only by the thread running serve()
        self._parked: Dict[str, Connection] = {}

        # Handed over by workers through park()
        self._pending: List[Connection] = []
        self._pending_lock = threading.Lock()

        self._running = False
        self._closed = False
        self._original_handlers: dict = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port); the real port when 0 was requested."""
        if self._socket is not None:
            sockname = self._socket.getsockname()
            return (sockname[0], sockname[1])
        return (self.config.host, self.config.port)

    def _create_socket(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.config.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)

        if hasattr(socket, "SO_EXCLUSIVEADDRUSE"):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_EXCLUSIVEADDRUSE, 1)
        else:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Responses are one small write; send them without Nagle delay.
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        # accept() only runs once select() reports a pending client.
        sock.setblocking(False)

        return sock

    def bind(self) -> Tuple[str, int]:
        """
        Acquire the listening socket.

        Returns:
            The bound (host, port).

        Raises:
            BindError: Address in use, permission denied, bad host.
            RuntimeError: Already bound.
        """
        if self._socket is not None:
            raise RuntimeError("Socket server is already bound")

        host, port = self.config.host, self.config.port

        try:
            sock = self._create_socket()
        except OSError as e:
            raise BindError(host, port, e) from e

        try:
            sock.bind((host, port))
            sock.listen(self.config.backlog)
        except OSError as e:
            sock.close()
            logger.error(f"Failed to bind to {host}:{port}: {e}")
            raise BindError(host, port, e) from e

        self._socket = sock

        self._wakeup_r, self._wakeup_w = socket.socketpair()
        self._wakeup_r.setblocking(False)
        self._wakeup_w.setblocking(False)

        self._selector = selectors.DefaultSelector()
        self._selector.register(self._socket, selectors.EVENT_READ)
        self._selector.register(self._wakeup_r, selectors.EVENT_READ)

        self._running = True

        logger.debug(f"Listening socket bound to {self.address[0]}:{self.address[1]}")
        return self.address

    def _setup_signals(self):
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, initiating shutdown...")
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    # =========================================================================
    # EVENT LOOP
    # =========================================================================

    def serve(
        self,
        on_readable: Callable[[Connection], None],
        on_expired: Callable[[Connection], None],
    ):
        """
        Run the event loop until shutdown() is called.

        Args:
            on_readable: Receives each connection with bytes to read. The
                         connection leaves the selector; the callee
                         either park()s it again or closes it.
            on_expired: Receives each parked connection whose deadline
                        passed. The callee closes it.

        Both callbacks run on the event loop thread and must not block.

        Raises:
            OSError: accept() failed in a way that is not about a single
                     client (the listening socket is unusable).
        """
        if self._socket is None:
            raise RuntimeError("bind() must be called before serve()")

        self._setup_signals()

        try:
            while self._running:
                for key, _ in self._selector.select(self._select_timeout()):
                    if key.fileobj is self._socket:
                        self._accept()
                    elif key.fileobj is self._wakeup_r:
                        self._drain_wakeup()
                    else:
                        conn = key.data
                        self._unpark(conn)
                        on_readable(conn)

                self._register_pending()
                self._expire(on_expired)
        finally:
            self.close()

    def _select_timeout(self) -> float:
        if not self._parked:
            return self.poll_interval
        earliest = min(conn.deadline for conn in self._parked.values())
        return max(0.0, min(self.poll_interval, earliest - time.time()))

    def _accept(self):
        """Accept every client the kernel has queued."""
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except (BlockingIOError, InterruptedError):
                return
            except OSError as e:
                if not self._running:
                    return
                if e.errno not in TRANSIENT_ACCEPT_ERRORS:
                    logger.error(f"Accept error: {e}")
                    raise
                logger.warning(f"Accept error, still serving: {e}")
                if e.errno in DESCRIPTOR_EXHAUSTION:
                    # Give workers a moment to close connections.
                    time.sleep(ACCEPT_BACKOFF)
                return

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            conn = Connection(
                socket=client_socket,
                address=client_address[:2],
                buffer_size=self.config.buffer_size,
                timeout=self.config.timeout,
                keep_alive_timeout=self.config.keep_alive_timeout,
                max_header_size=self.config.max_header_size,
            )
            conn.start_waiting()
            self._register(conn)

    def _register(self, conn: Connection):
        self._selector.register(conn.socket, selectors.EVENT_READ, conn)
        self._parked[conn.id] = conn

    def _unpark(self, conn: Connection):
        self._selector.unregister(conn.socket)
        del self._parked[conn.id]

    def _register_pending(self):
        with self._pending_lock:
            pending, self._pending = self._pending, []

        for conn in pending:
            self._register(conn)

    def _expire(self, on_expired: Callable[[Connection], None]):
        now = time.time()
        for conn in [c for c in self._parked.values() if c.expired(now)]:
            self._unpark(conn)
            on_expired(conn)

    # =========================================================================
    # CROSS-THREAD HAND-OFF
    # =========================================================================

    def park(self, conn: Connection):
        """
        Wait for the next bytes on `conn` without holding a thread.

        Safe from any thread. After shutdown() the connection is closed
        instead.
        """
        conn.start_waiting()

        with self._pending_lock:
            if self._running and not self._closed:
                self._pending.append(conn)
                self._wakeup()
                return

        conn.close(linger=False)

    def _wakeup(self):
        if self._wakeup_w is None:
            return
        try:
            self._wakeup_w.send(b"\0")
        except OSError:
            pass  # Buffer full (a wakeup is already pending), or closed

    def _drain_wakeup(self):
        try:
            while self._wakeup_r.recv(4096):
                pass
        except BlockingIOError:
            pass

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def shutdown(self):
        """Stop the event loop. Safe from any thread, safe to repeat."""
        if self._running:
            logger.info("Shutting down socket server...")
        self._running = False
        self._wakeup()

    def close(self):
        """Restore signal handlers, drop parked connections, release the socket."""
        self._running = False
        self._restore_signals()

        with self._pending_lock:
            if self._closed:
                return
            self._closed = True
            pending, self._pending = self._pending, []

        for conn in pending + list(self._parked.values()):
            conn.close(linger=False)
        self._parked.clear()

        if self._selector is not None:
            self._selector.close()
            self._selector = None

        for sock in (self._socket, self._wakeup_r, self._wakeup_w):
            if sock is not None:
                try:
                    sock.close()
                except OSError:
                    pass
        self._socket = None

        logger.info("Socket server stopped")
