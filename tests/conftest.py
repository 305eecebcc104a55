"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from typing import Generator

import pytest

from helloserver import HelloServer, ServerConfig


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request head, terminator excluded."""
    return (
        b"GET /api/users?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: 127.0.0.1:3000\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: application/json\r\n"
        b"Connection: keep-alive"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample POST request head with a JSON body declared."""
    return (
        b"POST /api/train HTTP/1.1\r\n"
        b"Host: 127.0.0.1:3000\r\n"
        b"Content-Type: application/json\r\n"
        b"Content-Length: 17\r\n"
        b"Connection: close"
    )


@pytest.fixture
def config() -> ServerConfig:
    """Test server configuration on an OS-assigned port."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,
        min_workers=2,
        max_workers=8,
        timeout=5.0,
        keep_alive_timeout=2.0,
        log_level="WARNING",
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class RunningServer:
    """A HelloServer serving from a background thread."""

    def __init__(self, server: HelloServer):
        self.server = server
        self._thread: threading.Thread = None

    @property
    def host(self) -> str:
        return self.server.address[0]

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self):
        """Bind in the calling thread, serve in a background thread."""
        self.server.start()

        self._thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self._thread.start()

        # Wait until the accept loop answers
        for _ in range(50):
            try:
                with socket.create_connection((self.host, self.port), timeout=1.0):
                    return
            except OSError:
                time.sleep(0.1)

        raise RuntimeError("Server failed to start")

    def stop(self):
        self.server.shutdown()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=15.0)


@pytest.fixture
def running_server(config: ServerConfig) -> Generator[RunningServer, None, None]:
    """A started server on an ephemeral port."""
    srv = RunningServer(HelloServer(config))
    srv.start()

    yield srv

    srv.stop()


def _raw_exchange(host: str, port: int, payload: bytes, timeout: float = 5.0) -> bytes:
    """Send raw bytes and read until the server closes the connection."""
    with socket.create_connection((host, port), timeout=timeout) as sock:
        sock.sendall(payload)
        chunks = []
        while True:
            data = sock.recv(4096)
            if not data:
                break
            chunks.append(data)
    return b"".join(chunks)


@pytest.fixture
def raw_exchange():
    """Function sending raw bytes to a server and returning everything it sends back."""
    return _raw_exchange
