"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Every tunable of the responder lives in one dataclass. The defaults
reproduce the classic "hello world" server exactly: loopback only,
port 3000.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m helloserver --port 8000                         │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── PORT=8000 python -m helloserver                           │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

HOST and PORT are deliberately unprefixed: they are the names most
process managers and PaaS platforms already export.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000


@dataclass
class ServerConfig:
    """
    Configuration for the hello server.

    NETWORK SETTINGS
    - host, port, backlog, buffer_size, timeout

    HTTP SETTINGS
    - keep_alive, keep_alive_timeout, max_header_size

    THREADING SETTINGS
    - min_workers, max_workers

    LOGGING
    - log_level
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = DEFAULT_HOST
    """
    The IP address to bind to.
    - "127.0.0.1" - Loopback only, unreachable from other hosts
    - "0.0.0.0" - All network interfaces
    """

    port: int = DEFAULT_PORT
    """
    The port number to listen on. 0 lets the OS pick a free port,
    which is what the test suite does.
    """

    backlog: int = 128
    """Maximum number of queued connections before the OS refuses new ones."""

    buffer_size: int = 8192
    """Size of a single recv() in bytes."""

    timeout: Optional[float] = 30.0
    """
    Seconds allowed for a client to deliver a complete request head.
    None = wait forever.
    """

    # ─────────────────────────────────────────────────────────────────────
    # HTTP SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    keep_alive: bool = True
    """Allow several requests on one TCP connection."""

    keep_alive_timeout: float = 5.0
    """Idle seconds before a kept-alive connection is closed."""

    max_header_size: int = 16 * 1024
    """
    Upper bound on the request line plus headers. Larger heads are
    answered with 431 Request Header Fields Too Large.
    """

    # ─────────────────────────────────────────────────────────────────────
    # THREAD POOL SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    min_workers: int = 4
    max_workers: int = 16

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING / IDENTITY
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    server_name: str = "helloserver/1.0"
    """Value of the Server response header."""

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        HOST             Bind address (default: 127.0.0.1)
        PORT             Listen port (default: 3000)
        HELLO_WORKERS    Max worker threads (default: 16)
        HELLO_TIMEOUT    Request head timeout in seconds (default: 30)
        HELLO_LOG_LEVEL  Logging level (default: INFO)

        =====================================================================
        """
        max_workers = int(os.getenv("HELLO_WORKERS", "16"))
        return cls(
            host=os.getenv("HOST", DEFAULT_HOST),
            port=int(os.getenv("PORT", str(DEFAULT_PORT))),
            min_workers=min(4, max_workers),
            max_workers=max_workers,
            timeout=float(os.getenv("HELLO_TIMEOUT", "30")),
            log_level=os.getenv("HELLO_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called once when the server is constructed so a bad value fails
        at startup rather than on the first request.

        Raises:
            ValueError: If any value is out of range.
        """
        if not self.host:
            raise ValueError("host must not be empty")

        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.max_header_size < 1024:
            raise ValueError("max_header_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.keep_alive_timeout <= 0:
            raise ValueError("keep_alive_timeout must be > 0")
