"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

    SocketServer   Owns the listening socket, runs the accept loop
         │
         │ hands off each accepted connection
         ▼
    ThreadPool     Worker threads pulling connections from a queue
         │
         │ worker processes the connection
         ▼
    Connection     Buffered reads, body skipping, keep-alive, close

=============================================================================
"""

from .socket_server import SocketServer, BindError
from .connection import Connection, ConnectionState
from .thread_pool import ThreadPool

__all__ = [
    "SocketServer",
    "BindError",
    "Connection",
    "ConnectionState",
    "ThreadPool",
]
