"""
=============================================================================
HELLOSERVER - A Static "Hello, World!" HTTP Responder
=============================================================================

A tiny HTTP/1.1 server on raw sockets. It binds to the loopback interface
(127.0.0.1:3000 by default) and answers every request, whatever its
method, path, headers or body, with:

    HTTP/1.1 200 OK
    Content-Type: text/plain

    Hello, World!

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    helloserver/
    ├── __init__.py          # Package exports
    ├── __main__.py          # CLI entry point (python -m helloserver)
    ├── server.py            # HelloServer: lifecycle + request loop
    ├── config.py            # ServerConfig dataclass
    ├── core/
    │   ├── socket_server.py # Listening socket, BindError
    │   ├── connection.py    # Buffered client connection
    │   └── thread_pool.py   # Worker threads
    ├── http/
    │   ├── request.py       # Request head parsing
    │   ├── response.py      # Response serialization
    │   └── status_codes.py  # HTTPStatus
    └── handlers/
        └── hello.py         # The constant response

=============================================================================
QUICK START
=============================================================================

    from helloserver import HelloServer

    HelloServer().run()      # Server running at http://127.0.0.1:3000/

=============================================================================
"""

__version__ = "1.0.0"

from .server import HelloServer, ServerState, create_server
from .config import ServerConfig
from .core import BindError

__all__ = [
    "HelloServer",
    "ServerState",
    "ServerConfig",
    "BindError",
    "create_server",
    "__version__",
]
