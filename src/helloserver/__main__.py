"""
=============================================================================
HELLO SERVER CLI ENTRY POINT
=============================================================================

    # Run with defaults (127.0.0.1:3000)
    python -m helloserver

    # Environment overrides
    HOST=0.0.0.0 PORT=8000 python -m helloserver

    # Flags win over the environment
    python -m helloserver --port 8000 --log-level DEBUG

Exit status:
    0  stopped by SIGINT / SIGTERM
    1  could not bind, listening socket failed, or invalid configuration

=============================================================================
"""

import argparse
import logging
import sys

from . import __version__
from .config import ServerConfig
from .core import BindError
from .server import create_server


logger = logging.getLogger("helloserver")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hello-server",
        description='HTTP server that answers every request with "Hello, World!"',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  hello-server                          # 127.0.0.1:3000
  hello-server --port 8000              # Custom port
  HOST=0.0.0.0 PORT=8000 hello-server   # From the environment
        """,
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS (default: environment, then built-in defaults)
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=None,
        help="Host to bind to (default: $HOST or 127.0.0.1)",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="Port to listen on (default: $PORT or 3000)",
    )

    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=None,
        help="Maximum worker threads (default: $HELLO_WORKERS or 16)",
    )
    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: $HELLO_LOG_LEVEL or INFO)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"helloserver {__version__}",
    )

    return parser


def load_config(args: argparse.Namespace) -> ServerConfig:
    """Environment first, then any flags given on the command line."""
    config = ServerConfig.from_env()

    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.workers is not None:
        config.max_workers = args.workers
        config.min_workers = min(config.min_workers, args.workers)
    if args.log_level is not None:
        config.log_level = args.log_level

    return config


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        server = create_server(load_config(args))
    except ValueError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 1

    try:
        server.run()
    except BindError as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        logger.exception(f"Listening socket failed: {e}")
        print(f"Error: listening socket failed: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
