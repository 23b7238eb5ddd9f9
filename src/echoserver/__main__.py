"""
=============================================================================
ECHOSERVER CLI ENTRY POINT
=============================================================================

    # Run with environment configuration (HTTP 8080, HTTPS 8443)
    python -m echoserver

    # Custom ports
    python -m echoserver --http-port 3000 --https-port 3443

    # Everything from the environment, one flag overridden
    PROMETHEUS_ENABLED=true python -m echoserver --log-level DEBUG

=============================================================================
CONFIGURATION PRECEDENCE
=============================================================================

    1. Command-line flags (only the ones given)
    2. Environment variables (ServerConfig.from_env)
    3. Defaults

=============================================================================
EXIT CODES
=============================================================================

    0   graceful shutdown after SIGTERM / SIGINT
    1   invalid configuration or a listener could not start

=============================================================================
"""

import argparse
import dataclasses
import logging
import sys

from . import __version__
from .config import ServerConfig
from .server import EchoServer


logger = logging.getLogger("echoserver")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="echoserver",
        description="HTTP/HTTPS echo server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m echoserver                          # Defaults / environment
  python -m echoserver --http-port 3000         # Custom HTTP port
  python -m echoserver --host 127.0.0.1         # Local only
  python -m echoserver --workers 16             # 16-32 worker threads
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=None,
        help="Host to bind to (default: $HOST or 0.0.0.0)"
    )

    parser.add_argument(
        "--http-port", "-p",
        type=int,
        default=None,
        help="HTTP port (default: $HTTP_PORT, $PORT or 8080)"
    )

    parser.add_argument(
        "--https-port",
        type=int,
        default=None,
        help="HTTPS port (default: $HTTPS_PORT or 8443)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # PERFORMANCE ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=None,
        help="Minimum worker threads; the pool may grow to 2x this"
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: $LOG_LEVEL or INFO)"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"echoserver {__version__}"
    )

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    overrides = {}
    if args.host is not None:
        overrides["host"] = args.host
    if args.http_port is not None:
        overrides["http_port"] = args.http_port
    if args.https_port is not None:
        overrides["https_port"] = args.https_port
    if args.workers is not None:
        overrides["min_workers"] = args.workers
        overrides["max_workers"] = args.workers * 2
    if args.log_level is not None:
        overrides["log_level"] = args.log_level

    try:
        config = dataclasses.replace(ServerConfig.from_env(), **overrides)
        server = EchoServer(config)
        server.run()
    except (ValueError, OSError) as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(f"Failed to start: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
