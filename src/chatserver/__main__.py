"""
=============================================================================
CHAT SERVER CLI ENTRY POINT
=============================================================================

    # Run with defaults (127.0.0.1:8080)
    python -m chatserver

    # Custom listen address
    python -m chatserver --listen 0.0.0.0:9000

    # Verbose, JSON access log
    python -m chatserver --log-level DEBUG --log-format json

Environment variables (CHAT_HOST, CHAT_PORT, ...) provide the defaults;
command-line options override them.

=============================================================================
"""

import argparse
import sys

from . import __version__
from .server import ChatServer
from .config import ServerConfig, parse_listen_address, LOG_LEVELS, LOG_FORMATS


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatserver",
        description="Multi-user TCP chat server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m chatserver                          # 127.0.0.1:8080
  python -m chatserver --listen 0.0.0.0:9000    # All interfaces
  python -m chatserver --queue-size 1024        # Larger dispatch queue
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--listen", "-L",
        metavar="HOST:PORT",
        default=None,
        help="Address to listen on (default: 127.0.0.1:8080 or CHAT_HOST/CHAT_PORT)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # DISPATCH ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--queue-size", "-q",
        type=int,
        default=None,
        help="Capacity of the dispatcher event queue (1-1024, default: 256)"
    )

    parser.add_argument(
        "--max-line",
        type=int,
        default=None,
        help="Maximum inbound line length in bytes (default: 4096)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=LOG_LEVELS,
        default=None,
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        default=None,
        help="Access log format (default: text)"
    )

    parser.add_argument(
        "--no-banner",
        action="store_true",
        help="Don't print the startup banner"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"chatserver {__version__}"
    )

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Environment first, CLI on top
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        parser.error(f"Invalid environment configuration: {e}")

    if args.listen:
        try:
            config.host, config.port = parse_listen_address(args.listen)
        except ValueError as e:
            parser.error(str(e))
    if args.queue_size is not None:
        config.queue_size = args.queue_size
    if args.max_line is not None:
        config.max_line_length = args.max_line
    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format
    if args.no_banner:
        config.show_banner = False

    try:
        server = ChatServer(config)
    except ValueError as e:
        parser.error(str(e))

    try:
        server.run()
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
