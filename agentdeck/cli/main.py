"""
Main CLI entry point for agentdeck.

Inspect a running assistant server, manage its sessions and stream replies.
"""

import argparse
import logging
import sys

from agentdeck import __version__

from ..client import StreamClient
from ..config import ClientConfig
from .registry import registry
from .util import configure_logging, graceful_main, show_connection_guidance

logger = logging.getLogger(__name__)


def create_client(
    config: ClientConfig, port: int | None = None, base_url: str | None = None
) -> StreamClient | None:
    """Create a client for the given address, or None when none is known."""
    endpoint: str | int | None = base_url or port or config.port
    if endpoint is None:
        return None
    return StreamClient.from_config(config, endpoint)


def _real_main(argv: list[str]) -> int:
    """Real main CLI logic that handles command parsing and execution."""
    parser = argparse.ArgumentParser(
        prog="agentdeck",
        description="Talk to a local AI coding-assistant server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # Global arguments
    parser.add_argument("--port", type=int, help="Server port (or set AGENTDECK_PORT)")
    parser.add_argument("--base-url", help="Full server base URL, e.g. http://127.0.0.1:4096")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    registry.add_parsers(subparsers)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    try:
        config = ClientConfig.from_env()
    except ValueError as e:
        print(f"❌ {e}")
        return 1
    configure_logging(config.log_level, verbose=args.verbose)
    # Commands read timeouts and readiness settings from here
    args.config = config

    try:
        command = registry.get_command(args.command)
    except KeyError:
        print(f"❌ Unknown command: {args.command}")
        return 1

    try:
        client = create_client(config, args.port, args.base_url)
    except ValueError as e:
        print(f"❌ {e}")
        return 1
    if client is None:
        show_connection_guidance()
        return 1

    try:
        return command.execute(args, client)
    except Exception as e:
        logger.debug("Command failed", exc_info=True)
        print(f"❌ Command execution failed: {e}")
        return 1
    finally:
        if client is not None:
            client.disconnect()


def main() -> None:
    """Main CLI entry point with graceful interrupt handling."""
    code = graceful_main(_real_main, sys.argv[1:])
    raise SystemExit(code)


if __name__ == "__main__":
    main()
