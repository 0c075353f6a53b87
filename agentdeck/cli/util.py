"""
Helpers for graceful CLI shutdown and shared command plumbing.
"""

from __future__ import annotations

from collections.abc import Callable, Generator
import contextlib
import logging
import signal
import sys
from typing import Any

CANCELLED_EXIT = 130  # POSIX: 128 + SIGINT (2)


def _print_cancelled(msg: str = "✖ Cancelled by user") -> None:
    sys.stderr.write("\n" + msg + "\n")
    sys.stderr.flush()


@contextlib.contextmanager
def _suppress_tracebacks() -> Generator[None, None, None]:
    """Context manager that suppresses KeyboardInterrupt tracebacks."""
    old_hook = sys.excepthook

    def _quiet_excepthook(exc_type: type, exc: BaseException, tb: Any) -> Any:
        if exc_type is KeyboardInterrupt:
            _print_cancelled()
            sys.exit(CANCELLED_EXIT)
        return old_hook(exc_type, exc, tb)

    sys.excepthook = _quiet_excepthook
    try:
        yield
    finally:
        sys.excepthook = old_hook


def configure_logging(level: str, verbose: bool = False) -> None:
    """Route library logs to stderr. ``--verbose`` forces DEBUG."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def show_connection_guidance() -> None:
    """Explain how to point the CLI at a server."""
    print("\n💡 No assistant server address")
    print("=" * 50)
    print("\n  Pass the port the server listens on:")
    print("    agentdeck --port 4096 server health")
    print("\n  Or a full base URL:")
    print("    agentdeck --base-url http://127.0.0.1:4096 session list")
    print("\n  Or set it once:")
    print("    export AGENTDECK_PORT=4096")
    print()


def graceful_main(fn: Callable[[list[str]], int], argv: list[str]) -> int:
    """
    Run fn(argv) and handle Ctrl-C/SIGTERM nicely.

    Returns:
        Exit code (130 for cancelled, or fn's return value)
    """

    # Handle SIGTERM like Ctrl-C
    def _term(_signum: int, _frame: Any) -> None:
        raise KeyboardInterrupt()

    old_term = signal.getsignal(signal.SIGTERM)
    signal.signal(signal.SIGTERM, _term)

    try:
        with _suppress_tracebacks():
            return int(fn(argv) or 0)
    except KeyboardInterrupt:
        _print_cancelled()
        return CANCELLED_EXIT
    finally:
        signal.signal(signal.SIGTERM, old_term)
