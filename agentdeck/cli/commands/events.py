"""
Event feed commands.
"""

from argparse import ArgumentParser, Namespace
import json
import threading
from typing import TYPE_CHECKING, ClassVar, Optional

from rich.console import Console

from ..._exceptions import AgentDeckError
from ...events import HeartbeatEvent, StreamEvent
from ...filtering import extract_session_id, is_event_for_session
from ..base import Command, CommandGroup

if TYPE_CHECKING:
    from ...client import StreamClient


class WatchCommand(Command):
    """Print events as they arrive."""

    name = "watch"
    aliases: ClassVar[list[str]] = ["tail"]
    description = "Print events until interrupted"

    def add_arguments(self, parser: ArgumentParser) -> None:
        parser.add_argument("--session", help="Only show events for this session")
        parser.add_argument("--json", action="store_true", help="Print raw JSON lines")
        parser.add_argument(
            "--heartbeats", action="store_true", help="Include keep-alive events"
        )

    def execute(self, args: Namespace, client: Optional["StreamClient"] = None) -> int:
        if not client:
            print("❌ Not connected")
            return 1

        console = Console()
        stopped = threading.Event()
        errors: list[AgentDeckError] = []

        def on_event(event: StreamEvent) -> None:
            if isinstance(event, HeartbeatEvent) and not args.heartbeats:
                return
            if args.session and not is_event_for_session(event, args.session):
                return
            if args.json:
                print(json.dumps(event.raw, default=str), flush=True)
                return
            session_id = extract_session_id(event) or "-"
            console.print(
                f"[cyan]{event.wire_type}[/cyan] [dim]session={session_id}[/dim]",
                highlight=False,
            )

        def on_error(error: AgentDeckError) -> None:
            errors.append(error)
            stopped.set()

        try:
            subscription = client.subscribe_to_events(on_event, on_error=on_error)
        except AgentDeckError as e:
            print(f"❌ Could not open event stream: {e}")
            return 1

        print(f"👀 Watching {client.base_url}/event (Ctrl-C to stop)")
        try:
            # Short waits keep Ctrl-C responsive.
            while not stopped.wait(0.5):
                pass
        finally:
            subscription.close()

        if errors:
            print(f"❌ {errors[0]}")
            return 1
        return 0


class EventsCommandGroup(CommandGroup):
    """Event feed command group."""

    name = "events"
    aliases: ClassVar[list[str]] = ["ev"]
    description = "Inspect the server event feed"
    commands = (WatchCommand,)
