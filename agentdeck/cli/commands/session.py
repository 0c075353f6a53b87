"""
Session commands: list, create, messages, abort and prompt.
"""

from argparse import ArgumentParser, Namespace
import threading
from typing import TYPE_CHECKING, ClassVar, Optional
import uuid

from ..._exceptions import AgentDeckError
from ..._types import Session
from ...conversation import AgentConversation, agent_key
from ...registry import ConnectionRegistry
from ...store import AgentSnapshot, MessageStore
from ..base import Command, CommandGroup
from ..display import create_display

if TYPE_CHECKING:
    from ...client import StreamClient

FORMATS = ["verbose", "compact", "json"]


def _last_activity(session: Session) -> float:
    stamp = session.updated or session.created
    return stamp.timestamp() if stamp else 0.0


class ListSessionsCommand(Command):
    """List sessions command."""

    name = "list"
    aliases: ClassVar[list[str]] = ["ls"]
    description = "List sessions on the server"

    def add_arguments(self, parser: ArgumentParser) -> None:
        parser.add_argument("--limit", type=int, default=20, help="Maximum sessions to show")

    def execute(self, args: Namespace, client: Optional["StreamClient"] = None) -> int:
        if not client:
            print("❌ Not connected")
            return 1
        try:
            sessions = client.list_sessions()
        except AgentDeckError as e:
            print(f"❌ Error listing sessions: {e}")
            return 1

        if not sessions:
            print("No sessions yet. Create one with: agentdeck session create")
            return 0

        sessions.sort(key=_last_activity, reverse=True)
        print(f"\n💬 Sessions ({len(sessions)}):\n")
        for session in sessions[: args.limit]:
            updated = session.updated.strftime("%Y-%m-%d %H:%M") if session.updated else "-"
            print(f"  {session.id}  {updated}  {session.title or '(untitled)'}")
        print()
        return 0


class CreateSessionCommand(Command):
    """Create session command."""

    name = "create"
    aliases: ClassVar[list[str]] = ["new"]
    description = "Create a new session"

    def add_arguments(self, parser: ArgumentParser) -> None:
        parser.add_argument("--title", help="Session title")

    def execute(self, args: Namespace, client: Optional["StreamClient"] = None) -> int:
        if not client:
            print("❌ Not connected")
            return 1
        try:
            session = client.create_session(args.title)
        except AgentDeckError as e:
            print(f"❌ Error creating session: {e}")
            return 1
        print(f"✅ Created session {session.id}")
        return 0


class MessagesCommand(Command):
    """Show a session's messages."""

    name = "messages"
    aliases: ClassVar[list[str]] = ["history"]
    description = "Show the messages of a session"

    def add_arguments(self, parser: ArgumentParser) -> None:
        parser.add_argument("session_id", help="Session ID")
        parser.add_argument("--format", choices=FORMATS, default="verbose", help="Output format")

    def execute(self, args: Namespace, client: Optional["StreamClient"] = None) -> int:
        if not client:
            print("❌ Not connected")
            return 1
        try:
            messages = client.get_session_messages(args.session_id)
        except AgentDeckError as e:
            print(f"❌ Error getting messages: {e}")
            return 1

        display = create_display(args.format)
        for message in messages:
            display.render_message(message)
        return 0


class AbortCommand(Command):
    """Abort a running session."""

    name = "abort"
    aliases: ClassVar[list[str]] = ["stop"]
    description = "Stop the assistant working on a session"

    def add_arguments(self, parser: ArgumentParser) -> None:
        parser.add_argument("session_id", help="Session ID")

    def execute(self, args: Namespace, client: Optional["StreamClient"] = None) -> int:
        if not client:
            print("❌ Not connected")
            return 1
        try:
            aborted = client.abort_session(args.session_id)
        except AgentDeckError as e:
            print(f"❌ Error aborting session: {e}")
            return 1
        if not aborted:
            print(f"⚠️  Session {args.session_id} was not running")
            return 0
        print(f"🛑 Aborted session {args.session_id}")
        return 0


class PromptCommand(Command):
    """Send a prompt and stream the reply."""

    name = "prompt"
    aliases: ClassVar[list[str]] = ["ask"]
    description = "Send a prompt and stream the reply"

    def add_arguments(self, parser: ArgumentParser) -> None:
        parser.add_argument("text", help="Prompt text")
        parser.add_argument("--session", help="Existing session ID (default: create one)")
        parser.add_argument("--title", help="Title for a newly created session")
        parser.add_argument("--model", help="Model as provider/model-id")
        parser.add_argument("--agent", help="Agent profile name")
        parser.add_argument(
            "--sync", action="store_true", help="Wait for the full reply instead of streaming"
        )
        parser.add_argument(
            "--timeout", type=float, help="Give up after this many seconds without finishing"
        )
        parser.add_argument("--format", choices=FORMATS, default="verbose", help="Output format")

    def execute(self, args: Namespace, client: Optional["StreamClient"] = None) -> int:
        if not client:
            print("❌ Not connected")
            return 1
        try:
            if args.sync:
                return self._run_sync(args, client)
            return self._run_streaming(args, client)
        except ValueError as e:
            print(f"❌ {e}")
            return 1
        except AgentDeckError as e:
            print(f"❌ Prompt failed: {e}")
            return 1

    def _run_sync(self, args: Namespace, client: "StreamClient") -> int:
        session_id = args.session or client.create_session(args.title).id
        reply = client.send_prompt(session_id, args.text, model=args.model, agent=args.agent)
        create_display(args.format).render_message(reply)
        return 0

    def _run_streaming(self, args: Namespace, client: "StreamClient") -> int:
        config = args.config
        display = create_display(args.format)
        store = MessageStore()
        finished = threading.Event()
        lost: list[AgentDeckError] = []
        seen_busy = False

        def on_update(_key: str, snapshot: AgentSnapshot) -> None:
            nonlocal seen_busy
            display.on_update(snapshot)
            if snapshot.loading:
                seen_busy = True
            elif seen_busy:
                finished.set()

        def on_connection_lost(_key: str, error: AgentDeckError) -> None:
            lost.append(error)
            finished.set()

        registry = ConnectionRegistry.from_config(
            config, client_factory=lambda: client, on_connection_lost=on_connection_lost
        )
        key = agent_key("cli", uuid.uuid4().hex[:8])
        store.subscribe(key, on_update)
        conversation = AgentConversation(
            registry,
            store,
            key,
            client.base_url or "",
            session_id=args.session,
            ready_retries=config.ready_retries,
            ready_delay=config.ready_delay,
            on_event=display.on_event,
        )
        try:
            conversation.start(args.title, timeout=config.handshake_timeout)
            display.start()
            conversation.send(args.text, model=args.model, agent=args.agent)
            if not finished.wait(args.timeout):
                print(f"\n⚠️  No reply within {args.timeout}s; aborting")
                conversation.abort()
                return 1
        finally:
            display.finish()
            conversation.close()
            registry.close()

        if lost:
            print(f"❌ Connection lost: {lost[0]}")
            return 1
        return 0


class SessionCommandGroup(CommandGroup):
    """Session management command group."""

    name = "session"
    aliases: ClassVar[list[str]] = ["s"]
    description = "Manage sessions and send prompts"
    commands = (
        ListSessionsCommand,
        CreateSessionCommand,
        MessagesCommand,
        AbortCommand,
        PromptCommand,
    )
