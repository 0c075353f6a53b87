"""
Server inspection commands: health, providers, agents.
"""

from argparse import ArgumentParser, Namespace
from typing import TYPE_CHECKING, ClassVar, Optional

from rich.console import Console
from rich.table import Table

from ..._exceptions import AgentDeckError
from ..base import Command, CommandGroup

if TYPE_CHECKING:
    from ...client import StreamClient


class HealthCommand(Command):
    """Check server health."""

    name = "health"
    description = "Check whether the server is up"

    def add_arguments(self, parser: ArgumentParser) -> None:
        parser.add_argument(
            "--wait", action="store_true", help="Poll until healthy (uses AGENTDECK_READY_*)"
        )

    def execute(self, args: Namespace, client: Optional["StreamClient"] = None) -> int:
        if not client:
            print("❌ Not connected")
            return 1
        if getattr(args, "wait", False):
            config = args.config
            if not client.wait_for_ready(config.ready_retries, config.ready_delay):
                print(f"❌ Server at {client.base_url} did not become healthy")
                return 1
        try:
            health = client.health_check()
        except AgentDeckError as e:
            print(f"❌ Server at {client.base_url} unreachable: {e}")
            return 1

        if not health.healthy:
            print(f"❌ Server at {client.base_url} reports unhealthy (version {health.version})")
            return 1
        print(f"✅ Server at {client.base_url} is healthy (version {health.version})")
        return 0


class ProvidersCommand(Command):
    """List model providers."""

    name = "providers"
    aliases: ClassVar[list[str]] = ["models"]
    description = "List providers and their models"

    def add_arguments(self, parser: ArgumentParser) -> None:
        parser.add_argument(
            "--connected", action="store_true", help="Only show providers with credentials"
        )

    def execute(self, args: Namespace, client: Optional["StreamClient"] = None) -> int:
        if not client:
            print("❌ Not connected")
            return 1
        try:
            catalog = client.get_providers()
        except AgentDeckError as e:
            print(f"❌ Error listing providers: {e}")
            return 1

        providers = catalog.providers
        if getattr(args, "connected", False) and catalog.connected:
            providers = [p for p in providers if p.id in catalog.connected]
        if not providers:
            print("No providers configured.")
            return 0

        table = Table(title="Providers")
        table.add_column("Model (provider/model)", style="cyan")
        table.add_column("Name")
        table.add_column("Context", justify="right")
        for provider in providers:
            default = catalog.default.get(provider.id)
            for model in provider.models:
                marker = " *" if model.id == default else ""
                context = f"{model.context_limit:,}" if model.context_limit else "-"
                table.add_row(f"{provider.id}/{model.id}{marker}", model.name, context)
        Console().print(table)
        return 0


class AgentsCommand(Command):
    """List agent profiles."""

    name = "agents"
    description = "List agent profiles configured on the server"

    def add_arguments(self, parser: ArgumentParser) -> None:
        pass

    def execute(self, args: Namespace, client: Optional["StreamClient"] = None) -> int:
        if not client:
            print("❌ Not connected")
            return 1
        try:
            agents = client.get_agents()
        except AgentDeckError as e:
            print(f"❌ Error listing agents: {e}")
            return 1

        if not agents:
            print("No agents configured.")
            return 0
        for agent in agents:
            description = f" - {agent.description}" if agent.description else ""
            print(f"🤖 {agent.name} ({agent.mode}){description}")
        return 0


class ServerCommandGroup(CommandGroup):
    """Server inspection command group."""

    name = "server"
    aliases: ClassVar[list[str]] = ["srv"]
    description = "Inspect the assistant server"
    commands = (HealthCommand, ProvidersCommand, AgentsCommand)
