"""
Command base classes.

Every invocation has the shape ``agentdeck <group> <command>``. Groups are
the only top-level entries; each one builds its subcommands from the
``commands`` tuple and dispatches to them by name or alias.
"""

from abc import ABC, abstractmethod
from argparse import ArgumentParser, Namespace
from typing import TYPE_CHECKING, ClassVar, Optional

if TYPE_CHECKING:
    from ..client import StreamClient


class Command(ABC):
    """A single CLI action run against a connected client."""

    name: ClassVar[str] = ""
    aliases: ClassVar[list[str]] = []
    description: ClassVar[str] = ""

    @abstractmethod
    def add_arguments(self, parser: ArgumentParser) -> None:
        """Add command-specific arguments to the argument parser."""

    @abstractmethod
    def execute(self, args: Namespace, client: Optional["StreamClient"] = None) -> int:
        """
        Run the command.

        Returns:
            Exit code (0 for success, non-zero for error)
        """

    def get_all_names(self) -> list[str]:
        return [self.name, *self.aliases]


class CommandGroup(Command):
    """Top-level command owning a fixed set of subcommands."""

    commands: ClassVar[tuple[type[Command], ...]] = ()

    def __init__(self) -> None:
        self.subcommands: list[Command] = [command_class() for command_class in self.commands]

    @property
    def dest(self) -> str:
        """Namespace attribute holding the chosen subcommand name."""
        return f"{self.name}_command"

    def find(self, name: str) -> Command | None:
        for command in self.subcommands:
            if name in command.get_all_names():
                return command
        return None

    def add_arguments(self, parser: ArgumentParser) -> None:
        subparsers = parser.add_subparsers(dest=self.dest, metavar="COMMAND")
        for command in self.subcommands:
            subparser = subparsers.add_parser(
                command.name, aliases=command.aliases, help=command.description
            )
            command.add_arguments(subparser)

    def execute(self, args: Namespace, client: Optional["StreamClient"] = None) -> int:
        name = getattr(args, self.dest, None)
        command = self.find(name) if name else None
        if command is None:
            choices = "|".join(c.name for c in self.subcommands)
            print(f"❌ Usage: agentdeck {self.name} {{{choices}}}")
            return 1
        return command.execute(args, client)
