"""
Top-level command groups of the ``agentdeck`` CLI.
"""

from typing import Any

from .base import CommandGroup
from .commands.events import EventsCommandGroup
from .commands.server import ServerCommandGroup
from .commands.session import SessionCommandGroup

# Help output lists groups in this order.
COMMAND_GROUPS: tuple[type[CommandGroup], ...] = (
    ServerCommandGroup,
    SessionCommandGroup,
    EventsCommandGroup,
)


class CommandRegistry:
    """Instantiates each group once and resolves names and aliases to it."""

    def __init__(self, group_classes: tuple[type[CommandGroup], ...] = COMMAND_GROUPS) -> None:
        self.groups: list[CommandGroup] = [group_class() for group_class in group_classes]
        self._by_name: dict[str, CommandGroup] = {}
        for group in self.groups:
            for name in group.get_all_names():
                if name in self._by_name:
                    raise ValueError(
                        f"'{name}' is claimed by both '{self._by_name[name].name}' "
                        f"and '{group.name}'"
                    )
                self._by_name[name] = group

    def add_parsers(self, subparsers: Any) -> None:
        """Add one subparser per group to an ``add_subparsers()`` action."""
        for group in self.groups:
            parser = subparsers.add_parser(
                group.name, aliases=group.aliases, help=group.description
            )
            group.add_arguments(parser)

    def get_command(self, name: str) -> CommandGroup:
        """
        Resolve a group by name or alias.

        Raises:
            KeyError: If no group uses the name
        """
        try:
            return self._by_name[name]
        except KeyError:
            raise KeyError(f"Command '{name}' not found") from None


registry = CommandRegistry()
