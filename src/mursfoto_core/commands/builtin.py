"""Built-in commands seeded by the command registry."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from mursfoto_core.errors import UnknownCommand

if TYPE_CHECKING:
    from mursfoto_core.commands.registry import CommandRegistry


def make_help(registry: CommandRegistry):
    """Build the ``help`` handler for a registry."""

    def help_command(args: list[str], options: dict[str, Any]) -> list[dict[str, Any]]:
        """List commands, or describe the commands named in ``args``."""
        if not args:
            return [record.to_dict() for record in registry.get_registered_commands()]

        described = []
        for name in args:
            record = registry.get_command(name)
            if record is None:
                raise UnknownCommand(name)
            described.append(record.to_dict())
        return described

    return help_command


def version_command(args: list[str], options: dict[str, Any]) -> str:
    """Report the core version."""
    from mursfoto_core import __version__

    return __version__


def register_builtins(registry: CommandRegistry) -> None:
    """Register the built-in commands."""
    registry.register(
        "help",
        make_help(registry),
        description="List registered commands or describe one",
        aliases=("?",),
    )
    registry.register(
        "version",
        version_command,
        description="Show the core version",
    )
