"""Command registry: name to handler mapping and dispatch."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from mursfoto_core.config import CommandConfig
from mursfoto_core.errors import (
    CommandExecutionError,
    DuplicateCommand,
    RegistryInitError,
    UnknownCommand,
)
from mursfoto_core.suggest import suggest_names

logger = logging.getLogger(__name__)

CORE_OWNER = "core"

Handler = Callable[[list[str], dict[str, Any]], Any]


@dataclass(frozen=True)
class CommandRecord:
    """A registered command."""

    name: str
    handler: Handler
    description: str = ""
    aliases: tuple[str, ...] = ()
    owner: str = CORE_OWNER
    registered_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (the handler is left out)."""
        return {
            "name": self.name,
            "description": self.description,
            "aliases": list(self.aliases),
            "owner": self.owner,
            "registered_at": self.registered_at.isoformat(),
        }


@dataclass(frozen=True)
class RegistrationResult:
    """Outcome of a successful registration."""

    command: str
    owner: str
    replaced: bool = False
    previous_owner: str | None = None


def _check_name(kind: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{kind} must be a non-empty string, got {value!r}")
    return value


class CommandRegistry:
    """Holds registered commands and executes them by exact name.

    Lookups try the command name first, then aliases. Nothing is matched
    inexactly; similar names only show up as suggestions in
    ``UnknownCommand``.

    A command replaced by another owner is kept aside and comes back when
    the replacing owner is released with ``unregister_owner``.
    """

    def __init__(self, config: CommandConfig | None = None) -> None:
        self.config = config or CommandConfig()
        self._commands: dict[str, CommandRecord] = {}
        self._aliases: dict[str, str] = {}
        self._shadowed: dict[str, list[CommandRecord]] = {}
        self._lock = threading.Lock()
        self._init_lock = threading.Lock()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """Seed built-in commands. Calling it again has no effect.

        Raises:
            RegistryInitError: If registering a built-in fails
        """
        with self._init_lock:
            if self._initialized:
                return

            if self.config.builtins:
                from mursfoto_core.commands.builtin import register_builtins

                with self._lock:
                    existing = set(self._commands)
                try:
                    register_builtins(self)
                except Exception as e:
                    with self._lock:
                        seeded = [name for name in self._commands if name not in existing]
                    for name in seeded:
                        self.unregister(name)
                    raise RegistryInitError(e) from e

            self._initialized = True
            logger.debug(f"Command registry initialized with {len(self)} command(s)")

    def _holder_of(self, key: str) -> str | None:
        """Name of the command that owns ``key`` as its name or an alias."""
        if key in self._commands:
            return key
        return self._aliases.get(key)

    def register(
        self,
        command: str,
        handler: Handler,
        *,
        description: str = "",
        aliases: Iterable[str] = (),
        overwrite: bool | None = None,
        owner: str = CORE_OWNER,
    ) -> RegistrationResult:
        """Register a command.

        Args:
            command: Command name
            handler: Callable taking ``(args, options)``
            description: Human readable summary
            aliases: Extra exact names that dispatch to this command
            overwrite: Replace an existing command of the same name;
                defaults to ``config.allow_overwrite``
            owner: Plugin name, or "core" for built-ins

        Returns:
            Registration result

        Raises:
            DuplicateCommand: If the name or an alias is taken and may not
                be replaced; nothing is changed
        """
        _check_name("Command name", command)
        if not callable(handler):
            raise TypeError(f"Handler for '{command}' must be callable")
        alias_names = tuple(
            dict.fromkeys(_check_name("Alias", a) for a in aliases if a != command)
        )
        if overwrite is None:
            overwrite = self.config.allow_overwrite

        record = CommandRecord(
            name=command,
            handler=handler,
            description=description,
            aliases=alias_names,
            owner=owner,
        )

        with self._lock:
            previous = self._commands.get(command)
            for key in (command, *alias_names):
                holder = self._holder_of(key)
                if holder is None:
                    continue
                # Overwrite only ever replaces the command of the same name
                if overwrite and holder == command:
                    continue
                raise DuplicateCommand(key, self._commands[holder].owner)

            if previous is not None:
                for alias in previous.aliases:
                    self._aliases.pop(alias, None)
                if previous.owner != owner:
                    self._shadowed.setdefault(command, []).append(previous)
            self._commands[command] = record
            for alias in alias_names:
                self._aliases[alias] = command

        if previous is not None:
            logger.info(f"Command '{command}' from {previous.owner} replaced by {owner}")
        else:
            logger.debug(f"Registered command '{command}' ({owner})")

        return RegistrationResult(
            command=command,
            owner=owner,
            replaced=previous is not None,
            previous_owner=previous.owner if previous else None,
        )

    def get_command(self, name: str) -> CommandRecord | None:
        """Get a command by exact name or alias."""
        with self._lock:
            holder = self._holder_of(name)
            return self._commands.get(holder) if holder else None

    def execute(
        self,
        command_name: str,
        args: Sequence[str] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> Any:
        """Execute a command by exact name.

        Args:
            command_name: Command name or alias
            args: Positional arguments passed to the handler
            options: Keyword options passed to the handler

        Returns:
            Whatever the handler returns

        Raises:
            UnknownCommand: If no command has this name or alias
            CommandExecutionError: If the handler raises
        """
        with self._lock:
            holder = self._holder_of(command_name)
            record = self._commands.get(holder) if holder else None
            if record is None:
                known = [*self._commands, *self._aliases]

        if record is None:
            raise UnknownCommand(command_name, suggest_names(command_name, known))

        try:
            return record.handler(list(args or []), dict(options or {}))
        except Exception as e:
            logger.debug(f"Command '{record.name}' raised {type(e).__name__}: {e}")
            raise CommandExecutionError(record.name, e) from e

    def unregister(self, name: str) -> bool:
        """Remove a command (and its aliases) by name.

        Commands it had replaced are dropped as well.
        """
        with self._lock:
            record = self._commands.pop(name, None)
            if record is None:
                return False
            for alias in record.aliases:
                self._aliases.pop(alias, None)
            self._shadowed.pop(name, None)
        logger.debug(f"Unregistered command '{name}'")
        return True

    def _restore(self, name: str) -> CommandRecord | None:
        """Put back the most recent command replaced under ``name``.

        Caller holds the lock and has already released the current
        record's aliases. Aliases taken in the meantime stay with their
        new holder.
        """
        stack = self._shadowed.get(name)
        if not stack:
            return None
        previous = stack.pop()
        if not stack:
            del self._shadowed[name]

        aliases = tuple(a for a in previous.aliases if self._holder_of(a) is None)
        restored = replace(previous, aliases=aliases)
        self._commands[name] = restored
        for alias in aliases:
            self._aliases[alias] = name
        return restored

    def unregister_owner(self, owner: str) -> list[str]:
        """Remove every command registered by ``owner``.

        Commands the owner had replaced are restored in place.

        Returns:
            Names of the removed commands
        """
        restored = []
        with self._lock:
            for name in list(self._shadowed):
                kept = [r for r in self._shadowed[name] if r.owner != owner]
                if kept:
                    self._shadowed[name] = kept
                else:
                    del self._shadowed[name]

            names = [name for name, record in self._commands.items() if record.owner == owner]
            for name in names:
                record = self._commands[name]
                for alias in record.aliases:
                    self._aliases.pop(alias, None)
                previous = self._restore(name)
                if previous is None:
                    del self._commands[name]
                else:
                    restored.append(previous)
        if names:
            logger.debug(f"Removed {len(names)} command(s) owned by {owner}")
        for record in restored:
            logger.info(f"Command '{record.name}' restored to {record.owner}")
        return names

    def get_registered_commands(self) -> list[CommandRecord]:
        """Get registered commands in insertion order."""
        with self._lock:
            return list(self._commands.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._commands)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return isinstance(name, str) and self._holder_of(name) is not None
