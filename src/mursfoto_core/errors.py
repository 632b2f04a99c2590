"""Exception hierarchy for the plugin and command core."""

from __future__ import annotations

from typing import Any


class MursfotoCoreError(Exception):
    """Base exception for all core errors."""


class ConfigError(MursfotoCoreError, ValueError):
    """Invalid core configuration."""

    def __init__(self, message: str, unknown_keys: list[str] | None = None) -> None:
        super().__init__(message)
        self.unknown_keys = unknown_keys or []


class PluginError(MursfotoCoreError):
    """Base exception for plugin errors."""


class PluginLoadError(PluginError):
    """A single plugin failed to resolve or initialize."""

    def __init__(self, plugin_name: str, cause: BaseException) -> None:
        super().__init__(f"Failed to load plugin '{plugin_name}': {cause}")
        self.plugin_name = plugin_name
        self.cause = cause
        self.__cause__ = cause


class PluginDiscoveryError(PluginError):
    """A plugin source could not list its candidates."""

    def __init__(self, source: Any, cause: BaseException) -> None:
        super().__init__(f"Plugin discovery failed in {source!r}: {cause}")
        self.source = source
        self.cause = cause
        self.__cause__ = cause


class CommandError(MursfotoCoreError):
    """Base exception for command registry errors."""

    def __init__(self, message: str, command: str) -> None:
        super().__init__(message)
        self.command = command


class RegistryInitError(MursfotoCoreError):
    """Seeding the built-in commands failed."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Command registry initialization failed: {cause}")
        self.cause = cause
        self.__cause__ = cause


class DuplicateCommand(CommandError):
    """A command name or alias is already registered."""

    def __init__(self, command: str, existing_owner: str) -> None:
        super().__init__(
            f"Command '{command}' is already registered by '{existing_owner}'",
            command,
        )
        self.existing_owner = existing_owner


class UnknownCommand(CommandError):
    """No command matches the requested name exactly."""

    def __init__(self, command: str, suggestions: list[str] | None = None) -> None:
        message = f"Unknown command: '{command}'"
        if suggestions:
            message += f" (did you mean: {', '.join(suggestions)}?)"
        super().__init__(message, command)
        self.suggestions = suggestions or []


class CommandExecutionError(CommandError):
    """A command handler raised."""

    def __init__(self, command: str, cause: BaseException) -> None:
        super().__init__(f"Command '{command}' failed: {cause}", command)
        self.cause = cause
        self.__cause__ = cause


class NotInitialized(MursfotoCoreError):
    """The core is not in the ready state."""

    def __init__(self, state: Any, message: str | None = None) -> None:
        state_value = getattr(state, "value", state)
        super().__init__(message or f"Core is not ready (state: {state_value})")
        self.state = state
