"""Core orchestrator tying the plugin manager and command registry together."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from mursfoto_core import __version__
from mursfoto_core.commands.registry import (
    CORE_OWNER,
    CommandRecord,
    CommandRegistry,
    Handler,
    RegistrationResult,
)
from mursfoto_core.config import CoreConfig
from mursfoto_core.errors import NotInitialized
from mursfoto_core.hooks import DEFAULT_PRIORITY, HookHandler, HookRecord, HookRegistry, HookResult
from mursfoto_core.plugins.base import PluginMetadata, PluginRecord
from mursfoto_core.plugins.manager import PluginManager

logger = logging.getLogger(__name__)


class CoreState(Enum):
    """Core lifecycle states."""

    CONSTRUCTED = "constructed"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class StatusSnapshot:
    """Read-only view of the core, computed on demand."""

    core_version: str
    state: CoreState
    loaded_plugins: int
    registered_commands: int
    config: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "core_version": self.core_version,
            "state": self.state.value,
            "loaded_plugins": self.loaded_plugins,
            "registered_commands": self.registered_commands,
            "config": self.config,
        }


class PluginContext:
    """The core as seen by one plugin.

    Commands registered through the context are owned by the plugin, so
    they can be listed and removed with it.
    """

    def __init__(self, core: MursfotoCore, plugin_name: str) -> None:
        self.core = core
        self.plugin_name = plugin_name
        self.logger = logging.getLogger(f"mursfoto_core.plugins.{plugin_name}")

    @property
    def config(self) -> CoreConfig:
        return self.core.config

    def register_command(
        self,
        command: str,
        handler: Handler,
        *,
        description: str = "",
        aliases: Iterable[str] = (),
        overwrite: bool | None = None,
    ) -> RegistrationResult:
        return self.core.register_command(
            command,
            handler,
            description=description,
            aliases=aliases,
            overwrite=overwrite,
            owner=self.plugin_name,
        )

    def execute_command(
        self,
        command_name: str,
        args: Sequence[str] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> Any:
        return self.core.execute_command(command_name, args, options)

    def register_hook(self, hook: str, handler: HookHandler, *, priority: int = DEFAULT_PRIORITY) -> HookRecord:
        return self.core.register_hook(hook, handler, priority=priority, owner=self.plugin_name)

    def execute_hook(self, hook: str, context: Mapping[str, Any] | None = None) -> list[HookResult]:
        return self.core.execute_hook(hook, context)

    def load_plugin(self, name: str, options: dict[str, Any] | None = None) -> PluginRecord:
        return self.core.load_plugin(name, options)

    def get_status(self) -> StatusSnapshot:
        return self.core.get_status()


class MursfotoCore:
    """Main orchestrator.

    Owns one plugin manager and one command registry. ``initialize()``
    seeds the registry first and only then auto-loads plugins, so plugins
    always see the built-in commands.
    """

    def __init__(self, config: CoreConfig | None = None, **options: Any) -> None:
        """Initialize the core.

        Args:
            config: Complete configuration; mutually exclusive with options
            **options: Configuration keys for ``CoreConfig.from_mapping``
        """
        if config is not None and options:
            raise TypeError("Pass either a CoreConfig or keyword options, not both")
        self.config = config if config is not None else CoreConfig.from_mapping(options)
        self._progress_level = logging.INFO if self.config.verbose else logging.DEBUG

        self.command_registry = CommandRegistry(self.config.command_config)
        self.hook_registry = HookRegistry()
        self.plugin_manager = PluginManager(
            self.config.plugin_config,
            context_factory=lambda name: PluginContext(self, name),
            on_failure=self._release_plugin,
            on_initialized=self._attach_declared_hooks,
            reserved_names=(CORE_OWNER,),
            verbose=self.config.verbose,
        )

        self._state = CoreState.CONSTRUCTED
        self._state_lock = threading.Lock()

    @property
    def state(self) -> CoreState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state is CoreState.READY

    def initialize(self) -> bool:
        """Initialize the core system.

        Returns:
            True once the core is ready

        Raises:
            RegistryInitError: If seeding built-in commands fails
            PluginDiscoveryError: If plugin discovery fails
            NotInitialized: If a previous initialization failed or is
                still running
        """
        with self._state_lock:
            if self._state is CoreState.READY:
                return True
            if self._state is not CoreState.CONSTRUCTED:
                raise NotInitialized(
                    self._state,
                    f"Cannot initialize core in state '{self._state.value}'",
                )
            self._state = CoreState.INITIALIZING

        logger.log(self._progress_level, "Initializing core...")
        try:
            self.command_registry.initialize()
            if self.config.auto_load_plugins:
                self.plugin_manager.auto_load_plugins()
        except BaseException as e:
            self._state = CoreState.FAILED
            logger.error(f"Core initialization failed: {e!r}")
            raise

        self._state = CoreState.READY
        logger.log(self._progress_level, "Core initialized")
        return True

    def load_plugin(self, name: str, options: dict[str, Any] | None = None) -> PluginRecord:
        """Load a plugin."""
        return self.plugin_manager.load_plugin(name, options)

    def unload_plugin(self, name: str) -> PluginRecord:
        """Unload a plugin and drop the commands and hooks it registered.

        Commands the plugin had replaced are restored.
        """
        before = self.plugin_manager.get_plugin(name)
        record = self.plugin_manager.unload_plugin(name)
        if before is not None and before.loaded:
            self._release_plugin(name)
        return record

    def _release_plugin(self, name: str) -> None:
        removed = self.command_registry.unregister_owner(name)
        if removed:
            logger.log(self._progress_level, f"Removed commands of {name}: {', '.join(removed)}")
        self.hook_registry.unregister_owner(name)

    def _attach_declared_hooks(self, name: str, handle: Any, metadata: PluginMetadata) -> None:
        """Register the hooks a plugin lists in its metadata."""
        for hook, attr in metadata.hooks.items():
            handler = getattr(handle, attr, None)
            if not callable(handler):
                raise TypeError(f"Plugin '{name}' declares hook '{hook}' but has no method '{attr}'")
            self.register_hook(hook, handler, owner=name)

    def register_hook(
        self,
        hook: str,
        handler: HookHandler,
        *,
        priority: int = DEFAULT_PRIORITY,
        owner: str = CORE_OWNER,
    ) -> HookRecord:
        """Attach a handler to a hook. Lower priorities run first."""
        return self.hook_registry.register(hook, handler, priority=priority, owner=owner)

    def execute_hook(self, hook: str, context: Mapping[str, Any] | None = None) -> list[HookResult]:
        """Run every handler of a hook.

        Hooks run in any core state, so plugins can fire them while
        loading. Handler errors are collected in the results.
        """
        return self.hook_registry.execute(hook, context)

    def register_command(
        self,
        command: str,
        handler: Handler,
        *,
        description: str = "",
        aliases: Iterable[str] = (),
        overwrite: bool | None = None,
        owner: str = CORE_OWNER,
    ) -> RegistrationResult:
        """Register a command."""
        return self.command_registry.register(
            command,
            handler,
            description=description,
            aliases=aliases,
            overwrite=overwrite,
            owner=owner,
        )

    def execute_command(
        self,
        command_name: str,
        args: Sequence[str] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> Any:
        """Execute a command.

        Raises:
            NotInitialized: If the core is not ready
            UnknownCommand: If no command matches exactly
            CommandExecutionError: If the handler raises
        """
        if self._state is not CoreState.READY:
            raise NotInitialized(self._state)
        return self.command_registry.execute(command_name, args, options)

    def get_loaded_plugins(self) -> list[PluginRecord]:
        """Get the loaded plugins."""
        return self.plugin_manager.get_loaded_plugins()

    def get_registered_commands(self) -> list[CommandRecord]:
        """Get the registered commands."""
        return self.command_registry.get_registered_commands()

    def get_status(self) -> StatusSnapshot:
        """Get a status snapshot. Safe to call in any state."""
        return StatusSnapshot(
            core_version=__version__,
            state=self._state,
            loaded_plugins=len(self.get_loaded_plugins()),
            registered_commands=len(self.get_registered_commands()),
            config=self.config.to_dict(),
        )

    def shutdown(self) -> None:
        """Unload every plugin and drop the commands and hooks they registered."""
        for name in self.plugin_manager.shutdown_all():
            self._release_plugin(name)
