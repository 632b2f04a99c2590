"""Mursfoto Core - plugin loading and command dispatch for the Mursfoto CLI."""

__version__ = "1.0.0"


# Core components - lazy imports to avoid circular dependencies
def __getattr__(name: str):
    """Lazy import to avoid circular dependencies."""
    if name == "MursfotoCore":
        from mursfoto_core.core import MursfotoCore
        return MursfotoCore
    elif name == "CoreConfig":
        from mursfoto_core.config import CoreConfig
        return CoreConfig
    elif name == "PluginManager":
        from mursfoto_core.plugins.manager import PluginManager
        return PluginManager
    elif name == "CommandRegistry":
        from mursfoto_core.commands.registry import CommandRegistry
        return CommandRegistry
    elif name == "Plugin":
        from mursfoto_core.plugins.base import Plugin
        return Plugin
    elif name == "HookRegistry":
        from mursfoto_core.hooks import HookRegistry
        return HookRegistry
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    "MursfotoCore",
    "CoreConfig",
    "PluginManager",
    "CommandRegistry",
    "Plugin",
    "HookRegistry",
]
