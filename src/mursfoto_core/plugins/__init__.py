"""Plugin system: discovery, loading and lifecycle tracking."""

from .base import Plugin, PluginMetadata, PluginRecord, PluginState
from .manager import PluginManager
from .sources import DirectorySource, EntryPointSource, ManifestSource, PluginSource, StaticSource

__all__ = [
    "PluginManager",
    "Plugin",
    "PluginMetadata",
    "PluginRecord",
    "PluginState",
    "PluginSource",
    "DirectorySource",
    "EntryPointSource",
    "ManifestSource",
    "StaticSource",
]
