"""Base plugin classes and plugin records."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mursfoto_core.core import PluginContext
    from mursfoto_core.errors import PluginLoadError


class PluginState(Enum):
    """Plugin load states."""

    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass
class PluginMetadata:
    """Plugin metadata."""

    name: str
    version: str = "0.0.0"
    description: str = ""
    author: str = ""
    requires: list[str] = field(default_factory=list)
    # hook name -> name of the handle method to attach
    hooks: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "author": self.author,
            "requires": list(self.requires),
            "hooks": dict(self.hooks),
        }


class Plugin(ABC):
    """Base plugin class.

    Subclasses set ``metadata`` and register their commands from
    ``initialize``. The instance becomes the plugin handle.
    """

    metadata: PluginMetadata

    @abstractmethod
    def initialize(self, context: PluginContext, options: dict[str, Any]) -> None:
        """Initialize plugin and register its commands.

        Args:
            context: Core facade scoped to this plugin
            options: Load options for this plugin
        """
        pass

    def shutdown(self) -> None:
        """Clean up plugin resources."""
        pass


@dataclass(frozen=True)
class PluginRecord:
    """Point-in-time view of one plugin's lifecycle."""

    name: str
    state: PluginState = PluginState.UNLOADED
    handle: Any = None
    options: dict[str, Any] = field(default_factory=dict)
    error: PluginLoadError | None = None
    metadata: PluginMetadata | None = None
    loaded_at: datetime | None = None

    @property
    def loaded(self) -> bool:
        return self.state is PluginState.LOADED

    @property
    def failed(self) -> bool:
        return self.state is PluginState.FAILED

    def evolve(self, **changes: Any) -> PluginRecord:
        """Return a copy with some fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (the handle is left out)."""
        return {
            "name": self.name,
            "state": self.state.value,
            "version": self.metadata.version if self.metadata else None,
            "description": self.metadata.description if self.metadata else None,
            "options": dict(self.options),
            "error": str(self.error) if self.error else None,
            "loaded_at": self.loaded_at.isoformat() if self.loaded_at else None,
        }
