"""Plugin sources: where plugin names come from and how they resolve."""

from __future__ import annotations

import importlib
import importlib.metadata as metadata
import importlib.util
import inspect
import logging
import sys
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any, Protocol, runtime_checkable

import httpx

from mursfoto_core.config import DEFAULT_ENTRY_POINT_GROUP
from mursfoto_core.plugins.base import Plugin, PluginMetadata

logger = logging.getLogger(__name__)

Initializer = Callable[..., Any]


@runtime_checkable
class PluginSource(Protocol):
    """Something that can list plugin names and resolve them to a target."""

    def discover(self) -> list[str]:
        """List the plugin names this source provides."""
        ...

    def resolve(self, name: str) -> Any | None:
        """Resolve a name to a plugin target, or None if unknown here."""
        ...


@dataclass
class ResolvedPlugin:
    """A plugin target turned into something the manager can run."""

    initializer: Initializer
    handle: Any
    metadata: PluginMetadata


def import_target(target: str) -> Any:
    """Import ``package.module`` or ``package.module:attribute``."""
    module_name, _, attr_path = target.partition(":")
    obj: Any = importlib.import_module(module_name)
    for attr in filter(None, attr_path.split(".")):
        obj = getattr(obj, attr)
    return obj


def _find_plugin_class(module: ModuleType) -> type[Plugin] | None:
    """Find the first concrete Plugin subclass defined in a module."""
    for attr_name in dir(module):
        attr = getattr(module, attr_name)
        if (
            isinstance(attr, type)
            and issubclass(attr, Plugin)
            and attr is not Plugin
            and not inspect.isabstract(attr)
            and attr.__module__ == module.__name__
        ):
            return attr
    return None


def _metadata_for(name: str, obj: Any) -> PluginMetadata:
    meta = getattr(obj, "metadata", None)
    if isinstance(meta, PluginMetadata):
        return meta
    return PluginMetadata(name=name)


def prepare_plugin(name: str, target: Any) -> ResolvedPlugin:
    """Turn a resolved target into an initializer and a handle.

    Accepted targets: an import string, a ``Plugin`` subclass or instance,
    a module exposing ``setup(context, options)`` or a ``Plugin`` subclass,
    or a plain callable initializer.

    Raises:
        TypeError: If the target is none of the above
    """
    if isinstance(target, str):
        target = import_target(target)

    if isinstance(target, type) and issubclass(target, Plugin):
        target = target()

    if isinstance(target, Plugin):
        return ResolvedPlugin(target.initialize, target, _metadata_for(name, target))

    if isinstance(target, ModuleType):
        setup = getattr(target, "setup", None)
        if callable(setup):
            return ResolvedPlugin(setup, target, _metadata_for(name, target))

        plugin_class = _find_plugin_class(target)
        if plugin_class is not None:
            instance = plugin_class()
            return ResolvedPlugin(instance.initialize, instance, _metadata_for(name, instance))

        raise TypeError(f"Module '{target.__name__}' defines no setup() function or Plugin subclass")

    if callable(target):
        return ResolvedPlugin(target, target, _metadata_for(name, target))

    raise TypeError(f"Plugin target for '{name}' is not loadable: {target!r}")


class StaticSource:
    """In-memory mapping of plugin names to targets."""

    def __init__(self, plugins: Mapping[str, Any]) -> None:
        self._plugins = dict(plugins)

    def discover(self) -> list[str]:
        return list(self._plugins)

    def resolve(self, name: str) -> Any | None:
        return self._plugins.get(name)

    def __repr__(self) -> str:
        return f"StaticSource({list(self._plugins)!r})"


class EntryPointSource:
    """Plugins published as package entry points."""

    def __init__(self, group: str = DEFAULT_ENTRY_POINT_GROUP) -> None:
        self.group = group

    def discover(self) -> list[str]:
        return [ep.name for ep in metadata.entry_points(group=self.group)]

    def resolve(self, name: str) -> Any | None:
        ep = next(iter(metadata.entry_points(group=self.group, name=name)), None)
        if ep is None:
            return None
        return ep.load()

    def __repr__(self) -> str:
        return f"EntryPointSource({self.group!r})"


class DirectorySource:
    """Plugins stored as ``*.py`` files in a directory."""

    MODULE_PREFIX = "mursfoto_core_plugins"

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def discover(self) -> list[str]:
        """List plugin files, skipping ``__init__.py`` and private modules.

        A missing directory simply has no plugins.
        """
        if not self.path.exists():
            return []
        if not self.path.is_dir():
            raise NotADirectoryError(f"Plugin path is not a directory: {self.path}")

        return sorted(
            plugin_file.stem
            for plugin_file in self.path.glob("*.py")
            if not plugin_file.name.startswith("_")
        )

    def resolve(self, name: str) -> Any | None:
        plugin_file = self.path / f"{name}.py"
        if not plugin_file.is_file():
            return None

        module_name = f"{self.MODULE_PREFIX}.{name}"
        spec = importlib.util.spec_from_file_location(module_name, plugin_file)
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot load plugin file {plugin_file}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        # Add plugin dir to path temporarily so sibling helpers import
        added = str(self.path) not in sys.path
        if added:
            sys.path.insert(0, str(self.path))
        try:
            spec.loader.exec_module(module)
        except BaseException:
            sys.modules.pop(module_name, None)
            raise
        finally:
            if added and str(self.path) in sys.path:
                sys.path.remove(str(self.path))
        return module

    def __repr__(self) -> str:
        return f"DirectorySource({str(self.path)!r})"


class ManifestSource:
    """Plugins listed in a JSON manifest served over HTTP.

    Manifest format::

        {"plugins": [{"name": "deploy", "target": "acme_deploy.plugin:DeployPlugin"}]}

    Targets must be importable in the current environment; the manifest
    only names them.
    """

    def __init__(
        self,
        url: str,
        client: httpx.Client | None = None,
        timeout: float = 5.0,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client
        self._entries: dict[str, str] | None = None
        self._lock = threading.Lock()

    def _fetch(self) -> dict[str, str]:
        client = self._client or httpx.Client(timeout=self.timeout)
        try:
            response = client.get(self.url)
            response.raise_for_status()
            data = response.json()
        finally:
            if self._client is None:
                client.close()

        if not isinstance(data, dict) or not isinstance(data.get("plugins"), list):
            raise ValueError(f"Manifest at {self.url} has no 'plugins' list")

        entries: dict[str, str] = {}
        for entry in data["plugins"]:
            try:
                entries[str(entry["name"])] = str(entry["target"])
            except (KeyError, TypeError) as e:
                raise ValueError(f"Invalid manifest entry {entry!r}: missing {e}") from e
        logger.debug(f"Fetched {len(entries)} plugin entries from {self.url}")
        return entries

    def _get_entries(self) -> dict[str, str]:
        with self._lock:
            if self._entries is None:
                self._entries = self._fetch()
            return self._entries

    def discover(self) -> list[str]:
        return list(self._get_entries())

    def resolve(self, name: str) -> Any | None:
        target = self._get_entries().get(name)
        if target is None:
            return None
        return import_target(target)

    def __repr__(self) -> str:
        return f"ManifestSource({self.url!r})"
