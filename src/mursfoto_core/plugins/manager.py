"""Plugin manager for discovering, loading and tracking plugins."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any

from mursfoto_core.config import PluginConfig
from mursfoto_core.errors import PluginDiscoveryError, PluginLoadError
from mursfoto_core.plugins.base import PluginMetadata, PluginRecord, PluginState
from mursfoto_core.plugins.sources import (
    DirectorySource,
    EntryPointSource,
    PluginSource,
    ResolvedPlugin,
    prepare_plugin,
)

logger = logging.getLogger(__name__)


class CircularPluginLoad(RuntimeError):
    """A plugin was requested again while it was still loading."""


class PluginManager:
    """Manages plugin discovery, loading, and lifecycle.

    Each plugin name has one record for the lifetime of the manager. Loads
    of different names run independently; loads of the same name are
    serialized, so an initializer never runs twice for one load.
    """

    def __init__(
        self,
        config: PluginConfig | None = None,
        context_factory: Callable[[str], Any] | None = None,
        on_failure: Callable[[str], Any] | None = None,
        on_initialized: Callable[[str, Any, PluginMetadata], Any] | None = None,
        reserved_names: Iterable[str] = (),
        verbose: bool = False,
    ) -> None:
        """Initialize plugin manager.

        Args:
            config: Discovery and loading options
            context_factory: Builds the object passed to a plugin's
                initializer, given the plugin name
            on_failure: Called with the plugin name when a load fails, to
                undo whatever the plugin registered before failing
            on_initialized: Called with the name, handle and metadata once
                the initializer returned; raising fails the load
            reserved_names: Names no plugin may take
            verbose: Log progress at INFO instead of DEBUG
        """
        self.config = config or PluginConfig()
        self._context_factory = context_factory or (lambda name: None)
        self._on_failure = on_failure
        self._on_initialized = on_initialized
        self.reserved_names = frozenset(reserved_names)
        self._progress_level = logging.INFO if verbose else logging.DEBUG

        if self.config.sources is not None:
            self.sources: list[PluginSource] = list(self.config.sources)
        else:
            self.sources = [DirectorySource(d) for d in self.config.plugin_dirs]
            self.sources.append(EntryPointSource(self.config.entry_point_group))

        self._records: dict[str, PluginRecord] = {}
        self._name_locks: dict[str, threading.RLock] = {}
        self._lock = threading.Lock()

    def _name_lock(self, name: str) -> threading.RLock:
        with self._lock:
            lock = self._name_locks.get(name)
            if lock is None:
                lock = self._name_locks[name] = threading.RLock()
            return lock

    def _set_record(self, record: PluginRecord) -> None:
        with self._lock:
            self._records[record.name] = record

    def discover(self) -> list[str]:
        """Discover candidate plugin names from every source.

        Returns:
            Plugin names in source order, without duplicates, filtered by
            the enabled/disabled lists

        Raises:
            PluginDiscoveryError: If any source fails to list its plugins
        """
        discovered: list[str] = []
        for source in self.sources:
            try:
                names = source.discover()
            except Exception as e:
                raise PluginDiscoveryError(source, e) from e
            discovered.extend(names)

        candidates = list(dict.fromkeys(discovered))
        if self.config.enabled is not None:
            candidates = [name for name in candidates if name in self.config.enabled]
        return [name for name in candidates if name not in self.config.disabled]

    def _resolve(self, name: str) -> ResolvedPlugin:
        for source in self.sources:
            target = source.resolve(name)
            if target is not None:
                return prepare_plugin(name, target)
        raise LookupError(f"No plugin source provides '{name}'")

    def load_plugin(self, name: str, options: dict[str, Any] | None = None) -> PluginRecord:
        """Load a plugin by name.

        A plugin that is already loaded is returned as-is; its initializer
        does not run again.

        Args:
            name: Plugin name
            options: Forwarded verbatim to the plugin's initializer

        Returns:
            The loaded plugin record

        Raises:
            PluginLoadError: If resolving or initializing the plugin fails;
                the record is left in the failed state
        """
        if not isinstance(name, str) or not name:
            raise ValueError("Plugin name must be a non-empty string")
        options = dict(options or {})

        with self._name_lock(name):
            existing = self.get_plugin(name)
            if existing is not None and existing.state is PluginState.LOADED:
                logger.debug(f"Plugin {name} already loaded")
                return existing
            if existing is not None and existing.state is PluginState.LOADING:
                raise PluginLoadError(name, CircularPluginLoad(f"Plugin '{name}' is already loading"))
            if name in self.reserved_names:
                # Nothing ran, so there is nothing for on_failure to undo
                error = PluginLoadError(name, ValueError(f"Plugin name '{name}' is reserved"))
                self._set_record(PluginRecord(name=name, state=PluginState.FAILED, options=options, error=error))
                raise error

            logger.log(self._progress_level, f"Loading plugin: {name}")
            metadata = existing.metadata if existing else None
            self._set_record(PluginRecord(name=name, state=PluginState.LOADING, options=options, metadata=metadata))

            try:
                resolved = self._resolve(name)
                metadata = resolved.metadata
                for required in metadata.requires:
                    self.load_plugin(required, self.config.options_for(required))
                resolved.initializer(self._context_factory(name), dict(options))
                if self._on_initialized is not None:
                    self._on_initialized(name, resolved.handle, metadata)
            except BaseException as e:
                # SystemExit and KeyboardInterrupt still fail the record,
                # then propagate unwrapped
                error = PluginLoadError(name, e)
                self._set_record(
                    PluginRecord(
                        name=name,
                        state=PluginState.FAILED,
                        options=options,
                        error=error,
                        metadata=metadata,
                    )
                )
                if self._on_failure is not None:
                    self._on_failure(name)
                if not isinstance(e, Exception):
                    raise
                raise error from e

            record = PluginRecord(
                name=name,
                state=PluginState.LOADED,
                handle=resolved.handle,
                options=options,
                metadata=metadata,
                loaded_at=datetime.now(),
            )
            self._set_record(record)
            logger.log(self._progress_level, f"Plugin {name} loaded")
            return record

    def try_load_plugin(self, name: str, options: dict[str, Any] | None = None) -> PluginRecord:
        """Load a plugin, returning the failed record instead of raising."""
        try:
            return self.load_plugin(name, options)
        except PluginLoadError as e:
            logger.warning(str(e))
            record = self.get_plugin(name)
            if record is None or record.state is not PluginState.FAILED:
                return PluginRecord(name=name, state=PluginState.FAILED, options=dict(options or {}), error=e)
            return record

    def auto_load_plugins(self) -> list[PluginRecord]:
        """Discover and load every candidate plugin.

        Individual failures are collected in the returned records rather
        than raised.

        Returns:
            One record per candidate, in discovery order

        Raises:
            PluginDiscoveryError: If discovery itself fails
        """
        candidates = self.discover()
        logger.log(self._progress_level, f"Auto-loading {len(candidates)} plugin(s)")

        def load_one(name: str) -> PluginRecord:
            return self.try_load_plugin(name, self.config.options_for(name))

        if self.config.max_workers > 1 and len(candidates) > 1:
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
                records = list(pool.map(load_one, candidates))
        else:
            records = [load_one(name) for name in candidates]

        failed = [r.name for r in records if r.failed]
        if failed:
            logger.warning(f"{len(failed)} plugin(s) failed to load: {', '.join(failed)}")
        logger.log(self._progress_level, f"Loaded {len(records) - len(failed)} of {len(records)} plugin(s)")
        return records

    def get_plugin(self, name: str) -> PluginRecord | None:
        """Get a plugin record by name, whatever its state."""
        with self._lock:
            return self._records.get(name)

    def get_all_plugins(self) -> list[PluginRecord]:
        """Get every plugin record, including failed and unloaded ones."""
        with self._lock:
            return list(self._records.values())

    def get_loaded_plugins(self) -> list[PluginRecord]:
        """Get loaded plugin records in insertion order."""
        with self._lock:
            return [r for r in self._records.values() if r.state is PluginState.LOADED]

    def unload_plugin(self, name: str) -> PluginRecord:
        """Unload a plugin.

        The handle's ``shutdown()`` is called if it has one. The record is
        kept in the unloaded state.

        Raises:
            KeyError: If the plugin has never been referenced
        """
        with self._name_lock(name):
            record = self.get_plugin(name)
            if record is None:
                raise KeyError(f"Plugin '{name}' is not known")
            if record.state is not PluginState.LOADED:
                return record

            shutdown = getattr(record.handle, "shutdown", None)
            if callable(shutdown):
                shutdown()

            record = record.evolve(state=PluginState.UNLOADED, handle=None, loaded_at=None)
            self._set_record(record)
            logger.log(self._progress_level, f"Plugin {name} unloaded")
            return record

    def shutdown_all(self) -> list[str]:
        """Unload all loaded plugins, most recently loaded first.

        Returns:
            Names of the plugins that were unloaded
        """
        unloaded = []
        loaded = sorted(self.get_loaded_plugins(), key=lambda r: r.loaded_at, reverse=True)
        for record in loaded:
            try:
                self.unload_plugin(record.name)
            except Exception as e:
                logger.warning(f"Error shutting down plugin {record.name}: {e}")
                continue
            unloaded.append(record.name)
        return unloaded
