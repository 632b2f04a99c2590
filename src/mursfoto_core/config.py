"""Configuration records for the core and its two registries."""

from __future__ import annotations

import json
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from mursfoto_core.errors import ConfigError
from mursfoto_core.suggest import suggest_names

if TYPE_CHECKING:
    from mursfoto_core.plugins.sources import PluginSource

DEFAULT_ENTRY_POINT_GROUP = "mursfoto_core.plugins"
PLUGIN_PATH_ENV = "MURSFOTO_PLUGIN_PATH"


def _check_keys(section: str, data: Mapping[str, Any], allowed: list[str]) -> None:
    """Reject keys that no config field recognizes."""
    unknown = [key for key in data if key not in allowed]
    if not unknown:
        return

    hints = []
    for key in unknown:
        suggestions = suggest_names(str(key), allowed, limit=1)
        hints.append(f"'{key}' (did you mean '{suggestions[0]}'?)" if suggestions else f"'{key}'")
    raise ConfigError(
        f"Unknown {section} option(s): {', '.join(hints)}",
        unknown_keys=[str(key) for key in unknown],
    )


def _check_bool(section: str, key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{section} option '{key}' must be a boolean, got {type(value).__name__}")
    return value


def _check_sequence(section: str, key: str, value: Any, item_types: tuple[type, ...]) -> tuple:
    """Accept a list-like of ``item_types``; a bare string is not a list."""
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable) or isinstance(value, Mapping):
        raise ConfigError(f"{section} option '{key}' must be a list, got {type(value).__name__}")
    items = tuple(value)
    for item in items:
        if not isinstance(item, item_types):
            raise ConfigError(f"{section} option '{key}' has an invalid entry {item!r}")
    return items


def _field_names(cls: type) -> list[str]:
    return [f.name for f in fields(cls)]


@dataclass(frozen=True)
class PluginConfig:
    """Plugin discovery and loading options."""

    plugin_dirs: tuple[Path, ...] = ()
    entry_point_group: str = DEFAULT_ENTRY_POINT_GROUP
    sources: tuple[PluginSource, ...] | None = None
    enabled: tuple[str, ...] | None = None
    disabled: tuple[str, ...] = ()
    options: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    max_workers: int = 1

    def __post_init__(self) -> None:
        # Normalize sequences so the frozen record can't be mutated via aliases
        section = "plugin_config"
        dirs = _check_sequence(section, "plugin_dirs", self.plugin_dirs, (str, os.PathLike))
        object.__setattr__(self, "plugin_dirs", tuple(Path(d) for d in dirs))
        if not isinstance(self.entry_point_group, str) or not self.entry_point_group:
            raise ConfigError(f"{section} option 'entry_point_group' must be a non-empty string")
        if self.sources is not None:
            object.__setattr__(self, "sources", _check_sequence(section, "sources", self.sources, (object,)))
        if self.enabled is not None:
            object.__setattr__(self, "enabled", _check_sequence(section, "enabled", self.enabled, (str,)))
        object.__setattr__(self, "disabled", _check_sequence(section, "disabled", self.disabled, (str,)))

        if not isinstance(self.options, Mapping):
            raise ConfigError(f"{section} option 'options' must be a mapping of plugin name to options")
        for name, opts in self.options.items():
            if not isinstance(opts, Mapping):
                raise ConfigError(f"{section} options for plugin '{name}' must be a mapping")
        object.__setattr__(
            self,
            "options",
            MappingProxyType({name: dict(opts) for name, opts in self.options.items()}),
        )
        if isinstance(self.max_workers, bool) or not isinstance(self.max_workers, int) or self.max_workers < 1:
            raise ConfigError(f"max_workers must be a positive integer, got {self.max_workers!r}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> PluginConfig:
        """Create config from a dictionary, rejecting unknown keys."""
        _check_keys("plugin_config", data, _field_names(cls))
        return cls(**data)

    def options_for(self, name: str) -> dict[str, Any]:
        """Get the configured load options of one plugin."""
        return dict(self.options.get(name, {}))

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary."""
        return {
            "plugin_dirs": [str(d) for d in self.plugin_dirs],
            "entry_point_group": self.entry_point_group,
            "sources": None if self.sources is None else [repr(s) for s in self.sources],
            "enabled": None if self.enabled is None else list(self.enabled),
            "disabled": list(self.disabled),
            "options": {name: dict(opts) for name, opts in self.options.items()},
            "max_workers": self.max_workers,
        }


@dataclass(frozen=True)
class CommandConfig:
    """Command registry options."""

    builtins: bool = True
    allow_overwrite: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> CommandConfig:
        """Create config from a dictionary, rejecting unknown keys."""
        _check_keys("command_config", data, _field_names(cls))
        return cls(**{key: _check_bool("command_config", key, value) for key, value in data.items()})

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary."""
        return {"builtins": self.builtins, "allow_overwrite": self.allow_overwrite}


@dataclass(frozen=True)
class CoreConfig:
    """Immutable configuration captured when the core is constructed."""

    auto_load_plugins: bool = True
    verbose: bool = False
    plugin_config: PluginConfig = field(default_factory=PluginConfig)
    command_config: CommandConfig = field(default_factory=CommandConfig)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None = None) -> CoreConfig:
        """Create config from a dictionary.

        Unknown keys raise ``ConfigError`` rather than being ignored, so a
        misspelled option never silently falls back to its default.
        """
        data = dict(data or {})
        _check_keys("core", data, _field_names(cls))

        kwargs: dict[str, Any] = {}
        for key in ("auto_load_plugins", "verbose"):
            if key in data:
                kwargs[key] = _check_bool("core", key, data[key])

        plugin_config = data.get("plugin_config")
        if isinstance(plugin_config, Mapping):
            plugin_config = PluginConfig.from_mapping(plugin_config)
        if plugin_config is not None:
            if not isinstance(plugin_config, PluginConfig):
                raise ConfigError("plugin_config must be a PluginConfig or a mapping")
            kwargs["plugin_config"] = plugin_config

        command_config = data.get("command_config")
        if isinstance(command_config, Mapping):
            command_config = CommandConfig.from_mapping(command_config)
        if command_config is not None:
            if not isinstance(command_config, CommandConfig):
                raise ConfigError("command_config must be a CommandConfig or a mapping")
            kwargs["command_config"] = command_config

        return cls(**kwargs)

    @classmethod
    def from_file(cls, path: str | Path) -> CoreConfig:
        """Load config from a JSON file."""
        path = Path(path)
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to read config file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object")
        return cls.from_mapping(data)

    def with_plugin_dirs(self, *dirs: str | Path) -> CoreConfig:
        """Return a copy with extra plugin directories appended."""
        if not dirs:
            return self
        plugin_config = PluginConfig(
            **{
                **{f.name: getattr(self.plugin_config, f.name) for f in fields(PluginConfig)},
                "plugin_dirs": (*self.plugin_config.plugin_dirs, *(Path(d) for d in dirs)),
            }
        )
        return CoreConfig(
            auto_load_plugins=self.auto_load_plugins,
            verbose=self.verbose,
            plugin_config=plugin_config,
            command_config=self.command_config,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary."""
        return {
            "auto_load_plugins": self.auto_load_plugins,
            "verbose": self.verbose,
            "plugin_config": self.plugin_config.to_dict(),
            "command_config": self.command_config.to_dict(),
        }


def plugin_dirs_from_env(environ: Mapping[str, str] | None = None) -> list[Path]:
    """Read extra plugin directories from ``MURSFOTO_PLUGIN_PATH``."""
    value = (environ if environ is not None else os.environ).get(PLUGIN_PATH_ENV, "")
    return [Path(p) for p in value.split(os.pathsep) if p]
