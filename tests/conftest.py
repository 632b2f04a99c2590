"""Shared fixtures."""

from __future__ import annotations

from typing import Any, Callable

import pytest

from mursfoto_core.core import MursfotoCore
from mursfoto_core.plugins.sources import StaticSource


@pytest.fixture
def make_core() -> Callable[..., MursfotoCore]:
    """Factory building a core whose only plugin source is in memory."""

    def factory(plugins: dict[str, Any] | None = None, **options: Any) -> MursfotoCore:
        plugin_config = dict(options.pop("plugin_config", {}))
        plugin_config.setdefault("sources", [StaticSource(plugins or {})])
        return MursfotoCore(plugin_config=plugin_config, **options)

    return factory
