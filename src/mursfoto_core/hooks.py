"""Named hooks that plugins can extend with prioritized handlers."""

from __future__ import annotations

import itertools
import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from mursfoto_core.commands.registry import CORE_OWNER

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 10

HookHandler = Callable[[dict[str, Any]], Any]


@dataclass(frozen=True)
class HookRecord:
    """A handler attached to a hook."""

    hook: str
    handler: HookHandler
    priority: int = DEFAULT_PRIORITY
    owner: str = CORE_OWNER
    sequence: int = 0


@dataclass(frozen=True)
class HookResult:
    """Outcome of one handler during ``execute``."""

    owner: str
    value: Any = None
    error: Exception | None = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


class HookRegistry:
    """Hook name to ordered handler list.

    Handlers run lowest priority first; equal priorities run in
    registration order.
    """

    def __init__(self) -> None:
        self._hooks: dict[str, list[HookRecord]] = {}
        self._counter = itertools.count()
        self._lock = threading.Lock()

    def register(
        self,
        hook: str,
        handler: HookHandler,
        *,
        priority: int = DEFAULT_PRIORITY,
        owner: str = CORE_OWNER,
    ) -> HookRecord:
        """Attach a handler to a hook.

        Raises:
            ValueError: If the hook name is empty
            TypeError: If the handler is not callable or priority not an int
        """
        if not isinstance(hook, str) or not hook.strip():
            raise ValueError(f"Hook name must be a non-empty string, got {hook!r}")
        if not callable(handler):
            raise TypeError(f"Handler for hook '{hook}' must be callable")
        if not isinstance(priority, int) or isinstance(priority, bool):
            raise TypeError(f"Hook priority must be an integer, got {priority!r}")

        with self._lock:
            record = HookRecord(hook, handler, priority, owner, next(self._counter))
            handlers = self._hooks.setdefault(hook, [])
            handlers.append(record)
            handlers.sort(key=lambda r: (r.priority, r.sequence))

        logger.debug(f"Registered hook '{hook}' ({owner}, priority {priority})")
        return record

    def get_hooks(self, hook: str) -> list[HookRecord]:
        """Get the handlers of a hook in execution order."""
        with self._lock:
            return list(self._hooks.get(hook, ()))

    def hook_names(self) -> list[str]:
        with self._lock:
            return list(self._hooks)

    def execute(self, hook: str, context: Mapping[str, Any] | None = None) -> list[HookResult]:
        """Run every handler of a hook.

        All handlers receive the same context dict. A failing handler is
        logged and recorded in its result; the remaining handlers still
        run.

        Returns:
            One result per handler, in execution order
        """
        handlers = self.get_hooks(hook)
        shared = dict(context or {})
        logger.debug(f"Executing hook '{hook}' ({len(handlers)} handler(s))")

        results = []
        for record in handlers:
            start = time.perf_counter()
            try:
                value = record.handler(shared)
            except Exception as e:
                logger.error(f"Hook '{hook}' handler from {record.owner} failed: {e}")
                results.append(HookResult(record.owner, error=e, duration=time.perf_counter() - start))
                continue
            results.append(HookResult(record.owner, value=value, duration=time.perf_counter() - start))
        return results

    def unregister_owner(self, owner: str) -> int:
        """Detach every handler registered by ``owner``.

        Returns:
            Number of handlers removed
        """
        removed = 0
        with self._lock:
            for hook in list(self._hooks):
                kept = [r for r in self._hooks[hook] if r.owner != owner]
                removed += len(self._hooks[hook]) - len(kept)
                if kept:
                    self._hooks[hook] = kept
                else:
                    del self._hooks[hook]
        if removed:
            logger.debug(f"Removed {removed} hook handler(s) owned by {owner}")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return sum(len(handlers) for handlers in self._hooks.values())
