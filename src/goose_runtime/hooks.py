"""
Hook registry - ordered callbacks bound to fixed lifecycle points.

Each hook receives the value flowing through its point (a message, a tool
call, a plan, a memory entry, an error string). A hook may return a
replacement value, or mutate the copy it was handed and return None. Hook
failures are logged and never interrupt the caller: the value
carried forward is whatever the hooks before the failing one produced.
"""

import copy
import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, TypeVar

import structlog

from .concurrency import RWLock

logger = structlog.get_logger()

T = TypeVar("T")

HookCallback = Callable[[Any], Any]


class HookPoint(str, Enum):
    """Lifecycle points that accept hooks."""

    PRE_PROCESS = "pre_process"
    POST_PROCESS = "post_process"
    TOOL_EXECUTION = "tool_execution"
    PLANNING = "planning"
    MEMORY = "memory"
    ERROR = "error"


@dataclass
class Hook:
    """A named callback registered at one lifecycle point."""

    name: str
    point: HookPoint
    callback: HookCallback


class HookRegistry:
    """Ordered hook lists per lifecycle point."""

    def __init__(self):
        self._hooks: dict[HookPoint, list[Hook]] = {point: [] for point in HookPoint}
        self._lock = RWLock()

    async def register(
        self,
        point: HookPoint,
        callback: HookCallback,
        name: str | None = None,
    ) -> Hook:
        """Append a hook. A hook with the same name at the same point is replaced in place."""
        hook = Hook(name=name or getattr(callback, "__name__", "hook"), point=point, callback=callback)

        async with self._lock.write():
            hooks = self._hooks[point]
            for index, existing in enumerate(hooks):
                if existing.name == hook.name:
                    hooks[index] = hook
                    break
            else:
                hooks.append(hook)

        logger.debug("Hook registered", point=point.value, hook=hook.name)
        return hook

    async def unregister(self, point: HookPoint, name: str) -> bool:
        """Remove a hook by name. Returns False if it was not registered."""
        async with self._lock.write():
            hooks = self._hooks[point]
            for index, existing in enumerate(hooks):
                if existing.name == name:
                    del hooks[index]
                    logger.debug("Hook unregistered", point=point.value, hook=name)
                    return True
        return False

    async def hooks_for(self, point: HookPoint) -> list[Hook]:
        """Snapshot of the hooks registered at a point, in order."""
        async with self._lock.read():
            return list(self._hooks[point])

    async def count(self, point: HookPoint | None = None) -> int:
        async with self._lock.read():
            if point is not None:
                return len(self._hooks[point])
            return sum(len(hooks) for hooks in self._hooks.values())

    async def run(self, point: HookPoint, value: T) -> T:
        """Pass ``value`` through every hook at ``point`` in registration order.

        Each hook works on its own deep copy, so a hook that mutates the
        value and then raises leaves the carried value untouched.
        """
        for hook in await self.hooks_for(point):
            candidate = copy.deepcopy(value)
            try:
                result = hook.callback(candidate)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                logger.warning(
                    "Hook failed, continuing with previous value",
                    point=point.value,
                    hook=hook.name,
                    error=str(e),
                )
                continue

            value = candidate if result is None else result

        return value
