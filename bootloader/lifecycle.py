"""
Module lifecycle states and optional capability protocols.

A module implements any subset of ``on_create``, ``on_mount``, ``on_start``
and ``on_destroy``. Hooks may be plain functions (run in a worker thread) or
coroutine functions (awaited on the event loop).
"""

from typing import Any, Callable, Optional, Protocol, runtime_checkable
from enum import IntEnum
import asyncio
import inspect


class ModuleState(IntEnum):
    """Per-module lifecycle state. Strictly increasing."""

    INITIAL = 0
    CREATING = 1
    CREATED = 2
    MOUNTING = 3
    MOUNTED = 4
    STARTING = 5
    STARTED = 6
    DESTROYING = 7
    DESTROYED = 8


@runtime_checkable
class OnCreate(Protocol):
    def on_create(self) -> Any: ...


@runtime_checkable
class OnMount(Protocol):
    def on_mount(self) -> Any: ...


@runtime_checkable
class OnStart(Protocol):
    def on_start(self) -> Any: ...


@runtime_checkable
class OnDestroy(Protocol):
    def on_destroy(self) -> Any: ...


@runtime_checkable
class ModuleProvider(Protocol):
    """Object that produces the module to register."""

    def get_module(self) -> Any: ...


class Phase:
    """
    Lifecycle phase: hook name plus the state transition it performs.
    """

    __slots__ = ("name", "hook", "capability", "expected", "running", "done")

    def __init__(
        self,
        name: str,
        hook: str,
        capability: type,
        expected: ModuleState,
        running: ModuleState,
        done: ModuleState,
    ):
        self.name = name
        self.hook = hook
        self.capability = capability
        self.expected = expected
        self.running = running
        self.done = done

    def __repr__(self) -> str:
        return f"Phase({self.name!r})"


CREATE = Phase("create", "on_create", OnCreate,
               ModuleState.INITIAL, ModuleState.CREATING, ModuleState.CREATED)
MOUNT = Phase("mount", "on_mount", OnMount,
              ModuleState.CREATED, ModuleState.MOUNTING, ModuleState.MOUNTED)
START = Phase("start", "on_start", OnStart,
              ModuleState.MOUNTED, ModuleState.STARTING, ModuleState.STARTED)
DESTROY = Phase("destroy", "on_destroy", OnDestroy,
                ModuleState.STARTED, ModuleState.DESTROYING, ModuleState.DESTROYED)

PHASES = (CREATE, MOUNT, START, DESTROY)


def get_hook(instance: Any, phase: Phase) -> Optional[Callable[[], Any]]:
    """Return the bound hook for a phase, or None if the instance lacks it."""
    if not isinstance(instance, phase.capability):
        return None
    hook = getattr(instance, phase.hook)
    return hook if callable(hook) else None


async def run_hook(hook: Callable[[], Any]) -> Any:
    """
    Run a lifecycle hook.

    Coroutine functions are awaited; plain callables run in a worker thread so
    hooks of one phase execute in parallel.
    """
    if inspect.iscoroutinefunction(hook):
        return await hook()
    result = await asyncio.to_thread(hook)
    if inspect.isawaitable(result):
        result = await result
    return result

