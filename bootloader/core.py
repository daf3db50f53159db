"""
Bootloader - registration, wiring and lifecycle orchestration.

    loader = Bootloader()
    loader.set_properties({"server": {"port": 8080}})
    loader.add("user-service", UserService())
    loader.add_by_type(Server())
    await loader.launch()

Sequence: every registration triggers an injection pass; ``start()`` runs a
final pass, verifies that every declared field is satisfied, then runs the
create, mount and start phases. Within a phase all modules run concurrently;
the next phase begins only after every task of the previous one finished.
``stop()`` runs the destroy phase the same way.
"""

from typing import Any, Callable, List, Optional, Sequence
from enum import Enum
import asyncio
import functools
import inspect
import logging
import threading

from .config import BootloaderConfig, load_properties_file
from .diagnostics import BootEventType, Diagnostics
from .errors import (
    DepthExceededError,
    LifecycleOrderError,
    LifecyclePhaseError,
    ModuleLookupError,
    PhaseTimeoutError,
    PropertyNotFoundError,
)
from .graph import DependencyGraph
from .injection import InjectionHandler
from .lifecycle import CREATE, DESTROY, MOUNT, START, ModuleProvider, ModuleState, Phase
from .properties import MISSING, Properties
from .registry import Registry
from .wrapper import ModuleWrapper


logger = logging.getLogger("bootloader.core")


class BootPhase(Enum):
    """Phases of the whole boot sequence."""
    INIT = "init"
    STARTING = "starting"
    READY = "ready"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


class Bootloader:
    """
    Module registry plus DI runtime.

    One instance is one independent application context; nothing here touches
    process-wide state.
    """

    def __init__(
        self,
        config: Optional[BootloaderConfig] = None,
        *,
        diagnostics: Optional[Diagnostics] = None,
    ):
        self.config = config or BootloaderConfig()
        self.diagnostics = diagnostics or Diagnostics.with_logging(self.config.show_log)
        self.properties = Properties(self.config.property_prefix)
        self.registry = Registry(
            on_after_added=self._after_added,
            diagnostics=self.diagnostics,
        )
        self.injector = InjectionHandler(
            self.registry,
            self.properties,
            diagnostics=self.diagnostics,
        )
        self.phase = BootPhase.INIT
        self._cancelled = threading.Event()
        self._stray_tasks: List[asyncio.Task] = []

    # ========================================================================
    # Registration
    # ========================================================================

    def add(self, name: str, x: Any) -> bool:
        """
        Register a module under a unique name.

        Args:
            name: Registry name, referenced by ``inject("name")``
            x: Module instance, provider object or zero-argument provider function

        Returns:
            False if ``name`` is ignored, True otherwise
        """
        if self.registry.is_ignored(name):
            logger.debug(f"bootloader: {name} ignored")
            return False
        m = self._extract_module(x, self.config.max_provider_depth)
        return self.registry.add_by_name(name, self._wrap(m))

    def add_by_type(self, x: Any) -> bool:
        """Register a module reachable only through ``inject("auto")``."""
        m = self._extract_module(x, self.config.max_provider_depth)
        return self.registry.add_by_type(self._wrap(m))

    add_from_type = add_by_type
    add_by_auto = add_by_type

    def set_ignores(self, *names: str) -> None:
        """Silently drop any later registration under these names."""
        self.registry.set_ignores(*names)

    def _wrap(self, m: Any) -> ModuleWrapper:
        return ModuleWrapper(m, diagnostics=self.diagnostics)

    def _after_added(self, wrapper: ModuleWrapper) -> None:
        self.injector.inject_all()

    def _extract_module(self, x: Any, depth: int) -> Any:
        """
        Unwrap providers until a plain module remains.

        Raises:
            DepthExceededError: If the provider chain is deeper than allowed
        """
        if depth <= 0:
            raise DepthExceededError(self.config.max_provider_depth)

        if not isinstance(x, type) and isinstance(x, ModuleProvider):
            m = x.get_module()
            if m is x:
                return m
            return self._extract_module(m, depth - 1)

        if _is_provider_func(x):
            if inspect.iscoroutinefunction(x):
                raise TypeError(
                    f"bootloader: coroutine provider {x!r} is not supported; "
                    f"await it and register the result"
                )
            return self._extract_module(x(), depth - 1)

        return x

    # ========================================================================
    # Lookup
    # ========================================================================

    def get(self, name: str) -> Any:
        """
        Get a registered module instance by name.

        Raises:
            ModuleLookupError: If no module has that name
        """
        m = self.registry.find_by_name(name)
        if m is None:
            raise ModuleLookupError(name)
        return m.instance

    must_get = get

    def find(self, tp: type) -> Optional[Any]:
        """Get a module instance by type (exact match first), or None."""
        m = self.registry.find_by_type(tp)
        return m.instance if m is not None else None

    # ========================================================================
    # Properties
    # ========================================================================

    def set_properties(self, data: Any) -> None:
        """
        Merge configuration data into the property store.

        Pending ``$``-tagged fields are retried right away.
        """
        self.properties.set(data)
        self.diagnostics.emit(
            BootEventType.PROPERTY_SET, metadata={"count": len(self.properties)}
        )
        self.injector.inject_all()

    def load_properties(self, path: str) -> None:
        """Merge a YAML or JSON file into the property store."""
        self.set_properties(load_properties_file(path))

    def get_property(self, name: str, default: Any = None) -> Any:
        value = self.properties.value(name)
        return default if value is MISSING else value

    def must_get_property(self, name: str) -> Any:
        """
        Raises:
            PropertyNotFoundError: If the property is absent
        """
        value = self.properties.value(name)
        if value is MISSING:
            raise PropertyNotFoundError(name)
        return value

    # ========================================================================
    # Lifecycle
    # ========================================================================

    @property
    def cancelled(self) -> threading.Event:
        """Shared shutdown signal. Modules may poll or wait on it."""
        return self._cancelled

    def show_log(self, enabled: bool) -> None:
        self.diagnostics.enabled = enabled

    async def start(self) -> None:
        """
        Inject, verify, then run the create, mount and start phases.

        Raises:
            UnresolvedDependencyError: If a declared field is still unsatisfied
            LifecyclePhaseError: If hooks of a phase failed
            PhaseTimeoutError: If a phase exceeded ``phase_timeout``
        """
        if self.phase != BootPhase.INIT:
            raise LifecycleOrderError("bootloader", "start", BootPhase.INIT, self.phase)
        self.phase = BootPhase.STARTING

        try:
            self.injector.inject_all()
            self.injector.verify()

            modules = self.registry.list()
            logger.info(f"bootloader: launching {len(modules)} modules")
            for phase in (CREATE, MOUNT, START):
                await self._run_phase(phase, modules)
        except BaseException:
            self.phase = BootPhase.ERROR
            raise

        self.phase = BootPhase.READY

    async def stop(self) -> None:
        """
        Signal shutdown and run the destroy phase for every started module.

        Destroy hook failures are logged and do not stop the other modules.
        """
        if self.phase in (BootPhase.STOPPING, BootPhase.STOPPED):
            return
        self.shutdown()
        self.phase = BootPhase.STOPPING

        started = [m for m in self.registry.list() if m.state == ModuleState.STARTED]
        try:
            await self._run_phase(DESTROY, started)
        except LifecyclePhaseError as e:
            for module, error in e.failures:
                logger.error(f"bootloader: destroy {module} failed: {error!r}")
        finally:
            self.phase = BootPhase.STOPPED

    async def launch(self) -> None:
        """Start every module, wait for the start phase, then destroy."""
        try:
            await self.start()
        finally:
            await self.stop()

    async def run(self) -> None:
        """Start every module, wait for ``shutdown()``, then destroy."""
        try:
            await self.start()
            await self.wait()
        finally:
            await self.stop()

    async def wait(self) -> None:
        """Block until the shutdown signal is set."""
        if self._cancelled.is_set():
            return
        await asyncio.to_thread(self._cancelled.wait)

    def shutdown(self) -> None:
        """
        Set the shared shutdown signal.

        Running hooks are not interrupted; modules observe ``cancelled``.
        """
        self._cancelled.set()

    async def test_unit(self, fn: Callable[[], Any]) -> Any:
        """
        Start the modules, run ``fn`` and always destroy afterwards.

        ``fn`` may be a plain or coroutine function; its result is returned.
        """
        try:
            await self.start()
            result = fn()
            if inspect.isawaitable(result):
                result = await result
            return result
        finally:
            await self.stop()

    async def _run_phase(self, phase: Phase, modules: Sequence[ModuleWrapper]) -> None:
        """
        Run one lifecycle phase for all modules concurrently and join them.

        Every task is awaited before failures are reported.
        """
        if not modules:
            return

        tasks = [
            (asyncio.create_task(getattr(m, phase.name)(), name=f"{phase.name}:{m.path}"), m)
            for m in modules
        ]
        done, pending = await asyncio.wait(
            [t for t, _ in tasks], timeout=self.config.phase_timeout
        )

        failures = []
        for t, m in tasks:
            if t not in done:
                continue
            if t.cancelled():
                failures.append((m.path, asyncio.CancelledError()))
            elif t.exception() is not None:
                failures.append((m.path, t.exception()))

        if pending:
            # Hooks are left running; keep references so they are not collected
            for t in pending:
                t.add_done_callback(_log_stray_task)
            self._stray_tasks.extend(pending)
            raise PhaseTimeoutError(
                phase.name,
                self.config.phase_timeout,
                [m.path for t, m in tasks if t in pending],
                failures,
            )

        if failures:
            raise LifecyclePhaseError(phase.name, failures)

    # ========================================================================
    # Diagnostics
    # ========================================================================

    def dependency_graph(self) -> DependencyGraph:
        """Graph of module-to-module wiring injected so far."""
        return DependencyGraph.from_registry(self.registry)

    def __repr__(self) -> str:
        return f"<Bootloader modules={len(self.registry)} phase={self.phase.value}>"


def _log_stray_task(task: asyncio.Task) -> None:
    """Report the outcome of a hook that outlived its phase deadline."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"bootloader: {task.get_name()} failed after its phase timed out: {error!r}")


def _is_provider_func(x: Any) -> bool:
    return (
        inspect.isfunction(x)
        or inspect.ismethod(x)
        or isinstance(x, functools.partial)
    )
