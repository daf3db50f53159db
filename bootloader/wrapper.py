"""
Module wrapper - one registered instance, its injectable fields and its
lifecycle state machine.
"""

from typing import Any, List, Optional, Tuple
import threading

from .diagnostics import Diagnostics, NULL_DIAGNOSTICS
from .errors import LifecycleOrderError, UnresolvedDependencyError
from .fields import FieldSlot, declared_fields, resolve_field_type
from .lifecycle import CREATE, DESTROY, MOUNT, START, ModuleState, Phase, get_hook, run_hook


def type_path(tp: type) -> str:
    return f"{tp.__module__}.{tp.__qualname__}"


class ModuleWrapper:
    """
    Wraps exactly one module instance.

    The instance is held by reference and never copied. Injectable fields are
    discovered once, from ``inject(...)`` declarations on the instance's
    class, and kept in reverse declaration order.
    """

    __slots__ = (
        "_instance",
        "_type",
        "_fields",
        "_injected",
        "_state",
        "_state_lock",
        "name",
        "diagnostics",
    )

    def __init__(
        self,
        instance: Any,
        *,
        name: Optional[str] = None,
        diagnostics: Optional[Diagnostics] = None,
    ):
        self._instance = instance
        self._type = type(instance)
        self._fields: Tuple[FieldSlot, ...] = self._travel_fields()
        self._injected = False
        self._state = ModuleState.INITIAL
        self._state_lock = threading.Lock()
        self.name = name
        self.diagnostics = diagnostics or NULL_DIAGNOSTICS

    def _travel_fields(self) -> Tuple[FieldSlot, ...]:
        cls = self._type
        slots: List[FieldSlot] = []
        for decl in reversed(declared_fields(cls)):
            slots.append(FieldSlot(
                name=decl.name,
                tag=decl.tag,
                type=resolve_field_type(cls, decl),
                instance=self._instance,
            ))
        return tuple(slots)

    @property
    def instance(self) -> Any:
        return self._instance

    @property
    def type(self) -> type:
        return self._type

    @property
    def fields(self) -> Tuple[FieldSlot, ...]:
        return self._fields

    @property
    def injected(self) -> bool:
        return self._injected

    @property
    def state(self) -> ModuleState:
        return self._state

    @property
    def path(self) -> str:
        return type_path(self._type)

    def pending_fields(self) -> List[FieldSlot]:
        return [f for f in self._fields if not f.injected]

    # ========================================================================
    # Injection bookkeeping
    # ========================================================================

    def try_inject(self) -> bool:
        """
        Report whether injection work remains.

        Returns False when there are no fields or injection already finished.
        Otherwise returns True if any field is still unsatisfied; the first
        time none are, ``injected`` is latched and False is returned.
        """
        if not self._fields or self._injected:
            return False
        need = False
        for f in reversed(self._fields):
            if not f.injected:
                need = True
                break
        self._injected = not need
        return need

    def must_inject(self) -> None:
        """
        Raise for the first field that is still unsatisfied.

        Raises:
            UnresolvedDependencyError: naming this module and the field
        """
        if not self._fields or self._injected:
            return
        for f in reversed(self._fields):
            if not f.injected:
                raise UnresolvedDependencyError(self.path, f.name, f.tag)
        self._injected = True

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def _compare_and_set(self, expected: ModuleState, new: ModuleState) -> bool:
        with self._state_lock:
            if self._state != expected:
                return False
            self._state = new
            return True

    def _store(self, new: ModuleState) -> None:
        with self._state_lock:
            self._state = new

    def has_hook(self, phase: Phase) -> bool:
        return get_hook(self._instance, phase) is not None

    async def _advance(self, phase: Phase) -> None:
        if not self._compare_and_set(phase.expected, phase.running):
            raise LifecycleOrderError(self.path, phase.name, phase.expected, self._state)

        hook = get_hook(self._instance, phase)
        if hook is not None:
            with self.diagnostics.measure(phase.name, self.path):
                await run_hook(hook)

        self._store(phase.done)

    async def create(self) -> None:
        await self._advance(CREATE)

    async def mount(self) -> None:
        if self._fields and not self._injected:
            raise LifecycleOrderError(self.path, MOUNT.name, "INJECTED", "NOT_INJECTED")
        await self._advance(MOUNT)

    async def start(self) -> None:
        await self._advance(START)

    async def destroy(self) -> None:
        await self._advance(DESTROY)

    def __repr__(self) -> str:
        named = f" named={self.name!r}" if self.name else ""
        return f"<ModuleWrapper {self.path}{named} state={self._state.name}>"
