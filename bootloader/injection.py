"""
Injection engine - iterative fixed-point field resolution.

Each pass walks the registry once, most recent registration first, and tries
every unsatisfied field against what is registered at that moment. Fields
whose target is missing stay pending and are retried on the next pass, so a
module registered later can satisfy a module registered earlier. A resolved
field is never revisited.
"""

from typing import Any, Callable, Optional
import threading

from .diagnostics import BootEventType, Diagnostics, NULL_DIAGNOSTICS
from .errors import BootloaderError, InjectionError, PropertyStoreUnsetError
from .fields import FieldSlot, TagKind, property_path
from .properties import MISSING, Properties
from .registry import Registry
from .wrapper import ModuleWrapper


FieldHook = Callable[[ModuleWrapper, FieldSlot], None]


class InjectionHandler:
    """
    Resolves pending fields of registered modules.

    Passes are serialized by an internal lock so that every field is written
    at most once, by a single pass.
    """

    def __init__(
        self,
        registry: Registry,
        properties: Optional[Properties] = None,
        *,
        on_completed: Optional[Callable[[ModuleWrapper], None]] = None,
        on_before_field: Optional[FieldHook] = None,
        on_after_field: Optional[FieldHook] = None,
        diagnostics: Optional[Diagnostics] = None,
    ):
        self.registry = registry
        self.properties = properties
        self.on_completed = on_completed
        self.on_before_field = on_before_field
        self.on_after_field = on_after_field
        self.diagnostics = diagnostics or NULL_DIAGNOSTICS
        self._lock = threading.RLock()

    def inject_all(self) -> None:
        """Run one pass over every registered module."""
        with self._lock:
            for m in reversed(self.registry.list()):
                self.inject(m)

    def inject(self, m: ModuleWrapper) -> None:
        """Try to satisfy the pending fields of one module."""
        with self._lock:
            if not m.try_inject():
                return

            # Fields are stored reversed; resolve them in declaration order
            for f in reversed(m.fields):
                if not f.injected:
                    self._inject_field(m, f)

            if not m.try_inject():
                self.diagnostics.emit(BootEventType.MODULE_INJECTED, module=m.path, name=m.name)
                if self.on_completed is not None:
                    self.on_completed(m)

    def _inject_field(self, m: ModuleWrapper, f: FieldSlot) -> None:
        if self.on_before_field is not None:
            self.on_before_field(m, f)
        try:
            value = self._resolve(m, f)
            if value is not MISSING:
                f.set_value(value)
                self.diagnostics.emit(
                    BootEventType.FIELD_INJECTED,
                    module=m.path,
                    field=f.name,
                    metadata={"tag": f.tag},
                )
        except BootloaderError as e:
            self.diagnostics.emit(
                BootEventType.INJECTION_FAILURE, module=m.path, field=f.name, error=e
            )
            raise
        except Exception as e:
            self.diagnostics.emit(
                BootEventType.INJECTION_FAILURE, module=m.path, field=f.name, error=e
            )
            raise InjectionError(m.path, f.name, e) from e
        if self.on_after_field is not None:
            self.on_after_field(m, f)

    def _resolve(self, m: ModuleWrapper, f: FieldSlot) -> Any:
        """
        Find the value for one field.

        Returns:
            The value to assign, or ``MISSING`` if the target is not available yet
        """
        kind = f.kind

        if kind == TagKind.PROPERTY:
            props = self.properties
            if props is None or not props.configured:
                raise PropertyStoreUnsetError(m.path, f.name, f.tag)
            return props.value(property_path(f.tag))

        if kind == TagKind.AUTO:
            if f.type is None:
                raise TypeError(
                    "auto injection needs a field type; annotate the attribute "
                    "or pass inject('auto', type=...)"
                )
            target = self.registry.find_by_type(f.type)
        else:
            target = self.registry.find_by_name(f.tag)

        if target is None:
            return MISSING
        return target.instance

    def verify(self) -> None:
        """Post-condition: every module is fully injected."""
        self.registry.verify()
