"""
Registry - ordered, named collection of module wrappers.
"""

from typing import Any, Callable, Dict, Iterator, List, Optional, Set

from ._sync import ReadWriteLock
from .diagnostics import BootEventType, Diagnostics, NULL_DIAGNOSTICS
from .errors import DuplicateRegistrationError
from .wrapper import ModuleWrapper


WrapperCallback = Callable[[ModuleWrapper], None]


class Registry:
    """
    Holds every registered module.

    ``named`` maps registration names to wrappers; ``modules`` keeps all
    wrappers (named and type-only) in registration order. Both are guarded by
    a read/write lock. Callbacks run outside the lock.
    """

    def __init__(
        self,
        on_before_adding: Optional[WrapperCallback] = None,
        on_after_added: Optional[WrapperCallback] = None,
        diagnostics: Optional[Diagnostics] = None,
    ):
        self._named: Dict[str, ModuleWrapper] = {}
        self._modules: List[ModuleWrapper] = []
        self._ignores: Set[str] = set()
        self._lock = ReadWriteLock()
        self.on_before_adding = on_before_adding
        self.on_after_added = on_after_added
        self.diagnostics = diagnostics or NULL_DIAGNOSTICS

    def set_ignores(self, *names: str) -> None:
        """Declare names whose later registration is silently dropped."""
        with self._lock.write():
            self._ignores.update(names)

    def is_ignored(self, name: str) -> bool:
        with self._lock.read():
            return name in self._ignores

    def add_by_name(self, name: str, wrapper: ModuleWrapper) -> bool:
        """
        Register a wrapper under a unique name.

        Returns:
            False if the name is ignored, True once added

        Raises:
            DuplicateRegistrationError: If the name is already taken
        """
        if self.is_ignored(name):
            self.diagnostics.emit(
                BootEventType.REGISTRATION_IGNORED, module=wrapper.path, name=name
            )
            return False

        if self.on_before_adding is not None:
            self.on_before_adding(wrapper)

        with self._lock.write():
            existing = self._named.get(name)
            if existing is not None:
                raise DuplicateRegistrationError(name, existing.path)
            wrapper.name = name
            self._named[name] = wrapper
            self._modules.append(wrapper)

        self.diagnostics.emit(BootEventType.REGISTRATION, module=wrapper.path, name=name)

        if self.on_after_added is not None:
            self.on_after_added(wrapper)
        return True

    def add_by_type(self, wrapper: ModuleWrapper) -> bool:
        """Register a wrapper without a name (reachable by type only)."""
        if self.on_before_adding is not None:
            self.on_before_adding(wrapper)

        with self._lock.write():
            self._modules.append(wrapper)

        self.diagnostics.emit(BootEventType.REGISTRATION, module=wrapper.path)

        if self.on_after_added is not None:
            self.on_after_added(wrapper)
        return True

    def find_by_name(self, name: str) -> Optional[ModuleWrapper]:
        with self._lock.read():
            return self._named.get(name)

    def find_by_type(self, tp: type) -> Optional[ModuleWrapper]:
        """
        Find a module by type.

        An exact type match wins. Otherwise the first module, in registration
        order, whose instance is an instance of ``tp`` (subclass, registered
        ABC or runtime-checkable protocol). Several compatible candidates are
        not an error: the earliest registration is returned.
        """
        with self._lock.read():
            for m in self._modules:
                if m.type is tp:
                    return m
            for m in self._modules:
                if _convertible(m.instance, tp):
                    return m
        return None

    def verify(self) -> None:
        """
        Check every module is fully injected, most recent registration first.

        Raises:
            UnresolvedDependencyError: For the first incomplete module found
        """
        for m in reversed(self.list()):
            m.must_inject()

    def list(self) -> List[ModuleWrapper]:
        """Snapshot of all wrappers in registration order."""
        with self._lock.read():
            return list(self._modules)

    def for_each(self, fn: Callable[[Any], None]) -> List[ModuleWrapper]:
        """Call ``fn`` with every module instance, most recent first."""
        copied = self.list()
        for m in reversed(copied):
            fn(m.instance)
        return copied

    def names(self) -> List[str]:
        with self._lock.read():
            return list(self._named)

    def __contains__(self, name: str) -> bool:
        return self.find_by_name(name) is not None

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._modules)

    def __iter__(self) -> Iterator[ModuleWrapper]:
        return iter(self.list())


def _convertible(instance: Any, tp: type) -> bool:
    try:
        return isinstance(instance, tp)
    except TypeError:
        return False
