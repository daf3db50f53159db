"""
Property store - flattened, case-insensitive view of configuration data.

Nested mappings and record-like objects are flattened into dotted paths:

    store.set({"Port": 80, "DB": {"Username": "root"}})
    store.value("port")          # 80
    store.value("DB.USERNAME")   # "root"
"""

from typing import Any, Dict, Iterator, List, Mapping, Optional, Set
from dataclasses import fields, is_dataclass

from ._sync import ReadWriteLock


class _Missing:
    """Sentinel for an absent property."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()

_SCALARS = (bool, int, float, complex, str, bytes)


def is_zero(value: Any, _active: Optional[Set[int]] = None) -> bool:
    """
    Check whether a value is "empty" for flattening purposes.

    None, zero numbers, False, empty strings and containers are zero. A record
    is zero when all of its fields are zero. A record that refers back to one
    of its ancestors is not zero.
    """
    if value is None:
        return True
    if isinstance(value, _SCALARS):
        return not value
    if isinstance(value, (Mapping, list, tuple, set, frozenset)):
        return len(value) == 0
    children = _record_items(value)
    if children is None:
        return False

    if _active is None:
        _active = set()
    if id(value) in _active:
        return False
    _active.add(id(value))
    try:
        return all(is_zero(v, _active) for _, v in children)
    finally:
        _active.discard(id(value))


def _record_items(value: Any):
    """Return (name, value) pairs for record-like objects, else None."""
    if isinstance(value, type):
        return None
    if is_dataclass(value):
        return [(f.name, getattr(value, f.name)) for f in fields(value)]
    try:
        attrs = vars(value)
    except TypeError:
        return None
    return [(k, v) for k, v in attrs.items() if not k.startswith("__")]


class Properties:
    """
    Flattened property table with a read/write lock.

    Keys are stored as ``prefix + lower-cased dotted path``. Re-setting an
    overlapping path overwrites the previous entry. A zero value (False, 0,
    "", empty container) is stored only where the path is still unset and is
    never descended into, so successive ``set`` calls merge sparsely. None
    values are skipped.
    """

    __slots__ = ("_data", "_prefix", "_lock", "_configured")

    def __init__(self, prefix: str = "prop-"):
        self._data: Dict[str, Any] = {}
        self._prefix = prefix
        self._lock = ReadWriteLock()
        self._configured = False

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def configured(self) -> bool:
        """True once ``set`` has been called at least once."""
        return self._configured

    def set(self, data: Any) -> None:
        """
        Merge a mapping or record into the table.

        Args:
            data: Mapping with string keys, dataclass instance or plain object
        """
        with self._lock.write():
            self._configured = True
            self._walk("", data, set())

    def _walk(self, dot: str, data: Any, active: Set[int]) -> None:
        if is_zero(data):
            return

        if isinstance(data, Mapping):
            items = [(k, v) for k, v in data.items() if isinstance(k, str)]
        else:
            items = _record_items(data)
            if items is None or isinstance(data, _SCALARS):
                return

        # Nodes on the current path are stored but not descended into again
        if id(data) in active:
            return
        active.add(id(data))
        try:
            for key, value in items:
                if value is None:
                    continue
                name = f"{dot}.{key.lower()}"
                path = self._prefix + name[1:]
                if is_zero(value):
                    self._data.setdefault(path, value)
                    continue
                self._data[path] = value
                self._walk(name, value, active)
        finally:
            active.discard(id(data))

    def value(self, name: str) -> Any:
        """
        Look up a property by dotted path (case-insensitive).

        Returns:
            The stored value, or ``MISSING`` if the path is absent
        """
        with self._lock.read():
            return self._data.get(self._prefix + name.lower(), MISSING)

    def keys(self) -> List[str]:
        """Snapshot of stored paths without the prefix."""
        n = len(self._prefix)
        with self._lock.read():
            return [k[n:] for k in self._data]

    def __contains__(self, name: str) -> bool:
        return self.value(name) is not MISSING

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._data)
