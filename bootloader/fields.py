"""
Injectable field declarations.

Modules declare which attributes the bootloader may fill in, at class level:

    class Server:
        users: UserService = inject("user-service")   # by registry name
        runtime: RuntimeInfo = inject("auto")         # by declared type
        port: int = inject("$server.port")            # from properties

Attributes without an ``inject(...)`` declaration are never touched.
"""

from typing import Any, Callable, Dict, Optional, Tuple, Type, Union, get_args, get_origin, get_type_hints
from dataclasses import dataclass
import types


AUTO = "auto"
PROPERTY_PREFIX = "$"

# Class attribute holding declarations in declaration order
FIELDS_ATTR = "__bootloader_fields__"


class TagKind:
    NAME = "name"
    AUTO = "auto"
    PROPERTY = "property"


def tag_kind(tag: str) -> str:
    """Classify an injection tag into one of the three resolution grammars."""
    if tag == AUTO:
        return TagKind.AUTO
    if tag.startswith(PROPERTY_PREFIX):
        return TagKind.PROPERTY
    return TagKind.NAME


def property_path(tag: str) -> str:
    """Extract the dotted path from ``$path`` or ``${path}``."""
    path = tag[len(PROPERTY_PREFIX):].strip()
    if path.startswith("{") and path.endswith("}"):
        path = path[1:-1].strip()
    return path


class Inject:
    """
    Descriptor marking an attribute as injectable.

    Values are stored on the instance ``__dict__`` under the attribute name.
    Reading an attribute that has not been injected yet returns ``default``,
    the same object for every instance; use ``default_factory`` for mutable
    placeholders, which builds one value per instance on first read.
    """

    __slots__ = ("tag", "type", "default", "default_factory", "name", "owner")

    def __init__(
        self,
        tag: str = AUTO,
        *,
        type: Optional[Type] = None,
        default: Any = None,
        default_factory: Optional[Callable[[], Any]] = None,
    ):
        tag = tag.strip() if isinstance(tag, str) else tag
        if not tag or not isinstance(tag, str):
            raise ValueError("inject() requires a non-empty tag")
        if tag_kind(tag) == TagKind.PROPERTY and not property_path(tag):
            raise ValueError(f"inject({tag!r}) has an empty property path")
        if default is not None and default_factory is not None:
            raise ValueError("inject() accepts default or default_factory, not both")
        self.tag = tag
        self.type = type
        self.default = default
        self.default_factory = default_factory
        self.name: Optional[str] = None
        self.owner: Optional[type] = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name
        self.owner = owner
        # Copy so subclasses extend rather than mutate the parent's list
        declared = list(owner.__dict__.get(FIELDS_ATTR, ()))
        declared.append(self)
        setattr(owner, FIELDS_ATTR, tuple(declared))

    def __get__(self, instance: Any, owner: type = None):
        if instance is None:
            return self
        try:
            return instance.__dict__[self.name]
        except KeyError:
            if self.default_factory is None:
                return self.default
        value = instance.__dict__[self.name] = self.default_factory()
        return value

    def __set__(self, instance: Any, value: Any) -> None:
        instance.__dict__[self.name] = value

    def __repr__(self) -> str:
        return f"inject({self.tag!r})"


def inject(
    tag: str = AUTO,
    *,
    type: Optional[Type] = None,
    default: Any = None,
    default_factory: Optional[Callable[[], Any]] = None,
) -> Any:
    """
    Declare an injectable attribute.

    Args:
        tag: Registry name, ``"auto"`` (resolve by type) or ``"$path"``
            (resolve from properties)
        type: Explicit field type; defaults to the class annotation
        default: Value returned before injection (shared by all instances)
        default_factory: Zero-argument callable building a per-instance
            value returned before injection

    Returns:
        Inject descriptor

    Example:
        class Server:
            users: UserService = inject("user-service")
    """
    return Inject(tag, type=type, default=default, default_factory=default_factory)


def declared_fields(cls: type) -> Tuple[Inject, ...]:
    """
    Collect inject() declarations of a class and its bases.

    Base class declarations come first; a subclass redeclaring an attribute
    replaces the base declaration.
    """
    seen: Dict[str, Inject] = {}
    for klass in reversed(cls.__mro__):
        for decl in klass.__dict__.get(FIELDS_ATTR, ()):
            seen.pop(decl.name, None)
            seen[decl.name] = decl
    return tuple(seen.values())


def resolve_field_type(cls: type, decl: Inject) -> Optional[Type]:
    """
    Determine the declared type of a field.

    Uses the explicit ``type=`` argument, else the class annotation with
    ``Optional[X]`` unwrapped to ``X``. Unresolvable annotations yield None.
    """
    if decl.type is not None:
        return decl.type

    try:
        hints = get_type_hints(decl.owner or cls)
    except Exception:
        hints = getattr(decl.owner or cls, "__annotations__", {})

    hint = hints.get(decl.name)
    if hint is None or isinstance(hint, str):
        return None

    origin = get_origin(hint)
    if origin is Union or origin is types.UnionType:
        args = [a for a in get_args(hint) if a is not type(None)]
        if len(args) == 1:
            hint = args[0]
        else:
            return None

    # list[X], dict[K, V] and friends check against their origin
    base = get_origin(hint)
    if base is not None:
        return base if isinstance(base, type) else None

    return hint if isinstance(hint, type) else None


@dataclass
class FieldSlot:
    """
    Per-instance state of one injectable field.

    ``injected`` is terminal: once a value is set the slot refuses another.
    """

    name: str
    tag: str
    type: Optional[Type]
    instance: Any
    injected: bool = False

    @property
    def kind(self) -> str:
        return tag_kind(self.tag)

    def set_value(self, value: Any) -> None:
        if self.injected:
            raise RuntimeError(f"field {self.name} already injected")
        if self.type is not None and not _assignable(value, self.type):
            raise TypeError(
                f"cannot assign {type(value).__name__} to field of type {self.type.__name__}"
            )
        setattr(self.instance, self.name, value)
        self.injected = True


def _assignable(value: Any, tp: Type) -> bool:
    if tp is Any or tp is object:
        return True
    try:
        if isinstance(value, tp):
            return True
    except TypeError:
        # Non runtime-checkable protocols and similar cannot be checked
        return True
    # int is acceptable where float is declared
    return tp is float and isinstance(value, int) and not isinstance(value, bool)
