"""
Bootloader error types with rich diagnostics.
"""

from typing import Any, List, Optional, Sequence, Tuple


class BootloaderError(Exception):
    """Base exception for bootloader errors."""
    pass


class DuplicateRegistrationError(BootloaderError):
    """A module name was registered twice."""

    def __init__(self, name: str, existing: Optional[str] = None):
        self.name = name
        self.existing = existing

        msg = f"bootloader: {name} has been added"
        if existing:
            msg += f"\nAlready registered: {existing}"
        msg += "\n\nSuggested fixes:"
        msg += f"\n  - Register the second module under a different name"
        msg += f"\n  - Use add_by_type() if the module does not need a name"

        super().__init__(msg)


class UnresolvedDependencyError(BootloaderError):
    """A declared field was never satisfied before verification."""

    def __init__(self, module: str, field: str, tag: str):
        self.module = module
        self.field = field
        self.tag = tag

        msg = (
            f"bootloader: Module {module}, FieldName:{field}, "
            f"The injection was not completed (tag={tag!r})"
        )
        msg += "\n\nSuggested fixes:"
        if tag.startswith("$"):
            msg += f"\n  - Provide the property {tag[1:]!r} through set_properties()"
        elif tag == "auto":
            msg += "\n  - Register a module of the declared field type"
        else:
            msg += f"\n  - Register a module named {tag!r}"
            msg += "\n  - Check for typos in the injection tag"

        super().__init__(msg)


class PropertyStoreUnsetError(BootloaderError):
    """A property field was resolved before any properties were supplied."""

    def __init__(self, module: str, field: str, tag: str):
        self.module = module
        self.field = field
        self.tag = tag

        msg = (
            f"bootloader: props not set (Module {module}, FieldName:{field}, "
            f"tag={tag!r})"
        )
        msg += "\n\nSuggested fix:"
        msg += "\n  Call set_properties() before registering modules with $-tagged fields"

        super().__init__(msg)


class LifecycleOrderError(BootloaderError):
    """A lifecycle phase was invoked on a module in the wrong state."""

    def __init__(self, module: str, phase: str, expected: Any, actual: Any):
        self.module = module
        self.phase = phase
        self.expected = expected
        self.actual = actual

        msg = (
            f"bootloader: Unable to {phase} Module {module}, "
            f"status {_state_name(actual)} expected {_state_name(expected)}"
        )

        super().__init__(msg)


class DepthExceededError(BootloaderError):
    """Provider chain nested deeper than the configured bound."""

    def __init__(self, max_depth: int):
        self.max_depth = max_depth

        msg = f"bootloader: Maximum depth {max_depth} exceeded"
        msg += "\n\nSuggested fixes:"
        msg += "\n  - Check for a provider that returns another provider of itself"
        msg += "\n  - Raise max_provider_depth if the chain is intentional"

        super().__init__(msg)


class InjectionError(BootloaderError):
    """Resolution of one field failed; annotated with the owning module."""

    def __init__(self, module: str, field: str, cause: BaseException):
        self.module = module
        self.field = field
        self.cause = cause

        super().__init__(f"bootloader: Module {module}, FieldName:{field}, {cause}")


class ModuleLookupError(BootloaderError):
    """No module registered under the requested name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"bootloader: Module {name} not found")


class PropertyNotFoundError(BootloaderError):
    """No property stored under the requested path."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"bootloader: property {name} not found")


class LifecyclePhaseError(BootloaderError):
    """One or more lifecycle hooks of a phase failed."""

    def __init__(self, phase: str, failures: Sequence[Tuple[str, BaseException]]):
        self.phase = phase
        self.failures: List[Tuple[str, BaseException]] = list(failures)

        msg = f"bootloader: {phase} phase failed:"
        for module, error in self.failures:
            msg += f"\n  - {module}: {error!r}"

        super().__init__(msg)


class PhaseTimeoutError(BootloaderError):
    """A lifecycle phase did not finish within its deadline."""

    def __init__(
        self,
        phase: str,
        timeout: float,
        pending: Sequence[str],
        failures: Sequence[Tuple[str, BaseException]] = (),
    ):
        self.phase = phase
        self.timeout = timeout
        self.pending = list(pending)
        self.failures: List[Tuple[str, BaseException]] = list(failures)

        msg = f"bootloader: {phase} phase exceeded {timeout}s, still running:"
        for module in self.pending:
            msg += f"\n  - {module}"
        if self.failures:
            msg += "\nFailed before the deadline:"
            for module, error in self.failures:
                msg += f"\n  - {module}: {error!r}"
        msg += "\n\nHooks that are still running were not cancelled."

        super().__init__(msg)


class ConfigError(BootloaderError):
    """Raised when bootloader configuration is invalid."""
    pass


def _state_name(state: Any) -> str:
    return getattr(state, "name", str(state))
