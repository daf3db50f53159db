"""
Bootloader - process-local module registry and dependency injection runtime.

Key Features:
- Register module instances by name or by type, directly or through providers
- Field injection by registry name, by declared type, or from properties
- Fixed-point wiring: registration order does not matter
- Nine-state lifecycle per module (create, mount, start, destroy)
- Concurrent lifecycle phases joined by barriers, with optional deadlines
- Flattened, case-insensitive property store for configuration data
"""

__version__ = "1.0.0"

from .core import (
    Bootloader,
    BootPhase,
)

from .fields import (
    AUTO,
    inject,
    Inject,
)

from .lifecycle import (
    ModuleState,
    OnCreate,
    OnMount,
    OnStart,
    OnDestroy,
    ModuleProvider,
)

from .properties import (
    MISSING,
    Properties,
)

from .registry import Registry
from .wrapper import ModuleWrapper
from .injection import InjectionHandler
from .graph import DependencyGraph
from .config import BootloaderConfig, load_properties_file

from .diagnostics import (
    BootEvent,
    BootEventType,
    Diagnostics,
    LoggingListener,
)

from .errors import (
    BootloaderError,
    DuplicateRegistrationError,
    UnresolvedDependencyError,
    PropertyStoreUnsetError,
    LifecycleOrderError,
    DepthExceededError,
    InjectionError,
    ModuleLookupError,
    PropertyNotFoundError,
    LifecyclePhaseError,
    PhaseTimeoutError,
    ConfigError,
)

__all__ = [
    # Core
    "Bootloader",
    "BootPhase",

    # Declarations
    "AUTO",
    "inject",
    "Inject",

    # Lifecycle
    "ModuleState",
    "OnCreate",
    "OnMount",
    "OnStart",
    "OnDestroy",
    "ModuleProvider",

    # Building blocks
    "MISSING",
    "Properties",
    "Registry",
    "ModuleWrapper",
    "InjectionHandler",
    "DependencyGraph",

    # Config
    "BootloaderConfig",
    "load_properties_file",

    # Diagnostics
    "BootEvent",
    "BootEventType",
    "Diagnostics",
    "LoggingListener",

    # Errors
    "BootloaderError",
    "DuplicateRegistrationError",
    "UnresolvedDependencyError",
    "PropertyStoreUnsetError",
    "LifecycleOrderError",
    "DepthExceededError",
    "InjectionError",
    "ModuleLookupError",
    "PropertyNotFoundError",
    "LifecyclePhaseError",
    "PhaseTimeoutError",
    "ConfigError",
]
