"""
Process-wide default bootloader for application entry points.

Library code should receive a ``Bootloader`` explicitly; these functions are
for ``main`` modules only:

    from bootloader import default

    default.add("user-service", UserService())
    default.add_by_type(Server())
    default.launch()
"""

from typing import Any, Callable, Optional
import asyncio
import threading

from .config import BootloaderConfig
from .core import Bootloader


_default: Optional[Bootloader] = None
_default_lock = threading.Lock()


def get_default() -> Bootloader:
    """Get (creating on first use) the default bootloader, configured from the environment."""
    global _default
    if _default is None:
        with _default_lock:
            if _default is None:
                _default = Bootloader(BootloaderConfig.from_env(".env"))
    return _default


def set_default(loader: Optional[Bootloader]) -> None:
    """Replace the default bootloader (None resets it)."""
    global _default
    with _default_lock:
        _default = loader


def get(name: str) -> Any:
    return get_default().get(name)


def add(name: str, x: Any) -> bool:
    return get_default().add(name, x)


def add_by_type(x: Any) -> bool:
    return get_default().add_by_type(x)


add_from_type = add_by_type
add_by_auto = add_by_type


def set_ignores(*names: str) -> None:
    get_default().set_ignores(*names)


def set_properties(data: Any) -> None:
    get_default().set_properties(data)


def get_property(name: str, default: Any = None) -> Any:
    return get_default().get_property(name, default)


def must_get_property(name: str) -> Any:
    return get_default().must_get_property(name)


def show_log(enabled: bool) -> None:
    get_default().show_log(enabled)


def shutdown() -> None:
    get_default().shutdown()


def launch() -> None:
    """Blocking: start, wait for the start phase, destroy."""
    asyncio.run(get_default().launch())


def run() -> None:
    """Blocking: start, wait for ``shutdown()``, destroy."""
    asyncio.run(get_default().run())


def test_unit(fn: Callable[[], Any]) -> Any:
    """Blocking: start, run ``fn``, destroy; returns ``fn``'s result."""
    return asyncio.run(get_default().test_unit(fn))
