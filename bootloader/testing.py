"""
Testing utilities for the bootloader.
"""

from typing import Any, Dict, List, Optional
from contextlib import asynccontextmanager

from .config import BootloaderConfig
from .core import Bootloader
from .diagnostics import BootEvent, BootEventType, Diagnostics


class RecordingListener:
    """Diagnostic listener that keeps every event for assertions."""

    def __init__(self):
        self.events: List[BootEvent] = []

    def on_event(self, event: BootEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: BootEventType) -> List[BootEvent]:
        return [e for e in self.events if e.type == event_type]

    def reset(self) -> None:
        self.events.clear()


def make_bootloader(
    *,
    properties: Optional[Dict[str, Any]] = None,
    phase_timeout: Optional[float] = 5.0,
    listener: Optional[RecordingListener] = None,
) -> Bootloader:
    """
    Build an isolated bootloader for tests.

    Logging is off; a bounded phase timeout keeps a stuck hook from hanging
    the test run.
    """
    diagnostics = Diagnostics(enabled=listener is not None)
    if listener is not None:
        diagnostics.add_listener(listener)
    loader = Bootloader(
        BootloaderConfig(show_log=False, phase_timeout=phase_timeout),
        diagnostics=diagnostics,
    )
    if properties:
        loader.set_properties(properties)
    return loader


@asynccontextmanager
async def running(loader: Bootloader):
    """
    Start the loader for the duration of the block, then destroy.

    Example:
        async with running(loader):
            assert loader.get("db").connected
    """
    await loader.start()
    try:
        yield loader
    finally:
        await loader.stop()


# Pytest fixtures (if pytest is available)
try:
    import pytest

    @pytest.fixture
    def bootloader():
        """Provide a clean bootloader for tests."""
        return make_bootloader()

    @pytest.fixture
    def boot_events():
        """Provide a recording listener."""
        return RecordingListener()

except ImportError:
    # pytest not available - skip fixtures
    pass
