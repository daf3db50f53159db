"""
Bootloader diagnostics - event bus feeding the logging sink.

Every registration, injection and lifecycle transition is emitted as a
``BootEvent``. The default ``LoggingListener`` writes them to the
``bootloader`` logger. Turning diagnostics off stops emission without changing
any control flow.
"""

import time
from typing import Any, Dict, List, Optional, Protocol
from enum import Enum
import dataclasses
import logging

logger = logging.getLogger("bootloader")


class BootEventType(Enum):
    """Types of bootloader events."""
    REGISTRATION = "registration"
    REGISTRATION_IGNORED = "registration_ignored"
    FIELD_INJECTED = "field_injected"
    INJECTION_FAILURE = "injection_failure"
    MODULE_INJECTED = "module_injected"
    PROPERTY_SET = "property_set"
    PHASE_BEGIN = "phase_begin"
    PHASE_END = "phase_end"
    PHASE_FAILURE = "phase_failure"


@dataclasses.dataclass
class BootEvent:
    """A diagnostic event in the bootloader."""
    type: BootEventType
    timestamp: float = dataclasses.field(default_factory=time.time)
    module: Optional[str] = None
    name: Optional[str] = None
    field: Optional[str] = None
    phase: Optional[str] = None
    duration: Optional[float] = None
    error: Optional[BaseException] = None
    metadata: Dict[str, Any] = dataclasses.field(default_factory=dict)


class DiagnosticListener(Protocol):
    """Interface for bootloader diagnostic listeners."""
    def on_event(self, event: BootEvent) -> None:
        """Called when a bootloader event occurs."""
        ...


class LoggingListener:
    """Writes events to the ``bootloader`` logger."""

    def __init__(self, log_level: int = logging.INFO, log: Optional[logging.Logger] = None):
        self.log_level = log_level
        self.logger = log or logger

    def on_event(self, event: BootEvent) -> None:
        t = event.type
        if t == BootEventType.REGISTRATION:
            if event.name:
                self.logger.log(self.log_level, f"bootloader: AddByName {event.module} named: {event.name}")
            else:
                self.logger.log(self.log_level, f"bootloader: AddByType {event.module}")
        elif t == BootEventType.REGISTRATION_IGNORED:
            self.logger.log(self.log_level, f"bootloader: ignored {event.module} named: {event.name}")
        elif t == BootEventType.FIELD_INJECTED:
            self.logger.log(logging.DEBUG, f"bootloader: inject {event.module} FieldName: {event.field} ({event.metadata.get('tag')})")
        elif t == BootEventType.MODULE_INJECTED:
            self.logger.log(self.log_level, f"bootloader: injected {event.module}")
        elif t == BootEventType.INJECTION_FAILURE:
            self.logger.error(f"bootloader: inject {event.module} FieldName: {event.field} failed: {event.error}")
        elif t == BootEventType.PROPERTY_SET:
            self.logger.log(logging.DEBUG, f"bootloader: setprop {event.metadata.get('count', 0)} entries")
        elif t == BootEventType.PHASE_BEGIN:
            self.logger.log(self.log_level, f"bootloader: {event.phase} {event.module} begin")
        elif t == BootEventType.PHASE_END:
            self.logger.log(self.log_level, f"bootloader: {event.phase} {event.module} end ({event.duration:.4f}s)")
        elif t == BootEventType.PHASE_FAILURE:
            self.logger.error(f"bootloader: {event.phase} {event.module} failed: {event.error!r}")


class Diagnostics:
    """Coordinator for diagnostic listeners with an on/off switch."""

    def __init__(self, enabled: bool = True, listeners: Optional[List[DiagnosticListener]] = None):
        self.enabled = enabled
        self._listeners: List[DiagnosticListener] = list(listeners or [])

    @classmethod
    def with_logging(cls, enabled: bool = True) -> "Diagnostics":
        return cls(enabled=enabled, listeners=[LoggingListener()])

    def add_listener(self, listener: DiagnosticListener) -> None:
        """Add a diagnostic listener."""
        self._listeners.append(listener)

    def remove_listener(self, listener: DiagnosticListener) -> None:
        self._listeners.remove(listener)

    def emit(self, event_type: BootEventType, **kwargs) -> None:
        """Emit an event to all listeners (no-op when disabled)."""
        if not self.enabled or not self._listeners:
            return
        event = BootEvent(type=event_type, **kwargs)
        for listener in self._listeners:
            try:
                listener.on_event(event)
            except Exception as e:
                # Listeners must never break the boot sequence
                logger.error(f"Diagnostic listener error: {e}")

    def measure(self, phase: str, module: str):
        """Context manager emitting phase begin/end (or failure) around a hook."""
        return _PhaseMeasure(self, phase, module)


class _PhaseMeasure:
    def __init__(self, diagnostics: Diagnostics, phase: str, module: str):
        self.diagnostics = diagnostics
        self.phase = phase
        self.module = module
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        self.diagnostics.emit(BootEventType.PHASE_BEGIN, phase=self.phase, module=self.module)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.time() - self.start_time
        if exc_type:
            self.diagnostics.emit(
                BootEventType.PHASE_FAILURE,
                phase=self.phase,
                module=self.module,
                duration=duration,
                error=exc_val,
            )
        else:
            self.diagnostics.emit(
                BootEventType.PHASE_END,
                phase=self.phase,
                module=self.module,
                duration=duration,
            )
        return False


NULL_DIAGNOSTICS = Diagnostics(enabled=False)
