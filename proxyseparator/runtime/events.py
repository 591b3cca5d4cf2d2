"""Event emission interface used by the runtime."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class EventEmitter(Protocol):
    """Anything that accepts named events with a payload."""

    def emit(self, name: str, payload: Any) -> None:
        ...


class NopEmitter:
    """Emitter that discards every event."""

    def emit(self, name: str, payload: Any) -> None:
        """Discard the event."""