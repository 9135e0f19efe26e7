"""Observer notifications emitted by the emulator.

Everything the engine does that a dashboard may want to mirror is reported
through an :class:`EventBus`: each command/response exchange, DTC clears,
MIL transitions, client counts, listener status and telemetry ticks.
Observers are plain callables; a failing observer is logged and skipped so
it can never disturb request handling.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

LOGGER = logging.getLogger(__name__)


class EventName(str, Enum):
    """Standard event names."""

    EXCHANGE = "log"
    DTC_CLEARED = "dtcCleared"
    MIL_CHANGED = "milChanged"
    CLIENTS = "clients"
    STATUS = "status"
    LIVE_DATA = "liveData"
    FREEZE_FRAME = "freezeFrame"


@dataclass(frozen=True, slots=True)
class EmulatorEvent:
    name: EventName
    data: Dict[str, Any]
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.name.value,
            "data": dict(self.data),
            "occurredAt": self.occurred_at.isoformat(timespec="milliseconds"),
        }


EmulatorObserver = Callable[[EmulatorEvent], None]


class EventBus:
    """Fan-out of emulator events to registered observers."""

    def __init__(self, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._observers: List[EmulatorObserver] = []
        self._lock = threading.Lock()

    def subscribe(self, observer: EmulatorObserver) -> None:
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)

    def unsubscribe(self, observer: EmulatorObserver) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._observers)

    def publish(self, name: EventName, **data: Any) -> EmulatorEvent:
        event = EmulatorEvent(name=name, data=data, occurred_at=self._clock())
        with self._lock:
            observers = list(self._observers)

        for observer in observers:
            try:
                observer(event)
            except Exception:
                LOGGER.warning(
                    "Observer %r failed handling %s", observer, name.value, exc_info=True
                )
        return event

    def exchange(self, command: str, response: str) -> EmulatorEvent:
        return self.publish(EventName.EXCHANGE, command=command, response=response)

    def dtc_cleared(self, *, mil_on: bool) -> EmulatorEvent:
        return self.publish(EventName.DTC_CLEARED, ok=True, milOn=mil_on)

    def mil_changed(self, *, mil_on: bool, stored_count: int) -> EmulatorEvent:
        return self.publish(EventName.MIL_CHANGED, milOn=mil_on, storedCount=stored_count)
