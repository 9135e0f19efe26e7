"""Thread-safe holder of the most recent telemetry sample."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

from .sample import TelemetrySample

T = TypeVar("T")


class TelemetryStore:
    """Keeps exactly one sample; no history is retained.

    Readers that need to encode several values from the same sample should
    go through :meth:`read` so the whole computation runs against one
    consistent snapshot under the store lock.
    """

    def __init__(
        self,
        sample: Optional[TelemetrySample] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._sample = sample or TelemetrySample()
        self._updated_at: Optional[datetime] = None
        self._tick_count = 0

    def update(self, sample: TelemetrySample) -> None:
        with self._lock:
            self._sample = sample
            self._updated_at = self._clock()
            self._tick_count += 1

    def current(self) -> TelemetrySample:
        with self._lock:
            return self._sample

    def read(self, reader: Callable[[TelemetrySample], T]) -> T:
        with self._lock:
            return reader(self._sample)

    @property
    def updated_at(self) -> Optional[datetime]:
        with self._lock:
            return self._updated_at

    @property
    def tick_count(self) -> int:
        with self._lock:
            return self._tick_count
