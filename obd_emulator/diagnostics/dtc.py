"""Diagnostic trouble codes: packing, formatting and the shared registry."""

from __future__ import annotations

import random
import re
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .. import constants
from ..telemetry.codec import format_bytes
from .freeze_frame import FreezeFrameStore
from .readiness import derive_monitor_status

DTC_PATTERN = re.compile(r"^[PCBU][0-3][0-9A-F]{3}$")

SYSTEM_BITS = {"P": 0, "C": 1, "B": 2, "U": 3}
SYSTEM_LETTERS = {value: key for key, value in SYSTEM_BITS.items()}

COMMON_DTCS: Tuple[str, ...] = (
    "P0087",
    "P0101",
    "P0113",
    "P0128",
    "P0133",
    "P0135",
    "P0171",
    "P0172",
    "P0174",
    "P0300",
    "P0301",
    "P0302",
    "P0303",
    "P0304",
    "P0401",
    "P0411",
    "P0420",
    "P0430",
    "P0442",
    "P0455",
    "P0500",
    "P0505",
    "P0700",
)


class InvalidDtcError(ValueError):
    """Raised when a string is not a five character trouble code."""


class DtcKind(str, Enum):
    STORED = "stored"
    PENDING = "pending"
    PERMANENT = "permanent"

    @property
    def echo(self) -> int:
        return _SERVICE_ECHO[self]

    @classmethod
    def from_service(cls, service: str) -> "DtcKind":
        return _SERVICE_KIND[service.upper()]


_SERVICE_ECHO = {DtcKind.STORED: 0x43, DtcKind.PENDING: 0x47, DtcKind.PERMANENT: 0x4A}
_SERVICE_KIND = {"03": DtcKind.STORED, "07": DtcKind.PENDING, "0A": DtcKind.PERMANENT}


def normalize_dtc(code: str) -> str:
    value = str(code).strip().upper()
    if not DTC_PATTERN.match(value):
        raise InvalidDtcError(f"Invalid trouble code: {code!r}")
    return value


def encode_dtc(code: str) -> Tuple[int, int]:
    """Pack ``code`` as ``[sys:2][d1:2][d2:4]`` and ``[d3:4][d4:4]``."""

    value = normalize_dtc(code)
    digits = [int(char, 16) for char in value[1:]]
    first = (SYSTEM_BITS[value[0]] << 6) | (digits[0] << 4) | digits[1]
    second = (digits[2] << 4) | digits[3]
    return first, second


def decode_dtc(first: int, second: int) -> str:
    system = SYSTEM_LETTERS[(first >> 6) & 0x03]
    return f"{system}{(first >> 4) & 0x03:X}{first & 0x0F:X}{second >> 4:X}{second & 0x0F:X}"


def format_dtc_response(echo: int, codes: Sequence[str]) -> str:
    if not codes:
        return constants.NO_DATA
    data: List[int] = [echo]
    for code in codes:
        data.extend(encode_dtc(code))
    return format_bytes(data)


@dataclass(frozen=True, slots=True)
class DtcSnapshot:
    stored: Tuple[str, ...]
    pending: Tuple[str, ...]
    permanent: Tuple[str, ...]
    mil_on: bool

    def codes(self, kind: DtcKind) -> Tuple[str, ...]:
        return getattr(self, kind.value)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "stored": list(self.stored),
            "pending": list(self.pending),
            "permanent": list(self.permanent),
            "milOn": self.mil_on,
            "storedCount": len(self.stored),
        }


@dataclass(frozen=True, slots=True)
class DtcChange:
    """Result of one registry mutation."""

    snapshot: DtcSnapshot
    changed: bool
    mil_changed: bool
    freeze_frame_cleared: bool = False


class DtcRegistry:
    """Stored, pending and permanent code lists plus the MIL.

    Every mutation runs under the registry lock and leaves
    ``mil_on == bool(stored)``. Operations that also discard the freeze frame
    take its lock while still holding the registry lock, so no reader can
    observe cleared codes next to a stale frame.
    """

    def __init__(
        self,
        stored: Iterable[str] = (),
        pending: Iterable[str] = (),
        permanent: Iterable[str] = (),
        *,
        freeze_frames: Optional[FreezeFrameStore] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._lists: Dict[DtcKind, List[str]] = {
            DtcKind.STORED: [normalize_dtc(code) for code in stored],
            DtcKind.PENDING: [normalize_dtc(code) for code in pending],
            DtcKind.PERMANENT: [normalize_dtc(code) for code in permanent],
        }
        self._mil_on = bool(self._lists[DtcKind.STORED])
        self._freeze_frames = freeze_frames
        self._rng = rng or random.Random()

    @property
    def freeze_frames(self) -> Optional[FreezeFrameStore]:
        return self._freeze_frames

    @property
    def mil_on(self) -> bool:
        with self._lock:
            return self._mil_on

    def codes(self, kind: DtcKind) -> Tuple[str, ...]:
        with self._lock:
            return tuple(self._lists[kind])

    def snapshot(self) -> DtcSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def response(self, kind: DtcKind) -> str:
        """Mode 03/07/0A reply for ``kind``."""

        return format_dtc_response(kind.echo, self.codes(kind))

    def monitor_status(self) -> Tuple[int, int, int, int]:
        with self._lock:
            return derive_monitor_status(self._lists[DtcKind.STORED], self._mil_on)

    def add(self, code: str, kind: DtcKind = DtcKind.STORED) -> DtcChange:
        value = normalize_dtc(code)
        with self._lock:
            previous_mil = self._mil_on
            target = self._lists[kind]
            changed = value not in target
            if changed:
                target.append(value)
            self._mil_on = bool(self._lists[DtcKind.STORED])
            return DtcChange(
                snapshot=self._snapshot_locked(),
                changed=changed,
                mil_changed=previous_mil != self._mil_on,
            )

    def remove(self, code: str, kind: DtcKind = DtcKind.STORED) -> DtcChange:
        value = normalize_dtc(code)
        with self._lock:
            previous_mil = self._mil_on
            target = self._lists[kind]
            changed = value in target
            if changed:
                target.remove(value)
            self._mil_on = bool(self._lists[DtcKind.STORED])
            return DtcChange(
                snapshot=self._snapshot_locked(),
                changed=changed,
                mil_changed=previous_mil != self._mil_on,
            )

    def clear_codes(self) -> DtcChange:
        """Mode 04: drop stored and pending codes, turn the MIL off.

        Permanent codes survive; only a completed drive cycle may erase them
        on a real vehicle.
        """

        return self._clear((DtcKind.STORED, DtcKind.PENDING))

    def clear(self) -> DtcChange:
        """Empty all three lists and discard the freeze frame."""

        return self._clear(tuple(DtcKind))

    def sync_mil(self) -> DtcChange:
        with self._lock:
            previous_mil = self._mil_on
            self._mil_on = bool(self._lists[DtcKind.STORED])
            return DtcChange(
                snapshot=self._snapshot_locked(),
                changed=previous_mil != self._mil_on,
                mil_changed=previous_mil != self._mil_on,
            )

    def random_code(self, kind: DtcKind = DtcKind.STORED) -> Optional[str]:
        """Pick a catalogue code not yet present in ``kind``."""

        with self._lock:
            present = set(self._lists[kind])
        candidates = [code for code in COMMON_DTCS if code not in present]
        if not candidates:
            return None
        return self._rng.choice(candidates)

    def _clear(self, kinds: Tuple[DtcKind, ...]) -> DtcChange:
        with self._lock:
            previous_mil = self._mil_on
            changed = any(self._lists[kind] for kind in kinds)
            for kind in kinds:
                self._lists[kind].clear()
            self._mil_on = bool(self._lists[DtcKind.STORED])
            frame_cleared = False
            if self._freeze_frames is not None:
                with self._freeze_frames.lock:
                    frame_cleared = self._freeze_frames.clear_locked()
            return DtcChange(
                snapshot=self._snapshot_locked(),
                changed=changed,
                mil_changed=previous_mil != self._mil_on,
                freeze_frame_cleared=frame_cleared,
            )

    def _snapshot_locked(self) -> DtcSnapshot:
        return DtcSnapshot(
            stored=tuple(self._lists[DtcKind.STORED]),
            pending=tuple(self._lists[DtcKind.PENDING]),
            permanent=tuple(self._lists[DtcKind.PERMANENT]),
            mil_on=self._mil_on,
        )
