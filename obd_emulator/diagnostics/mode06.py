"""Mode 06 on-board monitoring test results."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Tuple

from .. import constants
from ..telemetry.codec import format_bytes

MODE06_ECHO = 0x46


@dataclass(frozen=True, slots=True)
class Mode06Test:
    tid: int
    name: str
    value: int
    minimum: int
    maximum: int

    @property
    def passed(self) -> bool:
        return self.minimum <= self.value <= self.maximum

    def payload(self) -> str:
        data = (
            self.value.to_bytes(2, "big")
            + self.minimum.to_bytes(2, "big")
            + self.maximum.to_bytes(2, "big")
        )
        return format_bytes((MODE06_ECHO, self.tid, *data))


DEFAULT_MODE06_TESTS: Tuple[Mode06Test, ...] = (
    Mode06Test(0x01, "Catalyst B1S1", 0x0050, 0x0010, 0x00F0),
    Mode06Test(0x02, "O2 Sensor B1S1", 0x0032, 0x0014, 0x0080),
    Mode06Test(0x03, "EVAP Leak Test", 0x000A, 0x0000, 0x0020),
)


class Mode06Registry:
    """Read-only table of test results keyed by TID."""

    def __init__(self, tests: Iterable[Mode06Test] = DEFAULT_MODE06_TESTS) -> None:
        self._tests: Mapping[int, Mode06Test] = MappingProxyType(
            {test.tid: test for test in tests}
        )

    def get(self, tid: int) -> Optional[Mode06Test]:
        return self._tests.get(tid)

    def tests(self) -> Tuple[Mode06Test, ...]:
        return tuple(self._tests[tid] for tid in sorted(self._tests))

    def supported_payload(self) -> str:
        """``46 00`` followed by the TID 01-20 support bitmap."""

        bitmap = [0, 0, 0, 0]
        for tid in self._tests:
            position = tid - 1
            if 0 <= position < 32:
                bitmap[position // 8] |= 0x80 >> (position % 8)
        return format_bytes((MODE06_ECHO, 0x00, *bitmap))

    def respond(self, command: str) -> str:
        """Answer ``0600`` or ``06xx``; anything else is ``NO DATA``."""

        command = command.upper()
        if len(command) != 4 or not command.startswith("06"):
            return constants.NO_DATA
        try:
            tid = int(command[2:], 16)
        except ValueError:
            return constants.NO_DATA
        if tid == 0:
            return self.supported_payload()
        test = self.get(tid)
        if test is None:
            return constants.NO_DATA
        return test.payload()
