"""Per-connection adapter state toggled by AT commands."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict

from .. import constants
from ..config import AdapterConfig

AUTO_PROTOCOL = "0"
DEFAULT_AUTO_PROTOCOL = "6"

PROTOCOL_NAMES: Dict[str, str] = {
    "1": "SAE J1850 PWM",
    "2": "SAE J1850 VPW",
    "3": "ISO 9141-2",
    "4": "ISO 14230-4 (KWP 5BAUD)",
    "5": "ISO 14230-4 (KWP FAST)",
    "6": "ISO 15765-4 (CAN 11/500)",
    "7": "ISO 15765-4 (CAN 29/500)",
    "8": "ISO 15765-4 (CAN 11/250)",
    "9": "ISO 15765-4 (CAN 29/250)",
    "A": "SAE J1939 (CAN 29/250)",
    "B": "USER1 (CAN 11/125)",
    "C": "USER2 (CAN 11/50)",
}


@dataclass(frozen=True, slots=True)
class AdapterIdentity:
    name: str = constants.DEFAULT_ELM_NAME
    version: str = constants.DEFAULT_ELM_VERSION
    description: str = constants.DEFAULT_DEVICE_DESCRIPTION
    device_id: str = constants.DEFAULT_ELM_NAME

    @property
    def banner(self) -> str:
        return f"{self.name} {self.version}"


@dataclass(slots=True)
class AdapterSettings:
    """Presentation flags plus the selected protocol.

    ``defaults`` keeps the configured starting point so ``ATZ``/``ATD`` can
    return to it without re-reading configuration.
    """

    echo: bool = False
    headers: bool = False
    spaces: bool = True
    linefeed: bool = False
    double_linefeed: bool = False
    auto_protocol: bool = True
    protocol: str = DEFAULT_AUTO_PROTOCOL
    identity: AdapterIdentity = field(default_factory=AdapterIdentity)
    defaults: AdapterConfig = field(default_factory=AdapterConfig, repr=False)

    @classmethod
    def from_config(cls, config: AdapterConfig) -> "AdapterSettings":
        settings = cls(
            identity=AdapterIdentity(
                name=config.elm_name,
                version=config.elm_version,
                description=config.device_description,
                device_id=config.device_id,
            ),
            defaults=config,
        )
        settings.reset()
        return settings

    def reset(self) -> None:
        config = self.defaults
        self.echo = config.echo
        self.headers = config.headers
        self.spaces = config.spaces
        self.linefeed = config.linefeed
        self.double_linefeed = config.double_linefeed
        self.select_protocol(config.protocol)

    def select_protocol(self, digit: str, *, automatic: bool = False) -> bool:
        """Apply an ``ATSP``/``ATTP`` digit; returns False when unknown.

        ``automatic`` is the ``ATSPA``/``ATTPA`` form: try ``digit`` first and
        keep searching if it fails, which a real adapter reports as auto.
        """

        digit = digit.upper()
        if digit == AUTO_PROTOCOL:
            self.auto_protocol = True
            self.protocol = DEFAULT_AUTO_PROTOCOL
            return True
        if digit not in PROTOCOL_NAMES:
            return False
        self.auto_protocol = automatic
        self.protocol = digit
        return True

    def describe_protocol(self) -> str:
        name = PROTOCOL_NAMES[self.protocol]
        return f"AUTO, {name}" if self.auto_protocol else name

    def protocol_number(self) -> str:
        return f"A{self.protocol}" if self.auto_protocol else self.protocol
