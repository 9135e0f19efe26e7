"""Classify inbound adapter lines and produce raw responses.

A line is normalised once (upper-cased, whitespace removed), matched against
an ordered rule table to obtain a :class:`CommandKind`, and dispatched to the
handler registered for that kind. Handlers read the shared stores and return
a :class:`Reply`; presentation is left to :func:`format_response`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Pattern, Tuple

from .. import constants
from ..diagnostics.dtc import DtcKind, DtcRegistry
from ..diagnostics.freeze_frame import FreezeFrameStore
from ..diagnostics.mode06 import Mode06Registry
from ..events import EventBus
from ..telemetry.codec import READINESS_PID, TelemetryCodec, encode_monitor_status
from ..telemetry.store import TelemetryStore
from .formatter import format_response
from .settings import AdapterSettings

LOGGER = logging.getLogger(__name__)

CLEAR_CODES_REPLY = "44"


class CommandKind(str, Enum):
    EMPTY = "empty"
    ADAPTER = "adapter"
    CURRENT_DATA = "current_data"
    FREEZE_FRAME = "freeze_frame"
    READ_CODES = "read_codes"
    CLEAR_CODES = "clear_codes"
    TEST_RESULTS = "test_results"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class Command:
    line: str
    text: str
    kind: CommandKind


@dataclass(frozen=True, slots=True)
class Reply:
    text: str
    literal: bool = False


@dataclass(slots=True)
class Session:
    """State owned by one client connection."""

    settings: AdapterSettings
    last_line: Optional[str] = None
    exchanges: int = 0


def normalize(line: str) -> str:
    return "".join(line.split()).upper()


# Service byte optionally followed by whole bytes, which are ignored.
READ_CODES_REQUEST = re.compile(r"^(?:03|07|0A)(?:[0-9A-F]{2})*$")
CLEAR_CODES_REQUEST = re.compile(r"^04(?:[0-9A-F]{2})*$")


CLASSIFICATION_RULES: Tuple[Tuple[Callable[[str], bool], CommandKind], ...] = (
    (lambda text: not text, CommandKind.EMPTY),
    (lambda text: text.startswith("AT"), CommandKind.ADAPTER),
    (lambda text: text.startswith("01"), CommandKind.CURRENT_DATA),
    (lambda text: text.startswith("02"), CommandKind.FREEZE_FRAME),
    (lambda text: bool(READ_CODES_REQUEST.match(text)), CommandKind.READ_CODES),
    (lambda text: bool(CLEAR_CODES_REQUEST.match(text)), CommandKind.CLEAR_CODES),
    (lambda text: text.startswith("06"), CommandKind.TEST_RESULTS),
)


def classify(line: str) -> Command:
    text = normalize(line)
    for predicate, kind in CLASSIFICATION_RULES:
        if predicate(text):
            return Command(line=line, text=text, kind=kind)
    return Command(line=line, text=text, kind=CommandKind.UNKNOWN)


ACCEPTED_NOOPS: Tuple[Pattern[str], ...] = tuple(
    re.compile(pattern)
    for pattern in (
        r"^AT[0-2]$",
        r"^ST[0-9A-F]{1,2}$",
        r"^M[01]$",
        r"^CAF[01]$",
        r"^D[01]$",
        r"^AL$",
        r"^NL$",
        r"^PC$",
        r"^LP$",
        r"^SH[0-9A-F]{3,8}$",
        r"^CRA[0-9A-FX]*$",
        r"^FC.*$",
        r"^CF.*$",
        r"^CM.*$",
    )
)

PROTOCOL_COMMAND = re.compile(r"^(?:SP|TP)(A?)(.)$")

TOGGLES = {"E": "echo", "H": "headers", "S": "spaces", "L": "linefeed"}


def _ok() -> Reply:
    return Reply(constants.OK, literal=True)


def _unknown() -> Reply:
    return Reply(constants.UNKNOWN_COMMAND, literal=True)


class CommandInterpreter:
    """Turns one request line into a response using the shared stores."""

    def __init__(
        self,
        telemetry: TelemetryStore,
        dtcs: DtcRegistry,
        *,
        freeze_frames: Optional[FreezeFrameStore] = None,
        mode06: Optional[Mode06Registry] = None,
        codec: Optional[TelemetryCodec] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self._telemetry = telemetry
        self._dtcs = dtcs
        self._freeze_frames = freeze_frames or dtcs.freeze_frames
        self._mode06 = mode06 or Mode06Registry()
        self._codec = codec or TelemetryCodec()
        self._events = events
        self._handlers: Dict[CommandKind, Callable[[Command, AdapterSettings], Reply]] = {
            CommandKind.ADAPTER: self._adapter,
            CommandKind.CURRENT_DATA: self._current_data,
            CommandKind.FREEZE_FRAME: self._freeze_frame,
            CommandKind.READ_CODES: self._read_codes,
            CommandKind.CLEAR_CODES: self._clear_codes,
            CommandKind.TEST_RESULTS: self._test_results,
        }

    def execute(self, line: str, settings: AdapterSettings) -> Reply:
        """Raw response for ``line``; may mutate ``settings`` and the stores."""

        command = classify(line)
        handler = self._handlers.get(command.kind)
        if handler is None:
            return _unknown()
        return handler(command, settings)

    def handle_line(self, line: str, session: Session) -> str:
        """Execute ``line`` for ``session`` and return the formatted reply.

        An empty line repeats the previous command of the session; with no
        previous command only the prompt is returned.
        """

        settings = session.settings
        echo_line = line if settings.echo else None
        if not normalize(line):
            if session.last_line is None:
                return format_response("", settings, echo_line=echo_line, literal=True)
            line = session.last_line
        else:
            session.last_line = line

        reply = self.execute(line, settings)
        response = format_response(
            reply.text, settings, echo_line=echo_line, literal=reply.literal
        )
        session.exchanges += 1
        LOGGER.debug("%s -> %r", normalize(line), response)
        if self._events is not None:
            self._events.exchange(normalize(line), response)
        return response

    def _adapter(self, command: Command, settings: AdapterSettings) -> Reply:
        sub = command.text[2:]
        identity = settings.identity

        if sub in ("Z", "WS"):
            settings.reset()
            return Reply(identity.banner, literal=True)
        if sub == "D":
            settings.reset()
            return _ok()
        if sub == "I":
            return Reply(identity.banner, literal=True)
        if sub == "@1":
            return Reply(identity.description, literal=True)
        if sub == "@2":
            return Reply(identity.device_id or constants.UNKNOWN_COMMAND, literal=True)
        if sub == "DP":
            return Reply(settings.describe_protocol(), literal=True)
        if sub == "DPN":
            return Reply(settings.protocol_number(), literal=True)
        if sub == "RV":
            voltage = self._telemetry.read(lambda sample: sample.control_module_voltage)
            return Reply(f"{voltage:.1f}V", literal=True)

        if len(sub) == 2 and sub[0] in TOGGLES and sub[1] in "01":
            setattr(settings, TOGGLES[sub[0]], sub[1] == "1")
            return _ok()

        match = PROTOCOL_COMMAND.match(sub)
        if match is not None:
            automatic, digit = match.groups()
            if settings.select_protocol(digit, automatic=bool(automatic)):
                return _ok()
            return _unknown()

        if any(pattern.match(sub) for pattern in ACCEPTED_NOOPS):
            return _ok()
        return _unknown()

    def _current_data(self, command: Command, settings: AdapterSettings) -> Reply:
        code = command.text[:4]
        if code == READINESS_PID:
            return Reply(encode_monitor_status(self._dtcs.monitor_status()))
        payload = self._telemetry.read(lambda sample: self._codec.encode(code, sample))
        return Reply(payload or constants.NO_DATA)

    def _freeze_frame(self, command: Command, settings: AdapterSettings) -> Reply:
        if self._freeze_frames is None:
            return Reply(constants.NO_DATA)
        return Reply(self._freeze_frames.read(command.text))

    def _read_codes(self, command: Command, settings: AdapterSettings) -> Reply:
        return Reply(self._dtcs.response(DtcKind.from_service(command.text[:2])))

    def _clear_codes(self, command: Command, settings: AdapterSettings) -> Reply:
        change = self._dtcs.clear_codes()
        LOGGER.info(
            "Trouble codes cleared by client (freeze frame discarded: %s)",
            change.freeze_frame_cleared,
        )
        if self._events is not None:
            self._events.dtc_cleared(mil_on=change.snapshot.mil_on)
            if change.mil_changed:
                self._events.mil_changed(
                    mil_on=change.snapshot.mil_on,
                    stored_count=len(change.snapshot.stored),
                )
        return Reply(CLEAR_CODES_REPLY)

    def _test_results(self, command: Command, settings: AdapterSettings) -> Reply:
        return Reply(self._mode06.respond(command.text))
