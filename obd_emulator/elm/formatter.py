"""Apply adapter presentation settings to a raw response line."""

from __future__ import annotations

import re
from typing import List, Optional

from .. import constants
from .settings import AdapterSettings

HEX_PAYLOAD = re.compile(r"^(?:[0-9A-F]{2})+$")


def compact(text: str) -> str:
    return "".join(text.split())


def is_hex_payload(raw: str) -> bool:
    """True for byte payloads such as ``41 0C 1F 40``; False for literals."""

    return bool(HEX_PAYLOAD.match(compact(raw).upper()))


def byte_pairs(raw: str) -> List[str]:
    value = compact(raw).upper()
    return [value[index : index + 2] for index in range(0, len(value), 2)]


def format_response(
    raw: str,
    settings: AdapterSettings,
    *,
    echo_line: Optional[str] = None,
    literal: bool = False,
) -> str:
    """Render ``raw`` for the wire; the prompt is always the final character.

    ``echo_line`` is the line as received and is only passed when echo was
    enabled at the time it arrived, so ``ATE0`` is still echoed back. Byte
    payloads are regrouped into pairs (or compacted when spaces are off)
    and, with headers on, prefixed by the responding ECU id and byte count.
    Literal replies like ``OK``, ``NO DATA`` or the identity banner are never
    regrouped, but lose their whitespace too when spaces are off.
    """

    output = ""
    if echo_line is not None:
        output += f"{echo_line}\r"

    if not literal and is_hex_payload(raw):
        pairs = byte_pairs(raw)
        if settings.headers:
            pairs = [constants.RESPONSE_HEADER, f"{len(pairs):02X}", *pairs]
        separator = " " if settings.spaces else ""
        output += separator.join(pairs)
    elif settings.spaces:
        output += raw
    else:
        output += compact(raw)

    if settings.linefeed:
        output += "\n"
    if settings.double_linefeed:
        output += "\n"
    return output + constants.PROMPT
