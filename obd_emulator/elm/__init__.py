"""ELM327 command set: settings, interpreter and line formatting."""

from .formatter import format_response, is_hex_payload
from .interpreter import Command, CommandInterpreter, CommandKind, Reply, Session, classify
from .settings import PROTOCOL_NAMES, AdapterIdentity, AdapterSettings

__all__ = [
    "AdapterIdentity",
    "AdapterSettings",
    "Command",
    "CommandInterpreter",
    "CommandKind",
    "PROTOCOL_NAMES",
    "Reply",
    "Session",
    "classify",
    "format_response",
    "is_hex_payload",
]
