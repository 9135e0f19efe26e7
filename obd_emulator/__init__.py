"""ELM327 OBD-II adapter emulator."""

from .version import __version__

__all__ = ["__version__"]
