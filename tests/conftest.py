import logging

import pytest


@pytest.fixture(autouse=True)
def quiet_wire_logger():
    """Keep per-byte wire traces out of captured test logs."""
    logger = logging.getLogger("obd_emulator.wire")
    previous = logger.level
    logger.setLevel(logging.INFO)
    yield
    logger.setLevel(previous)
