import itertools
import random

import pytest

from obd_emulator.diagnostics.dtc import (
    COMMON_DTCS,
    DtcKind,
    DtcRegistry,
    InvalidDtcError,
    decode_dtc,
    encode_dtc,
    format_dtc_response,
)
from obd_emulator.diagnostics.freeze_frame import FreezeFrameStore
from obd_emulator.telemetry.sample import TelemetrySample

HEX_DIGITS = "0123456789ABCDEF"


def test_encode_dtc_packs_system_and_digits():
    assert encode_dtc("P0301") == (0x03, 0x01)
    assert encode_dtc("P0420") == (0x04, 0x20)
    assert encode_dtc("C1234") == (0x52, 0x34)
    assert encode_dtc("B2ABC") == (0xAA, 0xBC)
    assert encode_dtc("U3FFF") == (0xFF, 0xFF)


@pytest.mark.parametrize("code", ["P0000", "P0171", "C0035", "B1A2F", "U0100", "U3FFF"])
def test_decode_dtc_inverts_encoding(code):
    assert decode_dtc(*encode_dtc(code)) == code


def test_every_valid_code_round_trips():
    seen = set()

    for letter, first, *rest in itertools.product("PCBU", "0123", *[HEX_DIGITS] * 3):
        code = letter + first + "".join(rest)
        packed = encode_dtc(code)
        assert decode_dtc(*packed) == code
        seen.add(packed)

    assert len(seen) == 4 * 4 * 16 ** 3


def test_encode_dtc_accepts_lowercase():
    assert encode_dtc(" p0301 ") == (0x03, 0x01)


@pytest.mark.parametrize("code", ["", "P030", "P03011", "X0301", "P4301", "P03G1"])
def test_invalid_codes_raise(code):
    with pytest.raises(InvalidDtcError):
        encode_dtc(code)


def test_format_dtc_response_in_store_order_without_dedup():
    assert format_dtc_response(0x43, ["P0301", "P0420"]) == "43 03 01 04 20"
    assert format_dtc_response(0x47, ["P0420", "P0301", "P0420"]) == "47 04 20 03 01 04 20"
    assert format_dtc_response(0x4A, []) == "NO DATA"


def test_registry_defaults_set_mil_from_stored():
    registry = DtcRegistry(["P0301"], ["P0171"], ["P0301"])

    assert registry.mil_on is True
    assert registry.codes(DtcKind.PENDING) == ("P0171",)
    assert DtcRegistry().mil_on is False


def test_registry_rejects_invalid_startup_codes():
    with pytest.raises(InvalidDtcError):
        DtcRegistry(["P03"])


def test_add_first_stored_code_turns_mil_on():
    registry = DtcRegistry()

    change = registry.add("p0420")

    assert change.changed is True
    assert change.mil_changed is True
    assert change.snapshot.stored == ("P0420",)
    assert registry.mil_on is True


def test_add_existing_code_is_noop():
    registry = DtcRegistry(["P0420"])

    change = registry.add("P0420")

    assert change.changed is False
    assert change.mil_changed is False
    assert registry.codes(DtcKind.STORED) == ("P0420",)


def test_pending_code_does_not_light_mil():
    registry = DtcRegistry()

    registry.add("P0171", DtcKind.PENDING)

    assert registry.mil_on is False


def test_remove_last_stored_code_turns_mil_off():
    registry = DtcRegistry(["P0301"])

    change = registry.remove("P0301")

    assert change.changed is True
    assert change.mil_changed is True
    assert registry.mil_on is False


def test_clear_codes_keeps_permanent_and_drops_freeze_frame():
    frames = FreezeFrameStore()
    frames.capture(TelemetrySample())
    registry = DtcRegistry(["P0301"], ["P0171"], ["P0301"], freeze_frames=frames)

    change = registry.clear_codes()

    assert change.snapshot.stored == ()
    assert change.snapshot.pending == ()
    assert change.snapshot.permanent == ("P0301",)
    assert change.snapshot.mil_on is False
    assert change.freeze_frame_cleared is True
    assert frames.get() is None


def test_clear_empties_everything_and_is_idempotent():
    registry = DtcRegistry(["P0301"], ["P0171"], ["P0301"], freeze_frames=FreezeFrameStore())

    first = registry.clear()
    second = registry.clear()

    assert first.changed is True
    assert second.changed is False
    assert first.snapshot == second.snapshot
    assert second.snapshot.stored == second.snapshot.pending == second.snapshot.permanent == ()
    assert second.snapshot.mil_on is False


def test_sync_mil_reports_current_state():
    registry = DtcRegistry(["P0301", "P0420"])

    change = registry.sync_mil()

    assert change.mil_changed is False
    assert change.snapshot.mil_on is True
    assert change.snapshot.as_dict()["storedCount"] == 2


def test_response_per_service():
    registry = DtcRegistry(["P0301", "P0420"], [], ["P0301"])

    assert registry.response(DtcKind.from_service("03")) == "43 03 01 04 20"
    assert registry.response(DtcKind.from_service("07")) == "NO DATA"
    assert registry.response(DtcKind.from_service("0a")) == "4A 03 01"


def test_monitor_status_reflects_stored_codes():
    registry = DtcRegistry(["P0301", "P0420"])

    status = registry.monitor_status()

    assert status[0] == 0x82


def test_random_code_skips_present_codes():
    registry = DtcRegistry(list(COMMON_DTCS[:-1]), rng=random.Random(7))

    assert registry.random_code() == COMMON_DTCS[-1]
    registry.add(COMMON_DTCS[-1])
    assert registry.random_code() is None
