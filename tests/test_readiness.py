import pytest

from obd_emulator.diagnostics.readiness import derive_monitor_status, incomplete_monitors


def test_no_codes_reports_all_monitors_complete():
    assert derive_monitor_status([], False) == (0x00, 0x07, 0xE5, 0x00)


def test_mil_and_count_share_first_byte():
    status = derive_monitor_status(["P0301", "P0420"], True)

    assert status[0] == 0x82


def test_stored_count_is_capped():
    codes = [f"P1{index:03X}" for index in range(200)]

    assert derive_monitor_status(codes, True)[0] == 0xFF


@pytest.mark.parametrize(
    ("code", "expected_b"),
    [
        ("P0301", 0x17),
        ("P0171", 0x27),
        ("P0088", 0x27),
        ("P0113", 0x47),
        ("P0507", 0x47),
    ],
)
def test_continuous_monitors_set_incomplete_bits(code, expected_b):
    status = derive_monitor_status([code], True)

    assert status[1] == expected_b
    assert status[2:] == (0xE5, 0x00)


@pytest.mark.parametrize(
    ("code", "bit"),
    [
        ("P0420", 0x01),
        ("P0442", 0x04),
        ("P0411", 0x08),
        ("P0133", 0x20),
        ("P0031", 0x40),
        ("P0053", 0x40),
        ("P0401", 0x80),
    ],
)
def test_non_continuous_monitors_are_supported_and_incomplete(code, bit):
    _, byte_b, byte_c, byte_d = derive_monitor_status([code], True)

    assert byte_b == 0x07
    assert byte_c == 0xE5 | bit
    assert byte_d == bit


def test_unrelated_codes_leave_monitors_complete():
    assert derive_monitor_status(["U0100", "B1234"], True)[1:] == (0x07, 0xE5, 0x00)


def test_incomplete_monitors_lists_each_group_once():
    groups = incomplete_monitors(["P0301", "P0302", "P0420"])

    assert [group.name for group in groups] == ["misfire", "catalyst"]


def test_heater_code_can_also_flag_sensor_monitor():
    _, _, byte_c, byte_d = derive_monitor_status(["P0135"], True)

    assert byte_d == 0x60
    assert byte_c == 0xE5 | 0x60
