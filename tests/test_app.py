import asyncio
from pathlib import Path

import pytest

from obd_emulator.app import EmulatorApp
from obd_emulator.config import load_config
from obd_emulator.diagnostics.dtc import DtcKind, InvalidDtcError
from obd_emulator.events import EventName
from obd_emulator.server import ListenerStartError
from obd_emulator.telemetry.feed import StaticTelemetryFeed
from obd_emulator.telemetry.sample import TelemetrySample
from obd_emulator.telemetry.store import TelemetryStore


@pytest.fixture
def config(tmp_path: Path):
    config = load_config(tmp_path / "obd-emulator.cfg")
    config.server.host = "127.0.0.1"
    config.server.port = 0
    config.live.tick_seconds = 0.05
    return config


@pytest.fixture
def received(app):
    events = []
    app.events.subscribe(events.append)
    return events


@pytest.fixture
def app(config) -> EmulatorApp:
    return EmulatorApp(
        config,
        feed=StaticTelemetryFeed({"engine_rpm": 1800}),
        telemetry=TelemetryStore(TelemetrySample(engine_rpm=3000, vehicle_speed=50)),
    )


def named(events, name):
    return [event for event in events if event.name is name]


def test_initial_codes_come_from_config(app):
    snapshot = app.dtcs.snapshot()

    assert snapshot.stored == ("P0301", "P0420")
    assert snapshot.pending == ("P0171",)
    assert snapshot.permanent == ("P0301",)
    assert snapshot.mil_on is True


def test_inject_stored_code_captures_freeze_frame(app, received):
    app.clear_dtcs()
    received.clear()

    change = app.inject_dtc("p0171")

    assert change.changed is True
    assert app.dtcs.mil_on is True
    frame = app.freeze_frames.get()
    assert frame is not None
    assert frame.trigger == "P0171"
    assert frame.pids["010C"] == "41 0C 2E E0"

    assert named(received, EventName.FREEZE_FRAME)[0].data["captured"] is True
    mil = named(received, EventName.MIL_CHANGED)
    assert mil[0].data == {"milOn": True, "storedCount": 1}


def test_inject_pending_code_leaves_freeze_frame_alone(app):
    app.inject_dtc("P0455", DtcKind.PENDING)

    assert app.freeze_frames.get() is None
    assert "P0455" in app.dtcs.codes(DtcKind.PENDING)


def test_inject_duplicate_is_reported_unchanged(app, received):
    change = app.inject_dtc("P0301")

    assert change.changed is False
    assert app.dtcs.codes(DtcKind.STORED) == ("P0301", "P0420")
    assert named(received, EventName.FREEZE_FRAME) == []


def test_inject_invalid_code_raises(app):
    with pytest.raises(InvalidDtcError):
        app.inject_dtc("X1234")

    assert app.dtcs.codes(DtcKind.STORED) == ("P0301", "P0420")


def test_inject_random_code_uses_catalogue(app):
    code = app.inject_random_dtc(DtcKind.PENDING)

    assert code is not None
    assert code in app.dtcs.codes(DtcKind.PENDING)


def test_remove_last_stored_code_turns_mil_off(app, received):
    app.remove_dtc("P0301")
    change = app.remove_dtc("P0420")

    assert change.snapshot.mil_on is False
    assert named(received, EventName.MIL_CHANGED)[-1].data == {
        "milOn": False,
        "storedCount": 0,
    }


def test_clear_dtcs_empties_everything(app, received):
    app.capture_freeze_frame()

    change = app.clear_dtcs()

    assert change.snapshot.stored == ()
    assert change.snapshot.pending == ()
    assert change.snapshot.permanent == ()
    assert change.freeze_frame_cleared is True
    assert app.freeze_frames.get() is None
    assert named(received, EventName.DTC_CLEARED)[0].data == {"ok": True, "milOn": False}


def test_clear_freeze_frame_reports_whether_one_existed(app):
    assert app.clear_freeze_frame() is False

    app.capture_freeze_frame("manual")

    assert app.clear_freeze_frame() is True


def test_summary_reflects_state(app):
    summary = app.summary()

    assert summary["running"] is False
    assert summary["port"] is None
    assert summary["clients"] == 0
    assert summary["milOn"] is True
    assert summary["storedCount"] == 2
    assert summary["pendingCount"] == 1
    assert summary["permanentCount"] == 1
    assert summary["freezeFrame"] is False


@pytest.mark.asyncio
async def test_start_and_stop_listener(app):
    port = await app.start_listener()

    try:
        assert app.is_running
        assert port == app.port

        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        writer.write(b"010C\r")
        reply = await asyncio.wait_for(reader.readuntil(b">"), timeout=2)
        assert reply == b"41 0C 2E E0>"
        writer.close()
        await writer.wait_closed()
    finally:
        await app.stop_listener()

    assert not app.is_running
    snapshot = await app.health.snapshot()
    components = {item["name"]: item for item in snapshot["components"]}
    assert components["listener"]["healthy"] is False


@pytest.mark.asyncio
async def test_listener_failure_is_reported(config, unused_tcp_port):
    config.server.port = unused_tcp_port
    first = EmulatorApp(config)
    second = EmulatorApp(config)

    await first.start_listener()
    try:
        with pytest.raises(ListenerStartError):
            await second.start_listener()
    finally:
        await first.stop_listener()

    snapshot = await second.health.snapshot()
    assert snapshot["status"] == "degraded"
    assert not second.is_running


@pytest.mark.asyncio
async def test_run_until_shutdown(app):
    task = asyncio.create_task(app.run())

    for _ in range(100):
        if app.is_running and app.telemetry.tick_count:
            break
        await asyncio.sleep(0.01)

    assert app.is_running
    assert app.ticker.is_running
    assert app.telemetry.current().engine_rpm == 1800

    app.request_shutdown()
    await asyncio.wait_for(task, timeout=2)

    assert not app.is_running
    assert not app.ticker.is_running
