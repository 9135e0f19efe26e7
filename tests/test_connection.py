"""Loopback tests for the TCP listener and per-client line handling."""

import asyncio

import pytest

from obd_emulator.config import AdapterConfig
from obd_emulator.diagnostics.dtc import DtcRegistry
from obd_emulator.diagnostics.freeze_frame import FreezeFrameStore
from obd_emulator.elm.interpreter import CommandInterpreter
from obd_emulator.elm.settings import AdapterSettings
from obd_emulator.events import EventBus, EventName
from obd_emulator.server import (
    MAX_PENDING_LINE,
    ConnectionHandler,
    EmulatorServer,
    ListenerStartError,
)
from obd_emulator.telemetry.sample import TelemetrySample
from obd_emulator.telemetry.store import TelemetryStore

HOST = "127.0.0.1"


def make_server(*, port: int = 0, events=None) -> EmulatorServer:
    freeze_frames = FreezeFrameStore()
    interpreter = CommandInterpreter(
        TelemetryStore(TelemetrySample(engine_rpm=2000, vehicle_speed=64)),
        DtcRegistry(["P0301", "P0420"], ["P0171"], ["P0301"], freeze_frames=freeze_frames),
        freeze_frames=freeze_frames,
        events=events,
    )
    return EmulatorServer(interpreter, AdapterConfig(), host=HOST, port=port, events=events)


async def read_reply(reader: asyncio.StreamReader) -> str:
    data = await asyncio.wait_for(reader.readuntil(b">"), timeout=2)
    return data.decode("ascii")


async def wait_for(predicate, attempts: int = 100) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_request_response_over_tcp():
    server = make_server()
    await server.start()
    try:
        reader, writer = await asyncio.open_connection(HOST, server.port)

        writer.write(b"ATZ\r")
        assert await read_reply(reader) == "ELM327 v1.2>"

        writer.write(b"03\r")
        assert await read_reply(reader) == "43 03 01 04 20>"

        writer.close()
        await writer.wait_closed()
    finally:
        await server.stop()


@pytest.mark.asyncio
async def test_multiple_lines_in_one_write_are_answered_in_order():
    server = make_server()
    await server.start()
    try:
        reader, writer = await asyncio.open_connection(HOST, server.port)

        writer.write(b"ATS0\r010D\r\n010C\r")

        assert await read_reply(reader) == "OK>"
        assert await read_reply(reader) == "410D40>"
        assert await read_reply(reader) == "410C1F40>"

        writer.close()
        await writer.wait_closed()
    finally:
        await server.stop()


@pytest.mark.asyncio
async def test_partial_line_waits_for_terminator():
    server = make_server()
    await server.start()
    try:
        reader, writer = await asyncio.open_connection(HOST, server.port)

        writer.write(b"01")
        await writer.drain()
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(reader.read(1), timeout=0.1)

        writer.write(b"0D\r")
        assert await read_reply(reader) == "41 0D 40>"

        writer.close()
        await writer.wait_closed()
    finally:
        await server.stop()


@pytest.mark.asyncio
async def test_clients_keep_independent_settings():
    server = make_server()
    await server.start()
    try:
        first_reader, first_writer = await asyncio.open_connection(HOST, server.port)
        second_reader, second_writer = await asyncio.open_connection(HOST, server.port)

        first_writer.write(b"ATH1\r")
        assert await read_reply(first_reader) == "OK>"

        first_writer.write(b"010D\r")
        second_writer.write(b"010D\r")

        assert await read_reply(first_reader) == "7E8 03 41 0D 40>"
        assert await read_reply(second_reader) == "41 0D 40>"

        for writer in (first_writer, second_writer):
            writer.close()
            await writer.wait_closed()
    finally:
        await server.stop()


@pytest.mark.asyncio
async def test_clear_is_visible_to_other_clients():
    server = make_server()
    await server.start()
    try:
        first_reader, first_writer = await asyncio.open_connection(HOST, server.port)
        second_reader, second_writer = await asyncio.open_connection(HOST, server.port)

        first_writer.write(b"04\r")
        assert await read_reply(first_reader) == "44>"

        second_writer.write(b"03\r")
        assert await read_reply(second_reader) == "NO DATA>"

        for writer in (first_writer, second_writer):
            writer.close()
            await writer.wait_closed()
    finally:
        await server.stop()


@pytest.mark.asyncio
async def test_busy_port_raises_listener_start_error(unused_tcp_port):
    first = make_server(port=unused_tcp_port)
    await first.start()
    try:
        second = make_server(port=unused_tcp_port)
        with pytest.raises(ListenerStartError):
            await second.start()
        assert not second.is_running
    finally:
        await first.stop()


@pytest.mark.asyncio
async def test_status_and_client_events():
    bus = EventBus()
    received = []
    bus.subscribe(received.append)
    server = make_server(events=bus)

    await server.start()
    try:
        reader, writer = await asyncio.open_connection(HOST, server.port)
        writer.write(b"ATI\r")
        await read_reply(reader)

        assert server.client_count == 1

        writer.close()
        await writer.wait_closed()
        await wait_for(lambda: server.client_count == 0)
    finally:
        await server.stop()

    status = [event.data for event in received if event.name is EventName.STATUS]
    assert status[0]["running"] is True
    assert status[0]["port"] is not None
    assert status[-1] == {"running": False, "port": None}

    clients = [event.data["count"] for event in received if event.name is EventName.CLIENTS]
    assert clients[0] == 1
    assert clients[-1] == 0
    assert not server.is_running


@pytest.mark.asyncio
async def test_stop_disconnects_clients():
    server = make_server()
    await server.start()

    reader, writer = await asyncio.open_connection(HOST, server.port)
    writer.write(b"ATZ\r")
    await read_reply(reader)

    await server.stop()

    assert await asyncio.wait_for(reader.read(), timeout=2) == b""
    assert server.client_count == 0
    writer.close()


class FakeWriter:
    """Collects written bytes in place of a socket transport."""

    def __init__(self) -> None:
        self.written = []
        self.closed = False

    def get_extra_info(self, name):
        return ("10.0.0.2", 50123) if name == "peername" else None

    def write(self, data: bytes) -> None:
        self.written.append(data)

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None


@pytest.mark.asyncio
async def test_unterminated_flood_is_discarded(caplog):
    freeze_frames = FreezeFrameStore()
    interpreter = CommandInterpreter(
        TelemetryStore(), DtcRegistry([], [], [], freeze_frames=freeze_frames)
    )
    reader = asyncio.StreamReader()
    writer = FakeWriter()
    handler = ConnectionHandler(
        interpreter, reader, writer, settings=AdapterSettings.from_config(AdapterConfig())
    )

    reader.feed_data(b"X" * (MAX_PENDING_LINE + 904))
    task = asyncio.create_task(handler.run())
    await wait_for(lambda: "Discarding" in caplog.text)

    reader.feed_data(b"ATI\r")
    reader.feed_eof()
    await asyncio.wait_for(task, timeout=2)

    assert "Discarding 5000 buffered bytes from 10.0.0.2:50123" in caplog.text
    assert writer.written == [b"ELM327 v1.2>"]
    assert writer.closed
