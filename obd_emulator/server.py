"""TCP listener and per-connection line handling."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional, Set

from .config import AdapterConfig
from .elm.interpreter import CommandInterpreter, Session
from .elm.settings import AdapterSettings
from .events import EventBus, EventName

LOGGER = logging.getLogger(__name__)
WIRE_LOGGER = logging.getLogger("obd_emulator.wire")

READ_CHUNK_SIZE = 1024
LINE_TERMINATOR = "\r"
# A client that never sends CR cannot grow the pending line past this.
MAX_PENDING_LINE = 4096


class ListenerStartError(RuntimeError):
    """Raised when the TCP listener cannot bind its address."""


class ConnectionHandler:
    """Reads CR-terminated lines from one client and writes the replies.

    Lines are processed strictly in arrival order; a partial line stays in the
    buffer until its terminator arrives and is dropped if the client leaves.
    """

    def __init__(
        self,
        interpreter: CommandInterpreter,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        settings: AdapterSettings,
    ) -> None:
        self._interpreter = interpreter
        self._reader = reader
        self._writer = writer
        self._session = Session(settings=settings)
        self._buffer = ""
        peer = writer.get_extra_info("peername")
        self._peer = f"{peer[0]}:{peer[1]}" if isinstance(peer, tuple) else str(peer)

    @property
    def peer(self) -> str:
        return self._peer

    @property
    def session(self) -> Session:
        return self._session

    async def run(self) -> None:
        LOGGER.info("Client connected: %s", self._peer)
        try:
            while True:
                data = await self._reader.read(READ_CHUNK_SIZE)
                if not data:
                    break
                WIRE_LOGGER.debug("%s <- %r", self._peer, data)
                await self._feed(data.decode("ascii", errors="replace"))
        except (ConnectionError, asyncio.IncompleteReadError) as exc:
            LOGGER.warning("Connection %s dropped: %s", self._peer, exc)
        except OSError as exc:
            LOGGER.warning("Transport error on %s: %s", self._peer, exc)
        except Exception:
            LOGGER.exception("Unexpected failure handling %s; closing", self._peer)
        finally:
            self._buffer = ""
            await self._close()
            LOGGER.info(
                "Client disconnected: %s (%d exchanges)",
                self._peer,
                self._session.exchanges,
            )

    async def _feed(self, text: str) -> None:
        self._buffer += text
        while LINE_TERMINATOR in self._buffer:
            line, _, self._buffer = self._buffer.partition(LINE_TERMINATOR)
            response = self._interpreter.handle_line(line.replace("\n", ""), self._session)
            payload = response.encode("ascii", errors="replace")
            WIRE_LOGGER.debug("%s -> %r", self._peer, payload)
            self._writer.write(payload)
            await self._writer.drain()
        if len(self._buffer) > MAX_PENDING_LINE:
            LOGGER.warning(
                "Discarding %d buffered bytes from %s without a line terminator",
                len(self._buffer),
                self._peer,
            )
            self._buffer = ""

    async def _close(self) -> None:
        self._writer.close()
        with contextlib.suppress(ConnectionError, OSError):
            await self._writer.wait_closed()


class EmulatorServer:
    """Accepts scan-tool connections and runs one handler task per client."""

    def __init__(
        self,
        interpreter: CommandInterpreter,
        adapter: AdapterConfig,
        *,
        host: str,
        port: int,
        events: Optional[EventBus] = None,
    ) -> None:
        self._interpreter = interpreter
        self._adapter = adapter
        self._host = host
        self._port = port
        self._events = events
        self._server: Optional[asyncio.AbstractServer] = None
        self._connections: Set[asyncio.Task[None]] = set()

    @property
    def is_running(self) -> bool:
        return self._server is not None and self._server.is_serving()

    @property
    def port(self) -> Optional[int]:
        """Bound port, which differs from the configured one when that is 0."""

        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    @property
    def client_count(self) -> int:
        return len(self._connections)

    async def start(self) -> None:
        if self._server is not None:
            LOGGER.warning("Listener already running on port %s", self.port)
            return
        try:
            self._server = await asyncio.start_server(
                self._handle_client, self._host, self._port
            )
        except OSError as exc:
            raise ListenerStartError(
                f"Unable to listen on {self._host}:{self._port}: {exc}"
            ) from exc

        LOGGER.info("ELM327 listener on %s:%s", self._host, self.port)
        self._publish_status()

    async def stop(self) -> None:
        server = self._server
        if server is None:
            return
        server.close()
        connections = list(self._connections)
        for task in connections:
            task.cancel()
        if connections:
            await asyncio.gather(*connections, return_exceptions=True)
        await server.wait_closed()
        self._server = None
        LOGGER.info("ELM327 listener stopped")
        self._publish_status()

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._connections.add(task)
        self._publish_clients()
        handler = ConnectionHandler(
            self._interpreter,
            reader,
            writer,
            settings=AdapterSettings.from_config(self._adapter),
        )
        try:
            await handler.run()
        finally:
            if task is not None:
                self._connections.discard(task)
            self._publish_clients()

    def _publish_clients(self) -> None:
        if self._events is not None:
            self._events.publish(EventName.CLIENTS, count=self.client_count)

    def _publish_status(self) -> None:
        if self._events is not None:
            self._events.publish(
                EventName.STATUS, running=self.is_running, port=self.port
            )
