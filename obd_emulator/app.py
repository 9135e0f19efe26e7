"""Main application entry-point for obd-emulator."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Dict, Optional

from .config import EmulatorConfig, load_config
from .diagnostics.dtc import DtcChange, DtcKind, DtcRegistry
from .diagnostics.freeze_frame import FreezeFrame, FreezeFrameStore
from .diagnostics.mode06 import Mode06Registry
from .elm.interpreter import CommandInterpreter
from .events import EventBus, EventName
from .health import HealthReporter, HealthServer
from .logging import configure_logging
from .server import EmulatorServer, ListenerStartError
from .telemetry.codec import TelemetryCodec
from .telemetry.feed import TelemetryFeed, TelemetryTicker, build_feed
from .telemetry.store import TelemetryStore

LOGGER = logging.getLogger(__name__)


class EmulatorApp:
    """Owns the shared stores and drives the listener, ticker and health endpoint.

    The control methods (listener start/stop, code injection, freeze-frame
    capture) are what a dashboard or test harness calls; scan tools only ever
    reach the stores through the TCP listener.
    """

    def __init__(
        self,
        config: Optional[EmulatorConfig] = None,
        *,
        feed: Optional[TelemetryFeed] = None,
        telemetry: Optional[TelemetryStore] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self._config = config or load_config()
        self._events = events or EventBus()
        self._codec = TelemetryCodec()
        self._telemetry = telemetry or TelemetryStore()
        self._freeze_frames = FreezeFrameStore(self._codec)
        dtc_config = self._config.dtc
        self._dtcs = DtcRegistry(
            dtc_config.stored,
            dtc_config.pending,
            dtc_config.permanent,
            freeze_frames=self._freeze_frames,
            rng=random.Random(self._config.live.seed),
        )
        self._interpreter = CommandInterpreter(
            self._telemetry,
            self._dtcs,
            freeze_frames=self._freeze_frames,
            mode06=Mode06Registry(),
            codec=self._codec,
            events=self._events,
        )
        self._ticker = TelemetryTicker(
            feed or build_feed(self._config.live),
            self._telemetry,
            interval=self._config.live.tick_seconds,
            events=self._events,
        )
        self._server: Optional[EmulatorServer] = None
        self._health = HealthReporter(summary=self.summary)
        self._health_server: Optional[HealthServer] = None
        self._shutdown_event: Optional[asyncio.Event] = None

    @property
    def config(self) -> EmulatorConfig:
        return self._config

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def telemetry(self) -> TelemetryStore:
        return self._telemetry

    @property
    def dtcs(self) -> DtcRegistry:
        return self._dtcs

    @property
    def freeze_frames(self) -> FreezeFrameStore:
        return self._freeze_frames

    @property
    def interpreter(self) -> CommandInterpreter:
        return self._interpreter

    @property
    def ticker(self) -> TelemetryTicker:
        return self._ticker

    @property
    def health(self) -> HealthReporter:
        return self._health

    @property
    def is_running(self) -> bool:
        return self._server is not None and self._server.is_running

    @property
    def port(self) -> Optional[int]:
        return self._server.port if self._server is not None else None

    async def start_listener(self) -> int:
        """Bind the TCP listener; raises :class:`ListenerStartError` on failure."""

        if self._server is not None and self._server.is_running:
            return self._server.port or self._config.server.port

        server = EmulatorServer(
            self._interpreter,
            self._config.adapter,
            host=self._config.server.host,
            port=self._config.server.port,
            events=self._events,
        )
        try:
            await server.start()
        except ListenerStartError as exc:
            LOGGER.error("Failed to start listener: %s", exc)
            await self._health.update("listener", False, str(exc))
            raise

        self._server = server
        await self._health.update("listener", True, f"port={server.port}")
        return server.port or self._config.server.port

    async def stop_listener(self) -> None:
        if self._server is None:
            return
        await self._server.stop()
        self._server = None
        await self._health.update("listener", False, "stopped")

    def inject_dtc(
        self, code: str, kind: DtcKind = DtcKind.STORED, *, capture: bool = True
    ) -> DtcChange:
        """Add a trouble code; a new stored code also freezes the current frame.

        Raises :class:`~obd_emulator.diagnostics.dtc.InvalidDtcError` for a
        malformed code.
        """

        change = self._dtcs.add(code, kind)
        if not change.changed:
            LOGGER.info("%s code %s already present", kind.value, code)
            return change

        LOGGER.info("Injected %s code %s", kind.value, code.upper())
        if capture and kind is DtcKind.STORED:
            self.capture_freeze_frame(trigger=code.upper())
        self._publish_mil(change)
        return change

    def inject_random_dtc(self, kind: DtcKind = DtcKind.STORED) -> Optional[str]:
        code = self._dtcs.random_code(kind)
        if code is None:
            LOGGER.warning("Every catalogue code is already %s", kind.value)
            return None
        self.inject_dtc(code, kind)
        return code

    def remove_dtc(self, code: str, kind: DtcKind = DtcKind.STORED) -> DtcChange:
        change = self._dtcs.remove(code, kind)
        self._publish_mil(change)
        return change

    def clear_dtcs(self) -> DtcChange:
        """Empty all three code lists and discard the freeze frame."""

        change = self._dtcs.clear()
        LOGGER.info("All trouble codes cleared")
        self._events.dtc_cleared(mil_on=change.snapshot.mil_on)
        self._publish_mil(change)
        return change

    def sync_mil(self) -> DtcChange:
        change = self._dtcs.sync_mil()
        self._events.mil_changed(
            mil_on=change.snapshot.mil_on, stored_count=len(change.snapshot.stored)
        )
        return change

    def capture_freeze_frame(self, trigger: Optional[str] = None) -> FreezeFrame:
        frame = self._freeze_frames.capture(self._telemetry.current(), trigger)
        self._events.publish(EventName.FREEZE_FRAME, captured=True, frame=frame.as_dict())
        return frame

    def clear_freeze_frame(self) -> bool:
        cleared = self._freeze_frames.clear()
        self._events.publish(EventName.FREEZE_FRAME, captured=False, frame=None)
        return cleared

    def summary(self) -> Dict[str, Any]:
        snapshot = self._dtcs.snapshot()
        return {
            "running": self.is_running,
            "port": self.port,
            "clients": self._server.client_count if self._server is not None else 0,
            "milOn": snapshot.mil_on,
            "storedCount": len(snapshot.stored),
            "pendingCount": len(snapshot.pending),
            "permanentCount": len(snapshot.permanent),
            "freezeFrame": self._freeze_frames.get() is not None,
            "telemetryTicks": self._telemetry.tick_count,
        }

    async def run(self) -> None:
        """Run until :meth:`request_shutdown` is called or the task is cancelled."""

        self._shutdown_event = asyncio.Event()
        LOGGER.info("obd-emulator starting with config: %s", self._config.path)

        self._ticker.start()
        await self._health.update("telemetry", True, self._config.live.mode)
        await self._start_health_server()

        if self._config.server.autostart:
            try:
                await self.start_listener()
            except ListenerStartError:
                LOGGER.warning("Listener not started; control API remains available")

        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            LOGGER.info("obd-emulator received shutdown signal")
            raise
        finally:
            await self._stop_services()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    @classmethod
    def start(cls, config: Optional[EmulatorConfig] = None) -> None:
        instance = cls(config=config)
        configure_logging(
            instance._config.logging.level,
            log_path=instance._config.logging.path,
            log_wire=instance._config.logging.log_wire,
        )
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("obd-emulator received shutdown signal")

    async def _start_health_server(self) -> None:
        health = self._config.health
        if not health.enabled or health.port <= 0:
            return

        server = HealthServer(self._health, health.host, health.port)
        try:
            await server.start()
        except OSError as exc:
            LOGGER.error("Failed to start health endpoint: %s", exc)
            await self._health.update("health-endpoint", False, str(exc))
        else:
            self._health_server = server
            await self._health.update("health-endpoint", True, None)

    async def _stop_health_server(self) -> None:
        if self._health_server is None:
            return
        await self._health_server.stop()
        self._health_server = None
        await self._health.update("health-endpoint", False, "shutdown")

    async def _stop_services(self) -> None:
        await self.stop_listener()
        await self._ticker.stop()
        await self._health.update("telemetry", False, "stopped")
        await self._stop_health_server()

    def _publish_mil(self, change: DtcChange) -> None:
        if change.mil_changed:
            self._events.mil_changed(
                mil_on=change.snapshot.mil_on, stored_count=len(change.snapshot.stored)
            )
