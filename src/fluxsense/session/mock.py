"""Scripted stand-in for a sensor, used by the demo and for bench testing."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import numpy as np

from ..errors import TransportFailure
from ..records import CalibrationSettings
from .protocol import Command, EventType, encode_settings_payload, parse_settings_payload
from .transport import DataCallback, DisconnectCallback

logger = logging.getLogger(__name__)


class MockTransport:
    """
    Answers WHOIS, settings and acquisition commands like the real firmware.

    While acquiring, a DATA line is emitted every ``interval`` seconds with CO2
    rising by ``co2_rate`` ppm/s plus noise. Set ``interval`` to ``None`` to
    drive samples manually with :meth:`emit_sample`.
    """

    def __init__(
        self,
        name: str = "Mock Sensor",
        interval: Optional[float] = 1.0,
        co2_start: float = 420.0,
        co2_rate: float = 0.8,
        hw_reference: int = 1013,
        seed: int = 42,
    ) -> None:
        self.name = name
        self.interval = interval
        self.co2_start = co2_start
        self.co2_rate = co2_rate
        self.hw_reference = hw_reference
        self.settings = CalibrationSettings()
        self.acquiring = False
        self.connected = False
        self.sent: list[str] = []
        self._rng = np.random.default_rng(seed)
        self._elapsed = 0.0
        self._on_data: Optional[DataCallback] = None
        self._on_disconnect: Optional[DisconnectCallback] = None
        self._stream_task: Optional[asyncio.Task] = None

    async def connect(self, address: str, on_disconnect: DisconnectCallback, on_data: DataCallback) -> None:
        self._stop_streaming()
        self._on_data = on_data
        self._on_disconnect = on_disconnect
        self.connected = True
        self._emit(f"{EventType.WHOIS.value} {self.name}")
        self._emit(f"{EventType.ACQUISITION_STATE.value} 0")

    async def send(self, message: str) -> None:
        if not self.connected:
            raise TransportFailure("Mock device is not connected")
        text = message.strip()
        self.sent.append(text)
        command, _, payload = text.partition(" ")
        if command == Command.START_ACQUISITION.value:
            self._start_streaming()
            self._emit(f"{EventType.ACQUISITION_STATE.value} 1")
        elif command == Command.STOP_ACQUISITION.value:
            self._stop_streaming()
            self._emit(f"{EventType.ACQUISITION_STATE.value} 0")
        elif command == Command.GET_ACQUISITION_STATE.value:
            self._emit(f"{EventType.ACQUISITION_STATE.value} {'1' if self.acquiring else '0'}")
        elif command == Command.WHOIS.value:
            self._emit(f"{EventType.WHOIS.value} {self.name}")
        elif command == Command.GET_SETTINGS.value:
            self._emit(f"{EventType.SETTINGS.value} {encode_settings_payload(self.settings)}")
        elif command == Command.SET_SETTINGS.value:
            self.settings = parse_settings_payload(payload)
            self._emit(f"{EventType.SETTINGS.value} {encode_settings_payload(self.settings)}")
        elif command == Command.GET_HW_CALIBRATION_REF.value:
            self._emit(f"{EventType.HW_CALIBRATION_REF.value} {self.hw_reference}")
        elif command == Command.DISCONNECT.value:
            await self.drop()
        else:
            self._emit(f"{EventType.ERROR.value} Unknown command {command}")

    async def disconnect(self) -> None:
        self._stop_streaming()
        self.connected = False
        self._on_data = None
        self._on_disconnect = None

    async def drop(self) -> None:
        """Simulate the link going away without a local request."""
        callback = self._on_disconnect
        await self.disconnect()
        if callback is not None:
            logger.info("Mock link dropped")
            callback()

    def emit_sample(self, step: float = 1.0) -> str:
        self._elapsed += step
        co2 = self.co2_start + self.co2_rate * self._elapsed + self._rng.normal(0.0, 0.5)
        temperature = 22.0 + self._rng.uniform(0.0, 3.0)
        humidity = 40.0 + self._rng.uniform(0.0, 8.0)
        line = f"{EventType.DATA.value} CO2={co2:.1f};TMP={temperature:.1f};HUM={humidity:.1f}"
        self._emit(line)
        return line

    def _emit(self, line: str) -> None:
        if self._on_data is not None:
            self._on_data(line + "\n")

    def _start_streaming(self) -> None:
        self._stop_streaming()
        self.acquiring = True
        self._elapsed = 0.0
        if self.interval is not None:
            self._stream_task = asyncio.get_running_loop().create_task(self._stream(self.interval))

    def _stop_streaming(self) -> None:
        self.acquiring = False
        if self._stream_task is not None:
            self._stream_task.cancel()
            self._stream_task = None

    async def _stream(self, interval: float) -> None:
        while self.acquiring:
            await asyncio.sleep(interval)
            self.emit_sample(interval)
