from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Tuple, Union

from ..flux import FluxAnalysisService
from ..measurement_csv import MeasurementCsvWriter
from ..position import PositionProvider, StaticPosition
from ..storage import FolderStorage, Storage
from .acquisition import AcquisitionSession
from .calibration import CalibrationStore
from .config import ClientConfig
from .connection import ConnectionStateMachine, Sleep
from .protocol import Command
from .serial_link import SerialSettings, SerialTransport
from .transport import DeviceTarget, Transport

logger = logging.getLogger(__name__)


def build_transport(config: ClientConfig) -> Transport:
    name = config.transport_name
    if name == "serial":
        return SerialTransport(
            SerialSettings(
                baudrate=config.serial.baudrate,
                timeout=config.serial.timeout,
                chunk_size=config.serial.chunk_size,
            )
        )
    if name == "ble":
        from .ble import BleTransport

        return BleTransport(
            notify_char=config.ble.notify_char,
            write_char=config.ble.write_char,
            connect_timeout=config.ble.connect_timeout,
        )
    from .mock import MockTransport

    return MockTransport()


class SensorClient:
    """Wires transport, acquisition buffer, calibration and flux analysis for one device."""

    def __init__(
        self,
        transport: Transport,
        config: Optional[ClientConfig] = None,
        *,
        storage: Optional[Storage] = None,
        position: Optional[PositionProvider] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.transport = transport
        self.storage = storage or FolderStorage()
        if position is None:
            position = StaticPosition(
                self.config.position.latitude,
                self.config.position.longitude,
                self.config.position.altitude,
            )
        self.position = position
        folder = self.config.storage.folder
        self.calibration = CalibrationStore()
        self.writer = MeasurementCsvWriter(self.storage, folder)
        session_kwargs: Dict[str, Any] = {}
        if clock is not None:
            session_kwargs["clock"] = clock
        self.acquisition = AcquisitionSession(self.calibration, self.position, self.writer, **session_kwargs)
        self.connection = ConnectionStateMachine(
            transport,
            self.acquisition,
            retry_attempts=self.config.retry.attempts,
            retry_interval=self.config.retry.interval_sec,
            sleep=sleep,
            console_size=self.config.console_size,
        )
        self.flux = FluxAnalysisService(
            self.storage,
            folder,
            self.position,
            precision=self.config.analysis.co2_slope_precision,
        )

    @classmethod
    def from_config(cls, config: ClientConfig, **kwargs: Any) -> "SensorClient":
        return cls(build_transport(config), config, **kwargs)

    async def connect(self, target: Union[str, DeviceTarget]) -> None:
        await self.connection.connect(target)

    async def disconnect(self) -> None:
        await self.connection.disconnect()
        await self.acquisition.drain()

    async def start_acquisition(self) -> None:
        await self.connection.send_command(Command.START_ACQUISITION)

    async def stop_acquisition(self) -> Optional[str]:
        # the device may answer ACQUISITION_STATE 0 before the local stop runs
        saved_before = len(self.acquisition.saved_paths)
        path = await self.connection.send_command(Command.STOP_ACQUISITION)
        await self.acquisition.drain()
        if path is None and len(self.acquisition.saved_paths) > saved_before:
            path = self.acquisition.saved_paths[-1]
        return path

    async def push_settings(self, multiplier: Optional[float] = None, offset: Optional[float] = None) -> None:
        await self.connection.push_settings(multiplier, offset)

    async def save_flux(self, window: Tuple[float, float]) -> str:
        return await self.flux.save_selection(
            self.acquisition.buffer,
            window,
            self.acquisition.sensor_name,
            self.calibration.current,
        )

    def summary(self) -> Dict[str, str]:
        info = {
            "state": self.connection.state.value,
            "sensor": self.acquisition.sensor_name,
            "samples": str(len(self.acquisition.buffer)),
            "saved_files": str(len(self.acquisition.saved_paths)),
            "unsaved_snapshots": str(len(self.acquisition.unsaved)),
            "device_errors": str(self.acquisition.errors),
        }
        info.update(self.calibration.metadata())
        if self.connection.last_disconnect_message:
            info["last_disconnect"] = self.connection.last_disconnect_message
        return info
