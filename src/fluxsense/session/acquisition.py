from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Callable, List, Optional, Set, Tuple

from ..errors import DecodeSkip, PersistenceFailure
from ..measurement_csv import MeasurementCsvWriter
from ..position import PositionProvider
from ..records import Measurement
from .calibration import CalibrationStore
from .protocol import (
    AcquisitionState,
    Data,
    Error,
    HardwareCalibrationRef,
    Identify,
    ProtocolEvent,
    Settings,
    parse_data_payload,
    parse_hardware_reference,
    parse_line,
    parse_settings_payload,
)

logger = logging.getLogger(__name__)

Snapshot = Tuple[Measurement, ...]


def _now_ms() -> int:
    return int(time.time() * 1000)


class AcquisitionSession:
    """
    Owns the measurement buffer of one device connection.

    ``buffer`` keeps every sample since the last explicit :meth:`clear`;
    ``current`` only holds samples received while acquisition is on. Each
    on->off boundary detaches ``current`` into an immutable snapshot which is
    written to storage under a single flush lock.
    """

    def __init__(
        self,
        calibration: CalibrationStore,
        position: PositionProvider,
        writer: MeasurementCsvWriter,
        clock: Callable[[], int] = _now_ms,
        sensor_name: str = "sensor",
    ) -> None:
        self.calibration = calibration
        self.position = position
        self.writer = writer
        self.clock = clock
        self.sensor_name = sensor_name
        self.buffer: List[Measurement] = []
        self.current: List[Measurement] = []
        self.acquiring = False
        self.started_at: Optional[int] = None
        self.unsaved: List[Snapshot] = []
        self.saved_paths: List[str] = []
        self.errors = 0
        self.last_device_error: Optional[str] = None
        self._flush_lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()

    @property
    def flushing(self) -> bool:
        return self._flush_lock.locked()

    # ------------------------------------------------------------------ events
    def handle_line(self, line: str) -> Optional[ProtocolEvent]:
        event = parse_line(line)
        if event is not None:
            self.handle_event(event)
        return event

    def handle_event(self, event: ProtocolEvent) -> None:
        if isinstance(event, Data):
            self._ingest(event.payload)
        elif isinstance(event, AcquisitionState):
            snapshot = self._apply_state(event.on)
            if snapshot:
                self._schedule_save(snapshot)
        elif isinstance(event, Identify):
            logger.info("Device identified: %s", event.payload)
            self.set_sensor_name(event.payload)
        elif isinstance(event, Error):
            self.errors += 1
            self.last_device_error = event.payload
            logger.error("Device reported error: %s", event.payload)
        elif isinstance(event, Settings):
            self.calibration.apply_device(parse_settings_payload(event.payload))
        elif isinstance(event, HardwareCalibrationRef):
            try:
                reference = parse_hardware_reference(event.payload)
            except DecodeSkip as exc:
                logger.warning("%s", exc)
                return
            self.calibration.apply_hardware_reference(reference)
        else:
            raise TypeError(f"Unhandled protocol event: {event!r}")

    def _ingest(self, payload: str) -> Measurement:
        sample = parse_data_payload(payload, self.clock())
        if sample.co2 is not None:
            sample = replace(sample, co2=self.calibration.calibrate(sample.co2))
        fix = self.position.get_location()
        sample = replace(sample, latitude=fix.latitude, longitude=fix.longitude, altitude=fix.altitude)
        self.buffer.append(sample)
        if self.acquiring:
            self.current.append(sample)
        return sample

    def set_sensor_name(self, name: Optional[str]) -> None:
        if not name or not name.strip():
            return
        self.sensor_name = name.strip()

    # ------------------------------------------------------------ boundaries
    def _apply_state(self, acquiring: bool) -> Snapshot:
        was_acquiring = self.acquiring
        self.acquiring = acquiring
        if not was_acquiring and acquiring:
            self.current = []
            self.started_at = self.clock()
            logger.info("Acquisition started")
            return ()
        if was_acquiring and not acquiring:
            self.started_at = None
            snapshot = tuple(self.current)
            self.current = []
            logger.info("Acquisition stopped with %d samples", len(snapshot))
            return snapshot
        if not acquiring:
            self.started_at = None
        return ()

    def mark_started(self) -> None:
        self._apply_state(True)

    async def mark_stopped(self) -> Optional[str]:
        snapshot = self._apply_state(False)
        if not snapshot:
            return None
        return await self._persist(snapshot)

    def _schedule_save(self, snapshot: Snapshot) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; keeping %d samples for a later save", len(snapshot))
            self.unsaved.append(snapshot)
            return
        task = loop.create_task(self._persist(snapshot))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for saves scheduled by ACQUISITION_STATE events."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def backup_on_disconnect(self) -> Optional[str]:
        if self._flush_lock.locked():
            logger.debug("Backup skipped, a flush is already in flight")
            return None
        if not self.current:
            return None
        self.acquiring = False
        self.started_at = None
        snapshot = tuple(self.current)
        self.current = []
        logger.info("Backing up %d samples after disconnect", len(snapshot))
        return await self._persist(snapshot)

    # ------------------------------------------------------------ persistence
    async def _persist(self, snapshot: Snapshot) -> Optional[str]:
        async with self._flush_lock:
            try:
                path = await self.writer.save(snapshot, self.sensor_name)
            except PersistenceFailure as exc:
                logger.warning("Could not save %d samples: %s", len(snapshot), exc)
                self.unsaved.append(snapshot)
                return None
        if path:
            self.saved_paths.append(path)
        return path

    async def retry_unsaved(self) -> List[str]:
        pending, self.unsaved = self.unsaved, []
        paths: List[str] = []
        for snapshot in pending:
            path = await self._persist(snapshot)
            if path:
                paths.append(path)
        return paths

    async def export_all(self) -> Optional[str]:
        """Write the whole buffer to one file. Errors propagate to the caller."""
        snapshot = tuple(self.buffer)
        async with self._flush_lock:
            return await self.writer.save(snapshot, self.sensor_name)

    def clear(self) -> None:
        self.buffer = []
        self.current = []
        self.started_at = None
