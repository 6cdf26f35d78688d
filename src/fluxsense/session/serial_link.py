from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

import serial  # type: ignore[import]

from ..errors import TransportFailure
from .transport import DataCallback, DisconnectCallback

logger = logging.getLogger(__name__)


@dataclass
class SerialSettings:
    baudrate: int = 9600
    timeout: float = 0.1
    chunk_size: int = 256


class SerialReaderThread(threading.Thread):
    """Pumps raw chunks from an open port until stopped or the port fails."""

    def __init__(
        self,
        handle,
        port: str,
        chunk_size: int,
        on_chunk: Callable[[bytes], None],
        on_lost: Callable[[], None],
    ) -> None:
        super().__init__(daemon=True, name=f"serial-reader-{port}")
        self.port = port
        self.chunk_size = max(chunk_size, 1)
        self._handle = handle
        self._on_chunk = on_chunk
        self._on_lost = on_lost
        self._stop_event = threading.Event()
        self.bytes_read = 0
        self.last_exception: Optional[Exception] = None
        self._log = logging.getLogger(__name__)

    def run(self) -> None:
        try:
            while not self._stop_event.is_set():
                data = self._handle.read(self.chunk_size)
                if not data:
                    continue
                self.bytes_read += len(data)
                self._on_chunk(bytes(data))
        except serial.SerialException as exc:  # type: ignore[attr-defined]
            self.last_exception = exc
            if not self._stop_event.is_set():
                self._log.warning("Serial error (%s): %s", self.port, exc)
                self._on_lost()
        except Exception as exc:
            self.last_exception = exc
            if not self._stop_event.is_set():
                self._log.exception("Unexpected error in serial reader")
                self._on_lost()

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()


class SerialTransport:
    """Serial port transport. The reader thread hands chunks to the event loop."""

    def __init__(self, settings: Optional[SerialSettings] = None) -> None:
        self.settings = settings or SerialSettings()
        self._handle = None
        self._reader: Optional[SerialReaderThread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    async def connect(self, address: str, on_disconnect: DisconnectCallback, on_data: DataCallback) -> None:
        if self._handle is not None:
            await self.disconnect()
        loop = asyncio.get_running_loop()
        try:
            handle = await asyncio.to_thread(self._open_serial, address)
        except serial.SerialException as exc:  # type: ignore[attr-defined]
            raise TransportFailure(f"Cannot open {address}: {exc}") from exc
        self._loop = loop
        self._handle = handle

        def _chunk(data: bytes) -> None:
            loop.call_soon_threadsafe(on_data, data)

        def _lost() -> None:
            loop.call_soon_threadsafe(self._lost, on_disconnect)

        self._reader = SerialReaderThread(handle, address, self.settings.chunk_size, _chunk, _lost)
        self._reader.start()
        logger.info("Opened %s at %d baud", address, self.settings.baudrate)

    def _lost(self, on_disconnect: DisconnectCallback) -> None:
        self._close_handle()
        on_disconnect()

    async def send(self, message: str) -> None:
        handle = self._handle
        if handle is None:
            raise TransportFailure("Serial port is not open")
        payload = message.encode("ascii", errors="ignore")
        try:
            await asyncio.to_thread(self._write, handle, payload)
        except serial.SerialException as exc:  # type: ignore[attr-defined]
            raise TransportFailure(f"Serial write failed: {exc}") from exc

    async def disconnect(self) -> None:
        reader = self._reader
        self._reader = None
        if reader is not None:
            reader.stop()
        self._close_handle()
        if reader is not None and reader.is_alive():
            await asyncio.to_thread(reader.join, 1.0)

    def _close_handle(self) -> None:
        handle = self._handle
        self._handle = None
        if handle is None:
            return
        try:
            handle.close()
        except serial.SerialException as exc:  # type: ignore[attr-defined]
            logger.debug("Ignoring error on close: %s", exc)

    @staticmethod
    def _write(handle, payload: bytes) -> None:
        handle.write(payload)
        handle.flush()

    def _open_serial(self, port: str):
        return serial.Serial(
            port=port,
            baudrate=self.settings.baudrate,
            timeout=self.settings.timeout,
        )
