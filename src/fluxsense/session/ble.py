"""BLE transport over a Nordic UART style service, backed by bleak."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from bleak import BleakClient
from bleak.exc import BleakError

from ..errors import TransportFailure
from .config import NUS_RX_CHAR, NUS_TX_CHAR
from .transport import DataCallback, DisconnectCallback

logger = logging.getLogger(__name__)


class BleTransport:
    def __init__(
        self,
        notify_char: str = NUS_TX_CHAR,
        write_char: str = NUS_RX_CHAR,
        connect_timeout: float = 10.0,
        client_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.notify_char = notify_char
        self.write_char = write_char
        self.connect_timeout = connect_timeout
        self._client_factory = client_factory or BleakClient
        self._client: Any = None
        self._closing = False

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self, address: str, on_disconnect: DisconnectCallback, on_data: DataCallback) -> None:
        if self._client is not None:
            await self.disconnect()
        self._closing = False

        def _disconnected(_client: Any) -> None:
            if self._closing:
                return
            logger.warning("BLE link to %s lost", address)
            self._client = None
            on_disconnect()

        def _notification(_sender: Any, data: bytearray) -> None:
            on_data(bytes(data))

        client = self._client_factory(
            address, disconnected_callback=_disconnected, timeout=self.connect_timeout
        )
        try:
            await client.connect()
            await client.start_notify(self.notify_char, _notification)
        except (BleakError, OSError, asyncio.TimeoutError) as exc:
            self._closing = True
            try:
                await client.disconnect()
            except (BleakError, OSError) as cleanup_exc:
                logger.debug("Cleanup after failed connect raised: %s", cleanup_exc)
            raise TransportFailure(f"BLE connect to {address} failed: {exc}") from exc
        self._client = client
        logger.info("BLE connected to %s", address)

    async def send(self, message: str) -> None:
        if self._client is None:
            raise TransportFailure("BLE link is not connected")
        try:
            await self._client.write_gatt_char(self.write_char, message.encode("utf-8"), response=False)
        except (BleakError, OSError) as exc:
            raise TransportFailure(f"BLE write failed: {exc}") from exc

    async def disconnect(self) -> None:
        client = self._client
        self._client = None
        if client is None:
            return
        self._closing = True
        try:
            await client.stop_notify(self.notify_char)
        except (BleakError, OSError) as exc:
            logger.debug("stop_notify failed: %s", exc)
        try:
            await client.disconnect()
        except (BleakError, OSError) as exc:
            raise TransportFailure(f"BLE disconnect failed: {exc}") from exc
