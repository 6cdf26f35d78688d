from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, List, Optional, Set, Union

from ..errors import InvalidAddress, TransportFailure
from .acquisition import AcquisitionSession
from .protocol import (
    Command,
    HardwareCalibrationRef,
    LineAssembler,
    Settings,
    encode_command,
    encode_settings_payload,
    parse_line,
)
from .transport import DeviceTarget, Transport, resolve_target

logger = logging.getLogger(__name__)

UNEXPECTED_DISCONNECT_MESSAGE = "Device disconnected unexpectedly"
INVALID_ADDRESS_MESSAGE = "Invalid address"

Sleep = Callable[[float], Awaitable[None]]


class ConnectionState(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass
class InitRetry:
    """Bounded post-connect handshake: settings and hardware reference requests."""

    attempts_remaining: int = 5
    interval: float = 1.2
    need_settings: bool = True
    need_hw_reference: bool = True

    @property
    def satisfied(self) -> bool:
        return not self.need_settings and not self.need_hw_reference

    def missing_commands(self) -> List[Command]:
        commands: List[Command] = []
        if self.need_settings:
            commands.append(Command.GET_SETTINGS)
        if self.need_hw_reference:
            commands.append(Command.GET_HW_CALIBRATION_REF)
        return commands


class ConnectionStateMachine:
    def __init__(
        self,
        transport: Transport,
        acquisition: AcquisitionSession,
        *,
        retry_attempts: int = 5,
        retry_interval: float = 1.2,
        sleep: Sleep = asyncio.sleep,
        console_size: int = 500,
    ) -> None:
        self.transport = transport
        self.acquisition = acquisition
        self.retry_attempts = retry_attempts
        self.retry_interval = retry_interval
        self.sleep = sleep
        self.state = ConnectionState.IDLE
        self.device: Optional[DeviceTarget] = None
        self.last_error: Optional[str] = None
        self.last_disconnect_message: Optional[str] = None
        self.last_disconnect_at: Optional[int] = None
        self.console: Deque[str] = deque(maxlen=console_size)
        self.init_retry: Optional[InitRetry] = None
        self._manual_disconnect = False
        self._assembler = LineAssembler()
        self._callbacks: Set[asyncio.Task] = set()

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def is_connecting(self) -> bool:
        return self.state is ConnectionState.CONNECTING

    @property
    def has_unexpected_disconnect(self) -> bool:
        return bool(self.last_disconnect_message) and not self._manual_disconnect

    # ------------------------------------------------------------ connect
    async def connect(self, target: Union[str, DeviceTarget]) -> None:
        if self.state is ConnectionState.CONNECTING:
            logger.debug("Connect ignored, already connecting")
            return
        device = resolve_target(target)
        address = device.resolve_address()
        if not address:
            self.state = ConnectionState.ERROR
            self.last_error = INVALID_ADDRESS_MESSAGE
            raise InvalidAddress(INVALID_ADDRESS_MESSAGE)

        self.state = ConnectionState.CONNECTING
        self.last_error = None
        self.last_disconnect_message = None
        self.last_disconnect_at = None
        self._manual_disconnect = False
        self.device = device
        self._assembler.reset()
        self.init_retry = None
        self.acquisition.set_sensor_name(device.name)
        logger.info("Connecting to %s", address)

        try:
            await self.transport.connect(address, self._on_transport_disconnect, self.handle_incoming)
            self.init_retry = InitRetry(attempts_remaining=self.retry_attempts, interval=self.retry_interval)
            await self._run_init_retry(self.init_retry)
        except Exception as exc:
            self.device = None
            self.state = ConnectionState.ERROR
            self.last_error = str(exc) or exc.__class__.__name__
            self._assembler.reset()
            self.init_retry = None
            logger.warning("Connection to %s failed: %s", address, self.last_error)
            if isinstance(exc, TransportFailure):
                raise
            raise TransportFailure(self.last_error) from exc

        if self.state is ConnectionState.CONNECTING:
            self.state = ConnectionState.CONNECTED
            retry = self.init_retry
            if retry is not None and not retry.satisfied:
                logger.warning(
                    "Connected without init data (settings=%s hw_ref=%s)",
                    not retry.need_settings,
                    not retry.need_hw_reference,
                )
            logger.info("Connected to %s", address)

    async def _run_init_retry(self, retry: InitRetry) -> None:
        while retry.attempts_remaining > 0:
            if self.state is not ConnectionState.CONNECTING:
                logger.debug("Init requests aborted, state is %s", self.state.value)
                return
            for command in retry.missing_commands():
                await self._transmit(command.value)
            retry.attempts_remaining -= 1
            if retry.satisfied or retry.attempts_remaining == 0:
                return
            await self.sleep(retry.interval)
            if retry.satisfied:
                return

    # ------------------------------------------------------------ incoming
    def handle_incoming(self, chunk: Union[str, bytes]) -> None:
        for line in self._assembler.feed(chunk):
            logger.debug("RX: %s", line)
            self.console.append(line)
            event = parse_line(line)
            if event is None:
                continue
            if self.init_retry is not None:
                if isinstance(event, Settings):
                    self.init_retry.need_settings = False
                elif isinstance(event, HardwareCalibrationRef):
                    self.init_retry.need_hw_reference = False
            self.acquisition.handle_event(event)

    def _on_transport_disconnect(self) -> None:
        task = asyncio.ensure_future(self.handle_disconnected(False))
        self._callbacks.add(task)
        task.add_done_callback(self._callbacks.discard)

    # ------------------------------------------------------------ disconnect
    async def disconnect(self) -> None:
        self._manual_disconnect = True
        try:
            await self.transport.disconnect()
        except TransportFailure:
            raise
        except Exception as exc:
            raise TransportFailure(f"Disconnect failed: {exc}") from exc
        finally:
            await self.handle_disconnected(True)

    async def handle_disconnected(self, manual: bool) -> Optional[str]:
        was_connected = self.state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING)
        was_manual = manual or self._manual_disconnect
        if not was_connected and self.device is None:
            return None

        self.state = ConnectionState.IDLE
        self.device = None
        self.last_error = None
        self.last_disconnect_at = int(time.time() * 1000)
        self._assembler.reset()
        if self.init_retry is not None:
            self.init_retry.need_settings = False
            self.init_retry.need_hw_reference = False

        if was_connected and not was_manual:
            self.last_disconnect_message = UNEXPECTED_DISCONNECT_MESSAGE
            logger.warning(UNEXPECTED_DISCONNECT_MESSAGE)
        elif was_manual:
            self.last_disconnect_message = None
            logger.info("Disconnected")
        self._manual_disconnect = False
        return await self.acquisition.backup_on_disconnect()

    async def wait_callbacks(self) -> None:
        while self._callbacks:
            await asyncio.gather(*list(self._callbacks))

    # ------------------------------------------------------------ outgoing
    async def send_command(self, command: Union[Command, str], payload: Optional[str] = None) -> Optional[str]:
        """Send a command; a local STOP_ACQUISITION returns the saved file path."""
        if not self.is_connected:
            logger.debug("Not connected, dropping %s", command)
            return None
        message = encode_command(command, payload, newline=False)
        await self._transmit(message)
        name = command.value if isinstance(command, Command) else str(command)
        if name == Command.START_ACQUISITION.value:
            self.acquisition.mark_started()
        elif name == Command.STOP_ACQUISITION.value:
            return await self.acquisition.mark_stopped()
        return None

    async def send_raw(self, message: str, append_newline: bool = True) -> None:
        if not self.is_connected:
            return
        await self._transmit(message, append_newline)

    async def push_settings(self, multiplier: Optional[float] = None, offset: Optional[float] = None) -> None:
        settings = self.acquisition.calibration.set_local(multiplier, offset)
        await self.send_command(Command.SET_SETTINGS, encode_settings_payload(settings))

    async def _transmit(self, message: str, append_newline: bool = True) -> None:
        self.console.append(f"TX: {message}")
        logger.debug("TX: %s", message)
        try:
            await self.transport.send(message + "\n" if append_newline else message)
        except TransportFailure:
            raise
        except Exception as exc:
            raise TransportFailure(f"Send failed: {exc}") from exc

    def clear_console(self) -> None:
        self.console.clear()
