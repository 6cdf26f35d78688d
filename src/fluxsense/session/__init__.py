"""
Live device session engine.

The subpackage holds the wire protocol codec, the connection lifecycle state
machine, the acquisition buffer and the transport adapters. The BLE adapter
is imported on demand from :mod:`fluxsense.session.ble` so serial-only hosts
do not need a working Bluetooth stack.
"""

from .acquisition import AcquisitionSession
from .calibration import CalibrationStore
from .client import SensorClient, build_transport
from .config import ClientConfig, load_config
from .connection import ConnectionState, ConnectionStateMachine, InitRetry
from .mock import MockTransport
from .protocol import Command, EventType, LineAssembler, ProtocolEvent, parse_line
from .serial_link import SerialTransport
from .transport import DeviceTarget, Transport

__all__ = [
    "AcquisitionSession",
    "CalibrationStore",
    "SensorClient",
    "build_transport",
    "ClientConfig",
    "load_config",
    "ConnectionState",
    "ConnectionStateMachine",
    "InitRetry",
    "MockTransport",
    "Command",
    "EventType",
    "LineAssembler",
    "ProtocolEvent",
    "parse_line",
    "SerialTransport",
    "DeviceTarget",
    "Transport",
]
