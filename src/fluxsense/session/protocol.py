from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Union

from ..errors import DecodeSkip
from ..records import CalibrationSettings, Measurement

logger = logging.getLogger(__name__)


class EventType(str, enum.Enum):
    WHOIS = "WHOIS"
    DATA = "DATA"
    ACQUISITION_STATE = "ACQUISITION_STATE"
    ERROR = "ERROR"
    SETTINGS = "SETTINGS"
    HW_CALIBRATION_REF = "HW_CALIBRATION_REF"


class Command(str, enum.Enum):
    START_ACQUISITION = "START_ACQUISITION"
    STOP_ACQUISITION = "STOP_ACQUISITION"
    GET_ACQUISITION_STATE = "GET_ACQUISITION_STATE"
    WHOIS = "WHOIS"
    DISCONNECT = "DISCONNECT"
    GET_SETTINGS = "GET_SETTINGS"
    SET_SETTINGS = "SET_SETTINGS"
    GET_HW_CALIBRATION_REF = "GET_HW_CALIBRATION_REF"


DATA_KEYS = {"CO2": "co2", "TMP": "temperature", "HUM": "humidity"}
SETTINGS_KEYS = {"multiplier": "co2_multiplier", "offset": "co2_offset"}


@dataclass(frozen=True)
class Identify:
    payload: str


@dataclass(frozen=True)
class Data:
    payload: str


@dataclass(frozen=True)
class AcquisitionState:
    on: bool


@dataclass(frozen=True)
class Error:
    payload: str


@dataclass(frozen=True)
class Settings:
    payload: str


@dataclass(frozen=True)
class HardwareCalibrationRef:
    payload: str


ProtocolEvent = Union[Identify, Data, AcquisitionState, Error, Settings, HardwareCalibrationRef]


def parse_line(line: str) -> Optional[ProtocolEvent]:
    """
    Decode one newline-stripped line of the form ``TYPE[ PAYLOAD]``.
    Unknown types are logged and yield ``None``.
    """
    stripped = line.strip()
    if not stripped:
        return None
    type_str, _, payload = stripped.partition(" ")
    try:
        event_type = EventType(type_str)
    except ValueError:
        logger.warning("Unknown event type received: %s", type_str)
        return None
    if event_type is EventType.WHOIS:
        return Identify(payload)
    if event_type is EventType.DATA:
        return Data(payload)
    if event_type is EventType.ACQUISITION_STATE:
        return AcquisitionState(on=payload.strip() == "1")
    if event_type is EventType.ERROR:
        return Error(payload)
    if event_type is EventType.SETTINGS:
        return Settings(payload)
    return HardwareCalibrationRef(payload)


def _iter_numeric_tokens(payload: str) -> Iterator[tuple[str, float]]:
    for token in payload.split(";"):
        if "=" not in token:
            if token.strip():
                logger.debug("Skipping token without '=': %r", token)
            continue
        key, raw_value = token.split("=", 1)
        key = key.strip()
        raw_value = raw_value.strip()
        if not key or not raw_value:
            logger.debug("Skipping incomplete token: %r", token)
            continue
        try:
            value = float(raw_value)
        except ValueError:
            logger.debug("Skipping non-numeric value for %s: %r", key, raw_value)
            continue
        if not math.isfinite(value):
            logger.debug("Skipping non-finite value for %s: %r", key, raw_value)
            continue
        yield key, value


def parse_data_payload(payload: str, timestamp: int) -> Measurement:
    """Decode ``CO2=<f>;TMP=<f>;HUM=<f>``; every key is optional."""
    fields: Dict[str, float] = {}
    for key, value in _iter_numeric_tokens(payload):
        name = DATA_KEYS.get(key)
        if name is not None:
            fields[name] = value
    return Measurement(timestamp=timestamp, **fields)


def parse_settings_payload(payload: str) -> CalibrationSettings:
    """Decode ``multiplier=<f>;offset=<f>``; missing keys keep their defaults."""
    fields: Dict[str, float] = {}
    for key, value in _iter_numeric_tokens(payload):
        name = SETTINGS_KEYS.get(key)
        if name is not None:
            fields[name] = value
    return CalibrationSettings(**fields)


def parse_hardware_reference(payload: str) -> int:
    try:
        return int(payload.strip())
    except ValueError as exc:
        raise DecodeSkip(f"Invalid hardware calibration reference: {payload!r}") from exc


def encode_command(command: Union[Command, str], payload: Optional[str] = None, newline: bool = True) -> str:
    name = command.value if isinstance(command, Command) else str(command)
    message = f"{name} {payload}" if payload else name
    return message + "\n" if newline else message


def encode_data_payload(measurement: Measurement) -> str:
    tokens = []
    for key, name in DATA_KEYS.items():
        value = getattr(measurement, name)
        if value is not None:
            tokens.append(f"{key}={value!r}")
    return ";".join(tokens)


def encode_settings_payload(settings: CalibrationSettings) -> str:
    return f"multiplier={settings.co2_multiplier!r};offset={settings.co2_offset!r}"


class LineAssembler:
    """
    Reassembles newline-terminated lines from arbitrary transport chunks.
    A trailing partial line is kept until the next chunk completes it.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._stats: Dict[str, int] = {"lines": 0, "blank": 0}

    def feed(self, chunk: Union[str, bytes]) -> List[str]:
        if isinstance(chunk, (bytes, bytearray)):
            chunk = bytes(chunk).decode("utf-8", errors="ignore")
        if not chunk:
            return []
        normalized = (self._buffer + chunk).replace("\r\n", "\n").replace("\r", "\n")
        parts = normalized.split("\n")
        self._buffer = parts.pop()
        lines: List[str] = []
        for part in parts:
            stripped = part.strip()
            if not stripped:
                self._stats["blank"] += 1
                continue
            self._stats["lines"] += 1
            lines.append(stripped)
        return lines

    @property
    def pending(self) -> str:
        return self._buffer

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def reset(self) -> None:
        self._buffer = ""
