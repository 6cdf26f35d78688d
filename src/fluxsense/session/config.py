from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

TRANSPORTS = {"serial", "ble", "mock"}

# Nordic UART Service characteristics
NUS_TX_CHAR = "6e400003-b5a3-f393-e0a9-e50e24dcca9e"
NUS_RX_CHAR = "6e400002-b5a3-f393-e0a9-e50e24dcca9e"


def default_save_folder() -> Path:
    return Path.home() / "Documents" / "Measurements"


@dataclass
class RetryConfig:
    attempts: int = 5
    interval_sec: float = 1.2


@dataclass
class SerialConfig:
    baudrate: int = 9600
    timeout: float = 0.1
    chunk_size: int = 256


@dataclass
class BleConfig:
    notify_char: str = NUS_TX_CHAR
    write_char: str = NUS_RX_CHAR
    connect_timeout: float = 10.0


@dataclass
class StorageConfig:
    folder: Optional[Path] = field(default_factory=default_save_folder)


@dataclass
class AnalysisConfig:
    co2_slope_precision: int = 1


@dataclass
class PositionConfig:
    latitude: float = 0.0
    longitude: float = 0.0
    altitude: float = 0.0


@dataclass
class ClientConfig:
    transport: str = "serial"
    console_size: int = 500
    retry: RetryConfig = field(default_factory=RetryConfig)
    serial: SerialConfig = field(default_factory=SerialConfig)
    ble: BleConfig = field(default_factory=BleConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    position: PositionConfig = field(default_factory=PositionConfig)

    @property
    def transport_name(self) -> str:
        name = self.transport.lower()
        if name not in TRANSPORTS:
            raise ValueError(f"Unsupported transport '{self.transport}'")
        return name


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)  # type: ignore[index]
        else:
            merged[key] = value
    return merged


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> ClientConfig:
    """
    Load the client configuration from JSON and apply CLI-style overrides.

    A missing *path* yields the defaults. Overrides are dotted `key=value`
    pairs, e.g.:
        ["transport=ble", "retry.attempts=3", "storage.folder=/data/co2"]
    """
    data: Dict[str, Any] = {}
    if path is not None:
        data = _load_json(Path(path))
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)

    retry = merged.get("retry") or {}
    serial = merged.get("serial") or {}
    ble = merged.get("ble") or {}
    storage = merged.get("storage") or {}
    analysis = merged.get("analysis") or {}
    position = merged.get("position") or {}
    folder = storage.get("folder", str(default_save_folder()))
    config = ClientConfig(
        transport=str(merged.get("transport", "serial")),
        console_size=int(merged.get("console_size", 500)),
        retry=RetryConfig(
            attempts=int(retry.get("attempts", 5)),
            interval_sec=float(retry.get("interval_sec", 1.2)),
        ),
        serial=SerialConfig(
            baudrate=int(serial.get("baudrate", 9600)),
            timeout=float(serial.get("timeout", 0.1)),
            chunk_size=int(serial.get("chunk_size", 256)),
        ),
        ble=BleConfig(
            notify_char=str(ble.get("notify_char", NUS_TX_CHAR)),
            write_char=str(ble.get("write_char", NUS_RX_CHAR)),
            connect_timeout=float(ble.get("connect_timeout", 10.0)),
        ),
        storage=StorageConfig(folder=Path(str(folder)).expanduser() if folder else None),
        analysis=AnalysisConfig(
            co2_slope_precision=int(analysis.get("co2_slope_precision", 1)),
        ),
        position=PositionConfig(
            latitude=float(position.get("latitude", 0.0)),
            longitude=float(position.get("longitude", 0.0)),
            altitude=float(position.get("altitude", 0.0)),
        ),
    )
    config.transport_name  # validate early
    return config


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise ValueError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise ValueError("Override key may not be empty")
    value = _coerce_value(raw_value.strip())
    return key, value


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    try:
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    if raw.startswith("[") and raw.endswith("]"):
        return json.loads(raw)
    if raw.startswith("{") and raw.endswith("}"):
        return json.loads(raw)
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value
