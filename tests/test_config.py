from __future__ import annotations

from pathlib import Path

import pytest

from fluxsense.session.config import NUS_TX_CHAR, ClientConfig, default_save_folder, load_config


def test_defaults_without_file() -> None:
    cfg = load_config()
    assert isinstance(cfg, ClientConfig)
    assert cfg.transport == "serial"
    assert cfg.retry.attempts == 5
    assert cfg.retry.interval_sec == 1.2
    assert cfg.serial.baudrate == 9600
    assert cfg.ble.notify_char == NUS_TX_CHAR
    assert cfg.storage.folder == default_save_folder()
    assert cfg.analysis.co2_slope_precision == 1


def test_load_config_overrides(tmp_path: Path) -> None:
    cfg_path = tmp_path / "client.json"
    cfg_path.write_text(
        """
        {
          "transport": "ble",
          "retry": {"attempts": 3},
          "storage": {"folder": "/srv/co2"},
          "position": {"latitude": 46.05, "longitude": 14.51}
        }
        """,
        encoding="utf-8",
    )
    cfg = load_config(
        cfg_path,
        overrides=["retry.interval_sec=0.5", "serial.baudrate=115200", "transport=mock", "analysis.co2_slope_precision=3"],
    )
    assert cfg.transport_name == "mock"
    assert cfg.retry.attempts == 3
    assert cfg.retry.interval_sec == 0.5
    assert cfg.serial.baudrate == 115200
    assert cfg.storage.folder == Path("/srv/co2")
    assert cfg.position.latitude == 46.05
    assert cfg.analysis.co2_slope_precision == 3


def test_invalid_transport_rejected() -> None:
    with pytest.raises(ValueError):
        load_config(overrides=["transport=usb"])


def test_override_requires_key_value() -> None:
    with pytest.raises(ValueError):
        load_config(overrides=["retry.attempts"])
    with pytest.raises(ValueError):
        load_config(overrides=["=3"])


def test_bundled_config_loads() -> None:
    cfg = load_config(Path(__file__).resolve().parents[1] / "config" / "client.json")
    assert cfg.storage.folder == default_save_folder()
    assert cfg.console_size == 500
