from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Optional

from ..records import CalibrationSettings

logger = logging.getLogger(__name__)

SOURCE_DEFAULT = "default"
SOURCE_LOCAL = "local"
SOURCE_DEVICE = "device"


class CalibrationStore:
    """
    Current CO2 calibration shared by ingestion and the UI.

    The device is authoritative: a local edit takes effect immediately but
    stays unconfirmed until a SETTINGS event reports the values back.
    Writes are last-write-wins.
    """

    def __init__(self, initial: Optional[CalibrationSettings] = None) -> None:
        self._current = initial or CalibrationSettings()
        self._source = SOURCE_DEFAULT
        self._confirmed = False

    @property
    def current(self) -> CalibrationSettings:
        return self._current

    @property
    def source(self) -> str:
        return self._source

    @property
    def confirmed(self) -> bool:
        return self._confirmed

    def calibrate(self, raw_co2: float) -> float:
        return self._current.apply(raw_co2)

    def apply_device(self, settings: CalibrationSettings) -> CalibrationSettings:
        updated = replace(
            self._current,
            co2_multiplier=settings.co2_multiplier,
            co2_offset=settings.co2_offset,
        )
        if self._source == SOURCE_LOCAL and not self._equivalent(updated, self._current):
            logger.info(
                "Device settings differ from local edit (multiplier=%s offset=%s)",
                settings.co2_multiplier,
                settings.co2_offset,
            )
        self._current = updated
        self._source = SOURCE_DEVICE
        self._confirmed = True
        logger.info(
            "Device calibration applied (multiplier=%s offset=%s)",
            updated.co2_multiplier,
            updated.co2_offset,
        )
        return updated

    def apply_hardware_reference(self, reference: int) -> CalibrationSettings:
        self._current = replace(self._current, hardware_calibration_reference=reference)
        logger.info("Hardware calibration reference set to %d", reference)
        return self._current

    def set_local(
        self,
        multiplier: Optional[float] = None,
        offset: Optional[float] = None,
    ) -> CalibrationSettings:
        updated = replace(
            self._current,
            co2_multiplier=self._current.co2_multiplier if multiplier is None else float(multiplier),
            co2_offset=self._current.co2_offset if offset is None else float(offset),
        )
        self._current = updated
        self._source = SOURCE_LOCAL
        self._confirmed = False
        return updated

    def metadata(self) -> Dict[str, str]:
        reference = self._current.hardware_calibration_reference
        return {
            "co2_multiplier": repr(self._current.co2_multiplier),
            "co2_offset": repr(self._current.co2_offset),
            "hw_calibration_ref": "" if reference is None else str(reference),
            "calibration_source": self._source,
        }

    @staticmethod
    def _equivalent(lhs: CalibrationSettings, rhs: CalibrationSettings) -> bool:
        return lhs.co2_multiplier == rhs.co2_multiplier and lhs.co2_offset == rhs.co2_offset
