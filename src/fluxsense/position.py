"""Position sources used to geotag samples and flux rows."""
from __future__ import annotations

from typing import Protocol

from .records import Position


class PositionProvider(Protocol):
    def get_location(self) -> Position:
        """Latest known fix; zeros when no fix is available."""


class StaticPosition:
    """Fixed position, e.g. a bench setup or a configured field site."""

    def __init__(self, latitude: float = 0.0, longitude: float = 0.0, altitude: float = 0.0) -> None:
        self._position = Position(latitude=latitude, longitude=longitude, altitude=altitude)

    def get_location(self) -> Position:
        return self._position

    def update(self, latitude: float, longitude: float, altitude: float = 0.0) -> None:
        self._position = Position(latitude=latitude, longitude=longitude, altitude=altitude)
