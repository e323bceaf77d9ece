"""
Ground station definitions.

This module provides the ground station value object used by the
satellite-to-ground visibility analysis, plus helpers to build stations
from configuration mappings.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

import numpy as np

from .exceptions import ConfigurationError
from .frames import geodetic_to_ecef, local_enu_basis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroundStation:
    """
    A fixed observer on the Earth's surface.

    Coordinates are geodetic (WGS84) in degrees and meters. When no
    identifier is supplied a stable one is derived from the coordinates.
    """

    latitude: float  # degrees, -90 to +90
    longitude: float  # degrees, -180 to +360
    altitude: float = 0.0  # meters above the ellipsoid
    station_id: Optional[str] = None

    # Derived geometry, computed once
    position_ecef: np.ndarray = field(init=False, repr=False, compare=False)
    up: np.ndarray = field(init=False, repr=False, compare=False)
    east: np.ndarray = field(init=False, repr=False, compare=False)
    north: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        """Validate coordinates and precompute station geometry."""
        for value in (self.latitude, self.longitude, self.altitude):
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ConfigurationError(f"Ground station coordinate is not a finite number: {value!r}")

        if not -90 <= self.latitude <= 90:
            raise ConfigurationError(
                f"Invalid latitude: {self.latitude}. Must be between -90 and 90 degrees."
            )

        if not -180 <= self.longitude <= 360:
            raise ConfigurationError(
                f"Invalid longitude: {self.longitude}. Must be between -180 and 360 degrees."
            )

        if self.station_id is None:
            object.__setattr__(
                self,
                "station_id",
                f"Lat: {self.latitude:.2f}°, Lon: {self.longitude:.2f}°, Alt: {self.altitude:.1f} m",
            )

        lat_rad = math.radians(self.latitude)
        lon_rad = math.radians(self.longitude)
        east, north, up = local_enu_basis(lat_rad, lon_rad)
        object.__setattr__(self, "position_ecef", geodetic_to_ecef(lat_rad, lon_rad, self.altitude))
        object.__setattr__(self, "east", east)
        object.__setattr__(self, "north", north)
        object.__setattr__(self, "up", up)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GroundStation":
        """
        Create a station from a configuration mapping.

        Args:
            data: Mapping with keys lat, lon, alt and optionally name

        Returns:
            GroundStation instance

        Raises:
            ConfigurationError: If a key is missing or a value is invalid
        """
        missing = [key for key in ("lat", "lon", "alt") if key not in data]
        if missing:
            raise ConfigurationError(f"Ground station entry is missing required fields: {missing}")

        try:
            latitude = float(data["lat"])
            longitude = float(data["lon"])
            altitude = float(data["alt"])
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid ground station value: {e}") from e

        name = data.get("name")
        return cls(
            latitude=latitude,
            longitude=longitude,
            altitude=altitude,
            station_id=str(name) if name is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert station to the configuration mapping layout."""
        return {
            "name": self.station_id,
            "lat": self.latitude,
            "lon": self.longitude,
            "alt": self.altitude,
        }

    def __str__(self) -> str:
        return self.station_id


def stations_from_config(entries: List[Dict[str, Any]]) -> List[GroundStation]:
    """
    Build stations from configuration entries, skipping invalid ones.

    A malformed entry is logged and dropped; the remaining stations are
    still returned.

    Args:
        entries: List of station mappings

    Returns:
        List of valid GroundStation objects, in configuration order
    """
    stations = []
    for index, entry in enumerate(entries):
        try:
            if not isinstance(entry, dict):
                raise ConfigurationError(f"expected a mapping, got {type(entry).__name__}")
            stations.append(GroundStation.from_dict(entry))
        except ConfigurationError as e:
            logger.warning(f"Skipping ground station #{index}: {e}")

    # Results are keyed by identifier, so identifiers must be unique
    unique: List[GroundStation] = []
    seen = set()
    configured = {station.station_id for station in stations}
    for station in stations:
        if station.station_id in seen:
            suffix = 1
            renamed = f"{station.station_id} #{suffix}"
            while renamed in seen or renamed in configured:
                suffix += 1
                renamed = f"{station.station_id} #{suffix}"
            logger.warning(f"Duplicate ground station identifier '{station.station_id}', renamed to '{renamed}'")
            station = replace(station, station_id=renamed)
        seen.add(station.station_id)
        unique.append(station)

    logger.info(f"Loaded {len(unique)}/{len(entries)} ground stations")
    return unique
