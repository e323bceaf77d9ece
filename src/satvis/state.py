"""
Satellite state snapshots.

Geodetic position of each satellite at a chosen instant together with the
rates of change of latitude, longitude and altitude, estimated by a
forward finite difference.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List

from .frames import GeodeticPoint, to_earth_fixed, to_geodetic
from .orbit import KeplerianElements, state_at

logger = logging.getLogger(__name__)

FINITE_DIFFERENCE_STEP_S = 0.1


@dataclass(frozen=True)
class SatelliteState:
    """Geodetic position and its rates for one satellite at one instant."""

    sat_index: int
    time: datetime
    position: GeodeticPoint
    lat_rate_deg_per_s: float
    lon_rate_deg_per_s: float
    alt_rate_m_per_s: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sat_index": self.sat_index,
            "time": self.time.isoformat(),
            "latitude_deg": self.position.latitude_deg,
            "longitude_deg": self.position.longitude_deg,
            "altitude_m": self.position.altitude,
            "lat_rate_deg_per_s": self.lat_rate_deg_per_s,
            "lon_rate_deg_per_s": self.lon_rate_deg_per_s,
            "alt_rate_m_per_s": self.alt_rate_m_per_s,
        }


def geodetic_position(elements: KeplerianElements, t: datetime) -> GeodeticPoint:
    """Sub-satellite point and altitude of an orbit at time t."""
    ecef = to_earth_fixed(state_at(elements, t), t)
    return to_geodetic(ecef.position, t)


def compute_satellite_state(
    elements: KeplerianElements,
    t: datetime,
    sat_index: int = 0,
    step: float = FINITE_DIFFERENCE_STEP_S,
) -> SatelliteState:
    """
    State snapshot of one satellite.

    Args:
        elements: Satellite orbit
        t: Snapshot time (naive UTC)
        sat_index: Index reported in the snapshot
        step: Finite-difference step in seconds

    Returns:
        SatelliteState

    Raises:
        PropagationError: If propagation fails
    """
    here = geodetic_position(elements, t)
    there = geodetic_position(elements, t + timedelta(seconds=step))

    # Unwrap the longitude difference across the antimeridian
    d_lon = there.longitude - here.longitude
    d_lon = (d_lon + math.pi) % (2.0 * math.pi) - math.pi

    return SatelliteState(
        sat_index=sat_index,
        time=t,
        position=here,
        lat_rate_deg_per_s=math.degrees(there.latitude - here.latitude) / step,
        lon_rate_deg_per_s=math.degrees(d_lon) / step,
        alt_rate_m_per_s=(there.altitude - here.altitude) / step,
    )


def compute_satellite_states(satellites: List[KeplerianElements], t: datetime) -> List[SatelliteState]:
    """State snapshots of all satellites at time t, in satellite order."""
    states = [compute_satellite_state(elements, t, sat_index=i) for i, elements in enumerate(satellites)]
    logger.info(f"Computed states of {len(states)} satellites at {t.isoformat()}")
    return states
