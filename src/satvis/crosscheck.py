"""
Independent verification against orbit-predictor.

The two-body propagator and the geodetic station positions are compared
with the implementations in the orbit-predictor library, which works in
kilometres and degrees with the same inertial axes and ellipsoid.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List

import numpy as np
from orbit_predictor.predictors.keplerian import KeplerianPredictor  # type: ignore[import-untyped]
from orbit_predictor.locations import Location  # type: ignore[import-untyped]

from .orbit import KeplerianElements, state_at
from .targets import GroundStation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CrossCheckResult:
    """Largest position disagreement found for one satellite."""

    sat_index: int
    samples: int
    max_position_error_m: float
    worst_time: datetime

    def __str__(self) -> str:
        return (
            f"satellite #{self.sat_index}: max deviation {self.max_position_error_m:.3f} m "
            f"at {self.worst_time.isoformat()} over {self.samples} samples"
        )


def reference_predictor(elements: KeplerianElements) -> KeplerianPredictor:
    """orbit-predictor propagator for the same orbit."""
    return KeplerianPredictor(
        elements.semi_major_axis / 1000.0,
        elements.eccentricity,
        elements.inclination_deg,
        elements.raan_deg,
        elements.arg_perigee_deg,
        elements.true_anomaly_deg,
        elements.epoch,
    )


def reference_position_eci(elements: KeplerianElements, t: datetime) -> np.ndarray:
    """Inertial position in meters computed by orbit-predictor."""
    position_km, _ = reference_predictor(elements).propagate_eci(t)
    return np.asarray(position_km, dtype=float) * 1000.0


def sample_times(start: datetime, end: datetime, step_seconds: float) -> List[datetime]:
    """Times from start to end inclusive, step_seconds apart."""
    if step_seconds <= 0:
        raise ValueError(f"step_seconds must be positive, got {step_seconds}")
    duration = (end - start).total_seconds()
    count = int(math.floor(duration / step_seconds)) + 1
    times = [start + timedelta(seconds=i * step_seconds) for i in range(count)]
    if times[-1] < end:
        times.append(end)
    return times


def cross_check_propagation(
    elements: KeplerianElements, times: List[datetime], sat_index: int = 0
) -> CrossCheckResult:
    """
    Compare the two-body propagator with orbit-predictor.

    Args:
        elements: Orbit to check
        times: Sample times (naive UTC)
        sat_index: Index reported in the result

    Returns:
        CrossCheckResult with the largest position difference in meters
    """
    if not times:
        raise ValueError("At least one sample time is required")

    predictor = reference_predictor(elements)
    worst_error = -1.0
    worst_time = times[0]
    for t in times:
        ours = state_at(elements, t).position
        theirs_km, _ = predictor.propagate_eci(t)
        error = float(np.linalg.norm(ours - np.asarray(theirs_km, dtype=float) * 1000.0))
        if error > worst_error:
            worst_error, worst_time = error, t

    result = CrossCheckResult(sat_index, len(times), worst_error, worst_time)
    logger.info(f"Cross-check {result}")
    return result


def station_position_error(station: GroundStation) -> float:
    """Distance in meters between our station ECEF position and orbit-predictor's."""
    location = Location(
        station.station_id, station.latitude, station.longitude, station.altitude
    )
    theirs = np.asarray(location.position_ecef, dtype=float) * 1000.0
    return float(np.linalg.norm(station.position_ecef - theirs))
