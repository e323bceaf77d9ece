"""
Composable visibility predicates.

A predicate wraps a g-function of the time offset (seconds from interval
start): g(t) >= 0 means the condition holds. Base predicates take
position samplers, i.e. callables returning an Earth-fixed position in
meters for a time offset, so the same predicate works for any source of
positions. AND and NOT combine predicates without re-normalising g, so a
zero of the composite is always a zero of one of its terms.

Field-of-view sign convention: field_of_view() is >= 0 when the satellite
is INSIDE the cone of the given half-angle around the station zenith.
"""

import logging
import math
from dataclasses import dataclass
from functools import reduce
from typing import Callable

import numpy as np

from .events import DetectorSettings, GFunction
from .frames import elevation_angle, segment_intersects_ellipsoid
from .targets import GroundStation

logger = logging.getLogger(__name__)

PositionSampler = Callable[[float], np.ndarray]

# Satellites closer than this are treated as mutually visible
COINCIDENT_DISTANCE_M = 1e-6


@dataclass(frozen=True)
class Predicate:
    """A g-function together with the detector settings it needs."""

    g: GFunction
    settings: DetectorSettings
    name: str = "predicate"

    def __call__(self, t: float) -> float:
        return self.g(t)

    def holds(self, t: float) -> bool:
        return self.g(t) >= 0

    def __repr__(self) -> str:
        return f"Predicate({self.name}, max_check={self.settings.max_check}s)"


# =============================================================================
# BASE PREDICATES
# =============================================================================


def elevation(
    sampler: PositionSampler,
    station: GroundStation,
    min_elevation_deg: float = 0.0,
    settings: DetectorSettings = DetectorSettings(),
) -> Predicate:
    """
    Satellite above the station's elevation mask.

    g(t) = elevation(t) - min_elevation, in radians.
    """
    min_elevation = math.radians(min_elevation_deg)
    observer = station.position_ecef
    up = station.up

    def g(t: float) -> float:
        return elevation_angle(sampler(t), observer, up) - min_elevation

    return Predicate(g, settings, name=f"elevation>={min_elevation_deg:g}deg@{station.station_id}")


def field_of_view(
    sampler: PositionSampler,
    station: GroundStation,
    half_angle_deg: float,
    settings: DetectorSettings = DetectorSettings(),
) -> Predicate:
    """
    Satellite inside the station's zenith cone.

    The off-zenith angle of the line of sight is 90° minus the elevation,
    so g(t) = cos(off_zenith) - cos(half_angle) = sin(elevation) - cos(half_angle).
    """
    cos_half = math.cos(math.radians(half_angle_deg))
    observer = station.position_ecef
    up = station.up

    def g(t: float) -> float:
        line_of_sight = sampler(t) - observer
        distance = float(np.linalg.norm(line_of_sight))
        if distance == 0.0:
            return 1.0 - cos_half
        return float(np.dot(line_of_sight, up)) / distance - cos_half

    return Predicate(g, settings, name=f"fov<{half_angle_deg:g}deg@{station.station_id}")


def line_of_sight(
    sampler1: PositionSampler,
    sampler2: PositionSampler,
    settings: DetectorSettings = DetectorSettings(),
) -> Predicate:
    """
    Straight line between two satellites clear of the Earth ellipsoid.

    g(t) is +1 when clear and -1 when blocked. Near-coincident positions
    count as visible.
    """

    def g(t: float) -> float:
        p1 = sampler1(t)
        p2 = sampler2(t)
        if float(np.linalg.norm(p2 - p1)) < COINCIDENT_DISTANCE_M:
            return 1.0
        return -1.0 if segment_intersects_ellipsoid(p1, p2) else 1.0

    return Predicate(g, settings, name="line_of_sight")


def max_range(
    sampler1: PositionSampler,
    sampler2: PositionSampler,
    max_distance: float,
    settings: DetectorSettings = DetectorSettings(),
) -> Predicate:
    """g(t) = max_distance - |p1(t) - p2(t)|, in meters."""

    def g(t: float) -> float:
        return max_distance - float(np.linalg.norm(sampler1(t) - sampler2(t)))

    return Predicate(g, settings, name=f"range<={max_distance / 1000.0:g}km")


# =============================================================================
# COMBINATORS
# =============================================================================


def and_(*predicates: Predicate) -> Predicate:
    """
    Conjunction: g(t) = min of the operand g-functions.

    Raises:
        ValueError: If no predicate is given
    """
    if not predicates:
        raise ValueError("and_() needs at least one predicate")
    if len(predicates) == 1:
        return predicates[0]

    functions = tuple(p.g for p in predicates)

    def g(t: float) -> float:
        return min(f(t) for f in functions)

    settings = reduce(lambda a, b: a.tightest(b), (p.settings for p in predicates))
    name = " AND ".join(p.name for p in predicates)
    return Predicate(g, settings, name=f"({name})")


def not_(predicate: Predicate) -> Predicate:
    """Negation: g(t) = -g_p(t)."""
    inner = predicate.g

    def g(t: float) -> float:
        return -inner(t)

    return Predicate(g, predicate.settings, name=f"NOT {predicate.name}")
