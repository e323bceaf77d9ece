"""
Reference frame and geodetic transforms.

Inertial states are rotated into the Earth-fixed frame with the Greenwich
mean sidereal angle (IAU 1982, UT1 taken equal to UTC, no precession,
nutation or polar motion). Geodetic coordinates are referred to the WGS84
ellipsoid. All module-level constants are read-only and shared freely
across worker threads.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

import numpy as np

from .orbit import INERTIAL_FRAME, StateVector

logger = logging.getLogger(__name__)

# =============================================================================
# CONSTANTS - WGS84 reference ellipsoid and Earth rotation
# =============================================================================

WGS84_A = 6378137.0  # equatorial radius, m
WGS84_F = 1.0 / 298.257223563
WGS84_B = WGS84_A * (1.0 - WGS84_F)  # polar radius, m
WGS84_E2 = WGS84_F * (2.0 - WGS84_F)  # first eccentricity squared

EARTH_ROTATION_RATE = 7.2921151467e-5  # rad/s (WGS84)

EARTH_FIXED_FRAME = "ECEF"

J2000_EPOCH = datetime(2000, 1, 1, 12, 0, 0)

# Sidereal rate implied by the IAU 1982 GMST polynomial (rad/s)
GMST_RATE = math.radians(360.98564736629) / 86400.0

# Geodetic latitude iteration
GEODETIC_TOLERANCE_RAD = 1e-12
GEODETIC_MAX_ITERATIONS = 20


@dataclass(frozen=True)
class GeodeticPoint:
    """Latitude and longitude in radians, altitude above the ellipsoid in meters."""

    latitude: float
    longitude: float
    altitude: float

    @property
    def latitude_deg(self) -> float:
        return math.degrees(self.latitude)

    @property
    def longitude_deg(self) -> float:
        return math.degrees(self.longitude)

    def __str__(self) -> str:
        return (
            f"lat={self.latitude_deg:.4f}°, lon={self.longitude_deg:.4f}°, "
            f"alt={self.altitude / 1000.0:.3f} km"
        )


# =============================================================================
# EARTH ROTATION
# =============================================================================


def gmst(t: datetime) -> float:
    """
    Greenwich mean sidereal angle at a UTC instant.

    Args:
        t: UTC datetime

    Returns:
        GMST in radians, normalized to [0, 2π)
    """
    # Days since J2000, taken directly from the datetime difference to keep precision
    d = (t - J2000_EPOCH).total_seconds() / 86400.0
    centuries = d / 36525.0
    gmst_deg = (
        280.46061837
        + 360.98564736629 * d
        + 0.000387933 * centuries**2
        - centuries**3 / 38710000.0
    )
    return math.radians(gmst_deg % 360.0)


def rotate_to_earth_fixed(
    position: np.ndarray, velocity: np.ndarray, theta: float
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Rotate an inertial position/velocity by the Earth rotation angle.

    Args:
        position: Inertial position (m)
        velocity: Inertial velocity (m/s)
        theta: Earth rotation angle (rad)

    Returns:
        Tuple of (position_ecef, velocity_ecef)
    """
    cos_t, sin_t = math.cos(theta), math.sin(theta)
    rotation = np.array(
        [
            [cos_t, sin_t, 0.0],
            [-sin_t, cos_t, 0.0],
            [0.0, 0.0, 1.0],
        ]
    )
    r_ecef = rotation @ position
    # v_ecef = R v - omega x r_ecef
    omega_cross_r = np.array(
        [-EARTH_ROTATION_RATE * r_ecef[1], EARTH_ROTATION_RATE * r_ecef[0], 0.0]
    )
    v_ecef = rotation @ velocity - omega_cross_r
    return r_ecef, v_ecef


def to_earth_fixed(state: StateVector, t: datetime) -> StateVector:
    """
    Convert an inertial state to the Earth-fixed rotating frame.

    Args:
        state: StateVector in the inertial frame
        t: UTC datetime the rotation is evaluated at

    Returns:
        StateVector in the Earth-fixed frame

    Raises:
        ValueError: If the state is not expressed in the inertial frame
    """
    if state.frame != INERTIAL_FRAME:
        raise ValueError(f"Expected a state in {INERTIAL_FRAME}, got {state.frame}")

    r_ecef, v_ecef = rotate_to_earth_fixed(state.position, state.velocity, gmst(t))
    return StateVector(position=r_ecef, velocity=v_ecef, frame=EARTH_FIXED_FRAME, time=t)


# =============================================================================
# GEODETIC CONVERSIONS
# =============================================================================


def geodetic_to_ecef(latitude: float, longitude: float, altitude: float) -> np.ndarray:
    """
    Convert geodetic coordinates to an Earth-fixed position.

    Args:
        latitude: Geodetic latitude (rad)
        longitude: Longitude (rad)
        altitude: Height above the ellipsoid (m)

    Returns:
        ECEF position (m)
    """
    sin_lat = math.sin(latitude)
    cos_lat = math.cos(latitude)
    n = WGS84_A / math.sqrt(1.0 - WGS84_E2 * sin_lat * sin_lat)
    return np.array(
        [
            (n + altitude) * cos_lat * math.cos(longitude),
            (n + altitude) * cos_lat * math.sin(longitude),
            (n * (1.0 - WGS84_E2) + altitude) * sin_lat,
        ]
    )


def to_geodetic(position_ecef: np.ndarray, t: Optional[datetime] = None) -> GeodeticPoint:
    """
    Convert an Earth-fixed position to geodetic coordinates.

    Uses the fixed-point latitude iteration tan(φ) = (z + e²N sin φ) / p,
    stopped when the update is below 1e-12 rad, which keeps a round trip
    through geodetic_to_ecef well inside 1e-9 rad.

    Args:
        position_ecef: ECEF position (m)
        t: Time tag of the position; the ellipsoid is fixed in the ECEF
            frame, so it does not enter the computation

    Returns:
        GeodeticPoint
    """
    x, y, z = (float(c) for c in position_ecef)
    p = math.hypot(x, y)
    longitude = math.atan2(y, x)

    if p < 1e-9:
        latitude = math.copysign(math.pi / 2.0, z) if z != 0.0 else 0.0
        return GeodeticPoint(latitude, longitude, abs(z) - WGS84_B)

    latitude = math.atan2(z, p * (1.0 - WGS84_E2))
    for _ in range(GEODETIC_MAX_ITERATIONS):
        sin_lat = math.sin(latitude)
        n = WGS84_A / math.sqrt(1.0 - WGS84_E2 * sin_lat * sin_lat)
        updated = math.atan2(z + WGS84_E2 * n * sin_lat, p)
        converged = abs(updated - latitude) < GEODETIC_TOLERANCE_RAD
        latitude = updated
        if converged:
            break
    else:
        logger.debug(f"Geodetic latitude iteration hit the cap at p={p:.3f} m, z={z:.3f} m")

    sin_lat = math.sin(latitude)
    altitude = (
        p * math.cos(latitude)
        + z * sin_lat
        - WGS84_A * math.sqrt(1.0 - WGS84_E2 * sin_lat * sin_lat)
    )
    return GeodeticPoint(latitude, longitude, altitude)


def local_enu_basis(latitude: float, longitude: float) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    East, north and up unit vectors of the local horizontal frame.

    Up is the ellipsoid normal at the given geodetic latitude/longitude.
    """
    sin_lat, cos_lat = math.sin(latitude), math.cos(latitude)
    sin_lon, cos_lon = math.sin(longitude), math.cos(longitude)
    east = np.array([-sin_lon, cos_lon, 0.0])
    north = np.array([-sin_lat * cos_lon, -sin_lat * sin_lon, cos_lat])
    up = np.array([cos_lat * cos_lon, cos_lat * sin_lon, sin_lat])
    return east, north, up


def elevation_angle(target_ecef: np.ndarray, observer_ecef: np.ndarray, up: np.ndarray) -> float:
    """
    Elevation of a target above an observer's local horizontal plane.

    Returns:
        Elevation in radians, in [-π/2, π/2]
    """
    line_of_sight = target_ecef - observer_ecef
    distance = float(np.linalg.norm(line_of_sight))
    if distance == 0.0:
        return math.pi / 2.0
    sine = float(np.dot(line_of_sight, up)) / distance
    return math.asin(max(-1.0, min(1.0, sine)))


def azimuth_angle(
    target_ecef: np.ndarray, observer_ecef: np.ndarray, east: np.ndarray, north: np.ndarray
) -> float:
    """Azimuth of a target from an observer in radians (0 = north, π/2 = east)."""
    line_of_sight = target_ecef - observer_ecef
    az = math.atan2(float(np.dot(line_of_sight, east)), float(np.dot(line_of_sight, north)))
    return az % (2.0 * math.pi)


def segment_intersects_ellipsoid(p1: np.ndarray, p2: np.ndarray) -> bool:
    """
    Whether the straight segment p1-p2 passes through the WGS84 ellipsoid.

    Both points are scaled so the ellipsoid becomes the unit sphere; the
    segment is blocked when its closest point to the centre lies inside.
    Grazing contact counts as clear.
    """
    scale = np.array([1.0 / WGS84_A, 1.0 / WGS84_A, 1.0 / WGS84_B])
    q1 = p1 * scale
    q2 = p2 * scale
    direction = q2 - q1
    length_sq = float(np.dot(direction, direction))

    if length_sq == 0.0:
        return float(np.dot(q1, q1)) < 1.0

    s = -float(np.dot(q1, direction)) / length_sq
    s = max(0.0, min(1.0, s))
    closest = q1 + s * direction
    return float(np.dot(closest, closest)) < 1.0
