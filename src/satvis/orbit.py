"""
Two-body orbit propagation from Keplerian elements.

This module provides the orbital element value object, the inertial state
vector, and a closed-form Keplerian propagator. Every function here is a
pure function of its arguments, so it can be called concurrently from any
number of worker threads or processes.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Tuple

import numpy as np

from .exceptions import ConfigurationError, PropagationError

logger = logging.getLogger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

EARTH_MU = 3.986004418e14  # m^3/s^2 (WGS84)
EARTH_EQUATORIAL_RADIUS_M = 6378137.0

INERTIAL_FRAME = "EME2000"

KEPLER_TOLERANCE = 1e-12  # radians
KEPLER_MAX_ITERATIONS = 50

# Slack when checking a requested time against an ephemeris interval
EPHEMERIS_TIME_SLACK_S = 1e-6


@dataclass(frozen=True)
class KeplerianElements:
    """
    Osculating Keplerian elements of an unperturbed two-body orbit.

    Angles are stored in degrees, exactly as they are supplied by
    configuration. The epoch is a naive UTC datetime.
    """

    semi_major_axis: float  # meters
    eccentricity: float
    inclination_deg: float  # [0, 180]
    raan_deg: float  # [-180, 360]
    arg_perigee_deg: float
    true_anomaly_deg: float
    epoch: datetime

    def __post_init__(self) -> None:
        """Validate elements after initialization."""
        values = (
            self.semi_major_axis,
            self.eccentricity,
            self.inclination_deg,
            self.raan_deg,
            self.arg_perigee_deg,
            self.true_anomaly_deg,
        )
        for value in values:
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ConfigurationError(f"Orbital element is not a finite number: {value!r}")

        if not isinstance(self.epoch, datetime):
            raise ConfigurationError(f"Epoch must be a datetime, got {self.epoch!r}")

        if self.semi_major_axis <= EARTH_EQUATORIAL_RADIUS_M:
            raise ConfigurationError(
                f"Invalid semi-major axis: {self.semi_major_axis} m. "
                f"Must exceed the Earth equatorial radius ({EARTH_EQUATORIAL_RADIUS_M} m)."
            )

        if not 0.0 <= self.eccentricity < 1.0:
            raise ConfigurationError(
                f"Invalid eccentricity: {self.eccentricity}. Must be in [0, 1) for a bound orbit."
            )

        if not 0.0 <= self.inclination_deg <= 180.0:
            raise ConfigurationError(
                f"Invalid inclination: {self.inclination_deg}. Must be between 0 and 180 degrees."
            )

        if not -180.0 <= self.raan_deg <= 360.0:
            raise ConfigurationError(
                f"Invalid RAAN: {self.raan_deg}. Must be between -180 and 360 degrees."
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeplerianElements":
        """
        Create elements from a configuration mapping.

        Args:
            data: Mapping with keys semiMajorAxis, eccentricity, inclination,
                raan, argPerigee, trueAnomaly and epoch

        Returns:
            KeplerianElements instance

        Raises:
            ConfigurationError: If a key is missing or a value is invalid
        """
        from .utils import parse_datetime

        required = [
            "semiMajorAxis",
            "eccentricity",
            "inclination",
            "raan",
            "argPerigee",
            "trueAnomaly",
            "epoch",
        ]
        missing = [key for key in required if key not in data]
        if missing:
            raise ConfigurationError(f"Satellite entry is missing required fields: {missing}")

        epoch = data["epoch"]
        try:
            # YAML may already have produced a (possibly aware) datetime
            epoch = parse_datetime(epoch if isinstance(epoch, datetime) else str(epoch))
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        try:
            return cls(
                semi_major_axis=float(data["semiMajorAxis"]),
                eccentricity=float(data["eccentricity"]),
                inclination_deg=float(data["inclination"]),
                raan_deg=float(data["raan"]),
                arg_perigee_deg=float(data["argPerigee"]),
                true_anomaly_deg=float(data["trueAnomaly"]),
                epoch=epoch,
            )
        except (TypeError, ValueError) as e:
            if isinstance(e, ConfigurationError):
                raise
            raise ConfigurationError(f"Invalid orbital element value: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        """Convert elements to the configuration mapping layout."""
        return {
            "semiMajorAxis": self.semi_major_axis,
            "eccentricity": self.eccentricity,
            "inclination": self.inclination_deg,
            "raan": self.raan_deg,
            "argPerigee": self.arg_perigee_deg,
            "trueAnomaly": self.true_anomaly_deg,
            "epoch": self.epoch.isoformat(),
        }

    @property
    def altitude_km(self) -> float:
        """Altitude of the semi-major axis above the equatorial radius."""
        return (self.semi_major_axis - EARTH_EQUATORIAL_RADIUS_M) / 1000.0

    def __str__(self) -> str:
        return (
            f"a={self.semi_major_axis / 1000.0:.1f} km, e={self.eccentricity:.4f}, "
            f"i={self.inclination_deg:.2f}°, raan={self.raan_deg:.2f}°"
        )


@dataclass(frozen=True, eq=False)
class StateVector:
    """Position (m) and velocity (m/s) in a named frame at an absolute time."""

    position: np.ndarray
    velocity: np.ndarray
    frame: str
    time: datetime

    @property
    def radius(self) -> float:
        return float(np.linalg.norm(self.position))

    @property
    def speed(self) -> float:
        return float(np.linalg.norm(self.velocity))


# =============================================================================
# KEPLER'S EQUATION
# =============================================================================


def true_to_mean_anomaly(true_anomaly: float, eccentricity: float) -> float:
    """Convert a true anomaly (rad) to a mean anomaly (rad)."""
    eccentric = 2.0 * math.atan2(
        math.sqrt(1.0 - eccentricity) * math.sin(true_anomaly / 2.0),
        math.sqrt(1.0 + eccentricity) * math.cos(true_anomaly / 2.0),
    )
    return eccentric - eccentricity * math.sin(eccentric)


def solve_kepler(
    mean_anomaly: float,
    eccentricity: float,
    tolerance: float = KEPLER_TOLERANCE,
    max_iterations: int = KEPLER_MAX_ITERATIONS,
) -> float:
    """
    Solve Kepler's equation E - e*sin(E) = M with Newton iteration.

    Args:
        mean_anomaly: Mean anomaly in radians
        eccentricity: Orbit eccentricity, must be in [0, 1)
        tolerance: Convergence threshold on the Newton step (radians)
        max_iterations: Iteration budget

    Returns:
        Eccentric anomaly in radians, in the same revolution as mean_anomaly

    Raises:
        PropagationError: If eccentricity is unsupported or the iteration
            does not converge within the budget
    """
    if not 0.0 <= eccentricity < 1.0:
        raise PropagationError(
            f"Unsupported eccentricity {eccentricity} for elliptic Kepler solver"
        )

    # Reduce to [-pi, pi) for a well-conditioned starting guess
    revolutions = math.floor((mean_anomaly + math.pi) / (2.0 * math.pi))
    m = mean_anomaly - revolutions * 2.0 * math.pi

    if eccentricity < 0.8:
        e_anom = m
    else:
        e_anom = math.pi if m >= 0 else -math.pi

    for _ in range(max_iterations):
        f = e_anom - eccentricity * math.sin(e_anom) - m
        f_prime = 1.0 - eccentricity * math.cos(e_anom)
        delta = f / f_prime
        e_anom -= delta
        if abs(delta) < tolerance:
            return e_anom + revolutions * 2.0 * math.pi

    raise PropagationError(
        f"Kepler's equation did not converge after {max_iterations} iterations "
        f"(M={mean_anomaly:.6f} rad, e={eccentricity})"
    )


def eccentric_to_true_anomaly(eccentric_anomaly: float, eccentricity: float) -> float:
    """Convert an eccentric anomaly (rad) to a true anomaly (rad)."""
    return 2.0 * math.atan2(
        math.sqrt(1.0 + eccentricity) * math.sin(eccentric_anomaly / 2.0),
        math.sqrt(1.0 - eccentricity) * math.cos(eccentric_anomaly / 2.0),
    )


# =============================================================================
# PROPAGATION
# =============================================================================


def mean_motion(elements: KeplerianElements) -> float:
    """Mean motion in rad/s."""
    return math.sqrt(EARTH_MU / elements.semi_major_axis**3)


def orbital_period(elements: KeplerianElements) -> float:
    """Orbital period in seconds."""
    return 2.0 * math.pi / mean_motion(elements)


def perifocal_to_inertial_matrix(elements: KeplerianElements) -> np.ndarray:
    """Rotation matrix R3(-raan) R1(-inc) R3(-argp) from PQW to inertial axes."""
    raan = math.radians(elements.raan_deg)
    inc = math.radians(elements.inclination_deg)
    argp = math.radians(elements.arg_perigee_deg)

    cos_o, sin_o = math.cos(raan), math.sin(raan)
    cos_i, sin_i = math.cos(inc), math.sin(inc)
    cos_w, sin_w = math.cos(argp), math.sin(argp)

    return np.array(
        [
            [cos_o * cos_w - sin_o * sin_w * cos_i, -cos_o * sin_w - sin_o * cos_w * cos_i, sin_o * sin_i],
            [sin_o * cos_w + cos_o * sin_w * cos_i, -sin_o * sin_w + cos_o * cos_w * cos_i, -cos_o * sin_i],
            [sin_w * sin_i, cos_w * sin_i, cos_i],
        ]
    )


def propagate(
    elements: KeplerianElements, seconds_since_epoch: float
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Propagate elements by a time offset from their epoch.

    Args:
        elements: Orbit to propagate
        seconds_since_epoch: Offset from elements.epoch in seconds (may be negative)

    Returns:
        Tuple of (position_m, velocity_mps) in the inertial frame

    Raises:
        PropagationError: If Kepler's equation does not converge
    """
    ecc = elements.eccentricity
    a = elements.semi_major_axis

    m0 = true_to_mean_anomaly(math.radians(elements.true_anomaly_deg), ecc)
    m = m0 + mean_motion(elements) * seconds_since_epoch
    e_anom = solve_kepler(m, ecc)
    nu = eccentric_to_true_anomaly(e_anom, ecc)

    p = a * (1.0 - ecc * ecc)
    r = a * (1.0 - ecc * math.cos(e_anom))
    sqrt_mu_p = math.sqrt(EARTH_MU / p)

    r_pqw = np.array([r * math.cos(nu), r * math.sin(nu), 0.0])
    v_pqw = np.array([-sqrt_mu_p * math.sin(nu), sqrt_mu_p * (ecc + math.cos(nu)), 0.0])

    rotation = perifocal_to_inertial_matrix(elements)
    return rotation @ r_pqw, rotation @ v_pqw


def state_at(elements: KeplerianElements, t: datetime) -> StateVector:
    """
    Inertial state of an orbit at an absolute time.

    Args:
        elements: Orbit to propagate
        t: UTC datetime

    Returns:
        StateVector in the inertial frame

    Raises:
        PropagationError: If Kepler's equation does not converge
    """
    position, velocity = propagate(elements, (t - elements.epoch).total_seconds())
    return StateVector(position=position, velocity=velocity, frame=INERTIAL_FRAME, time=t)


class BoundedEphemeris:
    """
    Ephemeris of one satellite valid over a closed interval.

    Propagation is analytical; the bounds only guard against sampling the
    orbit outside the simulation interval. Times inside the interval are
    addressed either as datetimes or as float offsets (seconds) from start,
    the latter keeping sub-microsecond resolution for root refinement.
    """

    def __init__(self, elements: KeplerianElements, start: datetime, end: datetime) -> None:
        if end < start:
            raise ConfigurationError(f"Ephemeris end {end} precedes start {start}")
        self.elements = elements
        self.start = start
        self.end = end
        self.duration = (end - start).total_seconds()
        self._start_offset = (start - elements.epoch).total_seconds()

    def _check_offset(self, offset: float) -> None:
        if offset < -EPHEMERIS_TIME_SLACK_S or offset > self.duration + EPHEMERIS_TIME_SLACK_S:
            raise PropagationError(
                f"Requested offset {offset:.6f}s is outside ephemeris interval "
                f"[0, {self.duration:.6f}]s starting {self.start.isoformat()}",
                satellite=str(self.elements),
            )

    def state_at_offset(self, offset: float) -> Tuple[np.ndarray, np.ndarray]:
        """Inertial (position, velocity) at `offset` seconds after start."""
        self._check_offset(offset)
        try:
            return propagate(self.elements, self._start_offset + offset)
        except PropagationError as e:
            t = self.start + timedelta(seconds=offset)
            raise PropagationError(f"{e} at {t.isoformat()}", satellite=str(self.elements), time=t) from e

    def state_at(self, t: datetime) -> StateVector:
        """Inertial StateVector at an absolute time inside the interval."""
        position, velocity = self.state_at_offset((t - self.start).total_seconds())
        return StateVector(position=position, velocity=velocity, frame=INERTIAL_FRAME, time=t)

    def __repr__(self) -> str:
        return f"BoundedEphemeris({self.elements}, {self.start.isoformat()} -> {self.end.isoformat()})"
