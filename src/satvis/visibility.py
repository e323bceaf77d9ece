"""
Visibility computation for a single pair.

This module wires orbit propagation, the Earth-fixed transform, the
visibility predicates, the event detector and the window assembler into
one computation per (satellite, ground station) or (satellite, satellite)
pair. Everything mutable lives inside one call, so pairs can run
concurrently without coordination.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np

from .events import DetectorSettings, EventDetector
from .exceptions import ConfigurationError
from .frames import GMST_RATE, gmst, rotate_to_earth_fixed
from .orbit import BoundedEphemeris, KeplerianElements
from .predicates import Predicate, and_, elevation, field_of_view, line_of_sight, max_range, not_
from .targets import GroundStation
from .windows import DEFAULT_DISCARD_TOLERANCE_S, VisibilityWindow, assemble_windows

logger = logging.getLogger(__name__)

# =============================================================================
# PARAMETERS
# =============================================================================

DEFAULT_MIN_ELEVATION_DEG = 0.0
DEFAULT_FOV_HALF_ANGLE_DEG = 45.0
DEFAULT_MAX_RANGE_M = 5.0e6

# Half-angles at or above this disable the field-of-view term
FOV_DISABLED_HALF_ANGLE_DEG = 90.0

# Window datetimes carry whole microseconds, so finer root refinement is lost
MIN_WINDOW_THRESHOLD_S = 1e-6


class FovPolicy(Enum):
    """How the station field-of-view cone combines with the elevation mask."""

    EXCLUSION = "exclusion"  # visible only outside the zenith cone
    COVERAGE = "coverage"  # visible only inside the zenith cone


@dataclass(frozen=True)
class VisibilityParameters:
    """
    Tunable parameters shared by every pair of one run.

    Attributes:
        min_elevation_deg: Elevation mask for ground visibility
        fov_half_angle_deg: Station cone half-angle; >= 90 disables the cone
        max_range_m: Maximum inter-satellite distance
        fov_policy: Whether the cone excludes or grants visibility
        ground_settings: Detector settings for ground pairs
        inter_satellite_settings: Detector settings for satellite pairs
            (thresholds below one microsecond are rejected, since window
            datetimes cannot represent them)
        discard_tolerance: Windows no longer than this (s) are dropped
    """

    min_elevation_deg: float = DEFAULT_MIN_ELEVATION_DEG
    fov_half_angle_deg: float = DEFAULT_FOV_HALF_ANGLE_DEG
    max_range_m: float = DEFAULT_MAX_RANGE_M
    fov_policy: FovPolicy = FovPolicy.EXCLUSION
    ground_settings: DetectorSettings = field(default_factory=DetectorSettings)
    inter_satellite_settings: DetectorSettings = field(default_factory=DetectorSettings)
    discard_tolerance: float = DEFAULT_DISCARD_TOLERANCE_S

    def __post_init__(self) -> None:
        if not -90.0 <= self.min_elevation_deg <= 90.0:
            raise ConfigurationError(
                f"Invalid minimum elevation: {self.min_elevation_deg}. Must be between -90 and 90 degrees."
            )
        if not 0.0 < self.fov_half_angle_deg <= 180.0:
            raise ConfigurationError(
                f"Invalid field-of-view half-angle: {self.fov_half_angle_deg}. Must be in (0, 180] degrees."
            )
        if not self.max_range_m > 0:
            raise ConfigurationError(f"Maximum range must be positive, got {self.max_range_m}")
        if not isinstance(self.fov_policy, FovPolicy):
            raise ConfigurationError(f"Unknown field-of-view policy: {self.fov_policy!r}")
        if self.discard_tolerance < 0:
            raise ConfigurationError(f"Discard tolerance must be >= 0, got {self.discard_tolerance}")
        for settings in (self.ground_settings, self.inter_satellite_settings):
            if settings.threshold < MIN_WINDOW_THRESHOLD_S:
                raise ConfigurationError(
                    f"Convergence threshold {settings.threshold}s is finer than the "
                    f"{MIN_WINDOW_THRESHOLD_S}s resolution of window timestamps"
                )

    @property
    def fov_enabled(self) -> bool:
        return self.fov_half_angle_deg < FOV_DISABLED_HALF_ANGLE_DEG

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VisibilityParameters":
        """
        Build parameters from the `visibility` configuration block.

        Missing keys keep their defaults.

        Raises:
            ConfigurationError: If a value is invalid
        """
        try:
            policy = FovPolicy(str(data.get("fovPolicy", FovPolicy.EXCLUSION.value)).lower())
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown fovPolicy {data.get('fovPolicy')!r}; expected one of "
                f"{[p.value for p in FovPolicy]}"
            ) from e

        try:
            threshold = float(data.get("thresholdS", DetectorSettings.threshold))
            ground_settings = DetectorSettings(
                max_check=float(data.get("groundMaxCheckS", DetectorSettings.max_check)),
                threshold=threshold,
            )
            inter_satellite_settings = DetectorSettings(
                max_check=float(data.get("interSatMaxCheckS", DetectorSettings.max_check)),
                threshold=threshold,
            )
            return cls(
                min_elevation_deg=float(data.get("minElevationDeg", DEFAULT_MIN_ELEVATION_DEG)),
                fov_half_angle_deg=float(data.get("fovHalfAngleDeg", DEFAULT_FOV_HALF_ANGLE_DEG)),
                max_range_m=float(data.get("maxRangeM", DEFAULT_MAX_RANGE_M)),
                fov_policy=policy,
                ground_settings=ground_settings,
                inter_satellite_settings=inter_satellite_settings,
                discard_tolerance=float(data.get("discardToleranceS", DEFAULT_DISCARD_TOLERANCE_S)),
            )
        except ConfigurationError:
            raise
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid visibility parameter: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "minElevationDeg": self.min_elevation_deg,
            "fovHalfAngleDeg": self.fov_half_angle_deg,
            "maxRangeM": self.max_range_m,
            "fovPolicy": self.fov_policy.value,
            "groundMaxCheckS": self.ground_settings.max_check,
            "interSatMaxCheckS": self.inter_satellite_settings.max_check,
            "thresholdS": min(self.ground_settings.threshold, self.inter_satellite_settings.threshold),
            "discardToleranceS": self.discard_tolerance,
        }


# =============================================================================
# POSITION SAMPLING
# =============================================================================


class EarthFixedSampler:
    """
    Earth-fixed positions of one satellite over an ephemeris interval.

    The rotation angle is advanced linearly from GMST at the interval
    start, so offsets keep full float resolution. The last sample is
    memoised because composite predicates evaluate every term at the same
    instant. One sampler belongs to one pair computation.
    """

    def __init__(self, ephemeris: BoundedEphemeris) -> None:
        self.ephemeris = ephemeris
        self._theta0 = gmst(ephemeris.start)
        self._last: Optional[Tuple[float, np.ndarray]] = None

    def __call__(self, offset: float) -> np.ndarray:
        if self._last is not None and self._last[0] == offset:
            return self._last[1]
        position, velocity = self.ephemeris.state_at_offset(offset)
        position_ecef, _ = rotate_to_earth_fixed(position, velocity, self._theta0 + GMST_RATE * offset)
        self._last = (offset, position_ecef)
        return position_ecef


# =============================================================================
# COMPOSITE PREDICATES
# =============================================================================


def ground_station_predicate(
    sampler: EarthFixedSampler, station: GroundStation, params: VisibilityParameters
) -> Predicate:
    """
    Composite visibility of a satellite from a ground station.

    Elevation mask, combined with the station cone according to the
    field-of-view policy when the cone is enabled.
    """
    settings = params.ground_settings
    predicate = elevation(sampler, station, params.min_elevation_deg, settings)
    if not params.fov_enabled:
        return predicate

    fov = field_of_view(sampler, station, params.fov_half_angle_deg, settings)
    if params.fov_policy is FovPolicy.EXCLUSION:
        return and_(predicate, not_(fov))
    return and_(predicate, fov)


def inter_satellite_predicate(
    sampler1: EarthFixedSampler, sampler2: EarthFixedSampler, params: VisibilityParameters
) -> Predicate:
    """Composite visibility between two satellites: clear line of sight within range."""
    settings = params.inter_satellite_settings
    return and_(
        line_of_sight(sampler1, sampler2, settings),
        max_range(sampler1, sampler2, params.max_range_m, settings),
    )


# =============================================================================
# PAIR COMPUTATIONS
# =============================================================================


def _sweep(
    predicate: Predicate, start: datetime, end: datetime, params: VisibilityParameters
) -> List[VisibilityWindow]:
    duration = (end - start).total_seconds()
    detection = EventDetector(predicate.settings).detect(predicate.g, duration)
    windows = assemble_windows(detection, start, end, params.discard_tolerance)
    logger.debug(
        f"{predicate.name}: {len(detection.events)} events, {len(windows)} windows, "
        f"{detection.evaluations} evaluations"
    )
    return windows


def compute_ground_station_windows(
    elements: KeplerianElements,
    station: GroundStation,
    start: datetime,
    end: datetime,
    params: Optional[VisibilityParameters] = None,
) -> List[VisibilityWindow]:
    """
    Visibility windows of one satellite from one ground station.

    Args:
        elements: Satellite orbit
        station: Ground station
        start: Interval start (naive UTC)
        end: Interval end (naive UTC)
        params: Visibility parameters (defaults if None)

    Returns:
        Windows in time order, possibly empty

    Raises:
        PropagationError: If propagation or root refinement fails
        ConfigurationError: If end precedes start
    """
    params = params or VisibilityParameters()
    sampler = EarthFixedSampler(BoundedEphemeris(elements, start, end))
    return _sweep(ground_station_predicate(sampler, station, params), start, end, params)


def compute_inter_satellite_windows(
    elements1: KeplerianElements,
    elements2: KeplerianElements,
    start: datetime,
    end: datetime,
    params: Optional[VisibilityParameters] = None,
) -> List[VisibilityWindow]:
    """
    Mutual visibility windows of two satellites.

    The predicate is symmetric in its two satellites, so the result does
    not depend on argument order.

    Raises:
        PropagationError: If propagation or root refinement fails
        ConfigurationError: If end precedes start
    """
    params = params or VisibilityParameters()
    sampler1 = EarthFixedSampler(BoundedEphemeris(elements1, start, end))
    sampler2 = EarthFixedSampler(BoundedEphemeris(elements2, start, end))
    return _sweep(inter_satellite_predicate(sampler1, sampler2, params), start, end, params)


@dataclass(frozen=True)
class PairVisibilityTask:
    """
    One independent unit of work: a satellite and its partner.

    The partner is either a GroundStation or the elements of another
    satellite with index greater than sat_index. Instances are picklable
    so they can be shipped to worker processes.
    """

    sat_index: int
    elements: KeplerianElements
    partner: Union[GroundStation, KeplerianElements]
    start: datetime
    end: datetime
    params: VisibilityParameters
    partner_index: Optional[int] = None

    @property
    def is_ground(self) -> bool:
        return isinstance(self.partner, GroundStation)

    @property
    def partner_key(self) -> Union[str, int]:
        """Result key: station identifier or other satellite index."""
        if self.is_ground:
            return self.partner.station_id
        return self.partner_index

    @property
    def label(self) -> str:
        if self.is_ground:
            return f"satellite #{self.sat_index} / station '{self.partner.station_id}'"
        return f"satellite #{self.sat_index} / satellite #{self.partner_index}"

    def run(self) -> List[VisibilityWindow]:
        """Compute the windows of this pair."""
        if self.is_ground:
            return compute_ground_station_windows(
                self.elements, self.partner, self.start, self.end, self.params
            )
        return compute_inter_satellite_windows(
            self.elements, self.partner, self.start, self.end, self.params
        )

