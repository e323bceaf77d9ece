"""
Continuous-time event detection on scalar g-functions.

The detector sweeps a closed interval forward, sampling g(t) at most
`max_check` seconds apart, and refines every sign change by bisection to
`threshold` seconds. g(t) >= 0 means the condition holds. Time is a float
offset in seconds from the start of the interval.

A condition that holds for less than one check interval between two
samples of the same sign is not seen at all. This is the precision /
performance trade-off of any sampled detector, which is why the check
interval is a per-predicate setting and validate_check_interval() exists.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .exceptions import PropagationError

logger = logging.getLogger(__name__)

GFunction = Callable[[float], float]

# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_MAX_CHECK_SECONDS = 10.0
DEFAULT_THRESHOLD_SECONDS = 1e-6
DEFAULT_MAX_ITERATIONS = 100


class EventDirection(Enum):
    """Direction of a g-function sign change."""

    INCREASING = "increasing"  # negative -> non-negative, condition starts
    DECREASING = "decreasing"  # non-negative -> negative, condition ends


@dataclass(frozen=True)
class Event:
    """A refined sign change of g at `time` seconds after interval start."""

    time: float
    direction: EventDirection

    @property
    def is_increasing(self) -> bool:
        return self.direction is EventDirection.INCREASING


@dataclass(frozen=True)
class DetectorSettings:
    """
    Sampling and convergence settings for one predicate.

    max_check bounds the distance between consecutive samples. When
    min_check is given the step adapts inside [min_check, max_check] from
    the estimated time to the next root; otherwise the step is fixed.
    """

    max_check: float = DEFAULT_MAX_CHECK_SECONDS
    threshold: float = DEFAULT_THRESHOLD_SECONDS
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    min_check: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.max_check > 0:
            raise ValueError(f"max_check must be > 0, got {self.max_check}")
        if not self.threshold > 0:
            raise ValueError(f"threshold must be > 0, got {self.threshold}")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.min_check is not None and not 0 < self.min_check <= self.max_check:
            raise ValueError(
                f"min_check must be in (0, max_check], got {self.min_check} (max_check={self.max_check})"
            )

    @property
    def adaptive(self) -> bool:
        return self.min_check is not None and self.min_check < self.max_check

    def tightest(self, other: "DetectorSettings") -> "DetectorSettings":
        """Settings satisfying both self and other (finest sampling and convergence)."""
        if self.min_check is None:
            min_check = other.min_check
        elif other.min_check is None:
            min_check = self.min_check
        else:
            min_check = min(self.min_check, other.min_check)

        max_check = min(self.max_check, other.max_check)
        if min_check is not None:
            min_check = min(min_check, max_check)

        return DetectorSettings(
            max_check=max_check,
            threshold=min(self.threshold, other.threshold),
            max_iterations=max(self.max_iterations, other.max_iterations),
            min_check=min_check,
        )


@dataclass
class DetectionResult:
    """Outcome of one sweep over [0, duration]."""

    duration: float
    initial_value: float
    events: List[Event] = field(default_factory=list)
    evaluations: int = 0

    @property
    def initially_satisfied(self) -> bool:
        return self.initial_value >= 0


class EventDetector:
    """
    Stateless driver locating sign changes of a g-function.

    One instance can be reused for any number of sweeps; all working state
    lives in the detect() call.
    """

    def __init__(self, settings: Optional[DetectorSettings] = None) -> None:
        self.settings = settings or DetectorSettings()

    def detect(self, g: GFunction, duration: float) -> DetectionResult:
        """
        Sweep g over [0, duration] and record every sign change.

        Args:
            g: Scalar function of the time offset in seconds
            duration: Interval length in seconds

        Returns:
            DetectionResult with g(0) and the events in nondecreasing time order

        Raises:
            PropagationError: If a root cannot be refined within max_iterations
        """
        if duration < 0:
            raise ValueError(f"duration must be >= 0, got {duration}")

        g_current = g(0.0)
        result = DetectionResult(duration=duration, initial_value=g_current, evaluations=1)

        t_current = 0.0
        slope = 0.0
        while t_current < duration:
            step = self._next_step(g_current, slope)
            t_next = min(t_current + step, duration)
            g_next = g(t_next)
            result.evaluations += 1

            satisfied_before = g_current >= 0
            satisfied_after = g_next >= 0
            if satisfied_before != satisfied_after:
                root, iterations = self._refine(g, t_current, t_next, satisfied_before)
                result.evaluations += iterations
                direction = EventDirection.INCREASING if satisfied_after else EventDirection.DECREASING
                result.events.append(Event(time=root, direction=direction))

            if t_next > t_current:
                slope = (g_next - g_current) / (t_next - t_current)
            t_current, g_current = t_next, g_next

        logger.debug(
            f"Event sweep over {duration:.1f}s: {result.evaluations} evaluations, "
            f"{len(result.events)} events"
        )
        return result

    def _next_step(self, g_value: float, slope: float) -> float:
        """
        Sampling step for the next interval.

        With adaptive settings the step is half the linear estimate of the
        time to the next root, clamped to [min_check, max_check].
        """
        settings = self.settings
        if not settings.adaptive:
            return settings.max_check

        # Moving away from zero, or flat: no root expected soon
        if slope == 0.0 or g_value * slope > 0:
            return settings.max_check

        time_to_root = abs(g_value / slope)
        return max(settings.min_check, min(settings.max_check, 0.5 * time_to_root))

    def _refine(
        self, g: GFunction, t_before: float, t_after: float, satisfied_before: bool
    ) -> Tuple[float, int]:
        """
        Bisect a bracketed sign change down to the convergence threshold.

        Args:
            g: Function being swept
            t_before: Bracket start (sign satisfied_before)
            t_after: Bracket end (opposite sign)
            satisfied_before: Whether g(t_before) >= 0

        Returns:
            Tuple of (root_time, evaluations), root at the midpoint of the final bracket
        """
        left, right = t_before, t_after
        iterations = 0
        while right - left > self.settings.threshold:
            if iterations >= self.settings.max_iterations:
                raise PropagationError(
                    f"Root refinement did not converge to {self.settings.threshold}s "
                    f"within {self.settings.max_iterations} iterations "
                    f"(bracket [{left:.9f}, {right:.9f}]s)"
                )
            mid = left + (right - left) / 2.0
            if (g(mid) >= 0) == satisfied_before:
                left = mid
            else:
                right = mid
            iterations += 1

        return left + (right - left) / 2.0, iterations


def detect_events(g: GFunction, duration: float, settings: Optional[DetectorSettings] = None) -> DetectionResult:
    """Convenience wrapper: EventDetector(settings).detect(g, duration)."""
    return EventDetector(settings).detect(g, duration)


def validate_check_interval(max_check: float, shortest_pulse: float) -> bool:
    """
    Check that a sampling interval can resolve pulses of a given length.

    A pulse is guaranteed to straddle a sample only when the check interval
    is no longer than the pulse; half the pulse length leaves margin for
    adaptive steps.

    Args:
        max_check: Sampling interval in seconds
        shortest_pulse: Shortest visibility pulse that must be resolved, seconds

    Returns:
        True if the interval is fine enough
    """
    ok = max_check <= 0.5 * shortest_pulse
    if not ok:
        logger.warning(
            f"Check interval {max_check:.1f}s is coarser than half the shortest expected "
            f"pulse ({shortest_pulse:.1f}s); short windows may be missed"
        )
    return ok


def horizon_crossing_time(altitude_m: float, min_elevation_deg: float = 0.0) -> float:
    """
    Duration of an overhead pass of a circular orbit above an elevation mask.

    Spherical-Earth estimate used to size check intervals: the longest pass
    for a satellite at altitude_m. Shorter, low-elevation passes scale down
    from this figure.

    Args:
        altitude_m: Orbit altitude in meters
        min_elevation_deg: Elevation mask in degrees

    Returns:
        Pass duration in seconds
    """
    from .orbit import EARTH_EQUATORIAL_RADIUS_M, EARTH_MU

    radius = EARTH_EQUATORIAL_RADIUS_M + altitude_m
    elevation = math.radians(min_elevation_deg)
    # Earth central angle from zenith to the mask, law of sines
    nadir = math.asin(EARTH_EQUATORIAL_RADIUS_M * math.cos(elevation) / radius)
    central_angle = math.pi / 2.0 - elevation - nadir
    angular_rate = math.sqrt(EARTH_MU / radius**3)
    return 2.0 * central_angle / angular_rate
