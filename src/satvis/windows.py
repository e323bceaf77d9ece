"""
Visibility window assembly from detected events.

Windows are built by a two-state machine (no window open / window open)
driven by the ordered increasing/decreasing events of one pair. A window
still open when the interval ends is reported with no end time.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .events import DetectionResult, Event

logger = logging.getLogger(__name__)

# Windows shorter than this are numerical artefacts and are dropped
DEFAULT_DISCARD_TOLERANCE_S = 1e-9


@dataclass(frozen=True)
class VisibilityWindow:
    """
    A contiguous interval during which a visibility condition holds.

    end_time is None when the window had not closed by the end of the
    simulation interval; duration_seconds then runs to the interval end.
    """

    start_time: datetime
    end_time: Optional[datetime]
    duration_seconds: float

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def to_dict(self) -> Dict[str, Any]:
        """Convert window to a JSON-serialisable dictionary."""
        return {
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time is not None else None,
            "duration_s": round(self.duration_seconds, 6),
        }

    def __str__(self) -> str:
        end = self.end_time.isoformat() if self.end_time is not None else "still visible"
        return f"{self.start_time.isoformat()} -> {end} ({self.duration_seconds:.0f}s)"


class WindowState(Enum):
    NO_OPEN_WINDOW = "no_open_window"
    WINDOW_OPEN = "window_open"


class WindowAssembler:
    """
    Turns a time-ordered stream of events into visibility windows.

    Event times are offsets in seconds from `start`. One assembler serves
    exactly one pair and one sweep.
    """

    def __init__(
        self,
        start: datetime,
        end: datetime,
        discard_tolerance: float = DEFAULT_DISCARD_TOLERANCE_S,
    ) -> None:
        if end < start:
            raise ValueError(f"Interval end {end} precedes start {start}")
        self.start = start
        self.end = end
        self.duration = (end - start).total_seconds()
        self.discard_tolerance = discard_tolerance

        self.state = WindowState.NO_OPEN_WINDOW
        self._open_since: Optional[float] = None
        self._last_time = 0.0
        self.windows: List[VisibilityWindow] = []

    def _timestamp(self, offset: float) -> datetime:
        return self.start + timedelta(seconds=offset)

    def open_at_start(self) -> None:
        """Open a window at the first instant of the interval (initial g >= 0)."""
        if self.state is WindowState.NO_OPEN_WINDOW:
            self.state = WindowState.WINDOW_OPEN
            self._open_since = 0.0

    def feed(self, event: Event) -> None:
        """
        Apply one event.

        Raises:
            ValueError: If events arrive out of time order
        """
        if event.time < self._last_time:
            raise ValueError(
                f"Event at {event.time:.6f}s arrived after an event at {self._last_time:.6f}s"
            )
        self._last_time = event.time

        if event.is_increasing:
            # A second increasing event while open is a no-op
            if self.state is WindowState.NO_OPEN_WINDOW:
                self.state = WindowState.WINDOW_OPEN
                self._open_since = event.time
            return

        if self.state is WindowState.WINDOW_OPEN:
            duration = event.time - self._open_since
            if duration > self.discard_tolerance:
                self.windows.append(
                    VisibilityWindow(
                        start_time=self._timestamp(self._open_since),
                        end_time=self._timestamp(event.time),
                        duration_seconds=duration,
                    )
                )
            else:
                logger.debug(f"Discarding {duration:.3e}s window at offset {self._open_since:.6f}s")
            self.state = WindowState.NO_OPEN_WINDOW
            self._open_since = None

    def finish(self) -> List[VisibilityWindow]:
        """
        Close the sweep and return all windows.

        A window still open is emitted with end_time None and a duration
        running to the end of the interval.
        """
        if self.state is WindowState.WINDOW_OPEN and self._open_since <= self.duration:
            duration = self.duration - self._open_since
            if duration > self.discard_tolerance:
                self.windows.append(
                    VisibilityWindow(
                        start_time=self._timestamp(self._open_since),
                        end_time=None,
                        duration_seconds=duration,
                    )
                )
        self.state = WindowState.NO_OPEN_WINDOW
        self._open_since = None
        return list(self.windows)


def assemble_windows(
    detection: DetectionResult,
    start: datetime,
    end: datetime,
    discard_tolerance: float = DEFAULT_DISCARD_TOLERANCE_S,
) -> List[VisibilityWindow]:
    """
    Build windows from a detector sweep.

    Args:
        detection: Result of EventDetector.detect over [start, end]
        start: Absolute interval start
        end: Absolute interval end
        discard_tolerance: Minimum window length in seconds

    Returns:
        Windows in time order
    """
    return assemble_events(
        detection.events, detection.initially_satisfied, start, end, discard_tolerance
    )


def assemble_events(
    events: Iterable[Event],
    initially_satisfied: bool,
    start: datetime,
    end: datetime,
    discard_tolerance: float = DEFAULT_DISCARD_TOLERANCE_S,
) -> List[VisibilityWindow]:
    """Build windows from raw events plus the sign of g at the interval start."""
    assembler = WindowAssembler(start, end, discard_tolerance)
    if initially_satisfied:
        assembler.open_at_start()
    for event in events:
        assembler.feed(event)
    return assembler.finish()


def total_duration(windows: Iterable[VisibilityWindow]) -> float:
    """Sum of window durations in seconds."""
    return sum(window.duration_seconds for window in windows)
