"""
Parallel fan-out of pair visibility computations.

Every (satellite, ground station) pair and every (satellite i, satellite j)
pair with i < j is an independent unit of work. Units are submitted to a
worker pool created for the call, joined, and grouped back per satellite
in a deterministic order. A failing unit is recorded and never cancels its
siblings; only a broken pool or an interrupted join aborts the run.
"""

import logging
import multiprocessing as mp
import os
from concurrent.futures import (
    BrokenExecutor,
    Executor,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    as_completed,
)
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from .events import horizon_crossing_time, validate_check_interval
from .exceptions import ConcurrencyError, ConfigurationError
from .orbit import EARTH_EQUATORIAL_RADIUS_M, KeplerianElements
from .targets import GroundStation
from .visibility import PairVisibilityTask, VisibilityParameters
from .windows import VisibilityWindow

logger = logging.getLogger(__name__)

EXECUTOR_KINDS = ("process", "thread")

PartnerKey = Union[str, int]


def get_optimal_workers(max_workers: Optional[int] = None, num_tasks: int = 0) -> int:
    """
    Determine the number of pool workers.

    Args:
        max_workers: Maximum number of workers (None = auto-detect)
        num_tasks: Number of units to run; no more workers than units are started

    Returns:
        Worker count, at least 1

    Raises:
        ConfigurationError: If max_workers is given and below 1
    """
    cpu_count = os.cpu_count() or 4

    if max_workers is not None:
        if max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {max_workers}")
        workers = min(max_workers, cpu_count)
    else:
        workers = cpu_count

    if num_tasks > 0:
        workers = min(workers, num_tasks)
    return max(1, workers)


# =============================================================================
# RESULT TYPES
# =============================================================================


@dataclass(frozen=True)
class PairFailure:
    """A pair whose computation did not produce windows."""

    sat_index: int
    partner: PartnerKey
    reason: str
    message: str = ""

    @property
    def is_ground(self) -> bool:
        return isinstance(self.partner, str)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sat_index": self.sat_index,
            "partner": self.partner,
            "reason": self.reason,
            "message": self.message,
        }

    def __str__(self) -> str:
        partner = f"station '{self.partner}'" if self.is_ground else f"satellite #{self.partner}"
        return f"{partner}: {self.reason}" + (f" ({self.message})" if self.message else "")


@dataclass(frozen=True)
class PairOutcome:
    """What a worker sends back for one unit: windows, or a failure."""

    sat_index: int
    partner: PartnerKey
    windows: List[VisibilityWindow] = field(default_factory=list)
    failure: Optional[PairFailure] = None


@dataclass
class SatResult:
    """
    All windows originating from one satellite.

    ground_station_results maps station identifier to windows and
    inter_satellite_results maps the other satellite's index (always
    greater than sat_index) to windows. Pairs without windows are absent.
    """

    sat_index: int
    ground_station_results: Dict[str, List[VisibilityWindow]] = field(default_factory=dict)
    inter_satellite_results: Dict[int, List[VisibilityWindow]] = field(default_factory=dict)
    failures: List[PairFailure] = field(default_factory=list)

    def add_ground_station_windows(self, station_id: str, windows: List[VisibilityWindow]) -> None:
        if windows:
            self.ground_station_results[station_id] = list(windows)

    def add_inter_satellite_windows(self, other_index: int, windows: List[VisibilityWindow]) -> None:
        if windows:
            self.inter_satellite_results[other_index] = list(windows)

    def add_failure(self, failure: PairFailure) -> None:
        self.failures.append(failure)

    @property
    def window_count(self) -> int:
        return sum(len(w) for w in self.ground_station_results.values()) + sum(
            len(w) for w in self.inter_satellite_results.values()
        )

    @property
    def is_empty(self) -> bool:
        """True when there is nothing to report for this satellite."""
        return not self.ground_station_results and not self.inter_satellite_results and not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sat_index": self.sat_index,
            "ground_stations": {
                station_id: [w.to_dict() for w in windows]
                for station_id, windows in self.ground_station_results.items()
            },
            "satellites": {
                str(other): [w.to_dict() for w in windows]
                for other, windows in self.inter_satellite_results.items()
            },
            "failures": [f.to_dict() for f in self.failures],
        }


# =============================================================================
# WORKER
# =============================================================================


def _run_pair_task(task: PairVisibilityTask) -> PairOutcome:
    """
    Worker function computing one pair.

    Module-level so it can be pickled and run in a separate process. Any
    exception is turned into a PairFailure.
    """
    try:
        windows = task.run()
        logger.debug(f"Completed {task.label}: {len(windows)} windows")
        return PairOutcome(sat_index=task.sat_index, partner=task.partner_key, windows=windows)
    except Exception as e:
        logger.error(f"Visibility computation failed for {task.label}: {e}")
        failure = PairFailure(
            sat_index=task.sat_index,
            partner=task.partner_key,
            reason=type(e).__name__,
            message=str(e),
        )
        return PairOutcome(sat_index=task.sat_index, partner=task.partner_key, failure=failure)


def build_pair_tasks(
    satellites: List[KeplerianElements],
    stations: List[GroundStation],
    start: datetime,
    end: datetime,
    params: VisibilityParameters,
) -> List[PairVisibilityTask]:
    """
    Enumerate every unit of work in result order.

    For each satellite: its ground stations in the given order, then every
    satellite with a higher index in ascending order.
    """
    tasks = []
    for sat_index, elements in enumerate(satellites):
        for station in stations:
            tasks.append(PairVisibilityTask(sat_index, elements, station, start, end, params))
        for other_index in range(sat_index + 1, len(satellites)):
            tasks.append(
                PairVisibilityTask(
                    sat_index,
                    elements,
                    satellites[other_index],
                    start,
                    end,
                    params,
                    partner_index=other_index,
                )
            )
    return tasks


# =============================================================================
# SCHEDULER
# =============================================================================


class ParallelVisibilityScheduler:
    """
    Computes visibility for all pairs on a worker pool.

    A new pool is created for every compute_all() call and shut down
    before it returns.
    """

    def __init__(
        self,
        params: Optional[VisibilityParameters] = None,
        max_workers: Optional[int] = None,
        executor: str = "process",
        timeout: Optional[float] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            params: Visibility parameters shared by all pairs
            max_workers: Maximum workers (None = auto-detect)
            executor: "process" or "thread"
            timeout: Overall wall-clock limit in seconds for the join (None = wait)

        Raises:
            ConfigurationError: If executor or timeout is invalid
        """
        if executor not in EXECUTOR_KINDS:
            raise ConfigurationError(f"Unknown executor '{executor}'; expected one of {EXECUTOR_KINDS}")
        if timeout is not None and timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {timeout}")

        self.params = params or VisibilityParameters()
        self.max_workers = max_workers
        self.executor = executor
        self.timeout = timeout

    def _create_executor(self, workers: int) -> Executor:
        if self.executor == "thread":
            return ThreadPoolExecutor(max_workers=workers, thread_name_prefix="satvis")

        # 'fork' starts workers faster; fall back to the platform default
        mp_context = None
        try:
            mp_context = mp.get_context("fork")
            logger.debug("Using 'fork' context for faster worker startup")
        except ValueError:
            logger.debug("'fork' context not available, using default")
        return ProcessPoolExecutor(max_workers=workers, mp_context=mp_context)

    def compute_all(
        self,
        satellites: List[KeplerianElements],
        stations: List[GroundStation],
        start: datetime,
        end: datetime,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> List[SatResult]:
        """
        Compute visibility windows for every pair.

        Args:
            satellites: Satellite orbits; list position is the satellite index
            stations: Ground stations with unique identifiers
            start: Interval start (naive UTC)
            end: Interval end (naive UTC)
            progress_callback: Optional callback(completed, total) for progress

        Returns:
            One SatResult per satellite, in satellite order

        Raises:
            ConfigurationError: If end precedes start
            ConcurrencyError: If the pool breaks or the wait is interrupted
        """
        if end < start:
            raise ConfigurationError(f"Simulation end {end} precedes start {start}")

        if satellites and stations:
            self._check_ground_sampling(satellites)

        tasks = build_pair_tasks(satellites, stations, start, end, self.params)
        results = [SatResult(sat_index=i) for i in range(len(satellites))]
        if not tasks:
            logger.info("No satellite pairs to compute")
            return results

        workers = get_optimal_workers(self.max_workers, len(tasks))
        logger.info(
            f"Computing visibility for {len(tasks)} pairs ({len(satellites)} satellites, "
            f"{len(stations)} ground stations) using {workers} {self.executor} workers"
        )

        outcomes = self._execute(tasks, workers, progress_callback)

        for index, task in enumerate(tasks):
            outcome = outcomes[index]
            result = results[task.sat_index]
            if outcome.failure is not None:
                result.add_failure(outcome.failure)
            elif task.is_ground:
                result.add_ground_station_windows(task.partner_key, outcome.windows)
            else:
                result.add_inter_satellite_windows(task.partner_key, outcome.windows)

        total_windows = sum(r.window_count for r in results)
        total_failures = sum(len(r.failures) for r in results)
        logger.info(f"Found {total_windows} windows across {len(tasks)} pairs ({total_failures} failed)")
        return results

    def _check_ground_sampling(self, satellites: List[KeplerianElements]) -> None:
        """Warn when the ground check interval can step over the shortest pass."""
        lowest_perigee = min(e.semi_major_axis * (1.0 - e.eccentricity) for e in satellites)
        altitude = max(lowest_perigee - EARTH_EQUATORIAL_RADIUS_M, 1.0)
        shortest_pass = horizon_crossing_time(altitude, self.params.min_elevation_deg)
        validate_check_interval(self.params.ground_settings.max_check, shortest_pass)

    def _execute(
        self,
        tasks: List[PairVisibilityTask],
        workers: int,
        progress_callback: Optional[Callable[[int, int], None]],
    ) -> Dict[int, PairOutcome]:
        """Run all tasks and return outcomes keyed by task position."""
        outcomes: Dict[int, PairOutcome] = {}
        total = len(tasks)
        timed_out = False

        pool = self._create_executor(workers)
        try:
            try:
                future_to_index = {pool.submit(_run_pair_task, task): i for i, task in enumerate(tasks)}
                for future in as_completed(future_to_index, timeout=self.timeout):
                    index = future_to_index[future]
                    task = tasks[index]
                    try:
                        outcomes[index] = future.result()
                    except BrokenExecutor as e:
                        raise ConcurrencyError(f"Worker pool broke while computing {task.label}: {e}") from e
                    except Exception as e:
                        logger.error(f"Error processing {task.label}: {e}")
                        outcomes[index] = PairOutcome(
                            sat_index=task.sat_index,
                            partner=task.partner_key,
                            failure=PairFailure(task.sat_index, task.partner_key, type(e).__name__, str(e)),
                        )

                    if progress_callback:
                        progress_callback(len(outcomes), total)

            except FuturesTimeoutError:
                timed_out = True
                abandoned = 0
                for future, index in future_to_index.items():
                    if index in outcomes:
                        continue
                    future.cancel()
                    task = tasks[index]
                    outcomes[index] = PairOutcome(
                        sat_index=task.sat_index,
                        partner=task.partner_key,
                        failure=PairFailure(
                            task.sat_index,
                            task.partner_key,
                            "timeout",
                            f"not finished within {self.timeout}s",
                        ),
                    )
                    abandoned += 1
                logger.warning(
                    f"Timed out after {self.timeout}s; abandoned {abandoned}/{total} unfinished pairs"
                )
            except BrokenExecutor as e:
                raise ConcurrencyError(f"Worker pool broke: {e}") from e
            except KeyboardInterrupt as e:
                raise ConcurrencyError("Interrupted while waiting for pair computations") from e
        finally:
            pool.shutdown(wait=not timed_out, cancel_futures=True)

        return outcomes


def compute_all(
    satellites: List[KeplerianElements],
    stations: List[GroundStation],
    start: datetime,
    end: datetime,
    params: Optional[VisibilityParameters] = None,
    max_workers: Optional[int] = None,
    executor: str = "process",
    timeout: Optional[float] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> List[SatResult]:
    """Convenience wrapper around ParallelVisibilityScheduler.compute_all()."""
    scheduler = ParallelVisibilityScheduler(
        params=params, max_workers=max_workers, executor=executor, timeout=timeout
    )
    return scheduler.compute_all(satellites, stations, start, end, progress_callback)
