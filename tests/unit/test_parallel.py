"""
Tests for the parallel processing module.

Most tests use the thread executor so that mocks patched in the test
process are visible to the workers.
"""

import threading
from concurrent.futures import Future
from concurrent.futures.process import BrokenProcessPool
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from satvis.events import DetectorSettings
from satvis.exceptions import ConcurrencyError, ConfigurationError, PropagationError
from satvis.orbit import KeplerianElements
from satvis.parallel import (
    PairFailure,
    ParallelVisibilityScheduler,
    SatResult,
    _run_pair_task,
    build_pair_tasks,
    compute_all,
    get_optimal_workers,
)
from satvis.targets import GroundStation
from satvis.visibility import (
    PairVisibilityTask,
    VisibilityParameters,
    compute_ground_station_windows,
    compute_inter_satellite_windows,
)
from satvis.windows import VisibilityWindow


@pytest.fixture
def trailing_elements(leo_elements: KeplerianElements) -> KeplerianElements:
    """Same orbit as leo_elements, 20° behind."""
    return KeplerianElements(
        semi_major_axis=leo_elements.semi_major_axis,
        eccentricity=0.0,
        inclination_deg=leo_elements.inclination_deg,
        raan_deg=0.0,
        arg_perigee_deg=0.0,
        true_anomaly_deg=340.0,
        epoch=leo_elements.epoch,
    )


@pytest.fixture
def satellites(leo_elements, trailing_elements, polar_elements):
    return [leo_elements, trailing_elements, polar_elements]


@pytest.fixture
def stations(sample_station: GroundStation):
    return [sample_station, GroundStation(latitude=-33.9, longitude=18.4, station_id="CapeTown")]


class TestGetOptimalWorkers:
    """Tests for get_optimal_workers function."""

    @patch('os.cpu_count')
    def test_default_uses_all_cores(self, mock_cpu) -> None:
        mock_cpu.return_value = 8
        assert get_optimal_workers() == 8

    @patch('os.cpu_count')
    def test_respects_max_workers(self, mock_cpu) -> None:
        mock_cpu.return_value = 16
        assert get_optimal_workers(max_workers=4) == 4

    @patch('os.cpu_count')
    def test_max_workers_cant_exceed_cpu(self, mock_cpu) -> None:
        mock_cpu.return_value = 4
        assert get_optimal_workers(max_workers=16) == 4

    @patch('os.cpu_count')
    def test_limited_by_task_count(self, mock_cpu) -> None:
        mock_cpu.return_value = 8
        assert get_optimal_workers(num_tasks=3) == 3

    @patch('os.cpu_count')
    def test_handles_none_cpu_count(self, mock_cpu) -> None:
        mock_cpu.return_value = None
        assert get_optimal_workers() == 4

    def test_invalid_max_workers(self) -> None:
        with pytest.raises(ConfigurationError):
            get_optimal_workers(max_workers=0)


class TestSatResult:
    """Tests for the per-satellite result container."""

    def test_empty_lists_not_stored(self, base_datetime: datetime) -> None:
        result = SatResult(sat_index=0)
        result.add_ground_station_windows("A", [])
        result.add_inter_satellite_windows(1, [])
        assert result.is_empty
        assert result.window_count == 0

    def test_counts_and_dict(self, base_datetime: datetime) -> None:
        window = VisibilityWindow(base_datetime, base_datetime + timedelta(seconds=60), 60.0)
        result = SatResult(sat_index=2)
        result.add_ground_station_windows("A", [window])
        result.add_inter_satellite_windows(5, [window, window])
        result.add_failure(PairFailure(2, 7, "timeout"))

        assert not result.is_empty
        assert result.window_count == 3
        data = result.to_dict()
        assert data["sat_index"] == 2
        assert list(data["ground_stations"]) == ["A"]
        assert len(data["satellites"]["5"]) == 2
        assert data["failures"] == [{"sat_index": 2, "partner": 7, "reason": "timeout", "message": ""}]

    def test_failure_str(self) -> None:
        assert str(PairFailure(0, "A", "timeout")) == "station 'A': timeout"
        assert str(PairFailure(0, 3, "PropagationError", "boom")) == "satellite #3: PropagationError (boom)"


class TestBuildPairTasks:
    """Tests for unit-of-work enumeration."""

    def test_order_and_count(self, satellites, stations, time_range, default_params) -> None:
        start, end = time_range
        tasks = build_pair_tasks(satellites, stations, start, end, default_params)

        # 3 satellites x 2 stations + 3 unordered satellite pairs
        assert len(tasks) == 9
        assert [(t.sat_index, t.partner_key) for t in tasks] == [
            (0, "Beijing"),
            (0, "CapeTown"),
            (0, 1),
            (0, 2),
            (1, "Beijing"),
            (1, "CapeTown"),
            (1, 2),
            (2, "Beijing"),
            (2, "CapeTown"),
        ]

    def test_no_duplicate_satellite_pairs(self, satellites, time_range, default_params) -> None:
        start, end = time_range
        tasks = build_pair_tasks(satellites, [], start, end, default_params)
        pairs = [(t.sat_index, t.partner_index) for t in tasks]
        assert all(i < j for i, j in pairs)
        assert len(set(pairs)) == len(pairs) == 3


class TestRunPairTask:
    """Tests for the worker function."""

    def test_exception_becomes_failure(self, leo_elements, sample_station, time_range, default_params) -> None:
        start, end = time_range
        task = PairVisibilityTask(0, leo_elements, sample_station, start, end, default_params)
        with patch.object(PairVisibilityTask, "run", side_effect=PropagationError("boom")):
            outcome = _run_pair_task(task)

        assert outcome.windows == []
        assert outcome.failure.reason == "PropagationError"
        assert outcome.failure.partner == "Beijing"
        assert "boom" in outcome.failure.message


class TestParallelVisibilityScheduler:
    """Tests for the scheduler."""

    def test_invalid_executor(self) -> None:
        with pytest.raises(ConfigurationError, match="executor"):
            ParallelVisibilityScheduler(executor="gpu")

    def test_invalid_timeout(self) -> None:
        with pytest.raises(ConfigurationError):
            ParallelVisibilityScheduler(timeout=0)

    def test_reversed_interval(self, satellites, stations, base_datetime) -> None:
        with pytest.raises(ConfigurationError):
            compute_all(satellites, stations, base_datetime, base_datetime - timedelta(hours=1), executor="thread")

    def test_no_satellites(self, stations, time_range) -> None:
        start, end = time_range
        assert compute_all([], stations, start, end, executor="thread") == []

    def test_single_satellite_without_stations(self, leo_elements, time_range) -> None:
        start, end = time_range
        results = compute_all([leo_elements], [], start, end, executor="thread")
        assert len(results) == 1
        assert results[0].is_empty

    def test_results_match_serial_computation(self, satellites, stations, time_range, default_params) -> None:
        start, end = time_range
        results = compute_all(satellites, stations, start, end, default_params, max_workers=4, executor="thread")

        assert [r.sat_index for r in results] == [0, 1, 2]
        for i, result in enumerate(results):
            for station in stations:
                expected = compute_ground_station_windows(satellites[i], station, start, end, default_params)
                assert result.ground_station_results.get(station.station_id, []) == expected
            for j in range(i + 1, len(satellites)):
                expected = compute_inter_satellite_windows(satellites[i], satellites[j], start, end, default_params)
                assert result.inter_satellite_results.get(j, []) == expected
            assert all(other > i for other in result.inter_satellite_results)
            assert result.failures == []

        # Trailing neighbour on the same orbit stays in view the whole hour
        assert results[0].inter_satellite_results[1][0].start_time == start
        assert results[0].inter_satellite_results[1][0].end_time is None

    def test_deterministic(self, satellites, stations, time_range) -> None:
        start, end = time_range
        first = compute_all(satellites, stations, start, end, max_workers=4, executor="thread")
        second = compute_all(satellites, stations, start, end, max_workers=1, executor="thread")
        assert [r.to_dict() for r in first] == [r.to_dict() for r in second]

    def test_progress_callback(self, satellites, stations, time_range) -> None:
        start, end = time_range
        calls = []
        compute_all(
            satellites,
            stations,
            start,
            end,
            executor="thread",
            progress_callback=lambda done, total: calls.append((done, total)),
        )
        assert len(calls) == 9
        assert calls[-1] == (9, 9)
        assert [done for done, _ in calls] == list(range(1, 10))

    def test_failing_pair_does_not_cancel_siblings(self, satellites, stations, time_range, default_params) -> None:
        start, end = time_range
        original_run = PairVisibilityTask.run

        def flaky_run(task):
            if task.sat_index == 0 and task.partner_key == 2:
                raise PropagationError("root refinement did not converge")
            return original_run(task)

        with patch.object(PairVisibilityTask, "run", autospec=True, side_effect=flaky_run):
            results = compute_all(satellites, stations, start, end, default_params, executor="thread")

        failures = results[0].failures
        assert len(failures) == 1
        assert failures[0].partner == 2
        assert failures[0].reason == "PropagationError"
        assert 2 not in results[0].inter_satellite_results
        assert 1 in results[0].inter_satellite_results
        assert all(not r.failures for r in results[1:])

    @patch('satvis.parallel.os.cpu_count', return_value=8)
    def test_timeout_marks_unfinished_pairs(self, mock_cpu, leo_elements, trailing_elements, sample_station, time_range) -> None:
        start, end = time_range
        release = threading.Event()

        def slow_run(task):
            if not task.is_ground and task.sat_index == 0:
                release.wait(10.0)
            return []

        try:
            with patch.object(PairVisibilityTask, "run", autospec=True, side_effect=slow_run):
                results = compute_all(
                    [leo_elements, trailing_elements],
                    [sample_station],
                    start,
                    end,
                    max_workers=3,
                    executor="thread",
                    timeout=0.5,
                )
        finally:
            release.set()

        assert [f.reason for f in results[0].failures] == ["timeout"]
        assert results[0].failures[0].partner == 1
        assert results[1].failures == []

    def test_broken_pool_raises(self, satellites, stations, time_range) -> None:
        start, end = time_range

        def broken_submit(fn, *args):
            future = Future()
            future.set_exception(BrokenProcessPool("worker died"))
            return future

        pool = MagicMock()
        pool.submit.side_effect = broken_submit
        scheduler = ParallelVisibilityScheduler()
        with patch.object(scheduler, "_create_executor", return_value=pool):
            with pytest.raises(ConcurrencyError, match="broke"):
                scheduler.compute_all(satellites, stations, start, end)
        pool.shutdown.assert_called_once_with(wait=True, cancel_futures=True)

    def test_interrupt_raises(self, satellites, stations, time_range) -> None:
        start, end = time_range
        pool = MagicMock()
        pool.submit.side_effect = KeyboardInterrupt
        scheduler = ParallelVisibilityScheduler()
        with patch.object(scheduler, "_create_executor", return_value=pool):
            with pytest.raises(ConcurrencyError, match="Interrupted"):
                scheduler.compute_all(satellites, stations, start, end)
        pool.shutdown.assert_called_once()

    def test_warns_on_coarse_ground_sampling(self, satellites, stations, base_datetime, caplog) -> None:
        params = VisibilityParameters(ground_settings=DetectorSettings(max_check=600.0))
        with caplog.at_level("WARNING"):
            compute_all(satellites, stations, base_datetime, base_datetime + timedelta(seconds=60), params,
                        executor="thread")
        assert "short windows may be missed" in caplog.text

    def test_default_sampling_does_not_warn(self, satellites, stations, base_datetime, caplog) -> None:
        with caplog.at_level("WARNING"):
            compute_all(satellites, stations, base_datetime, base_datetime + timedelta(seconds=60),
                        executor="thread")
        assert "short windows may be missed" not in caplog.text

    @pytest.mark.slow
    def test_process_pool_matches_threads(self, satellites, stations, base_datetime) -> None:
        start, end = base_datetime, base_datetime + timedelta(minutes=30)
        processes = compute_all(satellites, stations, start, end, max_workers=2, executor="process")
        threads = compute_all(satellites, stations, start, end, max_workers=2, executor="thread")
        assert [r.to_dict() for r in processes] == [r.to_dict() for r in threads]
