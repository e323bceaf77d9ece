"""
End-to-end visibility scenarios.

Each scenario checks computed windows against an independent view of the
same geometry: predicate resampling on a grid finer than the detector
check interval, or inertial distances from the propagator.
"""

from datetime import datetime, timedelta
from typing import List

import numpy as np
import pytest

from satvis.orbit import EARTH_EQUATORIAL_RADIUS_M, EARTH_MU, BoundedEphemeris, KeplerianElements, state_at
from satvis.parallel import compute_all
from satvis.predicates import Predicate
from satvis.state import geodetic_position
from satvis.targets import GroundStation
from satvis.visibility import (
    EarthFixedSampler,
    FovPolicy,
    VisibilityParameters,
    compute_ground_station_windows,
    compute_inter_satellite_windows,
    ground_station_predicate,
    inter_satellite_predicate,
)
from satvis.windows import VisibilityWindow, total_duration

START = datetime(2024, 1, 1, 0, 0, 0)
END = START + timedelta(seconds=3600)

RESAMPLE_STEP_S = 1.0
BOUNDARY_GUARD_S = 1e-3
COPLANAR_RADIUS_M = EARTH_EQUATORIAL_RADIUS_M + 1000e3


def coplanar_pair(true_anomaly_offset_deg: float, eccentricity: float = 0.0):
    """Two satellites on the same orbit separated in true anomaly."""
    common = dict(
        semi_major_axis=COPLANAR_RADIUS_M,
        eccentricity=eccentricity,
        inclination_deg=53.0,
        raan_deg=30.0,
        arg_perigee_deg=0.0,
        epoch=START,
    )
    lead = KeplerianElements(true_anomaly_deg=0.0, **common)
    trail = KeplerianElements(true_anomaly_deg=(-true_anomaly_offset_deg) % 360.0, **common)
    return lead, trail


def counter_rotating_pair(true_anomaly_offset_deg: float):
    """
    Two circular orbits in one plane at one altitude, flown in opposite directions.

    The second orbit has its node reversed and inclination mirrored, so its
    angular position in the first orbit's frame is 180° minus its argument
    of latitude. The pair starts true_anomaly_offset_deg apart and the gap
    then opens at twice the mean motion.
    """
    prograde = KeplerianElements(
        semi_major_axis=COPLANAR_RADIUS_M,
        eccentricity=0.0,
        inclination_deg=53.0,
        raan_deg=30.0,
        arg_perigee_deg=0.0,
        true_anomaly_deg=0.0,
        epoch=START,
    )
    retrograde = KeplerianElements(
        semi_major_axis=COPLANAR_RADIUS_M,
        eccentricity=0.0,
        inclination_deg=127.0,
        raan_deg=210.0,
        arg_perigee_deg=0.0,
        true_anomaly_deg=180.0 + true_anomaly_offset_deg,
        epoch=START,
    )
    return prograde, retrograde


def window_bounds(window: VisibilityWindow, start: datetime = START):
    begin = (window.start_time - start).total_seconds()
    return begin, begin + window.duration_seconds


def distance_to_boundary(offset: float, windows: List[VisibilityWindow]) -> float:
    edges = [edge for w in windows for edge in window_bounds(w)]
    return min((abs(offset - edge) for edge in edges), default=np.inf)


def inside(offset: float, windows: List[VisibilityWindow]) -> bool:
    return any(begin <= offset <= end for begin, end in map(window_bounds, windows))


def assert_windows_match_predicate(predicate: Predicate, windows: List[VisibilityWindow], duration: float) -> int:
    """Resample predicate and compare with window membership; returns samples checked."""
    checked = 0
    for offset in np.arange(0.0, duration + RESAMPLE_STEP_S / 2, RESAMPLE_STEP_S):
        offset = min(float(offset), duration)
        if distance_to_boundary(offset, windows) < BOUNDARY_GUARD_S:
            continue
        assert predicate.holds(offset) == inside(offset, windows), f"mismatch at +{offset:.1f}s"
        checked += 1
    return checked


def separation(e1: KeplerianElements, e2: KeplerianElements, t: datetime) -> float:
    return float(np.linalg.norm(state_at(e1, t).position - state_at(e2, t).position))


# =============================================================================
# SCENARIO 1: CO-PLANAR NEIGHBOURS
# =============================================================================


def range_limited_gap(max_range_m: float = 5.0e6) -> float:
    """Angular gap (rad) at which two satellites at COPLANAR_RADIUS_M are max_range_m apart."""
    return 2.0 * np.arcsin(max_range_m / (2.0 * COPLANAR_RADIUS_M))


class TestCoplanarNeighbours:
    """Two same-altitude circular orbits in one plane, offset in true anomaly."""

    def test_recurring_windows_symmetric(self) -> None:
        prograde, retrograde = counter_rotating_pair(10.0)
        forward = compute_inter_satellite_windows(prograde, retrograde, START, END)
        backward = compute_inter_satellite_windows(retrograde, prograde, START, END)

        # In range at the start, out of range, then in range again on the next meeting
        assert len(forward) == len(backward) == 2
        assert forward[0].start_time == START
        assert all(w.end_time is not None for w in forward)
        assert total_duration(forward) < 1200.0
        assert total_duration(forward) == pytest.approx(total_duration(backward), abs=1e-5)

    def test_recurring_windows_match_closing_rate(self) -> None:
        prograde, retrograde = counter_rotating_pair(10.0)
        windows = compute_inter_satellite_windows(prograde, retrograde, START, END)

        closing_rate = 2.0 * np.sqrt(EARTH_MU / COPLANAR_RADIUS_M**3)
        offset = np.radians(10.0)
        gap = range_limited_gap()
        first_end = (gap - offset) / closing_rate
        second_begin = (2.0 * np.pi - gap - offset) / closing_rate
        second_end = (2.0 * np.pi + gap - offset) / closing_rate

        assert window_bounds(windows[0])[1] == pytest.approx(first_end, abs=1e-3)
        assert window_bounds(windows[1])[0] == pytest.approx(second_begin, abs=1e-3)
        assert window_bounds(windows[1])[1] == pytest.approx(second_end, abs=1e-3)

    def test_close_neighbours_visible_from_start_to_end(self) -> None:
        lead, trail = coplanar_pair(10.0)
        windows = compute_inter_satellite_windows(lead, trail, START, END)

        assert len(windows) == 1
        assert windows[0].start_time == START
        assert windows[0].end_time is None
        assert windows[0].duration_seconds == pytest.approx(3600.0)


# =============================================================================
# SCENARIO 2: POLAR ORBIT OVER A GROUND STATION
# =============================================================================


@pytest.fixture
def polar_orbit() -> KeplerianElements:
    return KeplerianElements(
        semi_major_axis=EARTH_EQUATORIAL_RADIUS_M + 500e3,
        eccentricity=0.0,
        inclination_deg=90.0,
        raan_deg=100.0,
        arg_perigee_deg=0.0,
        true_anomaly_deg=0.0,
        epoch=START,
    )


@pytest.fixture
def overflown_station(polar_orbit: KeplerianElements) -> GroundStation:
    """Station directly below the satellite ten minutes into the run."""
    point = geodetic_position(polar_orbit, START + timedelta(seconds=600))
    return GroundStation(latitude=point.latitude_deg, longitude=point.longitude_deg, station_id="Overflown")


class TestPolarPass:
    """Near-polar orbit, elevation mask 0° and a 45° exclusion cone."""

    def test_single_elevation_pass(self, polar_orbit, overflown_station) -> None:
        params = VisibilityParameters(min_elevation_deg=0.0, fov_half_angle_deg=90.0)
        windows = compute_ground_station_windows(polar_orbit, overflown_station, START, END, params)

        assert len(windows) == 1
        begin, end = window_bounds(windows[0])
        assert begin < 600.0 < end
        assert 600.0 < windows[0].duration_seconds < 800.0

    def test_exclusion_cone_removes_overhead_part(self, polar_orbit, overflown_station) -> None:
        elevation_only = compute_ground_station_windows(
            polar_orbit, overflown_station, START, END, VisibilityParameters(fov_half_angle_deg=90.0)
        )
        params = VisibilityParameters(fov_half_angle_deg=45.0, fov_policy=FovPolicy.EXCLUSION)
        excluded = compute_ground_station_windows(polar_orbit, overflown_station, START, END, params)

        # Overhead pass is cut in two around the zenith
        assert len(excluded) == 2
        assert total_duration(excluded) < total_duration(elevation_only)
        pass_begin, pass_end = window_bounds(elevation_only[0])
        for window in excluded:
            begin, end = window_bounds(window)
            assert pass_begin - 1e-6 <= begin < end <= pass_end + 1e-6
        assert window_bounds(excluded[0])[1] < 600.0 < window_bounds(excluded[1])[0]

    def test_completeness(self, polar_orbit, overflown_station) -> None:
        params = VisibilityParameters(fov_half_angle_deg=45.0)
        windows = compute_ground_station_windows(polar_orbit, overflown_station, START, END, params)

        sampler = EarthFixedSampler(BoundedEphemeris(polar_orbit, START, END))
        predicate = ground_station_predicate(sampler, overflown_station, params)
        assert assert_windows_match_predicate(predicate, windows, 3600.0) > 3500

    def test_visible_at_start(self, polar_orbit) -> None:
        point = geodetic_position(polar_orbit, START)
        station = GroundStation(latitude=point.latitude_deg + 5.0, longitude=point.longitude_deg)
        params = VisibilityParameters(fov_half_angle_deg=90.0)
        windows = compute_ground_station_windows(polar_orbit, station, START, END, params)

        assert windows[0].start_time == START
        assert windows[0].end_time is not None


# =============================================================================
# SCENARIO 3: RANGE-LIMITED SATELLITE PAIR
# =============================================================================


class TestRangeLimitedPair:
    """Separation oscillating around the 5000 km range limit."""

    RUN_END = START + timedelta(hours=2)

    @pytest.fixture
    def pair(self):
        # Same period, so the eccentric orbit swings ahead of and behind the circular one
        common = dict(
            semi_major_axis=EARTH_EQUATORIAL_RADIUS_M + 2000e3,
            inclination_deg=53.0,
            raan_deg=30.0,
            arg_perigee_deg=0.0,
            epoch=START,
        )
        eccentric = KeplerianElements(eccentricity=0.15, true_anomaly_deg=0.0, **common)
        circular = KeplerianElements(eccentricity=0.0, true_anomaly_deg=330.0, **common)
        return eccentric, circular

    def test_separation_crosses_limit(self, pair) -> None:
        distances = [separation(*pair, START + timedelta(seconds=s)) for s in range(0, 7201, 60)]
        assert min(distances) < 4.5e6
        assert max(distances) > 6.0e6

    def test_windows_match_closed_form_distance(self, pair) -> None:
        eccentric, circular = pair
        params = VisibilityParameters(max_range_m=5.0e6)
        windows = compute_inter_satellite_windows(eccentric, circular, START, self.RUN_END, params)

        # In range at the start, out of range around the first quarter orbit, in range again past apogee
        assert len(windows) == 2
        assert windows[0].start_time == START
        assert windows[1].end_time is None
        assert separation(eccentric, circular, windows[0].end_time) == pytest.approx(5.0e6, abs=1.0)
        assert separation(eccentric, circular, windows[1].start_time) == pytest.approx(5.0e6, abs=1.0)

        for offset in range(0, 7201, 10):
            if distance_to_boundary(float(offset), windows) < BOUNDARY_GUARD_S:
                continue
            t = START + timedelta(seconds=offset)
            assert (separation(eccentric, circular, t) < 5.0e6) == inside(float(offset), windows)

    def test_completeness(self, pair) -> None:
        eccentric, circular = pair
        params = VisibilityParameters()
        windows = compute_inter_satellite_windows(eccentric, circular, START, self.RUN_END, params)

        predicate = inter_satellite_predicate(
            EarthFixedSampler(BoundedEphemeris(eccentric, START, self.RUN_END)),
            EarthFixedSampler(BoundedEphemeris(circular, START, self.RUN_END)),
            params,
        )
        assert assert_windows_match_predicate(predicate, windows, 7200.0) > 7000


# =============================================================================
# WHOLE-RUN PROPERTIES
# =============================================================================


@pytest.fixture
def constellation(polar_orbit) -> List[KeplerianElements]:
    lead, trail = coplanar_pair(40.0, eccentricity=0.05)
    _, near_trail = coplanar_pair(10.0)
    return [lead, trail, polar_orbit, near_trail]


@pytest.fixture
def stations(overflown_station) -> List[GroundStation]:
    return [
        overflown_station,
        GroundStation(latitude=39.9, longitude=116.4, altitude=50.0, station_id="Beijing"),
        GroundStation(latitude=-33.9, longitude=18.4, station_id="CapeTown"),
    ]


def _snapshot(results) -> List[dict]:
    return [r.to_dict() for r in results]


class TestComputeAll:
    def test_idempotent(self, constellation, stations) -> None:
        first = compute_all(constellation, stations, START, END, executor="thread")
        second = compute_all(constellation, stations, START, END, executor="thread")
        assert _snapshot(first) == _snapshot(second)

    def test_no_duplicate_satellite_pairs(self, constellation, stations) -> None:
        results = compute_all(constellation, stations, START, END, executor="thread")
        seen = set()
        for result in results:
            for other in result.inter_satellite_results:
                assert other > result.sat_index
                pair = frozenset((result.sat_index, other))
                assert pair not in seen
                seen.add(pair)
        assert all(not r.failures for r in results)

    def test_matches_single_pair_computation(self, constellation, stations) -> None:
        results = compute_all(constellation, stations, START, END, executor="thread")
        for i, result in enumerate(results):
            for station in stations:
                expected = compute_ground_station_windows(constellation[i], station, START, END)
                assert result.ground_station_results.get(station.station_id, []) == expected

    @pytest.mark.slow
    def test_process_pool_matches_serial(self, constellation, stations) -> None:
        parallel = compute_all(constellation, stations, START, END, max_workers=2, executor="process")
        serial = compute_all(constellation, stations, START, END, max_workers=1, executor="thread")
        assert _snapshot(parallel) == _snapshot(serial)


def test_empty_interval(constellation, stations) -> None:
    results = compute_all(constellation, stations, START, START, executor="thread")
    assert len(results) == len(constellation)
    assert all(r.is_empty for r in results)
