"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides:
- Custom markers for test categorization
- Shared fixtures for common test setup
"""

import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Tuple

import pytest
import yaml
from _pytest.config import Config
from _pytest.python import Function

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from satvis.orbit import EARTH_EQUATORIAL_RADIUS_M, KeplerianElements  # noqa: E402
from satvis.targets import GroundStation  # noqa: E402
from satvis.visibility import VisibilityParameters  # noqa: E402


# =============================================================================
# COLLECTION HOOKS
# =============================================================================


def pytest_collection_modifyitems(config: Config, items: List[Function]) -> None:
    """Auto-mark integration tests."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


def pytest_configure(config: Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line("markers", "integration: marks integration tests")


# =============================================================================
# FIXTURES - Common test setup
# =============================================================================


@pytest.fixture
def base_datetime() -> datetime:
    """Standard base datetime for tests."""
    return datetime(2024, 1, 1, 0, 0, 0)


@pytest.fixture
def time_range(base_datetime: datetime) -> Tuple[datetime, datetime]:
    """Standard one-hour simulation interval."""
    return base_datetime, base_datetime + timedelta(hours=1)


@pytest.fixture
def leo_elements(base_datetime: datetime) -> KeplerianElements:
    """Circular sun-synchronous-like orbit at 500 km."""
    return KeplerianElements(
        semi_major_axis=EARTH_EQUATORIAL_RADIUS_M + 500e3,
        eccentricity=0.0,
        inclination_deg=97.4,
        raan_deg=0.0,
        arg_perigee_deg=0.0,
        true_anomaly_deg=0.0,
        epoch=base_datetime,
    )


@pytest.fixture
def polar_elements(base_datetime: datetime) -> KeplerianElements:
    """Circular polar orbit at 500 km crossing the equator at longitude ~100°E at the epoch."""
    return KeplerianElements(
        semi_major_axis=EARTH_EQUATORIAL_RADIUS_M + 500e3,
        eccentricity=0.0,
        inclination_deg=90.0,
        raan_deg=100.0,
        arg_perigee_deg=0.0,
        true_anomaly_deg=0.0,
        epoch=base_datetime,
    )


@pytest.fixture
def eccentric_elements(base_datetime: datetime) -> KeplerianElements:
    """Molniya-like eccentric orbit."""
    return KeplerianElements(
        semi_major_axis=26600e3,
        eccentricity=0.74,
        inclination_deg=63.4,
        raan_deg=40.0,
        arg_perigee_deg=270.0,
        true_anomaly_deg=10.0,
        epoch=base_datetime,
    )


@pytest.fixture
def sample_station() -> GroundStation:
    """Ground station in Beijing."""
    return GroundStation(latitude=39.9, longitude=116.4, altitude=50.0, station_id="Beijing")


@pytest.fixture
def default_params() -> VisibilityParameters:
    """Default visibility parameters."""
    return VisibilityParameters()


@pytest.fixture
def sample_config_dict() -> dict:
    """Two satellites and two stations in the YAML document layout."""
    return {
        "simulation": {
            "startTime": "2024-01-01T00:00:00Z",
            "durationSeconds": 3600,
            "satellites": [
                {
                    "semiMajorAxis": 6878137.0,
                    "eccentricity": 0.0,
                    "inclination": 97.4,
                    "raan": 0.0,
                    "argPerigee": 0.0,
                    "trueAnomaly": 0.0,
                    "epoch": "2024-01-01T00:00:00Z",
                },
                {
                    "semiMajorAxis": 6878137.0,
                    "eccentricity": 0.0,
                    "inclination": 97.4,
                    "raan": 0.0,
                    "argPerigee": 0.0,
                    "trueAnomaly": 20.0,
                    "epoch": "2024-01-01T00:00:00Z",
                },
            ],
            "groundStations": [
                {"name": "Beijing", "lat": 39.9, "lon": 116.4, "alt": 50.0},
                {"lat": 0.0, "lon": 0.0, "alt": 0.0},
            ],
        }
    }


@pytest.fixture
def sample_config_file(tmp_path: Path, sample_config_dict: dict) -> Path:
    """Scenario YAML file written to a temporary directory."""
    path = tmp_path / "scenario.yaml"
    with open(path, "w") as f:
        yaml.safe_dump(sample_config_dict, f)
    return path
