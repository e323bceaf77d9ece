"""
Simulation configuration loading.

Scenarios are YAML files with a top-level `simulation` mapping holding
the interval, the satellites' Keplerian elements, the ground stations and
optional visibility parameters. A malformed satellite or station entry is
logged and skipped; a missing or malformed interval is fatal.
"""

import logging
import math
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .exceptions import ConfigurationError
from .orbit import KeplerianElements
from .targets import GroundStation, stations_from_config
from .utils import parse_datetime
from .visibility import VisibilityParameters

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "SATVIS_CONFIG"

REQUIRED_KEYS = ["startTime", "durationSeconds", "satellites", "groundStations"]


@dataclass
class SimulationConfig:
    """A fully validated simulation scenario."""

    start: datetime
    duration_seconds: float
    satellites: List[KeplerianElements] = field(default_factory=list)
    ground_stations: List[GroundStation] = field(default_factory=list)
    params: VisibilityParameters = field(default_factory=VisibilityParameters)
    source: Optional[str] = None

    def __post_init__(self) -> None:
        if not math.isfinite(self.duration_seconds) or self.duration_seconds < 0:
            raise ConfigurationError(
                f"durationSeconds must be a non-negative number, got {self.duration_seconds}"
            )

    @property
    def end(self) -> datetime:
        return self.start + timedelta(seconds=self.duration_seconds)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: Optional[str] = None) -> "SimulationConfig":
        """
        Build a configuration from the parsed YAML document.

        Args:
            data: Whole document, with the top-level `simulation` mapping
            source: Where the document came from, for messages

        Returns:
            SimulationConfig

        Raises:
            ConfigurationError: If the document structure or interval is invalid
        """
        if not isinstance(data, dict) or not isinstance(data.get("simulation"), dict):
            raise ConfigurationError("Configuration must contain a 'simulation' mapping")
        simulation = data["simulation"]

        missing = [key for key in REQUIRED_KEYS if key not in simulation]
        if missing:
            raise ConfigurationError(f"Simulation configuration is missing required fields: {missing}")

        try:
            raw_start = simulation["startTime"]
            start = parse_datetime(raw_start if isinstance(raw_start, datetime) else str(raw_start))
        except ValueError as e:
            raise ConfigurationError(f"Invalid startTime {simulation['startTime']!r}: {e}") from e

        try:
            duration = float(simulation["durationSeconds"])
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid durationSeconds: {e}") from e

        for key in ("satellites", "groundStations"):
            if not isinstance(simulation[key], list):
                raise ConfigurationError(f"'{key}' must be a list")

        visibility = simulation.get("visibility") or {}
        if not isinstance(visibility, dict):
            raise ConfigurationError("'visibility' must be a mapping")

        return cls(
            start=start,
            duration_seconds=duration,
            satellites=satellites_from_config(simulation["satellites"]),
            ground_stations=stations_from_config(simulation["groundStations"]),
            params=VisibilityParameters.from_dict(visibility),
            source=source,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the YAML document layout."""
        return {
            "simulation": {
                "startTime": self.start.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "durationSeconds": self.duration_seconds,
                "satellites": [s.to_dict() for s in self.satellites],
                "groundStations": [g.to_dict() for g in self.ground_stations],
                "visibility": self.params.to_dict(),
            }
        }


def satellites_from_config(entries: List[Any]) -> List[KeplerianElements]:
    """
    Build satellite orbits from configuration entries, skipping invalid ones.

    Satellite indices in results follow the order of the valid entries.
    """
    satellites = []
    for index, entry in enumerate(entries):
        try:
            if not isinstance(entry, dict):
                raise ConfigurationError(f"expected a mapping, got {type(entry).__name__}")
            satellites.append(KeplerianElements.from_dict(entry))
        except ConfigurationError as e:
            logger.warning(f"Skipping satellite entry #{index}: {e}")

    logger.info(f"Loaded {len(satellites)}/{len(entries)} satellites")
    return satellites


def resolve_config_path(path: Optional[Union[str, Path]] = None) -> Path:
    """
    Resolve the configuration file location.

    Raises:
        ConfigurationError: If no path is given and SATVIS_CONFIG is unset
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR)
        if not path:
            raise ConfigurationError(
                f"No configuration file given and {CONFIG_ENV_VAR} is not set"
            )
    return Path(path)


def load_simulation_config(path: Optional[Union[str, Path]] = None) -> SimulationConfig:
    """
    Load a simulation scenario from a YAML file.

    Args:
        path: YAML file path (defaults to $SATVIS_CONFIG)

    Returns:
        SimulationConfig

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    config_path = resolve_config_path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    config = SimulationConfig.from_dict(data, source=str(config_path))
    logger.info(
        f"Loaded {config_path}: {len(config.satellites)} satellites, "
        f"{len(config.ground_stations)} ground stations, "
        f"{config.start.isoformat()} + {config.duration_seconds:g}s"
    )
    return config


def create_sample_config(output_path: Union[str, Path]) -> Path:
    """
    Write a sample scenario: two LEO satellites and one ground station.

    Args:
        output_path: Destination YAML file

    Returns:
        Path of the written file
    """
    sample = {
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
            ],
            "visibility": VisibilityParameters().to_dict(),
        }
    }

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(sample, f, sort_keys=False)

    logger.info(f"Sample configuration written to {path}")
    return path
