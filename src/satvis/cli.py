"""
Command-line interface for the satellite visibility engine.

This module provides a CLI for running visibility analyses of YAML
scenarios from the command line.
"""

from pathlib import Path
from typing import Optional
import json
import logging
import sys

import click

from .config import CONFIG_ENV_VAR, create_sample_config, load_simulation_config
from .crosscheck import cross_check_propagation, sample_times, station_position_error
from .exceptions import SatvisError
from .parallel import EXECUTOR_KINDS, ParallelVisibilityScheduler
from .report import format_results, format_satellite_states, results_to_dict
from .state import compute_satellite_states
from .utils import parse_datetime, setup_logging

logger = logging.getLogger(__name__)

config_option = click.option(
    '--config', 'config_path', required=True, envvar=CONFIG_ENV_VAR,
    type=click.Path(exists=True, dir_okay=False),
    help=f'Scenario YAML file (default: ${CONFIG_ENV_VAR})'
)


def _fail(action: str, error: Exception) -> None:
    logger.error(f"{action} failed: {error}")
    click.echo(f"Error: {error}", err=True)
    sys.exit(1)


@click.group()
@click.option('--log-level', default='INFO',
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']),
              help='Set logging level')
@click.option('--log-file', type=click.Path(), help='Log file path')
def main(log_level: str, log_file: Optional[str]) -> None:
    """Satellite Visibility Tool - Find ground station and inter-satellite visibility windows."""
    setup_logging(log_level, log_file)
    logger.info("Starting satvis CLI")


@main.command()
@config_option
@click.option('--workers', type=int, default=None,
              help='Maximum worker count (default: all cores)')
@click.option('--executor', default='process', type=click.Choice(list(EXECUTOR_KINDS)),
              help='Worker pool type (default: process)')
@click.option('--timeout', type=float, default=None,
              help='Overall wall-clock limit in seconds; unfinished pairs are reported as timed out')
@click.option('--output', type=click.Path(dir_okay=False),
              help='Also write results as JSON to this file')
def run(
    config_path: str,
    workers: Optional[int],
    executor: str,
    timeout: Optional[float],
    output: Optional[str],
) -> None:
    """Compute all visibility windows of a scenario.

    Example:
    satvis run --config scenario.yaml --workers 4 --output results.json
    """
    try:
        config = load_simulation_config(config_path)
        click.echo(
            f"Analyzing {len(config.satellites)} satellites and {len(config.ground_stations)} "
            f"ground stations from {config.start} for {config.duration_seconds:g} s..."
        )

        scheduler = ParallelVisibilityScheduler(
            params=config.params, max_workers=workers, executor=executor, timeout=timeout
        )
        results = scheduler.compute_all(
            config.satellites, config.ground_stations, config.start, config.end
        )

        report = format_results(results)
        click.echo(report if report else "No visibility windows found.")

        if output:
            output_path = Path(output)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, 'w') as f:
                json.dump(results_to_dict(results), f, indent=2)
            click.echo(f"\nResults saved to: {output_path}")

    except (SatvisError, OSError) as e:
        _fail("Visibility analysis", e)


@main.command()
@config_option
@click.option('--at', 'at_time', type=str,
              help='Snapshot time (YYYY-MM-DD HH:MM:SS UTC, default: scenario start)')
def states(config_path: str, at_time: Optional[str]) -> None:
    """Show position and rates of every satellite at one instant."""
    try:
        config = load_simulation_config(config_path)
        when = parse_datetime(at_time) if at_time else config.start
        click.echo(f"Satellite states at {when.isoformat()} UTC")
        click.echo(format_satellite_states(compute_satellite_states(config.satellites, when)))

    except (SatvisError, ValueError) as e:
        _fail("State computation", e)


@main.command()
@config_option
@click.option('--step', default=60.0, type=float,
              help='Sampling step in seconds (default: 60)')
def crosscheck(config_path: str, step: float) -> None:
    """Compare propagation and station geometry with orbit-predictor."""
    try:
        config = load_simulation_config(config_path)
        times = sample_times(config.start, config.end, step)

        for index, elements in enumerate(config.satellites):
            click.echo(str(cross_check_propagation(elements, times, sat_index=index)))
        for station in config.ground_stations:
            click.echo(f"station {station.station_id}: position deviation "
                       f"{station_position_error(station):.3f} m")

    except (SatvisError, ValueError) as e:
        _fail("Cross-check", e)


@main.command('create-sample-config')
@click.option('--output', required=True, type=click.Path(dir_okay=False),
              help='Output YAML file path')
def create_sample_config_command(output: str) -> None:
    """Create a sample scenario file."""
    try:
        path = create_sample_config(output)
        click.echo(f"Sample configuration created: {path}")
        click.echo("Contains: 2 satellites, 1 ground station")

    except OSError as e:
        _fail("Sample configuration creation", e)


if __name__ == '__main__':
    main()
