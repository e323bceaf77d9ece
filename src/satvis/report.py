"""
Human-readable and JSON reports of visibility results.
"""

import logging
from typing import Any, Dict, List, Optional

from tabulate import tabulate

from .parallel import SatResult
from .state import SatelliteState
from .utils import format_duration, format_timestamp
from .windows import VisibilityWindow, total_duration

logger = logging.getLogger(__name__)

OPEN_WINDOW_LABEL = "still visible"


def _window_table(windows: List[VisibilityWindow]) -> str:
    rows = [
        [
            i + 1,
            format_timestamp(w.start_time),
            format_timestamp(w.end_time, open_label=OPEN_WINDOW_LABEL),
            f"{w.duration_seconds:.0f}",
        ]
        for i, w in enumerate(windows)
    ]
    return tabulate(
        rows, headers=["#", "Start", "End", "Duration (s)"], tablefmt="simple", disable_numparse=True
    )


def _indent(text: str, prefix: str = "    ") -> str:
    return "\n".join(prefix + line for line in text.splitlines())


def format_satellite_result(result: SatResult) -> Optional[str]:
    """
    Text block for one satellite, or None when it has nothing to report.
    """
    if result.is_empty:
        return None

    lines = [f"==== Satellite #{result.sat_index} ===="]
    for station_id, windows in result.ground_station_results.items():
        lines.append(
            f"  Ground station {station_id}: {len(windows)} windows, "
            f"{format_duration(total_duration(windows))} visible"
        )
        lines.append(_indent(_window_table(windows)))

    for other_index, windows in result.inter_satellite_results.items():
        lines.append(
            f"  Satellite #{other_index}: {len(windows)} windows, "
            f"{format_duration(total_duration(windows))} visible"
        )
        lines.append(_indent(_window_table(windows)))

    for failure in result.failures:
        lines.append(f"  Note: no result for {failure}")

    return "\n".join(lines)


def format_results(results: List[SatResult]) -> str:
    """
    Text report of all satellites, one block each.

    Satellites without windows and without failures are skipped.

    Args:
        results: Output of compute_all()

    Returns:
        Report text (empty string if nothing is visible)
    """
    blocks = [block for block in (format_satellite_result(r) for r in results) if block]
    if not blocks:
        logger.info("No visibility windows to report")
    return "\n\n".join(blocks)


def format_satellite_states(states: List[SatelliteState]) -> str:
    """Table of satellite positions and rates."""
    rows = [
        [
            f"#{s.sat_index}",
            f"{s.position.latitude_deg:.4f}",
            f"{s.position.longitude_deg:.4f}",
            f"{s.position.altitude / 1000.0:.3f}",
            f"{s.lat_rate_deg_per_s:.6f}",
            f"{s.lon_rate_deg_per_s:.6f}",
            f"{s.alt_rate_m_per_s:.3f}",
        ]
        for s in states
    ]
    headers = [
        "Satellite",
        "Lat (°)",
        "Lon (°)",
        "Alt (km)",
        "Lat rate (°/s)",
        "Lon rate (°/s)",
        "Alt rate (m/s)",
    ]
    # Cells are preformatted to a fixed precision
    return tabulate(rows, headers=headers, tablefmt="grid", disable_numparse=True)


def results_to_dict(results: List[SatResult]) -> Dict[str, Any]:
    """JSON-serialisable form of all results, including empty satellites."""
    return {
        "satellites": [r.to_dict() for r in results],
        "total_windows": sum(r.window_count for r in results),
        "total_failures": sum(len(r.failures) for r in results),
    }
