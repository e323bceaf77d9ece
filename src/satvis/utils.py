"""
Utility functions for the visibility engine.

This module provides logging setup and the time parsing/formatting
helpers used throughout the package. Every public time is a naive
datetime in UTC.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Optional, Union

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Set up logging configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path

    Environment Variables:
        SATVIS_LOG_LEVEL: Override log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_level = os.environ.get("SATVIS_LOG_LEVEL")
    if env_level:
        level = env_level
    log_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    logger.info(f"Logging configured at {level.upper()} level")


def to_naive_utc(dt: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive input is taken as UTC already."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_datetime(value: Union[str, datetime]) -> datetime:
    """
    Parse datetime string in various formats.

    Args:
        value: Date string to parse, or a datetime to normalise

    Returns:
        Parsed datetime object (naive UTC)

    Raises:
        ValueError: If date string cannot be parsed
    """
    if isinstance(value, datetime):
        return to_naive_utc(value)

    date_string = value.strip()
    formats = [
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d %H:%M",
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%dT%H:%M:%SZ",
        "%Y-%m-%dT%H:%M:%S.%f",
        "%Y-%m-%dT%H:%M:%S.%fZ",
        "%Y-%m-%d",
    ]

    for fmt in formats:
        try:
            return datetime.strptime(date_string, fmt)
        except ValueError:
            continue

    # Offsets such as +08:00
    try:
        return to_naive_utc(datetime.fromisoformat(date_string))
    except ValueError:
        pass

    raise ValueError(f"Could not parse datetime string: {date_string}")


def format_timestamp(dt: Optional[datetime], open_label: str = "still visible") -> str:
    """
    Format a UTC timestamp for reports.

    Args:
        dt: Naive UTC datetime, or None for an open window end
        open_label: Text used when dt is None

    Returns:
        'YYYY-MM-DD HH:MM:SS.mmm UTC' or open_label
    """
    if dt is None:
        return open_label
    return dt.strftime("%Y-%m-%d %H:%M:%S.") + f"{dt.microsecond // 1000:03d} UTC"


def format_duration(seconds: float) -> str:
    """Human-readable duration, e.g. '1h 02m 03.5s'."""
    hours, remainder = divmod(seconds, 3600.0)
    minutes, secs = divmod(remainder, 60.0)
    if hours >= 1:
        return f"{int(hours)}h {int(minutes):02d}m {secs:04.1f}s"
    if minutes >= 1:
        return f"{int(minutes)}m {secs:04.1f}s"
    return f"{secs:.3f}s"
