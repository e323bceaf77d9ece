"""
Error types raised by the visibility engine.

ConfigurationError and PropagationError are scoped to a single satellite or
pair and never abort a whole run. ConcurrencyError means the run itself
could not finish.
"""

from datetime import datetime
from typing import Optional


class SatvisError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(SatvisError, ValueError):
    """Malformed or out-of-range input (orbital elements, stations, YAML)."""


class PropagationError(SatvisError, RuntimeError):
    """Orbit propagation or root refinement failed for a satellite/time."""

    def __init__(
        self,
        message: str,
        satellite: Optional[str] = None,
        time: Optional[datetime] = None,
    ) -> None:
        super().__init__(message)
        self.satellite = satellite
        self.time = time


class ConcurrencyError(SatvisError, RuntimeError):
    """The worker pool was interrupted or broke while joining results."""
