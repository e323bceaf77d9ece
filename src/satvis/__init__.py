"""
Satellite Visibility Engine

Finds every time window during which satellites are visible from ground
stations and from each other, using two-body propagation, continuous-time
event detection and a parallel fan-out over all pairs.
"""

from .exceptions import ConcurrencyError, ConfigurationError, PropagationError, SatvisError
from .orbit import KeplerianElements, state_at
from .parallel import ParallelVisibilityScheduler, SatResult, compute_all
from .targets import GroundStation
from .visibility import FovPolicy, VisibilityParameters
from .windows import VisibilityWindow

__version__ = "0.1.0"
__author__ = "Satvis Team"

__all__ = [
    "KeplerianElements",
    "GroundStation",
    "VisibilityParameters",
    "FovPolicy",
    "VisibilityWindow",
    "SatResult",
    "ParallelVisibilityScheduler",
    "compute_all",
    "state_at",
    "SatvisError",
    "ConfigurationError",
    "PropagationError",
    "ConcurrencyError",
]
