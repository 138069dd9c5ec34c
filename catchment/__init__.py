"""
Network-distance catchment engine.

Builds a routable street graph, snaps demand points and facilities onto it,
assigns every demand point to its nearest reachable facility, and turns the
assignment into catchment polygons and per-facility caseload estimates.
"""

from catchment.assign import assign
from catchment.demand import aggregate
from catchment.distances import distances
from catchment.errors import (
    CatchmentError,
    ComputationCancelled,
    CoordinateSystemMismatch,
    DegenerateTessellationInput,
    InvalidGraph,
    NetworkUnavailable,
)
from catchment.graph import StreetGraph, build_graph
from catchment.locator import snap
from catchment.models import DISCONNECTED, Assignment, DistanceMatrix
from catchment.partition import partition, tessellate
from catchment.pipeline import AnalysisResult, run_analysis

__version__ = "0.1.0"

__all__ = [
    "DISCONNECTED",
    "AnalysisResult",
    "Assignment",
    "CatchmentError",
    "ComputationCancelled",
    "CoordinateSystemMismatch",
    "DegenerateTessellationInput",
    "DistanceMatrix",
    "InvalidGraph",
    "NetworkUnavailable",
    "StreetGraph",
    "aggregate",
    "assign",
    "build_graph",
    "distances",
    "partition",
    "run_analysis",
    "snap",
    "tessellate",
]
