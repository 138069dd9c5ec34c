"""
Engine defaults for the catchment engine.

Speeds follow the posted-speed defaults used for South Carolina highway
classes. Travel profiles turn them into per-metre cost multipliers so that
edge costs come out in minutes.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Mapping, Optional

# ===========================
# ROUTING
# ===========================
# Edge cost given to segments the travel mode cannot use. Such edges are
# dropped at graph construction and never reach Dijkstra.
NON_ROUTABLE_COST = 1.0e12

WALKING_SPEED_KMH = 5.0

HIGHWAY_SPEEDS_KMH = {
    "motorway": 105,
    "motorway_link": 72,
    "trunk": 89,
    "trunk_link": 64,
    "primary": 72,
    "primary_link": 56,
    "secondary": 56,
    "secondary_link": 48,
    "tertiary": 48,
    "tertiary_link": 40,
    "residential": 40,
    "living_street": 24,
    "service": 24,
    "unclassified": 40,
    "road": 40,
}
FALLBACK_SPEED_KMH = 40

NOT_DRIVABLE = ("footway", "path", "pedestrian", "steps", "cycleway", "bridleway", "corridor")
NOT_WALKABLE = ("motorway", "motorway_link", "trunk", "trunk_link")

# ===========================
# SNAPPING
# ===========================
MAX_SNAP_DIST_M = 2000

# Straight-line prefilter around facilities (metres). None disables it.
DEFAULT_PREFILTER_RADIUS_M: Optional[float] = None

# ===========================
# DEMAND
# ===========================
# Annual incidence per 100,000 population by age bracket. Override with the
# full bracket table for the condition being modelled.
DEFAULT_INCIDENCE_PER_100K = {
    "65-74": 747.0,
}

DEFAULT_WORKERS = 4


@dataclass(frozen=True)
class TravelProfile:
    """Maps a road class to a cost multiplier applied to physical edge length."""

    name: str
    multipliers: Mapping[str, Optional[float]] = field(default_factory=dict)
    default_multiplier: Optional[float] = None
    non_routable_cost: float = NON_ROUTABLE_COST
    unit: str = "min"

    def multiplier(self, road_class: Optional[str]) -> Optional[float]:
        if road_class is not None and road_class in self.multipliers:
            return self.multipliers[road_class]
        return self.default_multiplier

    def edge_cost(self, length: float, road_class: Optional[str]) -> float:
        m = self.multiplier(road_class)
        if m is None or not math.isfinite(m) or m < 0:
            return self.non_routable_cost
        cost = float(length) * float(m)
        if cost >= self.non_routable_cost:
            return self.non_routable_cost
        return cost

    def is_routable(self, cost: float) -> bool:
        return cost < self.non_routable_cost


def minutes_per_metre(speed_kmh: float) -> float:
    return 60.0 / (float(speed_kmh) * 1000.0)


def drive_profile() -> TravelProfile:
    multipliers = {hw: minutes_per_metre(kmh) for hw, kmh in HIGHWAY_SPEEDS_KMH.items()}
    multipliers.update({hw: None for hw in NOT_DRIVABLE})
    return TravelProfile(
        name="drive",
        multipliers=multipliers,
        default_multiplier=minutes_per_metre(FALLBACK_SPEED_KMH),
    )


def walk_profile() -> TravelProfile:
    return TravelProfile(
        name="walk",
        multipliers={hw: None for hw in NOT_WALKABLE},
        default_multiplier=minutes_per_metre(WALKING_SPEED_KMH),
    )


def distance_profile() -> TravelProfile:
    """Plain network length; every road class is routable."""
    return TravelProfile(name="distance", default_multiplier=1.0, unit="m")


PROFILES = {
    "drive": drive_profile,
    "walk": walk_profile,
    "distance": distance_profile,
}


def get_profile(name: str) -> TravelProfile:
    try:
        return PROFILES[name]()
    except KeyError:
        raise ValueError(f"Unknown travel mode {name!r}, expected one of {sorted(PROFILES)}") from None


@dataclass(frozen=True)
class EngineSettings:
    max_snap_dist_m: float = MAX_SNAP_DIST_M
    prefilter_radius_m: Optional[float] = DEFAULT_PREFILTER_RADIUS_M
    cutoff: Optional[float] = None
    workers: int = DEFAULT_WORKERS
