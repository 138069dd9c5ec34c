"""Geodesy helpers and coordinate reference system checks."""

from __future__ import annotations

import logging
from typing import Any, Optional

import numpy as np
from pyproj import CRS

from catchment.errors import CoordinateSystemMismatch

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371000.0


def haversine_m(lon1, lat1, lon2, lat2):
    """Great-circle distance in metres. Accepts scalars or arrays."""
    lon1, lat1, lon2, lat2 = (np.radians(np.asarray(a, dtype=float)) for a in (lon1, lat1, lon2, lat2))
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = np.sin(dlat / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


def to_crs(crs: Any) -> Optional[CRS]:
    if crs is None:
        return None
    if isinstance(crs, CRS):
        return crs
    return CRS.from_user_input(crs)


def is_geographic(crs: Any) -> bool:
    parsed = to_crs(crs)
    return bool(parsed is not None and parsed.is_geographic)


def metric_distance(x1, y1, x2, y2, geographic: bool):
    """Metres for geographic coordinates, CRS units otherwise."""
    if geographic:
        return haversine_m(x1, y1, x2, y2)
    return np.hypot(np.asarray(x2, dtype=float) - x1, np.asarray(y2, dtype=float) - y1)


def require_same_crs(**named: Any) -> Optional[CRS]:
    """
    Check that every named input uses the same CRS and return it.

    Inputs with no CRS at all are only accepted when no input declares one.
    Otherwise a mix of declared and undeclared systems is a mismatch.
    """
    parsed = {name: to_crs(crs) for name, crs in named.items()}
    declared = {name: crs for name, crs in parsed.items() if crs is not None}
    if not declared:
        return None

    missing = sorted(name for name, crs in parsed.items() if crs is None)
    if missing:
        raise CoordinateSystemMismatch(f"No CRS declared for: {', '.join(missing)}")

    names = sorted(declared)
    reference = declared[names[0]]
    for name in names[1:]:
        if declared[name] != reference:
            raise CoordinateSystemMismatch(
                f"{name} uses {declared[name].to_string()} but {names[0]} uses {reference.to_string()}"
            )
    return reference
