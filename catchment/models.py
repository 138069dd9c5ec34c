"""Value types shared by the catchment engine components."""

from __future__ import annotations

from collections.abc import Hashable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

Coord = Tuple[float, float]
VertexId = int
FacilityId = Hashable
PointId = Hashable


# ===========================
# GRAPH PRIMITIVES
# ===========================
@dataclass(frozen=True)
class Vertex:
    id: VertexId
    x: float
    y: float


@dataclass(frozen=True)
class Edge:
    u: VertexId
    v: VertexId
    length: float
    cost: float
    routable: bool = True


@dataclass(frozen=True)
class StreetSegment:
    """A raw street polyline: ordered (x, y) coordinates plus a road class."""

    coords: Tuple[Coord, ...]
    highway: Union[str, Sequence[str], None] = None

    @property
    def road_class(self) -> Optional[str]:
        # OSM can tag merged ways with a list of classes
        hw = self.highway
        if isinstance(hw, (list, tuple)):
            return str(hw[0]) if hw else None
        return None if hw is None else str(hw)


# ===========================
# QUERY SIDE
# ===========================
@dataclass(frozen=True)
class QueryPoint:
    id: PointId
    x: float
    y: float
    group: Optional[str] = None


@dataclass(frozen=True)
class Facility:
    id: FacilityId
    x: float
    y: float


@dataclass(frozen=True)
class SnapResult:
    point_id: PointId
    vertex: Optional[VertexId]
    connected: bool
    distance: float
    reason: Optional[str] = None


class Disconnected(Enum):
    """Assignment label for demand points with no finite path to any facility."""

    DISCONNECTED = "disconnected"

    def __repr__(self) -> str:
        return "DISCONNECTED"


DISCONNECTED = Disconnected.DISCONNECTED

Label = Union[FacilityId, Disconnected]


# ===========================
# DISTANCE MATRIX
# ===========================
@dataclass(frozen=True)
class DistanceMatrix:
    """
    Demand points x facilities travel costs.

    Unreachable pairs hold ``inf``. Facility columns are sorted by id so the
    first minimum along a row is the lowest facility id. The backing array is
    read-only once constructed.
    """

    point_ids: Tuple[PointId, ...]
    facility_ids: Tuple[FacilityId, ...]
    values: np.ndarray

    def __post_init__(self):
        values = np.array(self.values, dtype=float, copy=True)
        if values.shape != (len(self.point_ids), len(self.facility_ids)):
            raise ValueError(
                f"matrix shape {values.shape} does not match "
                f"{len(self.point_ids)} points x {len(self.facility_ids)} facilities"
            )
        if list(self.facility_ids) != sorted(self.facility_ids):
            raise ValueError("facility columns must be sorted by facility id")
        if np.any(values < 0):
            raise ValueError("travel costs must be non-negative")
        values.flags.writeable = False
        object.__setattr__(self, "point_ids", tuple(self.point_ids))
        object.__setattr__(self, "facility_ids", tuple(self.facility_ids))
        object.__setattr__(self, "values", values)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    def get(self, point_id: PointId, facility_id: FacilityId) -> float:
        i = self.point_ids.index(point_id)
        j = self.facility_ids.index(facility_id)
        return float(self.values[i, j])

    def is_reachable(self, point_id: PointId, facility_id: FacilityId) -> bool:
        return bool(np.isfinite(self.get(point_id, facility_id)))

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            self.values.copy(),
            index=pd.Index(self.point_ids, name="point_id"),
            columns=pd.Index(self.facility_ids, name="facility_id"),
        )


# ===========================
# ASSIGNMENT
# ===========================
class Assignment(Mapping):
    """Read-only mapping of demand point id -> facility id or DISCONNECTED."""

    def __init__(self, labels: Mapping[PointId, Label], facility_ids: Sequence[FacilityId] = ()):
        self._labels = dict(labels)
        self._facility_ids = tuple(facility_ids)

    def __getitem__(self, point_id: PointId) -> Label:
        return self._labels[point_id]

    def __iter__(self) -> Iterator[PointId]:
        return iter(self._labels)

    def __len__(self) -> int:
        return len(self._labels)

    def __repr__(self) -> str:
        return f"Assignment({len(self)} points, {self.disconnected_count} disconnected)"

    @property
    def facility_ids(self) -> Tuple[FacilityId, ...]:
        return self._facility_ids

    @property
    def disconnected_ids(self) -> list:
        return [pid for pid, label in self._labels.items() if label is DISCONNECTED]

    @property
    def disconnected_count(self) -> int:
        return len(self.disconnected_ids)

    def counts(self) -> dict:
        """Demand points per facility. Facilities without points report 0."""
        out = {fid: 0 for fid in self._facility_ids}
        for label in self._labels.values():
            if label is DISCONNECTED:
                continue
            out[label] = out.get(label, 0) + 1
        return out

    def to_series(self) -> pd.Series:
        return pd.Series(self._labels, dtype=object, name="facility_id")


# ===========================
# OUTPUTS
# ===========================
@dataclass(frozen=True)
class CaseloadEstimate:
    facility_id: FacilityId
    cases: float
    percentage: float
    points: int = 0


@dataclass
class Diagnostics:
    demand_points: int = 0
    prefiltered: int = 0
    unsnappable: int = 0
    disconnected: int = 0
    points_per_facility: dict = field(default_factory=dict)
    shared_facility_vertices: list = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "demand_points": self.demand_points,
            "prefiltered": self.prefiltered,
            "unsnappable": self.unsnappable,
            "disconnected": self.disconnected,
            "points_per_facility": dict(self.points_per_facility),
            "shared_facility_vertices": list(self.shared_facility_vertices),
        }
