"""
Run orchestration.

``run_analysis`` wires the components together for one batch run and hands
everything back in an ``AnalysisResult``. Nothing is cached between runs.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import geopandas as gpd
import pandas as pd

from catchment.assign import assign
from catchment.config import DEFAULT_INCIDENCE_PER_100K, EngineSettings, TravelProfile
from catchment.demand import aggregate, area_breakdown, caseload_frame, rates_per_person
from catchment.distances import distances
from catchment.errors import UNSNAPPABLE_POINT, CatchmentError
from catchment.geo import require_same_crs
from catchment.graph import StreetGraph, build_graph
from catchment.locator import locate_facilities, prefilter_points, snap
from catchment.models import (
    DISCONNECTED,
    Assignment,
    CaseloadEstimate,
    Diagnostics,
    DistanceMatrix,
    Facility,
    QueryPoint,
    SnapResult,
    StreetSegment,
)
from catchment.partition import partition

logger = logging.getLogger(__name__)


# ===========================
# INPUT ADAPTERS
# ===========================
def facilities_from_frame(frame: gpd.GeoDataFrame, id_column: Optional[str] = "name") -> List[Facility]:
    ids = frame[id_column] if id_column and id_column in frame.columns else frame.index
    return [Facility(fid, float(geom.x), float(geom.y)) for fid, geom in zip(ids, frame.geometry)]


def points_from_frame(
    frame: gpd.GeoDataFrame,
    id_column: Optional[str] = None,
    group_column: Optional[str] = "area",
) -> List[QueryPoint]:
    ids = frame[id_column] if id_column and id_column in frame.columns else frame.index
    if group_column and group_column in frame.columns:
        groups = [None if pd.isna(g) else str(g) for g in frame[group_column]]
    else:
        groups = [None] * len(frame)
    return [
        QueryPoint(pid, float(geom.x), float(geom.y), grp)
        for pid, geom, grp in zip(ids, frame.geometry, groups)
    ]


# ===========================
# RESULT CONTEXT
# ===========================
@dataclass
class AnalysisResult:
    graph: StreetGraph
    profile: TravelProfile
    facility_snaps: Dict[Any, SnapResult]
    snaps: List[SnapResult]
    matrix: DistanceMatrix
    assignment: Assignment
    catchments: gpd.GeoDataFrame
    caseload: List[CaseloadEstimate] = field(default_factory=list)
    breakdown: Optional[pd.DataFrame] = None
    diagnostics: Diagnostics = field(default_factory=Diagnostics)
    points: List[QueryPoint] = field(default_factory=list)

    def caseload_frame(self) -> pd.DataFrame:
        return caseload_frame(self.caseload)

    def assignment_frame(self) -> pd.DataFrame:
        """One row per demand point: area, snapped vertex, facility and cost."""
        snaps = {s.point_id: s for s in self.snaps}
        costs = self.matrix.to_frame()
        rows = []
        for p in self.points:
            label = self.assignment[p.id]
            s = snaps[p.id]
            rows.append(
                {
                    "point_id": p.id,
                    "area": p.group,
                    "vertex": s.vertex,
                    "snap_distance_m": s.distance,
                    "facility_id": "disconnected" if label is DISCONNECTED else label,
                    "cost": float("nan") if label is DISCONNECTED else float(costs.at[p.id, label]),
                }
            )
        return pd.DataFrame(rows)


# ===========================
# RUN
# ===========================
def run_analysis(
    streets: Union[StreetGraph, gpd.GeoDataFrame, Iterable[StreetSegment]],
    facilities: Union[gpd.GeoDataFrame, Sequence[Facility]],
    demand: Union[gpd.GeoDataFrame, Sequence[QueryPoint]],
    boundary: Any,
    profile: TravelProfile,
    demographics: Optional[pd.DataFrame] = None,
    incidence_rates: Optional[Mapping[str, float]] = None,
    settings: Optional[EngineSettings] = None,
    crs: Any = None,
    cancel: Optional[threading.Event] = None,
) -> AnalysisResult:
    """
    Run the full catchment analysis once.

    ``crs`` declares the system of plain-Python inputs. GeoPandas inputs
    carry their own, and every declared system must agree. Incidence rates
    are per person and default to the built-in per-100,000 table.
    """
    settings = settings or EngineSettings()

    # plain Python inputs have no crs attribute and are covered by ``crs``
    named = {
        name: obj.crs
        for name, obj in (("streets", streets), ("facilities", facilities), ("demand", demand), ("boundary", boundary))
        if hasattr(obj, "crs")
    }
    if crs is not None:
        named["crs"] = crs
    crs = require_same_crs(**named)

    if isinstance(streets, StreetGraph):
        graph = streets
    else:
        graph = build_graph(streets, profile, crs=crs)

    fac_list = facilities_from_frame(facilities) if isinstance(facilities, gpd.GeoDataFrame) else list(facilities)
    pts_all = points_from_frame(demand) if isinstance(demand, gpd.GeoDataFrame) else list(demand)
    if not fac_list:
        raise CatchmentError("At least one facility is required")
    fac_ids = [f.id for f in fac_list]
    if len(set(fac_ids)) != len(fac_ids):
        raise CatchmentError("Facility ids must be unique")
    point_ids = pd.Index([p.id for p in pts_all])
    if point_ids.has_duplicates:
        dupes = sorted(map(str, point_ids[point_ids.duplicated()].unique()))
        raise CatchmentError(f"Demand point ids must be unique, repeated: {dupes}")

    pts, dropped = prefilter_points(pts_all, fac_list, settings.prefilter_radius_m, graph.geographic)

    facility_snaps = locate_facilities(fac_list, graph, settings.max_snap_dist_m)
    snaps = snap(pts, graph, [s.vertex for s in facility_snaps.values()], settings.max_snap_dist_m)

    sources = {s.point_id: (s.vertex if s.connected else None) for s in snaps}
    targets = {fid: s.vertex for fid, s in facility_snaps.items()}
    matrix = distances(graph, sources, targets, cutoff=settings.cutoff, workers=settings.workers, cancel=cancel)
    assignment = assign(matrix)

    if incidence_rates is None:
        incidence_rates = rates_per_person(DEFAULT_INCIDENCE_PER_100K)

    # geometry and statistics branches only read the assignment
    with ThreadPoolExecutor(max_workers=2) as pool:
        poly_future = pool.submit(partition, pts, assignment, boundary, crs)
        cases_future = None
        if demographics is not None:
            cases_future = pool.submit(area_breakdown, pts, assignment, demographics, incidence_rates)
        catchments = poly_future.result()
        breakdown = cases_future.result() if cases_future is not None else None

    caseload = aggregate(pts, assignment, demographics, incidence_rates, breakdown=breakdown) if breakdown is not None else []

    vertex_owners: Dict[Any, list] = {}
    for fid, s in facility_snaps.items():
        vertex_owners.setdefault(s.vertex, []).append(fid)

    diagnostics = Diagnostics(
        demand_points=len(pts_all),
        prefiltered=len(dropped),
        unsnappable=sum(1 for s in snaps if s.reason == UNSNAPPABLE_POINT),
        disconnected=assignment.disconnected_count,
        points_per_facility=assignment.counts(),
        shared_facility_vertices=[sorted(ids, key=str) for ids in vertex_owners.values() if len(ids) > 1],
    )
    logger.info(
        "Assigned %d demand points to %d facilities, %d disconnected, %d prefiltered",
        len(pts) - diagnostics.disconnected, len(fac_list), diagnostics.disconnected, diagnostics.prefiltered,
    )

    return AnalysisResult(
        graph=graph,
        profile=profile,
        facility_snaps=facility_snaps,
        snaps=snaps,
        matrix=matrix,
        assignment=assignment,
        catchments=catchments,
        caseload=caseload,
        breakdown=breakdown,
        diagnostics=diagnostics,
        points=pts,
    )
