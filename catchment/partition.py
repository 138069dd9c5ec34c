"""
Catchment Partitioner.

Approximates network catchments with a point tessellation: every distinct
demand site gets a Voronoi cell, cells are dissolved by the facility their
points were assigned to, and the result is clipped to the study boundary.

GEOS does not promise to return Voronoi cells in input order, so cells are
matched back to their sites by containment before anything is grouped.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence, Tuple

import geopandas as gpd
import numpy as np
import shapely
from shapely.geometry import MultiPoint, Polygon, box
from shapely.ops import unary_union
from shapely.strtree import STRtree

from catchment.errors import DegenerateTessellationInput
from catchment.graph import COORD_PRECISION
from catchment.models import DISCONNECTED, Assignment, QueryPoint

logger = logging.getLogger(__name__)

ENVELOPE_PAD_FRAC = 0.10


def _boundary_geometry(boundary: Any):
    if boundary is None:
        return None
    if isinstance(boundary, (gpd.GeoDataFrame, gpd.GeoSeries)):
        return unary_union(list(boundary.geometry))
    return boundary


def _boundary_crs(boundary: Any):
    if isinstance(boundary, (gpd.GeoDataFrame, gpd.GeoSeries)):
        return boundary.crs
    return None


def dedupe_sites(points: Sequence[QueryPoint]) -> Dict[Tuple[float, float], List]:
    """Group point ids by coordinate. Keys come back in sorted order."""
    groups: Dict[Tuple[float, float], List] = {}
    for p in points:
        key = (round(float(p.x), COORD_PRECISION), round(float(p.y), COORD_PRECISION))
        groups.setdefault(key, []).append(p.id)
    return {k: groups[k] for k in sorted(groups)}


def _envelope(sites: np.ndarray, boundary) -> Polygon:
    minx, miny = sites.min(axis=0)
    maxx, maxy = sites.max(axis=0)
    if boundary is not None and not boundary.is_empty:
        bminx, bminy, bmaxx, bmaxy = boundary.bounds
        minx, miny = min(minx, bminx), min(miny, bminy)
        maxx, maxy = max(maxx, bmaxx), max(maxy, bmaxy)
    span = max(maxx - minx, maxy - miny)
    pad = span * ENVELOPE_PAD_FRAC if span > 0 else 1.0
    return box(minx - pad, miny - pad, maxx + pad, maxy + pad)


def match_cells_to_sites(cells: Sequence, sites: np.ndarray) -> List:
    """
    Reorder ``cells`` so that ``out[i]`` is the cell containing ``sites[i]``.

    Raises DegenerateTessellationInput unless every site lies in exactly one
    cell and no cell is claimed twice.
    """
    tree = STRtree(list(cells))
    site_points = shapely.points(sites)
    site_idx, cell_idx = tree.query(site_points, predicate="within")

    hits = np.bincount(site_idx, minlength=len(sites))
    if len(cells) != len(sites) or np.any(hits != 1) or len(set(cell_idx.tolist())) != len(cell_idx):
        raise DegenerateTessellationInput(
            f"Could not match {len(cells)} cells one-to-one with {len(sites)} sites"
        )

    out = [None] * len(sites)
    for s, c in zip(site_idx, cell_idx):
        out[int(s)] = cells[int(c)]
    return out


def tessellate(points: Sequence[QueryPoint], boundary: Any = None, crs: Any = None) -> gpd.GeoDataFrame:
    """
    One Voronoi cell per distinct site, aligned with its site.

    Returns a GeoDataFrame with ``x``, ``y``, ``point_ids`` and the cell
    geometry. Cells cover the envelope of the sites and the boundary.
    """
    groups = dedupe_sites(points)
    if not groups:
        raise DegenerateTessellationInput("No demand sites to tessellate")

    sites = np.array(list(groups), dtype=float).reshape(-1, 2)
    envelope = _envelope(sites, _boundary_geometry(boundary))

    if len(sites) == 1:
        cells = [envelope]
    else:
        regions = shapely.voronoi_polygons(MultiPoint(sites.tolist()), extend_to=envelope)
        cells = match_cells_to_sites(list(regions.geoms), sites)

    if crs is None:
        crs = _boundary_crs(boundary)
    return gpd.GeoDataFrame(
        {
            "x": sites[:, 0],
            "y": sites[:, 1],
            "point_ids": list(groups.values()),
        },
        geometry=cells,
        crs=crs,
    )


def _site_label(point_ids: List, assignment: Assignment):
    labels = [assignment[pid] for pid in point_ids]
    counts = Counter(labels)
    if len(counts) == 1:
        return labels[0]
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], str(kv[0])))
    logger.warning("Coincident points %s carry different labels %s, using %r", point_ids, dict(counts), ranked[0][0])
    return ranked[0][0]


def partition(
    points: Sequence[QueryPoint],
    assignment: Assignment,
    boundary: Any,
    crs: Any = None,
) -> gpd.GeoDataFrame:
    """
    Catchment polygon per facility.

    Disconnected sites are tessellated (so their area stays unattributed)
    but excluded from every facility. Facilities with no demand points get an
    empty polygon. Output is sorted by facility id.
    """
    if crs is None:
        crs = _boundary_crs(boundary)
    clip = _boundary_geometry(boundary)
    cells = tessellate(points, clip, crs=crs)

    cells["facility_id"] = [_site_label(ids, assignment) for ids in cells["point_ids"]]
    cells["points"] = [len(ids) for ids in cells["point_ids"]]
    assigned = cells[[label is not DISCONNECTED for label in cells["facility_id"]]]

    polygons: Dict[Any, Any] = {}
    npoints: Dict[Any, int] = {}
    if len(assigned):
        dissolved = assigned[["facility_id", "points", "geometry"]].dissolve(by="facility_id", aggfunc={"points": "sum"})
        geoms = dissolved.geometry
        if clip is not None:
            geoms = geoms.intersection(clip)
        polygons = dict(zip(dissolved.index, geoms))
        npoints = dict(zip(dissolved.index, dissolved["points"]))

    facility_ids = sorted(set(assignment.facility_ids) | set(polygons))
    result = gpd.GeoDataFrame(
        {
            "facility_id": facility_ids,
            "points": [int(npoints.get(fid, 0)) for fid in facility_ids],
        },
        geometry=[polygons.get(fid, Polygon()) for fid in facility_ids],
        crs=crs,
    )
    logger.info(
        "Partitioned %d sites into %d catchments (%d disconnected sites)",
        len(cells), int((result["points"] > 0).sum()), len(cells) - len(assigned),
    )
    return result
