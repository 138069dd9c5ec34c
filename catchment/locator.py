"""
Node Locator.

Snaps query points and facilities onto graph vertices that touch a routable
edge. Nearest vertex is by planar distance in the graph's CRS, ties going to
the lowest vertex id. Vertices left bare by dropped non-routable edges are
never candidates. A demand point only counts as connected when its vertex
shares a weakly-connected component with at least one facility vertex.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial import cKDTree

from catchment.config import MAX_SNAP_DIST_M
from catchment.errors import OUTSIDE_COMPONENT, UNSNAPPABLE_POINT
from catchment.geo import metric_distance
from catchment.graph import StreetGraph
from catchment.models import Facility, QueryPoint, SnapResult

logger = logging.getLogger(__name__)

_REL_TIE_TOL = 1e-9
_ABS_TIE_TOL = 1e-12


def nearest_vertices(graph: StreetGraph, xs, ys) -> Tuple[np.ndarray, np.ndarray]:
    """
    Nearest routable vertex for each (x, y), with planar distance.

    Returns (vertex ids, planar distances). Equidistant vertices resolve to
    the lowest id.
    """
    xs = np.asarray(xs, dtype=float)
    ys = np.asarray(ys, dtype=float)
    if len(xs) == 0:
        return np.empty(0, dtype=object), np.empty(0, dtype=float)

    coords = graph.routable_coords
    tree = cKDTree(coords)
    query = np.column_stack([xs, ys])
    d0, idx0 = tree.query(query, k=1)
    d0 = np.atleast_1d(d0).astype(float)
    idx0 = np.atleast_1d(idx0)

    tol = d0 * _REL_TIE_TOL + _ABS_TIE_TOL
    candidates = tree.query_ball_point(query, r=d0 + tol)

    # routable_vertex_ids is sorted, so the smallest position is the smallest id
    chosen = np.empty(len(xs), dtype=int)
    for i, cands in enumerate(candidates):
        if not cands:
            chosen[i] = int(idx0[i])
            continue
        cands = np.asarray(cands, dtype=int)
        d = np.hypot(coords[cands, 0] - xs[i], coords[cands, 1] - ys[i])
        tied = cands[d <= d0[i] + tol[i]]
        chosen[i] = int(tied.min()) if len(tied) else int(idx0[i])

    return graph.routable_vertex_ids[chosen], d0


def locate_facilities(
    facilities: Sequence[Facility],
    graph: StreetGraph,
    max_snap_dist_m: float = MAX_SNAP_DIST_M,
) -> Dict[object, SnapResult]:
    """Snap every facility to its nearest vertex. Facilities are never disconnected."""
    if not facilities:
        return {}
    vids, _ = nearest_vertices(graph, [f.x for f in facilities], [f.y for f in facilities])
    out = {}
    seen: Dict[object, list] = {}
    for fac, vid in zip(facilities, vids):
        vx = graph.vertex(vid)
        dist = float(metric_distance(fac.x, fac.y, vx.x, vx.y, graph.geographic))
        if dist > max_snap_dist_m:
            logger.warning(
                "Facility %r is %.0f m from the nearest street vertex (limit %.0f m)",
                fac.id, dist, max_snap_dist_m,
            )
        out[fac.id] = SnapResult(fac.id, vid, True, dist)
        seen.setdefault(vid, []).append(fac.id)

    for vid, ids in seen.items():
        if len(ids) > 1:
            logger.warning("Facilities %s share vertex %r", ids, vid)
    return out


def snap(
    points: Sequence[QueryPoint],
    graph: StreetGraph,
    facility_vertices: Sequence,
    max_snap_dist_m: Optional[float] = MAX_SNAP_DIST_M,
) -> List[SnapResult]:
    """Snap demand points and flag the ones that cannot reach any facility."""
    if not points:
        return []

    reachable_components = {graph.component_of[v] for v in facility_vertices}
    xs = np.array([p.x for p in points], dtype=float)
    ys = np.array([p.y for p in points], dtype=float)
    vids, _ = nearest_vertices(graph, xs, ys)

    coords = np.array([(graph.graph.nodes[v]["x"], graph.graph.nodes[v]["y"]) for v in vids], dtype=float)
    dists = metric_distance(xs, ys, coords[:, 0], coords[:, 1], graph.geographic)

    results = []
    for p, vid, dist in zip(points, vids, dists):
        if max_snap_dist_m is not None and dist > max_snap_dist_m:
            results.append(SnapResult(p.id, vid, False, float(dist), UNSNAPPABLE_POINT))
        elif graph.component_of[vid] not in reachable_components:
            results.append(SnapResult(p.id, vid, False, float(dist), OUTSIDE_COMPONENT))
        else:
            results.append(SnapResult(p.id, vid, True, float(dist)))

    n_bad = sum(1 for r in results if not r.connected)
    if n_bad:
        logger.info("%d of %d demand points snapped as disconnected", n_bad, len(results))
    return results


def prefilter_points(
    points: Sequence[QueryPoint],
    facilities: Sequence[Facility],
    radius_m: Optional[float],
    geographic: bool,
) -> Tuple[List[QueryPoint], List[QueryPoint]]:
    """
    Keep points within ``radius_m`` straight-line distance of any facility.

    Returns (kept, dropped). A radius of None keeps everything.
    """
    points = list(points)
    if radius_m is None or not points or not facilities:
        return points, []

    px = np.array([p.x for p in points], dtype=float)[:, None]
    py = np.array([p.y for p in points], dtype=float)[:, None]
    fx = np.array([f.x for f in facilities], dtype=float)[None, :]
    fy = np.array([f.y for f in facilities], dtype=float)[None, :]
    nearest = metric_distance(px, py, fx, fy, geographic).min(axis=1)

    keep = nearest <= float(radius_m)
    kept = [p for p, k in zip(points, keep) if k]
    dropped = [p for p, k in zip(points, keep) if not k]
    if dropped:
        logger.info("Prefilter dropped %d points beyond %.0f m of every facility", len(dropped), radius_m)
    return kept, dropped
