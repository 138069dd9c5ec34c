"""
Distance Engine.

Many-to-many shortest-path costs between demand vertices and facility
vertices over the routable edge set, using Dijkstra per distinct vertex.

Searches are batched by distinct vertex: demand points sharing a vertex share
one search. When there are fewer distinct facility vertices than demand
vertices the engine searches backwards from each facility over the reversed
graph instead, which yields the same costs with far fewer searches.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Mapping, Optional

import networkx as nx
import numpy as np

from catchment.config import DEFAULT_WORKERS
from catchment.errors import ComputationCancelled
from catchment.graph import StreetGraph
from catchment.models import DistanceMatrix

logger = logging.getLogger(__name__)


def _search(G, origin, cutoff: Optional[float], cancel: Optional[threading.Event]) -> Optional[Dict]:
    if cancel is not None and cancel.is_set():
        return None
    return nx.single_source_dijkstra_path_length(G, origin, cutoff=cutoff, weight="cost")


def _run_searches(G, origins, cutoff, workers, cancel) -> Dict:
    results = {}
    if workers <= 1 or len(origins) <= 1:
        for o in origins:
            results[o] = _search(G, o, cutoff, cancel)
        return results

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {pool.submit(_search, G, o, cutoff, cancel): o for o in origins}
        try:
            for fut in as_completed(futures):
                results[futures[fut]] = fut.result()
        except BaseException:
            for fut in futures:
                fut.cancel()
            raise
    return results


def distances(
    graph: StreetGraph,
    sources: Mapping,
    targets: Mapping,
    cutoff: Optional[float] = None,
    workers: int = DEFAULT_WORKERS,
    cancel: Optional[threading.Event] = None,
) -> DistanceMatrix:
    """
    Shortest-path cost from every source to every target.

    Parameters
    ----------
    graph : StreetGraph
    sources : mapping of demand point id -> vertex id, or None for points that
        were not snapped. Those rows are all unreachable.
    targets : mapping of facility id -> vertex id.
    cutoff : costs above this become unreachable.
    workers : size of the search thread pool.
    cancel : set it to stop searches that have not started yet. The call then
        raises ComputationCancelled instead of returning a partial matrix.
    """
    point_ids = tuple(sources)
    facility_ids = tuple(sorted(targets))
    values = np.full((len(point_ids), len(facility_ids)), np.inf, dtype=float)

    G = graph.graph
    for v in list(sources.values()) + list(targets.values()):
        if v is not None and v not in G:
            raise KeyError(f"Vertex {v!r} is not in the graph")

    src_vertices = sorted({v for v in sources.values() if v is not None})
    tgt_vertices = sorted(set(targets.values()))
    if not src_vertices or not tgt_vertices:
        return DistanceMatrix(point_ids, facility_ids, values)

    backward = len(tgt_vertices) <= len(src_vertices)
    if backward:
        searched = _run_searches(G.reverse(copy=False), tgt_vertices, cutoff, workers, cancel)
    else:
        searched = _run_searches(G, src_vertices, cutoff, workers, cancel)

    skipped = sum(r is None for r in searched.values())
    if skipped:
        raise ComputationCancelled(f"Cancelled with {skipped} of {len(searched)} searches not run")

    logger.debug(
        "Ran %d %s searches for %d demand vertices x %d facility vertices",
        len(searched), "backward" if backward else "forward", len(src_vertices), len(tgt_vertices),
    )

    for i, pid in enumerate(point_ids):
        s = sources[pid]
        if s is None:
            continue
        for j, fid in enumerate(facility_ids):
            t = targets[fid]
            if backward:
                cost = searched[t].get(s)
            else:
                cost = searched[s].get(t)
            if cost is not None:
                values[i, j] = cost

    return DistanceMatrix(point_ids, facility_ids, values)
