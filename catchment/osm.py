"""
OpenStreetMap adapter.

Downloads a street network with OSMnx and flattens it into street segments
for the graph builder. Routing itself never touches the OSMnx graph.
"""

from __future__ import annotations

import logging
from typing import List

import networkx as nx
import numpy as np
import osmnx as ox

from catchment.errors import NetworkUnavailable
from catchment.geo import haversine_m
from catchment.models import StreetSegment

logger = logging.getLogger(__name__)

OSM_CRS = "EPSG:4326"


def estimate_required_graph_dist_m(
    center_lat: float,
    center_lon: float,
    lats,
    lons,
    min_dist: int = 15000,
    buffer_m: int = 5000,
) -> int:
    """Download radius that covers every point plus a buffer."""
    lats = np.asarray(lats, dtype=float)
    lons = np.asarray(lons, dtype=float)
    mask = np.isfinite(lats) & np.isfinite(lons)
    if not mask.any():
        return int(min_dist)

    d = haversine_m(center_lon, center_lat, lons[mask], lats[mask])
    maxd = float(np.nanmax(d))
    if not np.isfinite(maxd):
        return int(min_dist)
    return int(max(min_dist, maxd + buffer_m))


def fetch_street_network(center_lat: float, center_lon: float, dist_m: int, network_type: str = "drive") -> nx.MultiDiGraph:
    logger.info("Downloading %s network within %d m of (%.5f, %.5f)", network_type, dist_m, center_lat, center_lon)
    try:
        return ox.graph_from_point((center_lat, center_lon), dist=int(dist_m), network_type=network_type, simplify=True)
    except Exception as e:
        raise NetworkUnavailable(f"Could not download the {network_type} network: {e}") from e


def segments_from_osm_graph(G: nx.MultiDiGraph) -> List[StreetSegment]:
    """
    One segment per OSM edge.

    Simplified edges carry their full polyline in ``geometry``. Others are a
    straight line between their end nodes.
    """
    segments = []
    for u, v, data in G.edges(data=True):
        geom = data.get("geometry")
        if geom is not None:
            coords = tuple((float(x), float(y)) for x, y, *_ in geom.coords)
        else:
            nu, nv = G.nodes[u], G.nodes[v]
            coords = ((float(nu["x"]), float(nu["y"])), (float(nv["x"]), float(nv["y"])))
        segments.append(StreetSegment(coords, data.get("highway")))
    logger.debug("Flattened %d OSM edges into street segments", len(segments))
    return segments


def graph_crs(G: nx.MultiDiGraph):
    return G.graph.get("crs", OSM_CRS)
