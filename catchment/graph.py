"""
Graph Builder.

Turns raw street polylines into a directed, weighted NetworkX graph. Every
polyline is split into atomic edges between consecutive coordinates, and each
edge is costed with a travel profile. Edges the profile cannot use get the
non-routable sentinel cost and are dropped before the adjacency structure is
built, so shortest-path code never does arithmetic on the sentinel.
"""

from __future__ import annotations

import logging
from functools import cached_property
from typing import Any, Iterable, List, Optional, Union

import geopandas as gpd
import networkx as nx
import numpy as np

from catchment.config import NON_ROUTABLE_COST, TravelProfile
from catchment.errors import InvalidGraph
from catchment.geo import is_geographic, metric_distance, to_crs
from catchment.models import Edge, StreetSegment, Vertex

logger = logging.getLogger(__name__)

# Decimal places used to merge polyline endpoints that describe the same junction
COORD_PRECISION = 9


class StreetGraph:
    """
    A read-only routable street graph.

    ``graph`` holds every vertex (including ones left without routable edges)
    and only the routable edges. Node attributes are ``x``/``y``; edge
    attributes are ``length`` and ``cost``.
    """

    def __init__(self, graph: nx.DiGraph, crs: Any = None, dropped_edges: int = 0):
        self.graph = nx.freeze(graph)
        self.crs = to_crs(crs)
        self.dropped_edges = int(dropped_edges)

    def __repr__(self) -> str:
        return (
            f"StreetGraph({self.graph.number_of_nodes()} vertices, "
            f"{self.graph.number_of_edges()} routable edges, {self.dropped_edges} dropped)"
        )

    @classmethod
    def from_edges(
        cls,
        vertices: Iterable[Vertex],
        edges: Iterable[Edge],
        crs: Any = None,
        non_routable_cost: float = NON_ROUTABLE_COST,
    ) -> "StreetGraph":
        return _assemble(list(vertices), list(edges), crs, non_routable_cost)

    @property
    def geographic(self) -> bool:
        return is_geographic(self.crs)

    @cached_property
    def vertex_ids(self) -> np.ndarray:
        return np.array(sorted(self.graph.nodes), dtype=object)

    @cached_property
    def routable_vertex_ids(self) -> np.ndarray:
        """Sorted ids of vertices that touch at least one routable edge. Only these are snap candidates."""
        G = self.graph
        return np.array([v for v in self.vertex_ids if G.degree(v) > 0], dtype=object)

    @cached_property
    def routable_coords(self) -> np.ndarray:
        nodes = self.graph.nodes
        return np.array([(nodes[v]["x"], nodes[v]["y"]) for v in self.routable_vertex_ids], dtype=float).reshape(-1, 2)

    @cached_property
    def component_of(self) -> dict:
        """Vertex id -> index of its weakly-connected component."""
        out = {}
        for i, comp in enumerate(nx.weakly_connected_components(self.graph)):
            for v in comp:
                out[v] = i
        return out

    def vertex(self, vertex_id) -> Vertex:
        data = self.graph.nodes[vertex_id]
        return Vertex(vertex_id, float(data["x"]), float(data["y"]))

    def edge_cost(self, u, v) -> float:
        return float(self.graph.edges[u, v]["cost"])


# ===========================
# BUILDING
# ===========================
def segments_from_frame(streets: gpd.GeoDataFrame, class_column: str = "highway") -> List[StreetSegment]:
    """Explode (Multi)LineString rows into street segments."""
    out = []
    has_class = class_column in streets.columns
    for idx, row in streets.iterrows():
        geom = row.geometry
        if geom is None or geom.is_empty:
            continue
        road_class = row[class_column] if has_class else None
        parts = geom.geoms if geom.geom_type == "MultiLineString" else [geom]
        for part in parts:
            if part.geom_type != "LineString":
                logger.debug("Skipping non-line geometry %s at row %s", part.geom_type, idx)
                continue
            out.append(StreetSegment(tuple((float(x), float(y)) for x, y, *_ in part.coords), road_class))
    return out


def build_graph(
    segments: Union[gpd.GeoDataFrame, Iterable[StreetSegment]],
    profile: TravelProfile,
    crs: Any = None,
) -> StreetGraph:
    """
    Build a routable graph from street segments.

    Vertex ids are the positions of the distinct (rounded) coordinates in
    sorted order, so identical input always yields identical ids. Both
    directions of every segment are added.
    """
    if isinstance(segments, gpd.GeoDataFrame):
        crs = segments.crs if crs is None else crs
        segments = segments_from_frame(segments)
    segments = list(segments)
    geographic = is_geographic(crs)

    keyed = []
    for seg in segments:
        pts = [(round(float(x), COORD_PRECISION), round(float(y), COORD_PRECISION)) for x, y in seg.coords]
        if len(pts) < 2:
            continue
        keyed.append((pts, seg.road_class))

    distinct = sorted({p for pts, _ in keyed for p in pts})
    ids = {p: i for i, p in enumerate(distinct)}
    vertices = [Vertex(i, x, y) for (x, y), i in ids.items()]

    edges = []
    for pts, road_class in keyed:
        a = np.asarray(pts[:-1], dtype=float)
        b = np.asarray(pts[1:], dtype=float)
        lengths = metric_distance(a[:, 0], a[:, 1], b[:, 0], b[:, 1], geographic)
        for p, q, length in zip(pts[:-1], pts[1:], lengths):
            u, v = ids[p], ids[q]
            if u == v:
                continue
            cost = profile.edge_cost(length, road_class)
            routable = profile.is_routable(cost)
            edges.append(Edge(u, v, float(length), cost, routable))
            edges.append(Edge(v, u, float(length), cost, routable))

    logger.info(
        "Built %d atomic edges over %d vertices from %d segments (%s profile)",
        len(edges), len(vertices), len(segments), profile.name,
    )
    return _assemble(vertices, edges, crs, profile.non_routable_cost)


def _assemble(vertices: List[Vertex], edges: List[Edge], crs: Any, non_routable_cost: float) -> StreetGraph:
    G = nx.DiGraph()
    for vx in sorted(vertices, key=lambda vx: vx.id):
        if vx.id in G:
            raise InvalidGraph(f"Duplicate vertex id {vx.id!r}")
        G.add_node(vx.id, x=float(vx.x), y=float(vx.y))

    dropped = 0
    for e in edges:
        if e.u not in G or e.v not in G:
            raise InvalidGraph(f"Edge {e.u!r}->{e.v!r} references a missing vertex")
        if not e.routable or not np.isfinite(e.cost) or e.cost >= non_routable_cost:
            dropped += 1
            continue
        if e.cost < 0:
            raise InvalidGraph(f"Edge {e.u!r}->{e.v!r} has negative cost {e.cost}")
        # parallel segments between the same pair keep the cheapest
        if G.has_edge(e.u, e.v) and G.edges[e.u, e.v]["cost"] <= e.cost:
            continue
        G.add_edge(e.u, e.v, length=float(e.length), cost=float(e.cost))

    if G.number_of_edges() == 0:
        raise InvalidGraph("No routable edges: the travel profile excludes every segment")

    logger.debug("Dropped %d non-routable edges", dropped)
    return StreetGraph(G, crs=crs, dropped_edges=dropped)
