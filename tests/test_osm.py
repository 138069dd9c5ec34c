# tests/test_osm.py
import networkx as nx
import pytest
from shapely.geometry import LineString

from catchment import osm
from catchment.config import drive_profile
from catchment.errors import CatchmentError, NetworkUnavailable
from catchment.graph import build_graph
from catchment.osm import estimate_required_graph_dist_m, graph_crs, segments_from_osm_graph


def _osm_like_graph():
    G = nx.MultiDiGraph(crs="epsg:4326")
    G.add_node(1, x=-81.00, y=34.00)
    G.add_node(2, x=-80.99, y=34.00)
    G.add_node(3, x=-80.99, y=34.01)
    G.add_edge(1, 2, key=0, highway="residential", length=920.0)
    G.add_edge(2, 1, key=0, highway="residential", length=920.0)
    G.add_edge(
        2, 3, key=0, highway=["primary", "secondary"],
        geometry=LineString([(-80.99, 34.00), (-80.985, 34.005), (-80.99, 34.01)]),
    )
    return G


def test_segments_follow_edge_geometry_when_present():
    segs = segments_from_osm_graph(_osm_like_graph())
    assert len(segs) == 3
    curved = [s for s in segs if len(s.coords) == 3]
    assert len(curved) == 1
    assert curved[0].road_class == "primary"


def test_osm_segments_build_a_routable_graph():
    G = _osm_like_graph()
    graph = build_graph(segments_from_osm_graph(G), drive_profile(), crs=graph_crs(G))
    assert graph.geographic
    assert graph.graph.number_of_nodes() == 4


def test_graph_radius_covers_points_plus_buffer():
    d = estimate_required_graph_dist_m(34.0, -81.0, [34.0, 34.5], [-81.0, -81.0], min_dist=1000, buffer_m=500)
    assert d == pytest.approx(55597 + 500, abs=5)


def test_graph_radius_falls_back_to_minimum():
    assert estimate_required_graph_dist_m(34.0, -81.0, [], [], min_dist=15000) == 15000
    assert estimate_required_graph_dist_m(34.0, -81.0, [34.001], [-81.0], min_dist=15000) == 15000


def test_download_failure_is_reported_as_network_unavailable(monkeypatch):
    def refuse(*args, **kwargs):
        raise ConnectionError("overpass timed out")

    monkeypatch.setattr(osm.ox, "graph_from_point", refuse)
    with pytest.raises(NetworkUnavailable, match="overpass timed out") as info:
        osm.fetch_street_network(34.0, -81.0, 1000)
    assert isinstance(info.value, CatchmentError)
    assert isinstance(info.value.__cause__, ConnectionError)


def test_downloaded_graph_is_returned_unchanged(monkeypatch):
    G = _osm_like_graph()
    calls = []

    def fake(point, dist, network_type, simplify):
        calls.append((point, dist, network_type))
        return G

    monkeypatch.setattr(osm.ox, "graph_from_point", fake)
    assert osm.fetch_street_network(34.0, -81.0, 1500.7, "walk") is G
    assert calls == [((34.0, -81.0), 1500, "walk")]
