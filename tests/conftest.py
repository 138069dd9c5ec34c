# tests/conftest.py
import pytest

from catchment.graph import StreetGraph
from catchment.models import Vertex

from helpers import two_way


@pytest.fixture
def line_graph():
    # A - B - C - D, unit costs
    vertices = [Vertex("A", 0.0, 0.0), Vertex("B", 1.0, 0.0), Vertex("C", 2.0, 0.0), Vertex("D", 3.0, 0.0)]
    edges = two_way("A", "B", 1.0) + two_way("B", "C", 1.0) + two_way("C", "D", 1.0)
    return StreetGraph.from_edges(vertices, edges)


@pytest.fixture
def split_graph():
    # two islands: 0 - 1 - 2 and 10 - 11, far apart
    vertices = [
        Vertex(0, 0.0, 0.0),
        Vertex(1, 10.0, 0.0),
        Vertex(2, 20.0, 0.0),
        Vertex(10, 100.0, 0.0),
        Vertex(11, 110.0, 0.0),
    ]
    edges = two_way(0, 1, 10.0) + two_way(1, 2, 10.0) + two_way(10, 11, 10.0)
    return StreetGraph.from_edges(vertices, edges)
