# tests/helpers.py
from catchment.models import Edge, StreetSegment


def two_way(u, v, cost, length=None):
    length = cost if length is None else length
    return [Edge(u, v, length, cost), Edge(v, u, length, cost)]


def grid_segments(n=5, spacing=100.0, highway="residential"):
    """n x n street grid: one polyline per row and per column."""
    ticks = [i * spacing for i in range(n)]
    segs = []
    for y in ticks:
        segs.append(StreetSegment(tuple((x, y) for x in ticks), highway))
    for x in ticks:
        segs.append(StreetSegment(tuple((x, y) for y in ticks), highway))
    return segs
