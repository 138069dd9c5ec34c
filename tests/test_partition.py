# tests/test_partition.py
import numpy as np
import shapely
import pytest
from shapely.geometry import MultiPoint, Point, box

from catchment.errors import DegenerateTessellationInput
from catchment.models import DISCONNECTED, Assignment, QueryPoint
from catchment.partition import dedupe_sites, match_cells_to_sites, partition, tessellate


BOUNDARY = box(0, 0, 100, 100)


def _west_east_points():
    pts, labels = [], {}
    for x, fid in ((10, "W"), (30, "W"), (70, "E"), (90, "E")):
        for y in (10, 50, 90):
            pid = f"{fid}{x}_{y}"
            pts.append(QueryPoint(pid, float(x), float(y)))
            labels[pid] = fid
    return pts, labels


def test_cells_are_matched_back_by_containment_not_by_position():
    sites = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [10.0, 10.0], [5.0, 20.0]])
    regions = shapely.voronoi_polygons(MultiPoint(sites.tolist()), extend_to=box(-50, -50, 60, 70))
    shuffled = list(reversed(list(regions.geoms)))

    ordered = match_cells_to_sites(shuffled, sites)
    for (x, y), cell in zip(sites, ordered):
        assert cell.contains(Point(x, y))


def test_unmatchable_cells_are_rejected():
    sites = np.array([[1.0, 1.0], [50.0, 50.0]])
    cells = [box(0, 0, 2, 2), box(10, 10, 20, 20)]
    with pytest.raises(DegenerateTessellationInput):
        match_cells_to_sites(cells, sites)


def test_tessellate_gives_each_site_its_own_cell():
    pts, _ = _west_east_points()
    cells = tessellate(pts, BOUNDARY)

    assert len(cells) == len(pts)
    for _, row in cells.iterrows():
        assert row.geometry.contains(Point(row["x"], row["y"]))
    assert shapely.unary_union(list(cells.geometry)).covers(BOUNDARY)


def test_coincident_points_share_one_site():
    pts = [QueryPoint("a", 10.0, 10.0), QueryPoint("b", 10.0, 10.0), QueryPoint("c", 80.0, 80.0)]
    groups = dedupe_sites(pts)
    assert groups == {(10.0, 10.0): ["a", "b"], (80.0, 80.0): ["c"]}

    cells = tessellate(pts, BOUNDARY)
    assert len(cells) == 2
    assert sorted(map(sorted, cells["point_ids"])) == [["a", "b"], ["c"]]


def test_partition_splits_boundary_without_overlap():
    pts, labels = _west_east_points()
    result = partition(pts, Assignment(labels, ("E", "W")), BOUNDARY)

    assert list(result["facility_id"]) == ["E", "W"]
    west = result.set_index("facility_id").geometry["W"]
    east = result.set_index("facility_id").geometry["E"]
    assert west.area == pytest.approx(5000.0)
    assert east.area == pytest.approx(5000.0)
    assert west.intersection(east).area == pytest.approx(0.0, abs=1e-9)
    assert west.union(east).symmetric_difference(BOUNDARY).area == pytest.approx(0.0, abs=1e-6)
    assert list(result["points"]) == [6, 6]


def test_disconnected_site_is_left_out_of_every_catchment():
    pts, labels = _west_east_points()
    pts.append(QueryPoint("lost", 50.0, 50.0))
    labels["lost"] = DISCONNECTED
    result = partition(pts, Assignment(labels, ("E", "W")), BOUNDARY)

    assert DISCONNECTED not in set(result["facility_id"])
    assert not any(geom.contains(Point(50.0, 50.0)) for geom in result.geometry)
    assert result.geometry.area.sum() < BOUNDARY.area
    assert result["points"].sum() == 12


def test_dedup_keeps_every_point_counted():
    pts = [QueryPoint("a", 10.0, 10.0), QueryPoint("b", 10.0, 10.0), QueryPoint("c", 90.0, 90.0)]
    result = partition(pts, Assignment({"a": "X", "b": "X", "c": "Y"}, ("X", "Y")), BOUNDARY)
    assert dict(zip(result["facility_id"], result["points"])) == {"X": 2, "Y": 1}


def test_single_site_takes_the_whole_boundary():
    result = partition([QueryPoint("a", 20.0, 20.0)], Assignment({"a": "X"}, ("X",)), BOUNDARY)
    assert result.geometry.iloc[0].area == pytest.approx(BOUNDARY.area)


def test_facility_without_points_gets_empty_polygon():
    pts = [QueryPoint("a", 20.0, 20.0), QueryPoint("b", 80.0, 80.0)]
    result = partition(pts, Assignment({"a": "X", "b": "X"}, ("X", "Z")), BOUNDARY)
    z = result.set_index("facility_id").geometry["Z"]
    assert z.is_empty


def test_no_sites_is_degenerate():
    with pytest.raises(DegenerateTessellationInput):
        partition([], Assignment({}, ("X",)), BOUNDARY)


def test_collinear_sites_still_tessellate():
    pts = [QueryPoint(i, float(x), 50.0) for i, x in enumerate((10, 40, 60, 90))]
    result = partition(pts, Assignment({0: "L", 1: "L", 2: "R", 3: "R"}, ("L", "R")), BOUNDARY)
    geoms = result.set_index("facility_id").geometry
    assert geoms["L"].area == pytest.approx(5000.0)
    assert geoms["R"].area == pytest.approx(5000.0)
