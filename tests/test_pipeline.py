# tests/test_pipeline.py
import threading

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import LineString, Point, box

from catchment import DISCONNECTED, run_analysis
from catchment.config import EngineSettings, distance_profile, drive_profile
from catchment.demand import rates_per_person
from catchment.errors import CatchmentError, ComputationCancelled, CoordinateSystemMismatch, InvalidGraph
from catchment.models import Facility, QueryPoint

from helpers import grid_segments

UTM = "EPSG:32617"


def _streets():
    segs = grid_segments(n=5, spacing=100.0)
    lines = [LineString(s.coords) for s in segs]
    # an island road nobody can reach from the grid
    lines.append(LineString([(600.0, 200.0), (650.0, 200.0)]))
    return gpd.GeoDataFrame({"highway": ["residential"] * len(lines)}, geometry=lines, crs=UTM)


def _facilities(crs=UTM):
    return gpd.GeoDataFrame({"name": ["SW", "NE"]}, geometry=[Point(0, 0), Point(400, 400)], crs=crs)


def _demand():
    rows = []
    for i, x in enumerate((50.0, 150.0, 250.0, 350.0)):
        for j, y in enumerate((50.0, 150.0, 250.0, 350.0)):
            rows.append({"area": "south" if y < 200 else "north", "geometry": Point(x, y)})
    rows.append({"area": "south", "geometry": Point(625.0, 205.0)})
    frame = gpd.GeoDataFrame(rows, geometry="geometry", crs=UTM)
    frame.index = [f"d{i}" for i in range(len(frame))]
    return frame


def _boundary():
    return gpd.GeoDataFrame(geometry=[box(0, 0, 700, 400)], crs=UTM)


def _demographics():
    return pd.DataFrame({"65-74": [1000, 2000]}, index=["south", "north"])


@pytest.fixture
def result():
    return run_analysis(
        _streets(),
        _facilities(),
        _demand(),
        _boundary(),
        distance_profile(),
        demographics=_demographics(),
        incidence_rates=rates_per_person({"65-74": 747.0}),
    )


def test_corner_points_go_to_nearest_facility(result):
    a = result.assignment
    assert a["d0"] == "SW"   # (50, 50)
    assert a["d15"] == "NE"  # (350, 350)
    assert result.matrix.get("d0", "SW") == 0.0
    assert result.matrix.get("d15", "NE") == pytest.approx(200.0)


def test_island_point_is_disconnected_everywhere(result):
    assert result.assignment["d16"] is DISCONNECTED
    assert result.diagnostics.disconnected == 1
    assert result.diagnostics.unsnappable == 0
    assert sum(result.diagnostics.points_per_facility.values()) == 16

    island = Point(625.0, 205.0)
    assert not any(g.contains(island) for g in result.catchments.geometry)
    assert result.catchments["points"].sum() == 16


def test_catchments_do_not_overlap(result):
    geoms = result.catchments.set_index("facility_id").geometry
    assert geoms["SW"].intersection(geoms["NE"]).area == pytest.approx(0.0, abs=1e-6)
    assert geoms["SW"].area > 0 and geoms["NE"].area > 0
    assert result.catchments.crs.to_epsg() == 32617


def test_caseload_percentages_sum_to_100(result):
    frame = result.caseload_frame()
    assert list(frame["facility_id"]) == ["NE", "SW"]
    assert frame["percentage"].sum() == pytest.approx(100.0)
    assert frame["cases"].sum() == pytest.approx(3000 * 747 / 100000)


def test_assignment_frame_reports_costs(result):
    frame = result.assignment_frame().set_index("point_id")
    assert frame.loc["d16", "facility_id"] == "disconnected"
    assert frame.loc["d0", "cost"] == 0.0
    assert frame.loc["d0", "area"] == "south"


def test_mismatched_crs_is_fatal():
    with pytest.raises(CoordinateSystemMismatch):
        run_analysis(_streets(), _facilities(crs="EPSG:4326"), _demand(), _boundary(), distance_profile())


def test_plain_inputs_checked_against_declared_crs():
    facilities = [Facility("SW", 0.0, 0.0)]
    points = [QueryPoint("p", 60.0, 10.0, "south")]
    with pytest.raises(CoordinateSystemMismatch):
        run_analysis(_streets(), facilities, points, box(0, 0, 400, 400), distance_profile(), crs="EPSG:4326")

    out = run_analysis(_streets(), facilities, points, box(0, 0, 400, 400), distance_profile(), crs=UTM)
    assert out.assignment["p"] == "SW"
    assert out.caseload == []


def test_profile_excluding_every_street_is_fatal():
    streets = _streets().assign(highway="footway")
    with pytest.raises(InvalidGraph):
        run_analysis(streets, _facilities(), _demand(), _boundary(), drive_profile())


def test_prefilter_drops_far_points():
    settings = EngineSettings(prefilter_radius_m=150.0)
    out = run_analysis(_streets(), _facilities(), _demand(), _boundary(), distance_profile(), settings=settings)
    # only (50, 50) and (350, 350) lie within 150 m of a facility
    assert sorted(out.assignment) == ["d0", "d15"]
    assert out.diagnostics.prefiltered == 15
    assert out.diagnostics.demand_points == 17


def test_cancel_before_start_raises():
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(ComputationCancelled):
        run_analysis(_streets(), _facilities(), _demand(), _boundary(), distance_profile(), cancel=cancel)


def test_shared_facility_vertex_is_reported():
    facilities = gpd.GeoDataFrame({"name": ["A", "B"]}, geometry=[Point(1, 1), Point(2, 2)], crs=UTM)
    out = run_analysis(_streets(), facilities, _demand(), _boundary(), distance_profile())
    assert out.diagnostics.shared_facility_vertices == [["A", "B"]]
    # tie on every row goes to the lowest id
    assert set(out.assignment.counts()) == {"A", "B"}
    assert out.assignment.counts()["B"] == 0


def test_duplicate_demand_ids_are_rejected():
    demand = _demand()
    demand.index = ["same"] * len(demand)
    with pytest.raises(CatchmentError, match="same"):
        run_analysis(_streets(), _facilities(), demand, _boundary(), distance_profile())


def test_facility_near_footway_still_serves_the_road():
    streets = gpd.GeoDataFrame(
        {"highway": ["residential", "footway"]},
        geometry=[
            LineString([(0, 0), (500, 0), (1000, 0)]),
            LineString([(500, 50), (500, 60)]),
        ],
        crs=UTM,
    )
    facilities = gpd.GeoDataFrame({"name": ["F"]}, geometry=[Point(500, 56)], crs=UTM)
    demand = gpd.GeoDataFrame(
        {"area": ["south", "south"]}, geometry=[Point(100, 5), Point(900, 5)], index=["p", "q"], crs=UTM
    )
    boundary = gpd.GeoDataFrame(geometry=[box(0, -100, 1000, 100)], crs=UTM)

    out = run_analysis(streets, facilities, demand, boundary, drive_profile())
    assert dict(out.assignment) == {"p": "F", "q": "F"}
    assert out.diagnostics.disconnected == 0
