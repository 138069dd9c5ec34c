"""
Catchment Analysis Tool
A Streamlit application for estimating service-centre catchments and caseloads over a road network

METHODOLOGY DOCUMENTATION:
========================

1. ROAD NETWORK:
   - Network Data: OpenStreetMap (OSM) via OSMnx library
   - Every street polyline is split into atomic edges between consecutive vertices
   - Edge cost = physical length x travel-mode multiplier
     * 'drive': posted-speed defaults per highway class, footpaths excluded
     * 'walk': 5 km/h on every class except motorways and trunk roads
     * 'distance': plain network length in metres
   - Edges the travel mode cannot use are removed before routing

2. SNAPPING:
   - Demand points and centres snap to the nearest network vertex
   - A demand point further than the snap limit, or whose vertex is not connected
     to any centre, is reported as disconnected

3. ASSIGNMENT:
   - Dijkstra shortest paths between every demand point and every centre
   - Each demand point goes to its cheapest reachable centre

4. CATCHMENTS:
   - Voronoi cells around the demand points, merged per centre and clipped to the
     study area. This approximates the network catchment.

5. CASELOAD:
   - Expected cases per area = population per age bracket x incidence rate
   - Each area's cases are split across centres in proportion to where its demand
     points were assigned
"""

from __future__ import annotations

import json
import warnings
from pathlib import Path
from typing import Tuple

import folium
import geopandas as gpd
import pandas as pd
import streamlit as st
import streamlit.components.v1 as components
from shapely.geometry import Polygon
from shapely.ops import unary_union
from streamlit_folium import st_folium

from catchment import CatchmentError, NetworkUnavailable, run_analysis
from catchment.config import DEFAULT_INCIDENCE_PER_100K, EngineSettings, get_profile
from catchment.demand import rates_per_person
from catchment.models import DISCONNECTED
from catchment.osm import (
    estimate_required_graph_dist_m,
    fetch_street_network,
    graph_crs,
    segments_from_osm_graph,
)
from config import (
    CATCHMENT_COLORS,
    DEFAULT_MAX_SNAP_DIST_M,
    DEFAULT_PREFILTER_RADIUS_KM,
    DEFAULT_TRAVEL_MODE,
    DEFAULT_WORKERS,
    DEFAULT_ZOOM,
    DISCONNECTED_COLOR,
    GRAPH_BUFFER_M,
    JSON_KEY_MAPPING,
    JSON_PATH,
    MAP_TILES,
    MIN_GRAPH_DIST_M,
    PREFILTER_OPTIONS_KM,
)

warnings.filterwarnings("ignore")

# ===========================
# PAGE CONFIG (must be first Streamlit command)
# ===========================
st.set_page_config(
    page_title="Catchment Analysis Tool",
    page_icon="🏥",
    layout="wide",
    initial_sidebar_state="expanded",
)

# ===========================
# BRANDING AND CUSTOM CSS
# ===========================
def local_css():
    st.markdown(
        """
        <style>
            #MainMenu {visibility: hidden;}
            footer {visibility: hidden;}
            [data-testid="stToolbar"] {visibility: hidden;}

            .main {background-color: #f8f9fa;}

            .stButton>button {
                width: 100%;
                border-radius: 8px;
                height: 3em;
                background-color: #004b98;
                color: white;
                font-weight: 700;
                border: 0px;
            }

            .instruction-box {
                background-color: #e1f5fe;
                padding: 14px 16px;
                border-radius: 10px;
                border: 1px solid #b3e5fc;
                margin-bottom: 14px;
            }

            [data-testid="stMetricValue"] {font-size: 22px !important;}
        </style>
        """,
        unsafe_allow_html=True,
    )

local_css()

# ===========================
# SAFE MAP RENDERING (fixes JSON serialization error from st_folium)
# ===========================
def render_folium_map(m: folium.Map, key: str = "map", height: int = 640):
    try:
        st_folium(
            m,
            key=key,
            height=height,
            use_container_width=True,
            returned_objects=[],
        )
    except Exception:
        components.html(m.get_root().render(), height=height, scrolling=True)

# ===========================
# SESSION STATE
# ===========================
if "result" not in st.session_state:
    st.session_state.result = None
if "last_params" not in st.session_state:
    st.session_state.last_params = {}

# ===========================
# DATA LOADING
# ===========================
@st.cache_data
def load_data(json_path: Path) -> Tuple[gpd.GeoDataFrame, gpd.GeoDataFrame, gpd.GeoDataFrame, pd.DataFrame, dict]:
    with open(json_path, "r") as f:
        data = json.load(f)

    area_data = data.get(JSON_KEY_MAPPING["area_boundaries"], {})
    if not isinstance(area_data, dict) or not area_data:
        raise ValueError("Area boundaries must be a dictionary keyed by area code.")

    geometries = []
    properties = []
    for code, info in area_data.items():
        if "coords" not in info:
            continue
        coords_lonlat = [[pt[1], pt[0]] for pt in info["coords"]]  # [lon, lat]
        geometries.append(Polygon(coords_lonlat))
        properties.append({"AREA_CODE": str(code), "name": info.get("name", str(code))})

    if not geometries:
        raise ValueError("No valid area geometries could be parsed.")
    areas_gdf = gpd.GeoDataFrame(properties, geometry=geometries, crs="EPSG:4326")

    facilities_df = pd.DataFrame(data.get(JSON_KEY_MAPPING["facilities"], []))
    if facilities_df.empty:
        raise ValueError("No facilities found in JSON.")
    demand_df = pd.DataFrame(data.get(JSON_KEY_MAPPING["demand_points"], []))
    if demand_df.empty:
        raise ValueError("No demand points found in JSON.")

    for df in (facilities_df, demand_df):
        for col in ("latitude", "longitude"):
            if col not in df.columns:
                raise ValueError("Facilities and demand points must include latitude and longitude.")
            df[col] = pd.to_numeric(df[col], errors="coerce")
        df.dropna(subset=["latitude", "longitude"], inplace=True)

    if "name" not in facilities_df.columns:
        facilities_df["name"] = [f"Centre {i + 1}" for i in range(len(facilities_df))]
    facilities_df["name"] = facilities_df["name"].astype(str)

    if "id" in demand_df.columns:
        demand_df = demand_df.set_index("id")
    if "area" not in demand_df.columns and "zip_code" in demand_df.columns:
        demand_df["area"] = demand_df["zip_code"]
    if "area" in demand_df.columns:
        demand_df["area"] = demand_df["area"].astype(str)

    facilities_gdf = gpd.GeoDataFrame(
        facilities_df,
        geometry=gpd.points_from_xy(facilities_df["longitude"], facilities_df["latitude"]),
        crs="EPSG:4326",
    )
    demand_gdf = gpd.GeoDataFrame(
        demand_df,
        geometry=gpd.points_from_xy(demand_df["longitude"], demand_df["latitude"]),
        crs="EPSG:4326",
    )

    demographics = pd.DataFrame.from_dict(data.get(JSON_KEY_MAPPING["demographics"], {}), orient="index")
    demographics.index = demographics.index.astype(str)

    incidence = data.get(JSON_KEY_MAPPING["incidence_rates"]) or {}
    return areas_gdf, facilities_gdf, demand_gdf, demographics, incidence

# ===========================
# NETWORK
# ===========================
@st.cache_resource(show_spinner=False)
def get_street_segments(center_lat: float, center_lon: float, dist_m: int, network_type: str):
    G = fetch_street_network(center_lat, center_lon, dist_m, network_type)
    return segments_from_osm_graph(G), graph_crs(G)

# ===========================
# MAP CREATION
# ===========================
def facility_colors(facility_ids) -> dict:
    return {fid: CATCHMENT_COLORS[i % len(CATCHMENT_COLORS)] for i, fid in enumerate(sorted(facility_ids))}


def create_map(
    boundary: gpd.GeoDataFrame,
    facilities: gpd.GeoDataFrame,
    demand: gpd.GeoDataFrame,
    result=None,
    tiles: str = MAP_TILES,
) -> folium.Map:
    minx, miny, maxx, maxy = map(float, boundary.total_bounds)
    m = folium.Map(
        location=[(miny + maxy) / 2, (minx + maxx) / 2],
        zoom_start=DEFAULT_ZOOM,
        tiles=tiles,
        prefer_canvas=True,
    )

    folium.GeoJson(
        boundary.__geo_interface__,
        style_function=lambda _: {"fillOpacity": 0.0, "color": "#1E90FF", "weight": 3},
    ).add_to(m)

    colors = facility_colors(facilities["name"])

    if result is not None:
        for _, row in result.catchments.iterrows():
            if row.geometry is None or row.geometry.is_empty:
                continue
            color = colors.get(row["facility_id"], "gray")
            folium.GeoJson(
                row.geometry.__geo_interface__,
                style_function=lambda _, c=color: {"fillColor": c, "color": c, "weight": 1, "fillOpacity": 0.25},
                tooltip=f"{row['facility_id']}: {int(row['points'])} demand points",
            ).add_to(m)

        assignment = result.assignment
        for pid, dem in demand.iterrows():
            label = assignment.get(pid)
            if label is None:
                continue
            color = DISCONNECTED_COLOR if label is DISCONNECTED else colors.get(label, "gray")
            folium.CircleMarker(
                location=[float(dem["latitude"]), float(dem["longitude"])],
                radius=3,
                popup=f"<b>{pid}</b><br>{'Disconnected' if label is DISCONNECTED else label}",
                color=color,
                fill=True,
                fillColor=color,
                fillOpacity=0.7,
                weight=1,
            ).add_to(m)
    else:
        for _, dem in demand.iterrows():
            folium.CircleMarker(
                location=[float(dem["latitude"]), float(dem["longitude"])],
                radius=3,
                color="darkorange",
                fill=True,
                fillColor="orange",
                fillOpacity=0.7,
                weight=1,
            ).add_to(m)

    for _, fac in facilities.iterrows():
        folium.Marker(
            location=[float(fac["latitude"]), float(fac["longitude"])],
            popup=f"<b>{fac['name']}</b>",
            icon=folium.Icon(color="red", icon="plus", prefix="fa"),
        ).add_to(m)

    m.fit_bounds([[miny, minx], [maxy, maxx]])
    return m

# ===========================
# MAIN APP
# ===========================
def main():
    st.title("🏥 Catchment Analysis Tool")
    st.markdown("**Network-distance catchments and caseload estimates for fixed service centres.**")

    st.markdown(
        """
        <div class="instruction-box">
            <b>How to use:</b>
            Pick the study areas and travel mode, then click <b>Calculate Catchments</b>.
        </div>
        """,
        unsafe_allow_html=True,
    )

    st.divider()

    try:
        with st.spinner("Loading geospatial data..."):
            areas_gdf, facilities_gdf, demand_gdf, demographics, incidence = load_data(JSON_PATH)
    except Exception as e:
        st.error(f"Error loading data: {e}")
        st.info(f"Check the data path: {JSON_PATH}")
        st.stop()

    # SIDEBAR
    with st.sidebar:
        st.header("Control Panel")

        with st.expander("📍 Study Area", expanded=True):
            area_options = sorted(areas_gdf["AREA_CODE"].unique())
            selected_areas = st.multiselect("Areas", options=area_options, default=area_options)

        with st.expander("⚙️ Routing", expanded=True):
            modes = ["drive", "walk", "distance"]
            travel_mode = st.radio("Travel Mode", options=modes, index=modes.index(DEFAULT_TRAVEL_MODE), horizontal=True)
            max_snap = st.number_input("Max Snap Distance (m)", min_value=50, value=DEFAULT_MAX_SNAP_DIST_M, step=50)
            prefilter_km = st.select_slider(
                "Straight-line Prefilter (km, 0 = off)", options=PREFILTER_OPTIONS_KM, value=DEFAULT_PREFILTER_RADIUS_KM
            )

        run_clicked = st.button("🚀 Calculate Catchments", type="primary")

    if not selected_areas:
        st.warning("Select at least one area.")
        return

    study_areas = areas_gdf[areas_gdf["AREA_CODE"].isin(selected_areas)]
    boundary = gpd.GeoDataFrame(geometry=[unary_union(list(study_areas.geometry))], crs=areas_gdf.crs)
    demand_in_study = demand_gdf[demand_gdf.geometry.intersects(boundary.geometry.iloc[0])]

    current_params = {
        "areas": tuple(selected_areas),
        "mode": travel_mode,
        "snap": int(max_snap),
        "prefilter": prefilter_km,
    }
    if st.session_state.last_params != current_params and not run_clicked:
        st.session_state.result = None

    col_map, col_insights = st.columns([7, 3], gap="large")

    with col_insights:
        st.subheader("📊 Summary Statistics")
        st.metric("Service Centres", f"{len(facilities_gdf):,}")
        st.metric("Demand Points", f"{len(demand_in_study):,}")

    if run_clicked:
        center = boundary.geometry.iloc[0].centroid
        pts = pd.concat([facilities_gdf[["latitude", "longitude"]], demand_in_study[["latitude", "longitude"]]])
        graph_dist_m = estimate_required_graph_dist_m(
            center.y, center.x, pts["latitude"], pts["longitude"],
            min_dist=MIN_GRAPH_DIST_M, buffer_m=GRAPH_BUFFER_M[travel_mode],
        )
        network_type = "walk" if travel_mode == "walk" else "drive"

        try:
            with st.spinner("Downloading or loading cached road network..."):
                segments, crs = get_street_segments(center.y, center.x, graph_dist_m, network_type)
            with st.spinner("Routing demand points to centres..."):
                settings = EngineSettings(
                    max_snap_dist_m=float(max_snap),
                    prefilter_radius_m=float(prefilter_km) * 1000.0 if prefilter_km else None,
                    workers=DEFAULT_WORKERS,
                )
                rates = rates_per_person(incidence or DEFAULT_INCIDENCE_PER_100K)
                st.session_state.result = run_analysis(
                    segments,
                    facilities_gdf,
                    demand_in_study,
                    boundary,
                    get_profile(travel_mode),
                    demographics=demographics if not demographics.empty else None,
                    incidence_rates=rates,
                    settings=settings,
                    crs=crs,
                )
                st.session_state.last_params = current_params
        except NetworkUnavailable as e:
            st.error(f"Network download failed: {e}")
            st.session_state.result = None
        except CatchmentError as e:
            st.error(f"Analysis failed: {e}")
            st.session_state.result = None

    result = st.session_state.result

    with col_map:
        st.subheader("🗺️ Map")
        m = create_map(boundary, facilities_gdf, demand_in_study, result=result)
        render_folium_map(m, key=f"map_{'done' if result is not None else 'base'}", height=640)

    if result is None:
        return

    diag = result.diagnostics
    with col_insights:
        st.metric("Disconnected Points", f"{diag.disconnected:,}")
        if diag.prefiltered:
            st.metric("Outside Prefilter Radius", f"{diag.prefiltered:,}")
        if diag.unsnappable:
            st.caption(f"{diag.unsnappable} points were beyond the snap distance.")
        if diag.shared_facility_vertices:
            st.warning(f"Centres sharing a network vertex: {diag.shared_facility_vertices}")
        st.caption(f"Travel mode: {result.profile.name} (cost in {result.profile.unit})")

    st.divider()
    st.subheader("📍 Caseload by Centre")

    table = result.caseload_frame()
    if table.empty:
        table = pd.DataFrame(
            {"facility_id": list(diag.points_per_facility), "points": list(diag.points_per_facility.values())}
        )
    else:
        table["cases"] = table["cases"].round(2)
        table["percentage"] = table["percentage"].round(1)
    st.dataframe(table, use_container_width=True, hide_index=True)

    st.subheader("📥 Export Results")
    c1, c2, c3 = st.columns(3)

    with c1:
        st.download_button(
            label="Download Caseload (CSV)",
            data=table.to_csv(index=False),
            file_name="caseload_by_centre.csv",
            mime="text/csv",
            key="caseload_download",
        )

    with c2:
        st.download_button(
            label="Download Assignments (CSV)",
            data=result.assignment_frame().to_csv(index=False),
            file_name="demand_assignments.csv",
            mime="text/csv",
            key="assignment_download",
        )

    with c3:
        catchments = result.catchments[~result.catchments.geometry.is_empty]
        st.download_button(
            label="Download Catchments (GeoJSON)",
            data=catchments.to_json(),
            file_name="catchments.geojson",
            mime="application/geo+json",
            key="geojson_download",
        )

if __name__ == "__main__":
    main()
