"""
Configuration file for the Catchment Analysis Tool
Copy this file and modify the paths to match your data location
"""

from pathlib import Path

# ===========================
# DATA PATHS
# ===========================

# Path to your JSON data file
JSON_PATH = Path("catchment_app_data.json")

# Key mappings for your JSON structure
JSON_KEY_MAPPING = {
    'area_boundaries': 'areas',
    'facilities': 'facilities',
    'demand_points': 'demand',
    'demographics': 'demographics',
    'incidence_rates': 'incidence_per_100k',
}

# ===========================
# ANALYSIS DEFAULTS
# ===========================

DEFAULT_TRAVEL_MODE = 'drive'
DEFAULT_MAX_SNAP_DIST_M = 2000
DEFAULT_PREFILTER_RADIUS_KM = 0  # 0 disables the straight-line prefilter
DEFAULT_WORKERS = 4

# Network download radius
MIN_GRAPH_DIST_M = 15000
GRAPH_BUFFER_M = {'drive': 5000, 'walk': 2000, 'distance': 5000}

# ===========================
# MAP SETTINGS
# ===========================

DEFAULT_ZOOM = 11
MAP_TILES = 'CartoDB positron'

CATCHMENT_COLORS = [
    '#1f77b4', '#ff7f0e', '#2ca02c', '#d62728', '#9467bd',
    '#8c564b', '#e377c2', '#7f7f7f', '#bcbd22', '#17becf',
]
DISCONNECTED_COLOR = '#555555'

# ===========================
# UI SETTINGS
# ===========================

PREFILTER_OPTIONS_KM = [0, 10, 25, 50, 100]
