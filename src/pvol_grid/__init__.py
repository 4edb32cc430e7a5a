"""
pvol_grid - Geocoding, filtering and rasterization of polar radar scans
"""

from .errors import InvariantViolation, MalformedScan
from .scan import (
    NODATA,
    EARTH_RADIUS,
    EFFECTIVE_RADIUS_FACTOR,
    EFFECTIVE_EARTH_RADIUS,
    BoundingBox,
    Channel,
    GeodeticField,
    GridSpec,
    PolarScan,
    Raster,
    ScanMetadata,
)
from .geodesy import (
    compute_geodetic_field,
    project,
    normalize_longitude,
    haversine_distance,
    nearest_gate,
)
from .filters import (
    RadarFilter,
    FilterPipeline,
    Median3RaysFilter,
    Median5BinsFilter,
    ThresholdFilter,
    GateClutterFilter,
    SpeckleRemovalFilter,
    GaussianFilter,
    label_components,
)
from .idw import rasterize, rasterize_multi, idw_weight
from .parallel import fork_join, default_workers

__version__ = "0.1.0"

__all__ = [
    # Data model
    "NODATA",
    "EARTH_RADIUS",
    "EFFECTIVE_RADIUS_FACTOR",
    "EFFECTIVE_EARTH_RADIUS",
    "BoundingBox",
    "Channel",
    "GeodeticField",
    "GridSpec",
    "PolarScan",
    "Raster",
    "ScanMetadata",
    # Errors
    "InvariantViolation",
    "MalformedScan",
    # Projection
    "compute_geodetic_field",
    "project",
    "normalize_longitude",
    "haversine_distance",
    "nearest_gate",
    # Filters
    "RadarFilter",
    "FilterPipeline",
    "Median3RaysFilter",
    "Median5BinsFilter",
    "ThresholdFilter",
    "GateClutterFilter",
    "SpeckleRemovalFilter",
    "GaussianFilter",
    "label_components",
    # Rasterization
    "rasterize",
    "rasterize_multi",
    "idw_weight",
    # Parallelism
    "fork_join",
    "default_workers",
]
