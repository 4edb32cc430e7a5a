"""
Constants for channel definitions, display thresholds, cache keys and events.
"""
from pvol_grid.scan import Channel

# ODIM dataset group holding each moment in the instrument's files
CHANNEL_DATASETS = {
    Channel.TOTAL_POWER: "data1",
    Channel.REFLECTIVITY: "data2",
    Channel.RADIAL_VELOCITY: "data3",
    Channel.SPECTRAL_WIDTH: "data4",
}

# Fixed display ranges so colour scales are comparable between images
CHANNEL_THRESHOLDS = {
    Channel.REFLECTIVITY: {"vmin": -32.0, "vmax": 75.0, "cmap": "jet"},
    Channel.RADIAL_VELOCITY: {"vmin": -64.0, "vmax": 64.0, "cmap": "RdBu_r"},
    Channel.SPECTRAL_WIDTH: {"vmin": 0.0, "vmax": 16.0, "cmap": "Oranges"},
    Channel.TOTAL_POWER: {"vmin": 0.0, "vmax": 100.0, "cmap": "jet"},
}

# Scans within this many degrees are the same tilt
ELEVATION_TOLERANCE = 0.5

# Files within this many seconds belong to the same volume
TIMESTAMP_TOLERANCE_S = 1.0

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"
FILENAME_TIMESTAMP_PATTERN = r"EWR(\d{12})"

IMAGE_KEY_PREFIX = "radar:image:"
PVOL_KEY_PREFIX = "radar:pvol:"
PVOL_LIST_KEY = "radar:pvols:list"
DEFAULT_CACHE_TTL_S = 24 * 60 * 60

# Notification events
IMAGE_AVAILABLE = "ImageAvailable"
PVOL_PROCESSED = "PVOLProcessed"
