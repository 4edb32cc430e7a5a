"""
Data model for single-elevation polar scans and the rasters built from them.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

import numpy as np

from .errors import InvariantViolation

NODATA = -9999.0  # outside radar coverage, distinct from NaN (no valid sample)
EARTH_RADIUS = 6371000.0  # Earth's radius in meters
EFFECTIVE_RADIUS_FACTOR = 4.0 / 3.0  # Standard refraction (4/3 Earth model)
EFFECTIVE_EARTH_RADIUS = EARTH_RADIUS * EFFECTIVE_RADIUS_FACTOR

# Default raster: +/- 300 km around the site, coarse degrees-per-meter conversion
DEFAULT_SPAN_DEG = 300000.0 / 111000.0
DEFAULT_GRID_SIZE = 1500


class Channel(Enum):
    """Radar moments carried by each scan, valued by their ODIM quantity name."""

    TOTAL_POWER = "TH"
    REFLECTIVITY = "DBZH"
    RADIAL_VELOCITY = "VRADH"
    SPECTRAL_WIDTH = "WRADH"

    @classmethod
    def parse(cls, name: str) -> "Channel":
        """Resolve a channel from its member name or ODIM quantity (case-insensitive)."""
        key = name.strip().upper()
        for channel in cls:
            if key in (channel.name, channel.value):
                return channel
        raise ValueError(f"Unknown channel: {name!r}")


@dataclass(frozen=True)
class BoundingBox:
    """Lat/lon extent of a scan's projected gates, in degrees."""

    lat_min: float
    lat_max: float
    lon_min: float
    lon_max: float

    @classmethod
    def empty(cls) -> "BoundingBox":
        return cls(np.nan, np.nan, np.nan, np.nan)

    @property
    def is_empty(self) -> bool:
        return bool(np.isnan([self.lat_min, self.lat_max, self.lon_min, self.lon_max]).any())

    def merge(self, other: "BoundingBox") -> "BoundingBox":
        if self.is_empty:
            return other
        if other.is_empty:
            return self
        return BoundingBox(
            min(self.lat_min, other.lat_min),
            max(self.lat_max, other.lat_max),
            min(self.lon_min, other.lon_min),
            max(self.lon_max, other.lon_max),
        )

    def contains(self, lat, lon):
        """Vectorized inclusive containment test."""
        lat = np.asarray(lat)
        lon = np.asarray(lon)
        return (
            (lat >= self.lat_min) & (lat <= self.lat_max)
            & (lon >= self.lon_min) & (lon <= self.lon_max)
        )


@dataclass(frozen=True)
class GeodeticField:
    """
    Per-gate geodetic coordinates of one scan.

    Attributes
    ----------
    latitude, longitude : np.ndarray
        Degrees, shape (n_rays, n_bins)
    height : np.ndarray
        Beam height above the radar in meters, shape (n_rays, n_bins)
    bbox : BoundingBox
        Min/max of the projected latitude and longitude
    """

    latitude: np.ndarray
    longitude: np.ndarray
    height: np.ndarray
    bbox: BoundingBox


@dataclass(frozen=True)
class GridSpec:
    """
    Uniform lat/lon raster description.

    Row 0 is the northern edge (``lat_max``) and column 0 the western
    edge (``lon_min``).
    """

    lon_min: float
    lon_max: float
    lat_min: float
    lat_max: float
    width: int
    height: int

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Grid dimensions must be positive, got {self.width}x{self.height}")

    @property
    def lon_res(self) -> float:
        return (self.lon_max - self.lon_min) / self.width

    @property
    def lat_res(self) -> float:
        return (self.lat_max - self.lat_min) / self.height

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.height, self.width)

    @classmethod
    def default_for(cls, latitude: float, longitude: float,
                    size: int = DEFAULT_GRID_SIZE) -> "GridSpec":
        """Square grid of roughly +/- 300 km around a radar site."""
        span = DEFAULT_SPAN_DEG
        return cls(longitude - span, longitude + span, latitude - span, latitude + span, size, size)

    @classmethod
    def from_bounds(cls, bbox: BoundingBox, width: int, height: int) -> "GridSpec":
        """Grid covering exactly the projected extent of a scan."""
        if bbox.is_empty:
            raise ValueError("Cannot build a grid from an empty bounding box")
        return cls(bbox.lon_min, bbox.lon_max, bbox.lat_min, bbox.lat_max, width, height)

    def pixel_centers(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Geocoded centers of every pixel.

        Returns
        -------
        latitude, longitude : np.ndarray
            Each of shape (height, width); latitude decreases down the rows,
            longitude increases along the columns.
        """
        lons = self.lon_min + (np.arange(self.width) + 0.5) * self.lon_res
        lats = self.lat_max - (np.arange(self.height) + 0.5) * self.lat_res
        lat2d, lon2d = np.meshgrid(lats, lons, indexing='ij')
        return lat2d, lon2d


@dataclass(frozen=True)
class Raster:
    """
    Result of rasterizing one channel of one scan.

    ``value`` holds the interpolated field with three classes of pixels:
    ``NODATA`` outside radar coverage, NaN inside coverage without enough
    samples, and finite averages elsewhere.
    """

    value: np.ndarray
    latitude: np.ndarray
    longitude: np.ndarray
    grid: GridSpec
    weights: Optional[np.ndarray] = None
    counts: Optional[np.ndarray] = None

    @property
    def outside_coverage(self) -> np.ndarray:
        return self.value == NODATA

    @property
    def no_data(self) -> np.ndarray:
        return np.isnan(self.value)

    @property
    def valid(self) -> np.ndarray:
        return ~self.no_data & ~self.outside_coverage


@dataclass(frozen=True)
class ScanMetadata:
    """Scan attributes without the sample arrays."""

    timestamp: datetime
    elevation_angle: float
    n_rays: int
    n_bins: int
    latitude: float
    longitude: float
    height: float
    range_scale: float
    range_start: float

    @property
    def has_data(self) -> bool:
        return self.n_rays > 0 and self.n_bins > 0


@dataclass(eq=False)
class PolarScan:
    """
    One elevation sweep of polar samples.

    Attributes
    ----------
    timestamp : datetime
        Nominal scan time
    latitude, longitude : float
        Radar site in degrees
    height : float
        Radar site altitude in meters
    elevation_angle : float
        Antenna elevation in degrees
    n_rays, n_bins : int
        Azimuth and range dimensions of every channel grid
    range_scale : float
        Bin length in meters
    range_start : float
        Range of the first bin's leading edge in meters
    azimuths : np.ndarray
        Ray azimuths in degrees, shape (n_rays,)
    raw : dict
        {Channel: float32 array of shape (n_rays, n_bins)}. NaN marks missing
        samples.
    source : str, optional
        Path of the file the scan was read from

    Notes
    -----
    Channel grids are stored read-only; use ``channel()`` to get a writable
    copy for filtering.
    """

    timestamp: datetime
    latitude: float
    longitude: float
    height: float
    elevation_angle: float
    n_rays: int
    n_bins: int
    range_scale: float
    range_start: float
    azimuths: np.ndarray
    raw: Dict[Channel, np.ndarray]
    source: Optional[str] = None
    _geodetic: Optional[GeodeticField] = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _closed: bool = field(default=False, init=False, repr=False)

    def __post_init__(self):
        self.azimuths = np.asarray(self.azimuths, dtype='float64')
        if self.azimuths.shape != (self.n_rays,):
            raise InvariantViolation(
                f"Expected {self.n_rays} azimuths, got shape {self.azimuths.shape}"
            )
        frozen = {}
        for channel, grid in self.raw.items():
            grid = np.asarray(grid, dtype='float32')
            if grid.shape != (self.n_rays, self.n_bins):
                raise InvariantViolation(
                    f"{channel.name} grid has shape {grid.shape}, "
                    f"expected ({self.n_rays}, {self.n_bins})"
                )
            grid.flags.writeable = False
            frozen[channel] = grid
        self.raw = frozen

    @property
    def has_data(self) -> bool:
        return self.n_rays > 0 and self.n_bins > 0

    @property
    def channels(self):
        return list(self.raw)

    def channel(self, channel: Channel) -> np.ndarray:
        """Writable float32 copy of one channel grid."""
        if self._closed:
            raise ValueError("Scan is closed")
        return np.array(self.raw[channel], dtype='float32', copy=True)

    def slant_range(self) -> np.ndarray:
        """Range to the center of every bin in meters, shape (n_bins,)."""
        return self.range_start + np.arange(self.n_bins) * self.range_scale + self.range_scale / 2.0

    def ground_range(self) -> np.ndarray:
        """Bin-center slant range projected with cos(elevation), shape (n_bins,)."""
        return self.slant_range() * np.cos(np.deg2rad(self.elevation_angle))

    @property
    def max_ground_range(self) -> float:
        if self.n_bins == 0:
            return 0.0
        return float(self.ground_range()[-1])

    def geodetic(self, n_workers: Optional[int] = None) -> GeodeticField:
        """Geodetic coordinates of every gate, computed once and cached."""
        from .geodesy import project
        return project(self, n_workers=n_workers)

    def metadata(self) -> ScanMetadata:
        return ScanMetadata(
            timestamp=self.timestamp,
            elevation_angle=self.elevation_angle,
            n_rays=self.n_rays,
            n_bins=self.n_bins,
            latitude=self.latitude,
            longitude=self.longitude,
            height=self.height,
            range_scale=self.range_scale,
            range_start=self.range_start,
        )

    def close(self) -> None:
        """Release the sample arrays and the cached geodetic field."""
        with self._lock:
            self._closed = True
            self._geodetic = None
            self.raw = {}

    def __enter__(self) -> "PolarScan":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"PolarScan({self.timestamp:%Y-%m-%d %H:%M:%S}, "
            f"elevation={self.elevation_angle:.2f}, "
            f"rays={self.n_rays}, bins={self.n_bins}, "
            f"channels={[c.name for c in self.raw]})"
        )
