"""
Geodetic projection of polar gates.

Uses spherical trigonometry on the Earth radius to place each (ray, bin)
gate at a latitude/longitude and beam height. The projection is exact with
respect to the sphere and is what coverage bounds are derived from; the
rasterizer uses its own faster local linearization.
"""

import logging
from typing import NamedTuple, Optional, Tuple

import numpy as np

from .parallel import fork_join
from .scan import EARTH_RADIUS, BoundingBox, GeodeticField, PolarScan

logger = logging.getLogger(__name__)

TWO_PI = 2.0 * np.pi


def normalize_longitude(lon):
    """
    Wrap angles in radians into (-pi, pi].

    Uses a true modulo rather than a single +/- 2*pi correction, so any
    input (including multiples of 2*pi) lands in range.
    """
    lon = np.asarray(lon, dtype='float64')
    wrapped = np.pi - np.mod(np.pi - lon, TWO_PI)
    # mod can round up to exactly 2*pi for tiny negative arguments
    wrapped = np.where(wrapped <= -np.pi, wrapped + TWO_PI, wrapped)
    if wrapped.ndim == 0:
        return float(wrapped)
    return wrapped


def haversine_distance(lat1, lon1, lat2, lon2, radius: float = EARTH_RADIUS):
    """
    Great-circle distance in meters between points given in degrees.

    Vectorized over any broadcastable inputs.
    """
    lat1 = np.deg2rad(lat1)
    lat2 = np.deg2rad(lat2)
    dlat = lat2 - lat1
    dlon = np.deg2rad(lon2) - np.deg2rad(lon1)
    a = np.sin(dlat / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2) ** 2
    a = np.clip(a, 0.0, 1.0)
    return radius * 2.0 * np.arctan2(np.sqrt(a), np.sqrt(1.0 - a))


class _RayBlock(NamedTuple):
    rays: np.ndarray
    latitude: np.ndarray
    longitude: np.ndarray
    height: np.ndarray
    bbox: BoundingBox


def _project_rays(scan: PolarScan, ground_range: np.ndarray, rays: np.ndarray,
                  radius: float) -> _RayBlock:
    lat0 = np.deg2rad(scan.latitude)
    lon0 = np.deg2rad(scan.longitude)
    sin_lat0, cos_lat0 = np.sin(lat0), np.cos(lat0)
    el = np.deg2rad(scan.elevation_angle)
    sin_el, cos_el = np.sin(el), np.cos(el)

    az = np.deg2rad(scan.azimuths[rays])[:, np.newaxis]
    sin_az, cos_az = np.sin(az), np.cos(az)
    r = ground_range[np.newaxis, :]

    # Beam height above the radar, then the surface arc it subtends
    h = np.sqrt(r * r + radius * radius + 2.0 * r * radius * sin_el) - radius
    s = radius * np.arcsin(np.clip(r * cos_el / (radius + h), -1.0, 1.0))
    sigma = s / radius

    lat = np.arcsin(np.clip(sin_lat0 * np.cos(sigma) + cos_lat0 * np.sin(sigma) * cos_az, -1.0, 1.0))
    lon = lon0 + np.arctan2(sin_az * np.sin(sigma) * cos_lat0, np.cos(sigma) - sin_lat0 * np.sin(lat))
    lon = normalize_longitude(lon)

    lat_deg = np.rad2deg(lat)
    lon_deg = np.rad2deg(lon)
    h = np.broadcast_to(h, lat_deg.shape)
    bbox = BoundingBox(
        float(lat_deg.min()), float(lat_deg.max()),
        float(lon_deg.min()), float(lon_deg.max()),
    )
    return _RayBlock(rays, lat_deg, lon_deg, np.array(h), bbox)


def compute_geodetic_field(scan: PolarScan, n_workers: Optional[int] = None,
                           radius: float = EARTH_RADIUS) -> GeodeticField:
    """
    Project every gate of a scan to latitude, longitude and beam height.

    Parameters
    ----------
    scan : PolarScan
        Scan to project
    n_workers : int, optional
        Worker threads for the per-ray loop (default: cpu_count() - 1)
    radius : float, optional
        Sphere radius in meters (default: 6371000.0)

    Returns
    -------
    GeodeticField
        Coordinate arrays of shape (n_rays, n_bins) and their bounding box.
        Zero-dimension scans produce empty arrays and an empty box.
    """
    shape = (scan.n_rays, scan.n_bins)
    if not scan.has_data:
        empty = np.empty(shape, dtype='float64')
        return GeodeticField(empty, empty.copy(), empty.copy(), BoundingBox.empty())

    ground_range = scan.ground_range()

    def fold(acc, block: _RayBlock):
        blocks, bbox = acc
        blocks.append(block)
        return blocks, bbox.merge(block.bbox)

    blocks, bbox = fork_join(
        lambda rays: _project_rays(scan, ground_range, rays, radius),
        scan.n_rays,
        fold,
        ([], BoundingBox.empty()),
        n_workers=n_workers,
    )

    latitude = np.concatenate([b.latitude for b in blocks], axis=0)
    longitude = np.concatenate([b.longitude for b in blocks], axis=0)
    height = np.concatenate([b.height for b in blocks], axis=0)
    for arr in (latitude, longitude, height):
        arr.flags.writeable = False

    logger.debug(
        f"Projected {scan.n_rays}x{scan.n_bins} gates: "
        f"lat [{bbox.lat_min:.4f}, {bbox.lat_max:.4f}], lon [{bbox.lon_min:.4f}, {bbox.lon_max:.4f}]"
    )
    return GeodeticField(latitude, longitude, height, bbox)


def project(scan: PolarScan, n_workers: Optional[int] = None) -> GeodeticField:
    """
    Geodetic field of a scan, computed on first use and cached on the scan.

    Concurrent first calls compute the field once; later calls return the
    cached object.
    """
    with scan._lock:
        if scan._geodetic is None:
            scan._geodetic = compute_geodetic_field(scan, n_workers=n_workers)
        return scan._geodetic


def nearest_gate(geodetic: GeodeticField, latitude: float, longitude: float) -> Optional[Tuple[int, int]]:
    """
    (ray, bin) of the gate closest to a point, by planar distance in degrees.

    Returns None for an empty field.
    """
    if geodetic.latitude.size == 0:
        return None
    d2 = (geodetic.latitude - latitude) ** 2 + (geodetic.longitude - longitude) ** 2
    ray, bin_ = np.unravel_index(int(np.argmin(d2)), d2.shape)
    return int(ray), int(bin_)
