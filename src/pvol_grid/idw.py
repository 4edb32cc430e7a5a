"""
Inverse-distance-weighted rasterization of polar samples onto a lat/lon grid.
"""

import logging
from typing import Callable, Dict, NamedTuple, Optional

import numpy as np

from .errors import InvariantViolation, MalformedScan
from .geodesy import haversine_distance, project
from .parallel import fork_join
from .scan import (
    EFFECTIVE_EARTH_RADIUS,
    NODATA,
    Channel,
    GridSpec,
    PolarScan,
    Raster,
)

logger = logging.getLogger(__name__)

IDW_EPSILON = 0.01
MIN_SAMPLE_WEIGHT = 0.001  # contributions below this are not accumulated
COVERAGE_MARGIN = 1.05  # slack on the maximum ground range

Validity = Callable[[np.ndarray], np.ndarray]


def idw_weight(distance):
    """w(d) = 1 / (d^1.5 + eps), with d in pixel units."""
    return 1.0 / (np.power(distance, 1.5) + IDW_EPSILON)


def not_nan(values: np.ndarray) -> np.ndarray:
    return ~np.isnan(values)


class _Accumulator(NamedTuple):
    value: np.ndarray   # sum of value * weight
    weight: np.ndarray  # sum of weight
    count: np.ndarray   # number of contributing samples
    center_lat: np.ndarray  # first sample landing in the pixel, NaN if none
    center_lon: np.ndarray

    @classmethod
    def zeros(cls, n_pixels: int) -> "_Accumulator":
        return cls(
            np.zeros(n_pixels, dtype='float64'),
            np.zeros(n_pixels, dtype='float64'),
            np.zeros(n_pixels, dtype='int64'),
            np.full(n_pixels, np.nan, dtype='float64'),
            np.full(n_pixels, np.nan, dtype='float64'),
        )


def _merge(acc: _Accumulator, part: _Accumulator) -> _Accumulator:
    # Earlier chunks hold earlier rays, so existing centers win
    unset = np.isnan(acc.center_lat) & ~np.isnan(part.center_lat)
    acc.center_lat[unset] = part.center_lat[unset]
    acc.center_lon[unset] = part.center_lon[unset]
    return _Accumulator(
        acc.value + part.value,
        acc.weight + part.weight,
        acc.count + part.count,
        acc.center_lat,
        acc.center_lon,
    )


def _splat_rays(scan: PolarScan, data: np.ndarray, grid: GridSpec, rays: np.ndarray,
                is_valid: Validity, max_distance: float) -> _Accumulator:
    """Accumulate the samples of a block of rays into private buffers."""
    width, height = grid.width, grid.height
    n_pixels = width * height
    acc = _Accumulator.zeros(n_pixels)

    # Small-angle linearization around the site on the 4/3 Earth
    cos_el = np.cos(np.deg2rad(scan.elevation_angle))
    deg_per_m_lat = np.rad2deg(1.0 / EFFECTIVE_EARTH_RADIUS)
    deg_per_m_lon = np.rad2deg(1.0 / (EFFECTIVE_EARTH_RADIUS * np.cos(np.deg2rad(scan.latitude))))

    az = np.deg2rad(scan.azimuths[rays])[:, np.newaxis]
    r = scan.range_start + np.arange(scan.n_bins) * scan.range_scale
    g = cos_el * r[np.newaxis, :]
    lat = (scan.latitude + g * np.cos(az) * deg_per_m_lat).ravel()
    lon = (scan.longitude + g * np.sin(az) * deg_per_m_lon).ravel()
    values = data[rays].astype('float64').ravel()
    valid = np.asarray(is_valid(values), dtype=bool)

    pyf = (grid.lat_max - lat) / grid.lat_res
    pxf = (lon - grid.lon_min) / grid.lon_res
    pxi = np.floor(pxf).astype('int64')
    pyi = np.floor(pyf).astype('int64')

    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            px = pxi + dx
            py = pyi + dy
            distance = np.hypot(pxf - px, pyf - py)
            weight = idw_weight(distance)
            inside = (
                (distance <= max_distance)
                & (px >= 0) & (px < width) & (py >= 0) & (py < height)
            )

            if dx == 0 and dy == 0:
                flat = py[inside] * width + px[inside]
                pixels, first = np.unique(flat, return_index=True)
                acc.center_lat[pixels] = lat[inside][first]
                acc.center_lon[pixels] = lon[inside][first]

            use = inside & valid & (weight > MIN_SAMPLE_WEIGHT)
            if not use.any():
                continue
            flat = py[use] * width + px[use]
            w = weight[use]
            acc.value[:] += np.bincount(flat, weights=values[use] * w, minlength=n_pixels)
            acc.weight[:] += np.bincount(flat, weights=w, minlength=n_pixels)
            acc.count[:] += np.bincount(flat, minlength=n_pixels)

    return acc


def rasterize(
    scan: PolarScan,
    data: np.ndarray,
    grid: Optional[GridSpec] = None,
    is_valid: Optional[Validity] = None,
    max_distance: float = 2.0,
    min_weight: float = 0.01,
    min_valid_count: int = 2,
    n_workers: Optional[int] = None,
) -> Raster:
    """
    Interpolate one channel grid of a scan onto a uniform lat/lon raster.

    Every sample is placed with a fast local linearization and splatted
    into the 3x3 pixel neighbourhood around it with IDW weights. Pixels are
    then classified:

    1. outside the scan's geodetic bounding box, or further from the site
       than 1.05 x the maximum ground range: ``NODATA``
    2. too little weight or too few contributing samples: NaN
    3. otherwise the weighted mean

    Parameters
    ----------
    scan : PolarScan
        Scan providing the site geometry and azimuths
    data : np.ndarray
        Channel values (raw or filtered), shape (n_rays, n_bins)
    grid : GridSpec, optional
        Target raster. Default: +/- 300 km around the site at 1500x1500.
    is_valid : callable, optional
        Vectorized predicate selecting samples to accumulate.
        Default: not NaN.
    max_distance : float, optional
        Neighbours farther than this (in pixels) are skipped (default: 2.0)
    min_weight : float, optional
        Minimum accumulated weight for a valid pixel (default: 0.01)
    min_valid_count : int, optional
        Minimum number of contributing samples (default: 2)
    n_workers : int, optional
        Worker threads for the per-ray loop (default: cpu_count() - 1)

    Returns
    -------
    Raster
        float32 values with per-pixel latitude/longitude, accumulated
        weights and contribution counts

    Raises
    ------
    MalformedScan
        If the scan has zero rays or bins
    InvariantViolation
        If ``data`` does not match the scan dimensions
    """
    if not scan.has_data:
        raise MalformedScan(f"Cannot rasterize {scan!r}: no rays or bins")
    data = np.asarray(data)
    if data.shape != (scan.n_rays, scan.n_bins):
        raise InvariantViolation(
            f"Data shape {data.shape} does not match scan ({scan.n_rays}, {scan.n_bins})"
        )
    if grid is None:
        grid = GridSpec.default_for(scan.latitude, scan.longitude)
    if is_valid is None:
        is_valid = not_nan

    n_pixels = grid.width * grid.height
    acc = fork_join(
        lambda rays: _splat_rays(scan, data, grid, rays, is_valid, max_distance),
        scan.n_rays,
        _merge,
        _Accumulator.zeros(n_pixels),
        n_workers=n_workers,
    )

    # Pixel position: first sample center if one landed there, else cell center
    grid_lat, grid_lon = grid.pixel_centers()
    has_center = ~np.isnan(acc.center_lat)
    pixel_lat = np.where(has_center, acc.center_lat, grid_lat.ravel())
    pixel_lon = np.where(has_center, acc.center_lon, grid_lon.ravel())

    bbox = project(scan, n_workers=n_workers).bbox
    max_range = scan.max_ground_range
    outside = ~bbox.contains(pixel_lat, pixel_lon)
    outside |= haversine_distance(scan.latitude, scan.longitude, pixel_lat, pixel_lon) > max_range * COVERAGE_MARGIN

    enough = (acc.weight >= min_weight) & (acc.count >= min_valid_count) & (acc.weight > 0)
    value = np.full(n_pixels, np.nan, dtype='float64')
    averaged = ~outside & enough
    value[averaged] = acc.value[averaged] / acc.weight[averaged]
    value[outside] = NODATA

    logger.debug(
        f"Rasterized {scan.n_rays}x{scan.n_bins} onto {grid.width}x{grid.height}: "
        f"{int(averaged.sum()):,} valid, {int(outside.sum()):,} outside coverage"
    )

    shape = grid.shape
    return Raster(
        value=value.astype('float32').reshape(shape),
        latitude=pixel_lat.astype('float32').reshape(shape),
        longitude=pixel_lon.astype('float32').reshape(shape),
        grid=grid,
        weights=acc.weight.reshape(shape),
        counts=acc.count.reshape(shape),
    )


def rasterize_multi(
    scan: PolarScan,
    channels: Dict[Channel, np.ndarray],
    grid: Optional[GridSpec] = None,
    **kwargs,
) -> Dict[Channel, Raster]:
    """
    Rasterize several channel grids of the same scan onto one grid.

    Parameters
    ----------
    scan : PolarScan
        Scan providing the geometry
    channels : dict
        {Channel: data} with each data of shape (n_rays, n_bins)
    grid : GridSpec, optional
        Shared target raster
    **kwargs
        Forwarded to ``rasterize``

    Returns
    -------
    dict
        {Channel: Raster}
    """
    if grid is None:
        grid = GridSpec.default_for(scan.latitude, scan.longitude)
    return {c: rasterize(scan, data, grid, **kwargs) for c, data in channels.items()}
