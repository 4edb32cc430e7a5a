"""
Pytest configuration and fixtures.
"""
from datetime import datetime

import h5py
import numpy as np
import pytest

from pvol_grid.scan import Channel, PolarScan

SCAN_TIME = datetime(2024, 3, 15, 12, 30, 0)


def build_scan(n_rays=36, n_bins=50, value=10.0, latitude=40.0, longitude=-90.0,
               elevation=0.5, range_scale=1000.0, range_start=0.0,
               timestamp=SCAN_TIME, azimuths=None, channels=None, height=100.0):
    """Synthetic scan with every channel filled with ``value`` unless given."""
    if azimuths is None:
        azimuths = np.arange(n_rays) * (360.0 / n_rays) if n_rays else np.empty(0)
    raw = {c: np.full((n_rays, n_bins), value, dtype=np.float32) for c in Channel}
    if channels:
        raw.update(channels)
    return PolarScan(
        timestamp=timestamp,
        latitude=latitude,
        longitude=longitude,
        height=height,
        elevation_angle=elevation,
        n_rays=n_rays,
        n_bins=n_bins,
        range_scale=range_scale,
        range_start=range_start,
        azimuths=azimuths,
        raw=raw,
    )


def write_odim(path, timestamp=SCAN_TIME, elevation=0.5, n_rays=36, n_bins=50,
               latitude=40.0, longitude=-90.0, rscale=1000.0, rstart_km=0.0,
               gain=0.5, offset=-32.0, raw_value=100, nodata=255, undetect=0,
               with_azimuths=True, data_shape=None, dimension_attrs=True):
    """Write a minimal single-sweep ODIM HDF5 file."""
    shape = data_shape or (n_rays, n_bins)
    with h5py.File(path, "w") as f:
        what = f.create_group("what")
        what.attrs["date"] = np.bytes_(timestamp.strftime("%Y%m%d"))
        what.attrs["time"] = np.bytes_(timestamp.strftime("%H%M%S"))
        where = f.create_group("where")
        where.attrs["lat"] = latitude
        where.attrs["lon"] = longitude
        where.attrs["height"] = 100.0

        ds = f.create_group("dataset1")
        ds_where = ds.create_group("where")
        ds_where.attrs["elangle"] = elevation
        ds_where.attrs["rscale"] = rscale
        ds_where.attrs["rstart"] = rstart_km
        if dimension_attrs:
            ds_where.attrs["nrays"] = n_rays
            ds_where.attrs["nbins"] = n_bins

        if with_azimuths and n_rays:
            how = ds.create_group("how")
            start = np.arange(n_rays) * (360.0 / n_rays)
            how.attrs["startazA"] = start
            how.attrs["stopazA"] = np.mod(start + 360.0 / n_rays, 360.0)

        for i in range(1, 5):
            group = ds.create_group(f"data{i}")
            group.create_dataset("data", data=np.full(shape, raw_value, dtype=np.uint8))
            gwhat = group.create_group("what")
            gwhat.attrs["gain"] = gain
            gwhat.attrs["offset"] = offset
            gwhat.attrs["nodata"] = float(nodata)
            gwhat.attrs["undetect"] = float(undetect)
    return path


def odim_name(timestamp, elevation):
    return f"EWR{timestamp:%y%m%d%H%M%S}_{elevation:04.1f}.h5"


@pytest.fixture
def make_scan():
    """Factory for synthetic PolarScans."""
    return build_scan


@pytest.fixture
def odim_file(tmp_path):
    """Factory writing ODIM files into a temporary directory."""
    def _write(name="scan.h5", **kwargs):
        return write_odim(tmp_path / name, **kwargs)
    return _write


@pytest.fixture
def archive_dir(tmp_path):
    """Archive with two volumes of three elevations each."""
    archive = tmp_path / "archive"
    archive.mkdir()
    for t in (SCAN_TIME, datetime(2024, 3, 15, 12, 35, 0)):
        for elevation in (0.5, 1.5, 2.5):
            write_odim(archive / odim_name(t, elevation), timestamp=t, elevation=elevation,
                       n_rays=12, n_bins=10)
    return archive
