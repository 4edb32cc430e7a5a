"""
ODIM HDF5 reader for single-elevation polar scans.

Each file holds one sweep under ``/dataset1`` with the moments in
``data1`` .. ``data4``. Attributes are decoded field by field into
``AttributeResult`` values so a missing or mistyped attribute is reported
by name instead of silently defaulting.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Tuple, Union

import h5py
import numpy as np

from pvol_grid.scan import PolarScan, ScanMetadata

from .constants import CHANNEL_DATASETS
from .errors import ScanReadError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class AttributeFailure(Enum):
    MISSING_ATTRIBUTE = "missing attribute"
    TYPE_MISMATCH = "type mismatch"


@dataclass(frozen=True)
class AttributeResult:
    """Outcome of decoding one HDF5 attribute: a value or a named failure."""

    name: str
    value: Any = None
    failure: Optional[AttributeFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    def unwrap(self):
        """The decoded value; raises ScanReadError on failure."""
        if self.failure is not None:
            raise ScanReadError(f"{self.name}: {self.failure.value}")
        return self.value

    def value_or(self, default):
        return self.value if self.failure is None else default


def _raw_attribute(obj, name: str) -> Tuple[Any, Optional[AttributeFailure]]:
    if obj is None or name not in obj.attrs:
        return None, AttributeFailure.MISSING_ATTRIBUTE
    return obj.attrs[name], None


def _label(obj, name: str) -> str:
    return f"{getattr(obj, 'name', '?')}/{name}"


def read_float(obj, name: str) -> AttributeResult:
    raw, failure = _raw_attribute(obj, name)
    if failure:
        return AttributeResult(_label(obj, name), failure=failure)
    arr = np.asarray(raw)
    if arr.size != 1 or arr.dtype.kind not in "fiu":
        return AttributeResult(_label(obj, name), failure=AttributeFailure.TYPE_MISMATCH)
    return AttributeResult(_label(obj, name), float(arr.ravel()[0]))


def read_int(obj, name: str) -> AttributeResult:
    result = read_float(obj, name)
    if not result.ok:
        return result
    return AttributeResult(result.name, int(round(result.value)))


def read_str(obj, name: str) -> AttributeResult:
    raw, failure = _raw_attribute(obj, name)
    if failure:
        return AttributeResult(_label(obj, name), failure=failure)
    if isinstance(raw, np.ndarray) and raw.size == 1:
        raw = raw.ravel()[0]
    if isinstance(raw, (bytes, np.bytes_)):
        return AttributeResult(_label(obj, name), raw.decode("ascii", errors="replace").strip("\x00 "))
    if isinstance(raw, str):
        return AttributeResult(_label(obj, name), raw.strip("\x00 "))
    return AttributeResult(_label(obj, name), failure=AttributeFailure.TYPE_MISMATCH)


def read_float_array(obj, name: str) -> AttributeResult:
    raw, failure = _raw_attribute(obj, name)
    if failure:
        return AttributeResult(_label(obj, name), failure=failure)
    arr = np.atleast_1d(np.asarray(raw))
    if arr.dtype.kind not in "fiu":
        return AttributeResult(_label(obj, name), failure=AttributeFailure.TYPE_MISMATCH)
    return AttributeResult(_label(obj, name), arr.astype('float64'))


def _group(parent, path: str):
    obj = parent.get(path)
    return obj if isinstance(obj, h5py.Group) else None


def _read_timestamp(f: h5py.File) -> datetime:
    what = _group(f, "what")
    date = read_str(what, "date").unwrap()
    time = read_str(what, "time").unwrap()
    try:
        return datetime.strptime(f"{date}{time}", "%Y%m%d%H%M%S")
    except ValueError as e:
        raise ScanReadError(f"Invalid scan time {date!r} {time!r}") from e


def _read_dimensions(dataset) -> Tuple[int, int]:
    where = _group(dataset, "where")
    n_rays = read_int(where, "nrays").value_or(0)
    n_bins = read_int(where, "nbins").value_or(0)
    if n_rays > 0 and n_bins > 0:
        return n_rays, n_bins

    # Fall back to the shape of the first moment array
    first = dataset.get(f"{CHANNEL_DATASETS[next(iter(CHANNEL_DATASETS))]}/data")
    if isinstance(first, h5py.Dataset) and first.ndim == 2:
        logger.debug(f"Dimensions taken from data array {first.shape}")
        return int(first.shape[0]), int(first.shape[1])
    return n_rays, n_bins


def _read_header(f: h5py.File, path: PathLike) -> Tuple[ScanMetadata, Any]:
    where = _group(f, "where")
    dataset = _group(f, "dataset1")
    if dataset is None:
        raise ScanReadError(f"{path}: no dataset1 group")
    ds_where = _group(dataset, "where")

    n_rays, n_bins = _read_dimensions(dataset)
    metadata = ScanMetadata(
        timestamp=_read_timestamp(f),
        elevation_angle=read_float(ds_where, "elangle").unwrap(),
        n_rays=n_rays,
        n_bins=n_bins,
        latitude=read_float(where, "lat").unwrap(),
        longitude=read_float(where, "lon").unwrap(),
        height=read_float(where, "height").value_or(0.0),
        range_scale=read_float(ds_where, "rscale").unwrap(),
        # ODIM stores the range start in kilometers
        range_start=read_float(ds_where, "rstart").value_or(0.0) * 1000.0,
    )
    return metadata, dataset


def _read_azimuths(dataset, n_rays: int, path: PathLike) -> np.ndarray:
    how = _group(dataset, "how")
    start = read_float_array(how, "startazA")
    stop = read_float_array(how, "stopazA")
    if start.ok and stop.ok and len(start.value) == n_rays and len(stop.value) == n_rays:
        # A ray spanning north has stop < start; average on the circle
        span = np.mod(stop.value - start.value, 360.0)
        return np.mod(start.value + span / 2.0, 360.0)

    logger.warning(
        f"{path}: ray azimuths unavailable ({start.failure or stop.failure or 'length mismatch'}), "
        f"assuming {n_rays} evenly spaced rays"
    )
    return np.arange(n_rays) * (360.0 / n_rays) if n_rays else np.empty(0)


def _read_moment(dataset, key: str, shape: Tuple[int, int], path: PathLike) -> np.ndarray:
    group = _group(dataset, key)
    try:
        if group is None or not isinstance(group.get("data"), h5py.Dataset):
            raise KeyError(f"{key}/data not found")
        src = group["data"][()]
        if src.shape != shape:
            raise ValueError(f"{key} has shape {src.shape}, expected {shape}")
        what = _group(group, "what")
        gain = read_float(what, "gain").value_or(1.0)
        offset = read_float(what, "offset").value_or(0.0)
        missing = np.zeros(shape, dtype=bool)
        for marker in ("nodata", "undetect"):
            value = read_float(what, marker)
            if value.ok:
                missing |= src == value.value
        out = src.astype('float32')
        if gain != 1.0 or offset != 0.0:
            out = out * np.float32(gain) + np.float32(offset)
        out[missing] = np.nan
        return out
    except (KeyError, ValueError, OSError) as e:
        logger.warning(f"{path}: failed to read {key}: {e}")
        return np.full(shape, np.nan, dtype='float32')


def read_metadata(path: PathLike) -> ScanMetadata:
    """
    Read scan attributes without loading the sample arrays.

    Raises
    ------
    ScanReadError
        If the file cannot be opened or required attributes are missing
    """
    try:
        with h5py.File(path, "r") as f:
            metadata, _ = _read_header(f, path)
            return metadata
    except ScanReadError:
        raise
    except OSError as e:
        raise ScanReadError(f"Cannot open {path}: {e}") from e


def open_scan(path: PathLike) -> PolarScan:
    """
    Read one ODIM HDF5 sweep into a PolarScan.

    The file is read eagerly and closed before returning. Zero-dimension
    scans are returned as such; a moment that cannot be read becomes an
    all-NaN grid.

    Parameters
    ----------
    path : str or Path
        Path to the .h5 file

    Returns
    -------
    PolarScan
        Scan with all four channels, gain and offset applied and the
        ODIM nodata/undetect markers turned into NaN

    Raises
    ------
    ScanReadError
        If the file cannot be opened or required attributes are missing
    """
    try:
        with h5py.File(path, "r") as f:
            metadata, dataset = _read_header(f, path)
            shape = (metadata.n_rays, metadata.n_bins)
            azimuths = _read_azimuths(dataset, metadata.n_rays, path)
            raw = {
                channel: _read_moment(dataset, key, shape, path)
                for channel, key in CHANNEL_DATASETS.items()
            }
    except ScanReadError:
        raise
    except OSError as e:
        raise ScanReadError(f"Cannot open {path}: {e}") from e

    return PolarScan(
        timestamp=metadata.timestamp,
        latitude=metadata.latitude,
        longitude=metadata.longitude,
        height=metadata.height,
        elevation_angle=metadata.elevation_angle,
        n_rays=metadata.n_rays,
        n_bins=metadata.n_bins,
        range_scale=metadata.range_scale,
        range_start=metadata.range_start,
        azimuths=azimuths,
        raw=raw,
        source=str(path),
    )
