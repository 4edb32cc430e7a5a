"""
Index of an archive directory of single-elevation scan files.

Files are grouped into volumes by the timestamp embedded in their name.
Scan headers are read on demand and remembered, so listing elevations does
not load sample arrays.
"""
import logging
import re
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from pvol_grid.geodesy import nearest_gate
from pvol_grid.scan import Channel, PolarScan, ScanMetadata

from .constants import (
    ELEVATION_TOLERANCE,
    FILENAME_TIMESTAMP_PATTERN,
    TIMESTAMP_TOLERANCE_S,
)
from .errors import InvariantViolation, ScanReadError
from .reader import open_scan, read_metadata

logger = logging.getLogger(__name__)

_FILENAME_TIMESTAMP = re.compile(FILENAME_TIMESTAMP_PATTERN)


def _timestamp_from_name(path: Path) -> Optional[datetime]:
    match = _FILENAME_TIMESTAMP.search(path.stem)
    if not match:
        return None
    digits = match.group(1)
    year, month, day, hour, minute, second = (int(digits[i:i + 2]) for i in range(0, 12, 2))
    year += 2000 if year < 50 else 1900
    try:
        return datetime(year, month, day, hour, minute, second)
    except ValueError:
        return None


def extract_timestamp(path: Union[str, Path]) -> Optional[datetime]:
    """
    Volume timestamp of a scan file.

    Parsed from ``EWR`` followed by ``YYMMDDhhmmss`` in the file name
    (two-digit years below 50 are 20xx), falling back to the scan's own
    date/time attributes.

    Returns
    -------
    datetime or None
        None if neither the name nor the file yields a timestamp
    """
    path = Path(path)
    timestamp = _timestamp_from_name(path)
    if timestamp is not None:
        return timestamp
    try:
        return read_metadata(path).timestamp
    except ScanReadError as e:
        logger.debug(f"No timestamp for {path.name}: {e}")
        return None


class ArchiveIndex:
    """
    Volumes of an archive directory keyed by timestamp.

    Parameters
    ----------
    path : str or Path
        Archive directory
    pattern : str, optional
        Glob selecting scan files (default: "*.h5")
    """

    def __init__(self, path: Union[str, Path], pattern: str = "*.h5"):
        self.path = Path(path)
        self.pattern = pattern
        self._lock = threading.RLock()
        self._volumes: Optional[Dict[datetime, List[Path]]] = None
        self._headers: Dict[Path, Optional[ScanMetadata]] = {}

    def refresh(self) -> None:
        """Rescan the directory."""
        volumes: Dict[datetime, List[Path]] = {}
        failed = 0
        if not self.path.is_dir():
            logger.error(f"Archive directory does not exist: {self.path}")
        else:
            for f in sorted(self.path.glob(self.pattern)):
                timestamp = extract_timestamp(f)
                if timestamp is None:
                    failed += 1
                    continue
                volumes.setdefault(timestamp, []).append(f)

        with self._lock:
            self._volumes = volumes
        logger.info(f"Loaded {len(volumes)} volumes from {self.path} ({failed} files without timestamp)")

    def _loaded(self) -> Dict[datetime, List[Path]]:
        with self._lock:
            if self._volumes is None:
                self.refresh()
            return self._volumes

    def register(self, path: Union[str, Path]) -> Optional[datetime]:
        """Add a newly created file and return the timestamp of its volume."""
        path = Path(path)
        timestamp = extract_timestamp(path)
        if timestamp is None:
            logger.warning(f"Cannot determine timestamp of {path}")
            return None
        with self._lock:
            volumes = self._loaded()
            key = self._match(volumes, timestamp) or timestamp
            files = volumes.setdefault(key, [])
            if path not in files:
                files.append(path)
                files.sort()
            self._headers.pop(path, None)
        return key

    @staticmethod
    def _match(volumes: Dict[datetime, List[Path]], timestamp: datetime) -> Optional[datetime]:
        if timestamp in volumes:
            return timestamp
        tolerance = timedelta(seconds=TIMESTAMP_TOLERANCE_S)
        for key in volumes:
            if abs(key - timestamp) < tolerance:
                return key
        return None

    def timestamps(self) -> List[datetime]:
        with self._lock:
            return sorted(self._loaded())

    def time_range(self) -> Optional[Tuple[datetime, datetime]]:
        timestamps = self.timestamps()
        if not timestamps:
            return None
        return timestamps[0], timestamps[-1]

    def volume_start(self, timestamp: datetime) -> Optional[datetime]:
        """Key of the volume ``timestamp`` belongs to (exact or within 1 s)."""
        with self._lock:
            return self._match(self._loaded(), timestamp)

    def files_for(self, timestamp: datetime) -> List[Path]:
        with self._lock:
            volumes = self._loaded()
            key = self._match(volumes, timestamp)
            return list(volumes[key]) if key is not None else []

    def header(self, path: Path) -> Optional[ScanMetadata]:
        """Scan attributes of one file, None if it cannot be read."""
        with self._lock:
            if path in self._headers:
                return self._headers[path]
        try:
            metadata = read_metadata(path)
        except ScanReadError as e:
            logger.error(f"Failed to read header of {path}: {e}")
            metadata = None
        with self._lock:
            self._headers[path] = metadata
        return metadata

    def _headers_for(self, timestamp: datetime) -> List[Tuple[Path, ScanMetadata]]:
        headers = []
        for f in self.files_for(timestamp):
            metadata = self.header(f)
            if metadata is not None:
                headers.append((f, metadata))
        return headers

    def elevation_angles(self, timestamp: datetime) -> List[float]:
        """Unique elevation angles of a volume in ascending order."""
        angles = {round(m.elevation_angle, 2) for _, m in self._headers_for(timestamp)}
        return sorted(angles)

    def find_scan(self, timestamp: datetime, elevation: float) -> Optional[Path]:
        """
        File holding the requested tilt of a volume.

        A file within the elevation tolerance that has rays and bins is
        preferred, closest first. Without one, the first file of the volume
        with non-zero dimensions is used.

        Returns
        -------
        Path or None
            None if the volume has no usable scan
        """
        headers = self._headers_for(timestamp)
        if not headers:
            logger.warning(f"No files found for timestamp {timestamp}")
            return None

        matching = [
            (abs(m.elevation_angle - elevation), f)
            for f, m in headers
            if abs(m.elevation_angle - elevation) < ELEVATION_TOLERANCE and m.has_data
        ]
        if matching:
            return min(matching)[1]

        for f, m in headers:
            if m.has_data:
                logger.warning(
                    f"No scan with data at elevation {elevation} for {timestamp}; "
                    f"using {f.name} at {m.elevation_angle}"
                )
                return f
        return None

    def scan_metadata(self, timestamp: datetime, elevation: float) -> Optional[ScanMetadata]:
        """Attributes of the tilt within tolerance, including zero-dimension scans."""
        for _, m in self._headers_for(timestamp):
            if abs(m.elevation_angle - elevation) < ELEVATION_TOLERANCE:
                if not m.has_data:
                    logger.warning(
                        f"Scan at {timestamp} elevation {m.elevation_angle} has "
                        f"{m.n_rays} rays and {m.n_bins} bins"
                    )
                return m
        return None

    def open(self, timestamp: datetime, elevation: float) -> Optional[PolarScan]:
        """Open the scan chosen by ``find_scan``; None on missing or unreadable data."""
        path = self.find_scan(timestamp, elevation)
        if path is None:
            return None
        try:
            return open_scan(path)
        except (ScanReadError, InvariantViolation) as e:
            logger.error(f"Failed to open {path}: {e}")
            return None

    def value_at(self, channel: Channel, timestamp: datetime, elevation: float,
                 ray: int, bin_: int) -> Optional[float]:
        """Raw sample at a (ray, bin) gate, None if out of range or unavailable."""
        scan = self.open(timestamp, elevation)
        if scan is None:
            return None
        with scan:
            if not (0 <= ray < scan.n_rays and 0 <= bin_ < scan.n_bins):
                logger.warning(f"Ray/bin out of range: ray={ray}/{scan.n_rays}, bin={bin_}/{scan.n_bins}")
                return None
            return float(scan.raw[channel][ray, bin_])

    def value_at_geo(self, channel: Channel, timestamp: datetime, elevation: float,
                     latitude: float, longitude: float) -> Optional[float]:
        """Raw sample of the gate nearest to a geographic point."""
        scan = self.open(timestamp, elevation)
        if scan is None:
            return None
        with scan:
            if not scan.has_data:
                return None
            geodetic = scan.geodetic()
            if not geodetic.bbox.contains(latitude, longitude):
                return None
            ray, bin_ = nearest_gate(geodetic, latitude, longitude)
            value = scan.raw[channel][ray, bin_]
            return None if np.isnan(value) else float(value)

    def __len__(self) -> int:
        with self._lock:
            return len(self._loaded())

    def __repr__(self) -> str:
        return f"ArchiveIndex({str(self.path)!r}, pattern={self.pattern!r})"
