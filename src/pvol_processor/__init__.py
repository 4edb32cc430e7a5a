"""
pvol_processor - Archive indexing, caching and background processing of radar volumes
"""

from .archive import ArchiveIndex, extract_timestamp
from .cache import (
    InMemoryRadarDataCache,
    ProcessedVolumeMetadata,
    RadarDataCache,
    RedisRadarDataCache,
    build_cache,
    image_key,
)
from .config import Settings
from .encoder import encode_png
from .errors import InvariantViolation, MalformedScan, ScanReadError
from .events import EventBroadcaster
from .processor import PVOLProcessor
from .reader import AttributeFailure, AttributeResult, open_scan, read_metadata
from .watcher import DirectoryWatcher

__version__ = "0.1.0"

__all__ = [
    "ArchiveIndex",
    "extract_timestamp",
    "RadarDataCache",
    "InMemoryRadarDataCache",
    "RedisRadarDataCache",
    "ProcessedVolumeMetadata",
    "build_cache",
    "image_key",
    "Settings",
    "encode_png",
    "ScanReadError",
    "InvariantViolation",
    "MalformedScan",
    "EventBroadcaster",
    "PVOLProcessor",
    "AttributeFailure",
    "AttributeResult",
    "open_scan",
    "read_metadata",
    "DirectoryWatcher",
]
