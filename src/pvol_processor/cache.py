"""
Cache of encoded images and processed-volume metadata.

Two backends share the ``RadarDataCache`` interface: an in-process LRU
cache bounded by image bytes, and a redis store with a TTL on every key.
Entries are write-once; reprocessing a volume removes it first.
"""
import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

import redis
from cachetools import LRUCache

from pvol_grid.scan import Channel

from .constants import (
    DEFAULT_CACHE_TTL_S,
    IMAGE_KEY_PREFIX,
    PVOL_KEY_PREFIX,
    PVOL_LIST_KEY,
    TIMESTAMP_FORMAT,
)

logger = logging.getLogger(__name__)


def format_timestamp(timestamp: datetime) -> str:
    return timestamp.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, TIMESTAMP_FORMAT)


def format_elevation(elevation: float) -> str:
    return f"{round(float(elevation), 2):g}"


def image_key(timestamp: datetime, elevation: float, channel: Channel) -> str:
    """``radar:image:{yyyyMMddHHmmss}:{elevation}:{channel}``"""
    return f"{IMAGE_KEY_PREFIX}{format_timestamp(timestamp)}:{format_elevation(elevation)}:{channel.value}"


def pvol_key(timestamp: datetime) -> str:
    return f"{PVOL_KEY_PREFIX}{format_timestamp(timestamp)}"


@dataclass
class ProcessedVolumeMetadata:
    """Record that a volume was processed, with the elevations it contained."""

    timestamp: datetime
    elevations: List[float] = field(default_factory=list)
    processed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        return json.dumps({
            "timestamp": self.timestamp.isoformat(),
            "elevations": [float(e) for e in self.elevations],
            "processed_at": self.processed_at.isoformat(),
        })

    @classmethod
    def from_json(cls, data) -> "ProcessedVolumeMetadata":
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        obj = json.loads(data)
        return cls(
            timestamp=datetime.fromisoformat(obj["timestamp"]),
            elevations=[float(e) for e in obj.get("elevations", [])],
            processed_at=datetime.fromisoformat(obj["processed_at"]),
        )


class RadarDataCache(ABC):
    """Storage of images keyed by (timestamp, elevation, channel) and of volume metadata."""

    @abstractmethod
    def get_image(self, timestamp: datetime, elevation: float, channel: Channel) -> Optional[bytes]:
        ...

    @abstractmethod
    def set_image(self, timestamp: datetime, elevation: float, channel: Channel, data: bytes) -> bool:
        """Store an image unless the key already exists; True if it was written."""

    @abstractmethod
    def has_image(self, timestamp: datetime, elevation: float, channel: Channel) -> bool:
        ...

    @abstractmethod
    def get_processed_volume(self, timestamp: datetime) -> Optional[ProcessedVolumeMetadata]:
        ...

    @abstractmethod
    def set_processed_volume(self, timestamp: datetime, elevations: List[float]) -> ProcessedVolumeMetadata:
        ...

    @abstractmethod
    def processed_timestamps(self) -> List[datetime]:
        """Timestamps of processed volumes, ascending."""

    @abstractmethod
    def remove_volume(self, timestamp: datetime) -> int:
        """Delete the volume metadata and every image of the volume; returns the number of keys removed."""


def _nbytes(data: bytes) -> int:
    return len(data)


class InMemoryRadarDataCache(RadarDataCache):
    """
    Process-local cache.

    Images live in an LRU cache bounded by total bytes, so old images are
    evicted under memory pressure. Volume metadata is small and kept in a
    plain dict. A single lock guards both.
    """

    def __init__(self, max_bytes: int = 512 * 1024 * 1024):
        self._images = LRUCache(maxsize=max_bytes, getsizeof=_nbytes)
        self._volumes: Dict[datetime, ProcessedVolumeMetadata] = {}
        self._lock = threading.Lock()

    @property
    def currsize(self) -> int:
        return self._images.currsize

    def get_image(self, timestamp, elevation, channel):
        with self._lock:
            return self._images.get(image_key(timestamp, elevation, channel))

    def set_image(self, timestamp, elevation, channel, data):
        key = image_key(timestamp, elevation, channel)
        with self._lock:
            if key in self._images:
                return False
            try:
                self._images[key] = bytes(data)
            except ValueError:
                logger.warning(f"Image {key} ({len(data):,} bytes) exceeds the cache size")
                return False
        logger.debug(f"Cached {key}: {len(data):,} bytes")
        return True

    def has_image(self, timestamp, elevation, channel):
        with self._lock:
            return image_key(timestamp, elevation, channel) in self._images

    def get_processed_volume(self, timestamp):
        with self._lock:
            return self._volumes.get(timestamp)

    def set_processed_volume(self, timestamp, elevations):
        metadata = ProcessedVolumeMetadata(timestamp, sorted(float(e) for e in elevations))
        with self._lock:
            self._volumes[timestamp] = metadata
        return metadata

    def processed_timestamps(self):
        with self._lock:
            return sorted(self._volumes)

    def remove_volume(self, timestamp):
        prefix = f"{IMAGE_KEY_PREFIX}{format_timestamp(timestamp)}:"
        with self._lock:
            stale = [k for k in self._images if k.startswith(prefix)]
            for k in stale:
                del self._images[k]
            removed = len(stale) + int(self._volumes.pop(timestamp, None) is not None)
        logger.info(f"Removed {removed} cache entries for {timestamp}")
        return removed

    def clear(self) -> None:
        with self._lock:
            self._images.clear()
            self._volumes.clear()


class RedisRadarDataCache(RadarDataCache):
    """
    Redis-backed cache shared between processes.

    Parameters
    ----------
    client : redis.Redis
        Connected client
    ttl_seconds : int, optional
        Expiry applied to every image and metadata key (default: 24h)
    """

    def __init__(self, client, ttl_seconds: int = DEFAULT_CACHE_TTL_S):
        self.client = client
        self.ttl_seconds = int(ttl_seconds)

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int = DEFAULT_CACHE_TTL_S) -> "RedisRadarDataCache":
        return cls(redis.Redis.from_url(url), ttl_seconds=ttl_seconds)

    def get_image(self, timestamp, elevation, channel):
        return self.client.get(image_key(timestamp, elevation, channel))

    def set_image(self, timestamp, elevation, channel, data):
        key = image_key(timestamp, elevation, channel)
        written = bool(self.client.set(key, data, ex=self.ttl_seconds, nx=True))
        if written:
            logger.debug(f"Cached {key}: {len(data):,} bytes")
        return written

    def has_image(self, timestamp, elevation, channel):
        return bool(self.client.exists(image_key(timestamp, elevation, channel)))

    def get_processed_volume(self, timestamp):
        value = self.client.get(pvol_key(timestamp))
        if value is None:
            return None
        try:
            return ProcessedVolumeMetadata.from_json(value)
        except (ValueError, KeyError) as e:
            logger.error(f"Failed to decode volume metadata for {timestamp}: {e}")
            return None

    def set_processed_volume(self, timestamp, elevations):
        metadata = ProcessedVolumeMetadata(timestamp, sorted(float(e) for e in elevations))
        stamp = format_timestamp(timestamp)
        pipe = self.client.pipeline()
        pipe.set(pvol_key(timestamp), metadata.to_json(), ex=self.ttl_seconds)
        pipe.zadd(PVOL_LIST_KEY, {stamp: int(stamp)})
        pipe.execute()
        return metadata

    def processed_timestamps(self):
        """
        Timestamps of processed volumes, ascending.

        Index members whose metadata key has expired, or that do not parse
        as timestamps, are removed from the index.
        """
        members = [m.decode("ascii") if isinstance(m, bytes) else m
                   for m in self.client.zrange(PVOL_LIST_KEY, 0, -1)]
        if not members:
            return []

        pipe = self.client.pipeline()
        for member in members:
            pipe.exists(f"{PVOL_KEY_PREFIX}{member}")
        alive = pipe.execute()

        timestamps = []
        stale = []
        for member, exists in zip(members, alive):
            if not exists:
                stale.append(member)
                continue
            try:
                timestamps.append(parse_timestamp(member))
            except ValueError:
                logger.warning(f"Dropping malformed entry {member!r} from {PVOL_LIST_KEY}")
                stale.append(member)

        if stale:
            self.client.zrem(PVOL_LIST_KEY, *stale)
            logger.debug(f"Pruned {len(stale)} stale entries from {PVOL_LIST_KEY}")
        return sorted(timestamps)

    def remove_volume(self, timestamp):
        stamp = format_timestamp(timestamp)
        keys = [pvol_key(timestamp)]
        keys.extend(self.client.scan_iter(match=f"{IMAGE_KEY_PREFIX}{stamp}:*"))
        removed = int(self.client.delete(*keys))
        self.client.zrem(PVOL_LIST_KEY, stamp)
        logger.info(f"Removed {removed} cache entries for {timestamp}")
        return removed


def build_cache(settings) -> RadarDataCache:
    """Cache backend selected by ``settings.cache_backend``."""
    if settings.cache_backend == "redis":
        logger.info(f"Using redis cache at {settings.redis_url}")
        return RedisRadarDataCache.from_url(settings.redis_url, ttl_seconds=settings.cache_ttl_seconds)
    logger.info(f"Using in-memory cache ({settings.memory_cache_max_bytes:,} bytes)")
    return InMemoryRadarDataCache(max_bytes=settings.memory_cache_max_bytes)

