"""
Background pipeline turning archived polar volumes into cached images.

For every volume (all scans sharing one timestamp) and every elevation in
ascending order, each channel is projected, filtered, rasterized, encoded
and cached exactly once. Subscribers are notified as images land and when
a volume completes.
"""
import logging
import queue
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Set, Union

from pvol_grid.filters import FilterPipeline
from pvol_grid.idw import rasterize
from pvol_grid.scan import Channel, GridSpec, PolarScan, Raster

from .archive import ArchiveIndex
from .cache import RadarDataCache, build_cache
from .config import Settings
from .constants import IMAGE_AVAILABLE, PVOL_PROCESSED
from .encoder import encode_png
from .events import EventBroadcaster
from .watcher import DirectoryWatcher

logger = logging.getLogger(__name__)

Encoder = Callable[[Raster, Channel], bytes]


class PVOLProcessor:
    """
    Orchestrates processing of volumes with at-most-once work per volume.

    Requests for a timestamp already being processed return immediately
    without blocking. Actual work is serialized behind a single-slot
    semaphore so only one volume's scans and rasters are in memory at a
    time. A cancellation event is checked between elevations and channels.

    Parameters
    ----------
    archive : ArchiveIndex
        Source of scan files grouped by volume
    cache : RadarDataCache
        Destination of encoded images and volume metadata
    broadcaster : EventBroadcaster, optional
        Notification channel (default: a new, unsubscribed broadcaster)
    settings : Settings, optional
        Image size, filters, worker count and background options
    encoder : callable, optional
        ``encoder(raster, channel) -> bytes`` (default: PNG)
    filters : FilterPipeline, optional
        Applied to each channel before rasterization
        (default: built from ``settings.filters``)
    """

    def __init__(
        self,
        archive: ArchiveIndex,
        cache: RadarDataCache,
        broadcaster: Optional[EventBroadcaster] = None,
        settings: Optional[Settings] = None,
        encoder: Encoder = encode_png,
        filters: Optional[FilterPipeline] = None,
    ):
        self.settings = settings or Settings()
        self.archive = archive
        self.cache = cache
        self.broadcaster = broadcaster or EventBroadcaster()
        self.encoder = encoder
        self.filters = filters if filters is not None else FilterPipeline.from_names(self.settings.filters)
        self.n_workers = self.settings.resolved_workers()

        self._processing: Set[datetime] = set()
        self._processing_lock = threading.Lock()
        self._semaphore = threading.Semaphore(1)
        self._cancel = threading.Event()
        self._events: "queue.Queue[Path]" = queue.Queue()
        self._watcher: Optional[DirectoryWatcher] = None
        self._threads: List[threading.Thread] = []

    @classmethod
    def from_settings(cls, settings: Settings,
                      broadcaster: Optional[EventBroadcaster] = None) -> "PVOLProcessor":
        archive = ArchiveIndex(settings.archive_path, settings.file_pattern)
        return cls(archive, build_cache(settings), broadcaster=broadcaster, settings=settings)

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def is_processing(self, timestamp: datetime) -> bool:
        with self._processing_lock:
            return timestamp in self._processing

    # ------------------------------------------------------------------
    # Single unit of work
    # ------------------------------------------------------------------

    def rasterize_scan(self, scan: PolarScan, channel: Channel,
                       width: Optional[int] = None, height: Optional[int] = None) -> Raster:
        """Filter one channel and rasterize it over the scan's own geodetic extent."""
        width = width or self.settings.image_width
        height = height or self.settings.image_height
        bbox = scan.geodetic(n_workers=self.n_workers).bbox
        grid = GridSpec.from_bounds(bbox, width, height)
        data = self.filters(scan.raw[channel]) if len(self.filters) else scan.raw[channel]
        return rasterize(scan, data, grid, n_workers=self.n_workers)

    def _render(self, scan: PolarScan, channel: Channel,
                width: Optional[int] = None, height: Optional[int] = None) -> bytes:
        raster = self.rasterize_scan(scan, channel, width, height)
        return self.encoder(raster, channel)

    def generate_image(self, channel: Channel, timestamp: datetime, elevation: float,
                       width: Optional[int] = None, height: Optional[int] = None) -> Optional[bytes]:
        """
        Encoded image of one channel of one tilt.

        Returns
        -------
        bytes or None
            None when the volume has no readable scan with data
        """
        scan = self.archive.open(timestamp, elevation)
        if scan is None:
            return None
        with scan:
            logger.info(
                f"Generating {channel.name} for {timestamp} elevation {elevation}: "
                f"{scan.n_rays} rays x {scan.n_bins} bins"
            )
            return self._render(scan, channel, width, height)

    # ------------------------------------------------------------------
    # Volumes
    # ------------------------------------------------------------------

    def request_pvol(self, timestamp: datetime) -> bool:
        """
        Process a volume unless it is already in progress.

        Never raises; failures are logged.

        Returns
        -------
        bool
            True if this call ran the pipeline, False if it coalesced into
            an in-flight run
        """
        return self._run(self.archive.volume_start(timestamp) or timestamp)

    def reprocess(self, timestamp: datetime) -> bool:
        """
        Drop every cached entry of a volume and process it again.

        The volume is claimed before anything is removed. If a run for it is
        already in flight nothing is removed and False is returned.
        """
        return self._run(self.archive.volume_start(timestamp) or timestamp,
                         before=self.cache.remove_volume)

    def _run(self, timestamp: datetime,
             before: Optional[Callable[[datetime], object]] = None) -> bool:
        with self._processing_lock:
            if timestamp in self._processing:
                logger.debug(f"PVOL {timestamp} is already being processed")
                return False
            self._processing.add(timestamp)

        try:
            with self._semaphore:
                if before is not None:
                    before(timestamp)
                self._process_volume(timestamp)
        except Exception:
            logger.exception(f"Error processing PVOL {timestamp}")
        finally:
            with self._processing_lock:
                self._processing.discard(timestamp)
        return True

    def _process_volume(self, timestamp: datetime) -> None:
        elevations = self.archive.elevation_angles(timestamp)
        if not elevations:
            logger.warning(f"No elevations found for PVOL {timestamp}")
            return

        logger.info(f"Processing PVOL {timestamp} ({len(elevations)} elevations)")
        processed = []
        for elevation in elevations:
            if self.cancelled:
                break
            if self._process_elevation(timestamp, elevation):
                processed.append(elevation)

        if self.cancelled:
            logger.info(f"Processing of PVOL {timestamp} cancelled after {len(processed)} elevations")
            return

        self.cache.set_processed_volume(timestamp, processed)
        self.broadcaster.broadcast(PVOL_PROCESSED, {"timestamp": timestamp, "elevations": processed})
        logger.info(f"Completed PVOL {timestamp} with {len(processed)} elevations")

    def _process_elevation(self, timestamp: datetime, elevation: float) -> bool:
        """Cache every missing channel of one tilt; False if the scan could not be opened."""
        scan = None
        try:
            for channel in Channel:
                if self.cancelled:
                    break
                if self.cache.has_image(timestamp, elevation, channel):
                    logger.debug(f"Image already cached for {timestamp}, {elevation}, {channel.name}")
                    continue

                if scan is None:
                    scan = self.archive.open(timestamp, elevation)
                    if scan is None:
                        logger.warning(f"No usable scan for {timestamp} elevation {elevation}")
                        return False

                try:
                    image = self._render(scan, channel)
                except Exception:
                    logger.exception(f"Error generating image for {timestamp}, {elevation}, {channel.name}")
                    continue

                if image and self.cache.set_image(timestamp, elevation, channel, image):
                    logger.info(f"Cached image for {timestamp}, {elevation}, {channel.name} ({len(image):,} bytes)")
                    self.broadcaster.broadcast(IMAGE_AVAILABLE, {
                        "timestamp": timestamp,
                        "elevation": elevation,
                        "channel": channel.value,
                        "image": image,
                    })
            return True
        finally:
            if scan is not None:
                scan.close()

    def process_all(self) -> int:
        """Process every volume of the archive, oldest first; returns the number processed."""
        timestamps = self.archive.timestamps()
        logger.info(f"Found {len(timestamps)} PVOLs to process")
        count = 0
        for timestamp in timestamps:
            if self.cancelled:
                break
            count += int(self.request_pvol(timestamp))
        return count

    # ------------------------------------------------------------------
    # Background operation
    # ------------------------------------------------------------------

    def submit(self, path: Union[str, Path]) -> None:
        """Queue a newly created file for processing."""
        self._events.put(Path(path))

    def _handle_new_file(self, path: Path) -> None:
        timestamp = self.archive.register(path)
        if timestamp is None:
            return
        self.request_pvol(timestamp)

    def _consume_events(self) -> None:
        while not self.cancelled:
            try:
                path = self._events.get(timeout=0.5)
            except queue.Empty:
                continue
            try:
                # Files may still be being written
                if self._cancel.wait(self.settings.debounce_seconds):
                    break
                self._handle_new_file(path)
            except Exception:
                logger.exception(f"Error processing new file {path}")
            finally:
                self._events.task_done()

    def _spawn(self, target: Callable[[], object], name: str) -> None:
        thread = threading.Thread(target=target, name=name, daemon=True)
        thread.start()
        self._threads.append(thread)

    def start(self) -> None:
        """Start the startup sweep and the new-file consumer on background threads."""
        self._cancel.clear()
        if self.settings.process_on_startup:
            self._spawn(self.process_all, "PVOLStartupSweep")
        if self.settings.watch_directory:
            self._watcher = DirectoryWatcher(
                self.settings.archive_path,
                self._events,
                pattern=self.settings.file_pattern,
                poll_interval=self.settings.watch_poll_interval,
            )
            self._watcher.start()
            self._spawn(self._consume_events, "PVOLFileConsumer")
        logger.info("PVOL processor started")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Cancel background work and wait for the threads to finish their current unit."""
        self._cancel.set()
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher.join(timeout)
            self._watcher = None
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("PVOL processor stopped")

    def __enter__(self) -> "PVOLProcessor":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()
