"""
Polling watcher that reports new scan files in the archive directory.
"""
import logging
import queue
import threading
from pathlib import Path
from typing import Set, Union

logger = logging.getLogger(__name__)


class DirectoryWatcher(threading.Thread):
    """
    Thread pushing paths of newly created files onto a queue.

    Files present when the watcher starts are considered known and are not
    reported. The directory is listed every ``poll_interval`` seconds; the
    watcher never processes files itself.

    Parameters
    ----------
    path : str or Path
        Directory to watch
    output_queue : queue.Queue
        Receives the ``Path`` of every new file
    pattern : str, optional
        Glob selecting files (default: "*.h5")
    poll_interval : float, optional
        Seconds between listings (default: 1.0)
    """

    def __init__(self, path: Union[str, Path], output_queue: queue.Queue,
                 pattern: str = "*.h5", poll_interval: float = 1.0,
                 name: str = "DirectoryWatcher"):
        super().__init__(name=name, daemon=True)
        self.path = Path(path)
        self.output_queue = output_queue
        self.pattern = pattern
        self.poll_interval = poll_interval
        self._stop_event = threading.Event()
        self._known: Set[Path] = self._list()

    def _list(self) -> Set[Path]:
        if not self.path.is_dir():
            return set()
        return set(self.path.glob(self.pattern))

    def poll(self) -> int:
        """List the directory once and queue new files; returns how many were queued."""
        current = self._list()
        new = sorted(current - self._known)
        self._known = current
        for f in new:
            logger.info(f"New file detected: {f.name}")
            self.output_queue.put(f)
        return len(new)

    def stop(self) -> None:
        self._stop_event.set()

    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def run(self) -> None:
        logger.info(f"Watching {self.path} for {self.pattern}")
        while not self._stop_event.wait(self.poll_interval):
            try:
                self.poll()
            except OSError as e:
                logger.error(f"Failed to list {self.path}: {e}")
        logger.info("Directory watcher stopped")
