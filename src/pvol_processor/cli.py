"""
Command line entry point: ``pvol-processor {process,serve,list}``.
"""
import argparse
import logging
import sys
import time
from datetime import datetime

from .config import Settings
from .constants import TIMESTAMP_FORMAT
from .processor import PVOLProcessor

logger = logging.getLogger(__name__)


def _timestamp(value: str) -> datetime:
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYYMMDDhhmmss, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pvol-processor", description="Polar volume rasterization service")
    parser.add_argument("--archive", help="Archive directory (overrides PVOL_ARCHIVE_PATH)")
    parser.add_argument("--cache", choices=["memory", "redis"], help="Cache backend (overrides PVOL_CACHE_BACKEND)")
    parser.add_argument("--workers", type=int, help="Worker threads for the numeric loops")
    parser.add_argument("--log-level", default=None, help="Logging level (default: PVOL_LOG_LEVEL or INFO)")

    sub = parser.add_subparsers(dest="command", required=True)

    process = sub.add_parser("process", help="Process one volume or the whole archive")
    process.add_argument("timestamp", nargs="?", type=_timestamp, help="Volume timestamp YYYYMMDDhhmmss (default: all)")
    process.add_argument("--force", action="store_true", help="Drop cached entries before processing")

    sub.add_parser("serve", help="Process on startup and watch the archive until interrupted")
    sub.add_parser("list", help="List volumes and their elevation angles")
    return parser


def _settings(args) -> Settings:
    overrides = {}
    if args.archive:
        overrides["archive_path"] = args.archive
    if args.cache:
        overrides["cache_backend"] = args.cache
    if args.workers:
        overrides["n_workers"] = args.workers
    return Settings(**overrides)


def _list(processor: PVOLProcessor) -> int:
    timestamps = processor.archive.timestamps()
    if not timestamps:
        print("No volumes found")
        return 1
    for t in timestamps:
        elevations = ", ".join(f"{e:g}" for e in processor.archive.elevation_angles(t))
        print(f"{t:{TIMESTAMP_FORMAT}}  [{elevations}]")
    return 0


def _process(processor: PVOLProcessor, args) -> int:
    if args.timestamp is None:
        count = processor.process_all()
        logger.info(f"Processed {count} volumes")
        return 0
    if processor.archive.volume_start(args.timestamp) is None:
        logger.error(f"No volume at {args.timestamp}")
        return 1
    if args.force:
        processor.reprocess(args.timestamp)
    else:
        processor.request_pvol(args.timestamp)
    return 0


def _serve(processor: PVOLProcessor) -> int:
    processor.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping")
    finally:
        processor.stop()
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = _settings(args)
    logging.basicConfig(
        level=(args.log_level or settings.log_level).upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    processor = PVOLProcessor.from_settings(settings)
    if args.command == "list":
        return _list(processor)
    if args.command == "process":
        return _process(processor, args)
    return _serve(processor)


if __name__ == "__main__":
    sys.exit(main())
