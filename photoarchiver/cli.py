# photoarchiver/cli.py
# Command line entry point: upload / download / continue.
# Exit codes: 0 ok, 1 when any file ended in Error (or a download Failed), 2 for bad config/usage.

from __future__ import annotations

import argparse
import signal
import sys
import threading
import time
from datetime import date
from pathlib import Path
from typing import List, Optional

from photoarchiver.core.config import Settings, load_settings
from photoarchiver.core.log import new_run_id, run_logger, setup_logging
from photoarchiver.errors import ConfigError, PhotoArchiverError
from photoarchiver.services.archiver import Archiver
from photoarchiver.services.costs import CostEstimator
from photoarchiver.services.progress import TqdmProgressIndicator
from photoarchiver.services.reconcile import ConflictResolution
from photoarchiver.services.retrieval import Retriever
from photoarchiver.storage.base import AccessTier
from photoarchiver.storage.s3 import S3BlobStore
from photoarchiver.utils.thumbs import ThumbnailGenerator

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from e


def _non_negative_int(value: str) -> int:
    n = int(value)
    if n < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {n}")
    return n


def _csv(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="photoarchiver", description="Archive photos and videos to S3 by capture date.")
    parser.add_argument("--config", type=Path, default=None,
                        help="Path to photoarchiver.toml (default: $PHOTOARCHIVER_CONFIG, ./ or a parent dir)")
    parser.add_argument("--logs-dir", default=None, help="Where to write log files (default from config: logs)")
    parser.add_argument("--log-level", default=None, choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help="Force console log level (overrides -v/-q)")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Increase console verbosity; -v also prints tracebacks (repeatable)")
    parser.add_argument("-q", "--quiet", action="store_true", help="Minimal console output")
    parser.add_argument("--json-logs", action="store_true", default=None,
                        help="Write JSON-formatted logs to file handler")
    parser.add_argument("--no-progress", action="store_true", help="Hide the progress bar")

    sub = parser.add_subparsers(dest="command", required=True)

    up = sub.add_parser("upload", help="Archive a local directory")
    up.add_argument("path", type=Path, help="Directory to archive")
    up.add_argument("--search-pattern", default=None, help="Glob relative to path (default: **/*)")
    up.add_argument("--skip", type=_non_negative_int, default=None, help="Skip the first N files (after sorting)")
    up.add_argument("--take", type=_non_negative_int, default=None, help="Process at most N files")
    up.add_argument("--deduplicate", action=argparse.BooleanOptionalAction, default=None,
                    help="Skip files whose content already exists in the destination directory")
    up.add_argument("--conflict-resolution", default=None, choices=[c.value for c in ConflictResolution],
                    help="What to do when a different file exists under the same name (default: Skip)")
    up.add_argument("--verify", action=argparse.BooleanOptionalAction, default=None,
                    help="Re-read the stored hash after upload (default: on)")
    up.add_argument("--delete", action=argparse.BooleanOptionalAction, default=None,
                    help="Delete local files once they are archived")
    up.add_argument("--access-tier", default=None, choices=[t.value for t in AccessTier],
                    help="Storage tier for new blobs (default: Cool)")
    up.add_argument("--parallel-block-count", type=_non_negative_int, default=None,
                    help="Concurrent parts for one large upload")

    down = sub.add_parser("download", help="Download (and rehydrate) the blobs of a date or date range")
    down.add_argument("date", type=_iso_date, help="Capture date YYYY-MM-DD (start of range with --end)")
    down.add_argument("path", type=Path, help="Target directory")
    down.add_argument("--end", type=_iso_date, default=None, help="Last date of the range (inclusive)")
    down.add_argument("--tags", type=_csv, default=None, help="Only blobs tagged with any of these (comma separated)")
    down.add_argument("--people", type=_csv, default=None, help="Only blobs showing any of these person ids")
    down.add_argument("--verify", action=argparse.BooleanOptionalAction, default=None,
                      help="Check the MD5 of downloaded files")
    down.add_argument("--archive", action=argparse.BooleanOptionalAction, default=None,
                      help="Move rehydrated blobs back to Archive once downloaded")
    down.add_argument("--rehydration-tier", default=None, choices=[AccessTier.HOT.value, AccessTier.COOL.value])

    cont = sub.add_parser("continue", help="Download blobs left pending by earlier download runs")
    cont.add_argument("--verify", action=argparse.BooleanOptionalAction, default=None)
    cont.add_argument("--archive", action=argparse.BooleanOptionalAction, default=None)
    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """CLI flags win over photoarchiver.toml; None means "not given"."""
    if args.logs_dir is not None:
        settings.logs_dir = Path(args.logs_dir).expanduser()
    if args.json_logs:
        settings.json_logs = True

    up = settings.upload
    if args.command == "upload":
        for name in ("search_pattern", "skip", "verify", "delete", "deduplicate"):
            value = getattr(args, name)
            if value is not None:
                setattr(up, name, value)
        if args.take is not None:
            up.take = args.take or None
        if args.conflict_resolution is not None:
            up.conflict_resolution = ConflictResolution.parse(args.conflict_resolution)
        if args.access_tier is not None:
            up.access_tier = AccessTier.parse(args.access_tier)
        if args.parallel_block_count is not None:
            up.parallel_block_count = args.parallel_block_count or None

    down = settings.download
    if args.command in ("download", "continue"):
        if args.verify is not None:
            down.verify = args.verify
        if args.archive is not None:
            down.archive = args.archive
    if args.command == "download":
        down.tags = args.tags or []
        down.people = args.people or []
        if args.rehydration_tier is not None:
            down.rehydration_tier = AccessTier.parse(args.rehydration_tier)
    return settings


def build_store(settings: Settings) -> S3BlobStore:
    return S3BlobStore(
        region=settings.storage.region,
        endpoint_url=settings.storage.endpoint_url,
        profile=settings.storage.profile,
        parallel_block_count=settings.upload.parallel_block_count,
        rehydration_days=settings.download.rehydration_days,
    )


def install_cancel_handler(event: threading.Event, log) -> None:
    """First Ctrl+C finishes the current file and stops; a second one aborts."""
    def _handler(signum, frame):
        if event.is_set():
            raise KeyboardInterrupt
        log.warning("Cancellation requested; finishing the current file (Ctrl+C again to abort)")
        event.set()

    signal.signal(signal.SIGINT, _handler)


def log_costs(costs: CostEstimator, log) -> None:
    usage = list(costs.summarize_usage())
    if usage:
        log.info("Usage:")
        for item, amount in usage:
            log.info("  %s: %d", item, amount)
    estimates = list(costs.summarize_costs())
    if estimates:
        log.info("Estimated costs:")
        for item, amount in estimates:
            log.info("  %s: %s%.4f", item, costs.options.currency, amount)


def run_upload(args, settings: Settings, store, costs: CostEstimator, progress, cancel, log) -> int:
    archiver = Archiver(
        store,
        settings.storage,
        settings.upload,
        thumbnails=settings.thumbnails,
        thumbnailer=ThumbnailGenerator(settings.thumbnails.quality),
        costs=costs,
        logger=log,
    )
    try:
        result = archiver.archive_directory(args.path, progress, cancel)
    except NotADirectoryError as e:
        log.error("%s", e)
        return EXIT_USAGE

    log.info("=== Upload summary ===")
    log.info("Succeeded: %d", len(result.succeeded))
    log.info("Failed: %d", len(result.failed))
    for r in result.failed:
        log.warning("  %s\t%s\t%s", r.result, r.file.path, r.error or "")
    if result.cancelled:
        log.warning("Run was cancelled; %d of the selected files were processed", len(result.results))
    return EXIT_FAILED if result.has_errors else EXIT_OK


def _log_retrieve_summary(result, log) -> int:
    log.info("=== Download summary ===")
    log.info("Succeeded: %d", len(result.succeeded))
    log.info("Pending: %d", len(result.pending))
    log.info("Failed: %d", len(result.failed))
    for r in result.failed:
        log.warning("  %s\t%s\t%s", r.result, r.blob_name, r.error or "")
    return EXIT_FAILED if result.has_errors else EXIT_OK


def run_download(args, settings: Settings, store, costs, progress, cancel, log) -> int:
    retriever = Retriever(store, settings.storage, settings.download, costs=costs, logger=log)
    try:
        result = retriever.retrieve(args.date, args.end, args.path, progress, cancel)
    except ValueError as e:
        log.error("%s", e)
        return EXIT_USAGE
    return _log_retrieve_summary(result, log)


def run_continue(args, settings: Settings, store, costs, progress, cancel, log) -> int:
    retriever = Retriever(store, settings.storage, settings.download, costs=costs, logger=log)
    if not retriever.session_files():
        log.info("No pending sessions in %s", settings.download.sessions_dir)
        return EXIT_OK
    return _log_retrieve_summary(retriever.continue_sessions(progress, cancel), log)


_COMMANDS = {
    "upload": run_upload,
    "download": run_download,
    "continue": run_continue,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = apply_overrides(load_settings(args.config), args)
    except (ConfigError, ValueError) as e:
        sys.stderr.write(f"photoarchiver: {e}\n")
        return EXIT_USAGE

    setup_logging(settings.logs_dir, verbose=args.verbose, quiet=args.quiet,
                  log_level=args.log_level, json_logs=settings.json_logs)
    run_id = new_run_id()
    log = run_logger(run_id, args.command)
    log.info("photoarchiver %s (run %s, config %s)", args.command, run_id, settings.source or "defaults")

    cancel = threading.Event()
    install_cancel_handler(cancel, log)
    desc = "Uploading" if args.command == "upload" else "Downloading"
    progress = TqdmProgressIndicator(desc=desc, disable=args.no_progress or args.quiet)
    costs = CostEstimator(settings.costs)

    t0 = time.perf_counter()
    try:
        store = build_store(settings)
        code = _COMMANDS[args.command](args, settings, store, costs, progress, cancel, log)
    except PhotoArchiverError as e:
        log.error("%s", e)
        code = EXIT_FAILED
    finally:
        progress.close()

    log_costs(costs, log)
    log.info("=== Done in %.1f seconds ===", time.perf_counter() - t0)
    return code


if __name__ == "__main__":
    sys.exit(main())
