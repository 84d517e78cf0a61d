# photoarchiver/services/retrieval.py
# Download side: fetch the blobs stored for a date range, request rehydration
# for archived ones and remember those in a retrieval session so a later
# `continue` run can pick them up once they are readable.

from __future__ import annotations

import hashlib
import logging
import threading
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

from pydantic import ValidationError

from photoarchiver.core.config import DownloadOptions, StorageSettings
from photoarchiver.core.log import file_token_for
from photoarchiver.errors import (
    BlobArchivedError,
    BlobRehydratingError,
    UnsupportedBlobError,
    VerificationFailedError,
)
from photoarchiver.schemas.results import BlobDownloadResult, DownloadResult, RetrieveResult
from photoarchiver.schemas.sessions import PendingItem, RetrievalSession
from photoarchiver.services.costs import CostEstimator
from photoarchiver.services.files import LocalDirectory
from photoarchiver.services.progress import NullProgressIndicator, ProgressIndicator
from photoarchiver.storage.base import AccessTier, BlobItem, BlobStore

LOGGER = logging.getLogger("photoarchiver.retrieval")

# metadata key written by the legacy client-side encryption of older uploads
ENCRYPTION_METADATA_KEY = "encryptiondata"


def _lower_keys(metadata: Dict[str, str]) -> Dict[str, str]:
    # S3 returns user metadata keys lowercased
    return {k.lower(): v for k, v in (metadata or {}).items()}


def _split_list(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def matches_filters(metadata: Dict[str, str], tags: Sequence[str] = (), people: Sequence[str] = ()) -> bool:
    """True when the blob carries any wanted tag and any wanted person (empty filter = no constraint)."""
    meta = _lower_keys(metadata)
    for key, wanted in (("tags", tags), ("people", people)):
        if not wanted:
            continue
        if key not in meta:
            return False
        present = set(_split_list(meta[key]))
        if not any(w in present for w in wanted):
            return False
    return True


def days(start: date, end: date) -> Iterable[date]:
    cur = start
    while cur <= end:
        yield cur
        cur += timedelta(days=1)


class Retriever:
    def __init__(
        self,
        store: BlobStore,
        storage: StorageSettings,
        options: DownloadOptions,
        *,
        costs: Optional[CostEstimator] = None,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self.store = store
        self.storage = storage
        self.options = options
        self.costs = costs or CostEstimator()
        self.log = logger or LOGGER

    # ---------- listing ----------

    def collect(self, start: date, end: Optional[date] = None) -> List[BlobItem]:
        """All blobs stored under the directories of start..end (inclusive) that pass the filters."""
        end = end or start
        if end < start:
            raise ValueError(f"end date {end} is before start date {start}")

        wanted_metadata = bool(self.options.tags or self.options.people)
        out: List[BlobItem] = []
        for day in days(start, end):
            prefix = self.storage.directory_for(datetime.combine(day, time())).rstrip("/") + "/"
            self.log.debug("Listing blobs under '%s'", prefix)
            self.costs.add_list_or_create_container()
            for blob in self.store.list_blobs(self.storage.container, prefix, include_metadata=wanted_metadata):
                if matches_filters(blob.metadata, self.options.tags, self.options.people):
                    out.append(blob)
        return out

    # ---------- retrieve ----------

    def retrieve(
        self,
        start: date,
        end: Optional[date],
        directory: Union[Path, str],
        progress: Optional[ProgressIndicator] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RetrieveResult:
        progress = progress or NullProgressIndicator()
        progress.indeterminate()

        target = Path(directory).expanduser()
        blobs = self.collect(start, end)
        container = self.storage.container
        session = RetrievalSession(container=container, path=str(target))

        result = RetrieveResult()
        processed_count = 0
        processed_bytes = 0
        progress.initialize(sum(b.size for b in blobs), len(blobs))
        progress.bytes_progress(processed_bytes)

        for blob in blobs:
            if cancel_event is not None and cancel_event.is_set():
                self.log.warning("Cancelled; %d of %d blobs processed", processed_count, len(blobs))
                result.cancelled = True
                break

            local_path = target / Path(blob.name).name
            try:
                outcome = self._fetch(container, blob.name, local_path)
                if outcome is DownloadResult.PENDING:
                    session.pending_items.append(PendingItem(blob_identifier=blob.name, local_path=str(local_path)))
                result.results.append(BlobDownloadResult(blob.name, outcome, str(local_path)))
                self._log_result(outcome, blob.name, processed_count + 1, len(blobs))
            except Exception as e:
                result.results.append(BlobDownloadResult(blob.name, DownloadResult.FAILED, str(local_path), e))
                self.log.exception("Failed to download %s", blob.name, extra={"file_token": file_token_for(blob.name)})
                progress.error()
            finally:
                processed_count += 1
                processed_bytes += blob.size
                progress.item_progress(processed_count)
                progress.bytes_progress(processed_bytes)

        if session.pending_items:
            path = session.save(self.options.sessions_dir)
            self.log.info("%d blob(s) are being rehydrated; run 'continue' later (session %s)",
                          len(session.pending_items), path)

        progress.finished()
        return result

    # ---------- continue ----------

    def session_files(self) -> List[Path]:
        sessions_dir = self.options.sessions_dir
        if not sessions_dir.is_dir():
            return []
        return sorted(sessions_dir.glob("*.json"))

    def continue_sessions(
        self,
        progress: Optional[ProgressIndicator] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RetrieveResult:
        """Retry every pending item of every saved session; rewrite or delete the session files."""
        progress = progress or NullProgressIndicator()
        progress.indeterminate()
        result = RetrieveResult()

        for session_file in self.session_files():
            try:
                session = RetrievalSession.load(session_file)
            except (OSError, ValidationError) as e:
                self.log.error("Unreadable session file %s: %s", session_file, e)
                continue

            self.log.info("Continuing session %s started %s (%d pending)",
                          session.id, session.started.isoformat(), len(session.pending_items))
            remaining: List[PendingItem] = []
            progress.initialize(0, len(session.pending_items))

            for n, item in enumerate(session.pending_items, start=1):
                if result.cancelled or (cancel_event is not None and cancel_event.is_set()):
                    result.cancelled = True
                    remaining.append(item)
                    continue
                try:
                    outcome = self._fetch(session.container, item.blob_identifier, Path(item.local_path))
                    if outcome is DownloadResult.SUCCEEDED and self.options.archive:
                        self.log.debug("Moving %s back to Archive tier", item.blob_identifier)
                        self.store.set_access_tier(session.container, item.blob_identifier, AccessTier.ARCHIVE)
                        self.costs.add_read()
                        self.costs.add_write()
                    if outcome is DownloadResult.PENDING:
                        remaining.append(item)
                    result.results.append(BlobDownloadResult(item.blob_identifier, outcome, item.local_path))
                    self._log_result(outcome, item.blob_identifier, n, len(session.pending_items))
                except Exception as e:
                    remaining.append(item)
                    result.results.append(
                        BlobDownloadResult(item.blob_identifier, DownloadResult.FAILED, item.local_path, e))
                    self.log.exception("Failed to download %s", item.blob_identifier,
                                       extra={"file_token": file_token_for(item.blob_identifier)})
                    progress.error()
                finally:
                    progress.item_progress(n)

            if not remaining:
                self.log.debug("Session %s complete; removing %s", session.id, session_file)
                session_file.unlink()
            elif len(remaining) != len(session.pending_items):
                session.pending_items = remaining
                session.save(session_file.parent)

        progress.finished()
        return result

    # ---------- single blob ----------

    def _fetch(self, container: str, key: str, local_path: Path) -> DownloadResult:
        props = self.store.get_properties(container, key)
        self.costs.add_other()
        if ENCRYPTION_METADATA_KEY in _lower_keys(props.metadata):
            raise UnsupportedBlobError(
                f"client-side encrypted blob is not supported: {container}/{key}", container=container, key=key)
        if props.rehydrating:
            return DownloadResult.PENDING

        try:
            fileobj = LocalDirectory(local_path.parent).create_file(local_path.name)
        except FileExistsError:
            return DownloadResult.CONFLICT

        try:
            with fileobj:
                nbytes = self.store.download(container, key, fileobj)
        except BlobArchivedError:
            local_path.unlink()
            self._request_rehydration(container, key)
            return DownloadResult.PENDING
        except BlobRehydratingError:
            local_path.unlink()
            return DownloadResult.PENDING
        except BaseException:
            local_path.unlink(missing_ok=True)
            raise
        self.costs.add_read(nbytes)

        if self.options.verify:
            digest = hashlib.md5(local_path.read_bytes()).digest()
            if props.content_hash is None or bytes(props.content_hash) != digest:
                local_path.unlink()
                raise VerificationFailedError(str(local_path), f"{container}/{key}")
        return DownloadResult.SUCCEEDED

    def _request_rehydration(self, container: str, key: str) -> None:
        self.log.info("Rehydrate '%s/%s'", container, key)
        self.store.set_access_tier(container, key, self.options.rehydration_tier)
        self.costs.add_read()
        self.costs.add_write()

    def _log_result(self, outcome: DownloadResult, name: str, n: int, count: int) -> None:
        level = logging.INFO if outcome in (DownloadResult.SUCCEEDED, DownloadResult.PENDING) else logging.WARNING
        self.log.log(level, "%s\t%s\t(%d of %d)", outcome, name, n, count, extra={"file_token": file_token_for(name)})
