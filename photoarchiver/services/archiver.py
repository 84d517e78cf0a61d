# photoarchiver/services/archiver.py
# Archive pipeline driver: one pass over a list of local files, sequential,
# one outcome per file. A failing file is recorded as Error and the batch goes on.

from __future__ import annotations

import logging
import threading
import unicodedata
from pathlib import Path
from typing import List, Optional, Sequence, Union

from photoarchiver.core.config import StorageSettings, ThumbnailOptions, UploadOptions
from photoarchiver.core.log import file_token_for
from photoarchiver.errors import ContainerNotFoundError
from photoarchiver.schemas.results import ArchiveResult, FileUploadResult, UploadResult
from photoarchiver.services.costs import CostEstimator
from photoarchiver.services.dates import DateResolver
from photoarchiver.services.dedup import DeduplicationIndex
from photoarchiver.services.enrichment import Enricher
from photoarchiver.services.files import LocalDirectory, LocalFile, UploadItem
from photoarchiver.services.progress import NullProgressIndicator, ProgressIndicator, TransferProgressShim
from photoarchiver.services.reconcile import UploadReconciler
from photoarchiver.storage.base import BlobStore
from photoarchiver.utils.media_types import JPEG_EXT
from photoarchiver.utils.thumbs import ThumbnailGenerator

LOGGER = logging.getLogger("photoarchiver.archiver")

THUMBNAIL_CONTENT_TYPE = "image/jpeg"


def remove_diacritics(text: str) -> str:
    """'Årvíztűrő.jpg' -> 'Arvizturo.jpg'; other non-ASCII characters become '?'."""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(c for c in decomposed if unicodedata.category(c) != "Mn")
    return stripped.encode("ascii", "replace").decode("ascii")


def select_files(files: Sequence[LocalFile], skip: int = 0, take: Optional[int] = None) -> List[LocalFile]:
    """Stable sort by full path, then apply skip/take."""
    ordered = sorted(files, key=lambda f: str(f.path))
    ordered = ordered[skip:] if skip else ordered
    return ordered[:take] if take is not None else ordered


class Archiver:
    def __init__(
        self,
        store: BlobStore,
        storage: StorageSettings,
        options: UploadOptions,
        *,
        thumbnails: Optional[ThumbnailOptions] = None,
        thumbnailer: Optional[ThumbnailGenerator] = None,
        enricher: Optional[Enricher] = None,
        date_resolver: Optional[DateResolver] = None,
        costs: Optional[CostEstimator] = None,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self.store = store
        self.storage = storage
        self.options = options
        self.thumbnails = thumbnails or ThumbnailOptions()
        self.thumbnailer = thumbnailer or ThumbnailGenerator(self.thumbnails.quality)
        self.enricher = enricher
        self.date_resolver = date_resolver or DateResolver()
        self.costs = costs or CostEstimator()
        self.log = logger or LOGGER

    def archive_directory(
        self,
        directory: Union[LocalDirectory, Path, str],
        progress: Optional[ProgressIndicator] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ArchiveResult:
        if not isinstance(directory, LocalDirectory):
            directory = LocalDirectory(directory)
        files = select_files(
            directory.list_files(self.options.search_pattern),
            skip=self.options.skip,
            take=self.options.take,
        )
        return self.archive(files, progress, cancel_event)

    def archive(
        self,
        files: Sequence[LocalFile],
        progress: Optional[ProgressIndicator] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ArchiveResult:
        progress = progress or NullProgressIndicator()
        progress.indeterminate()

        result = ArchiveResult()
        count = len(files)
        processed_count = 0
        processed_bytes = 0
        progress.initialize(sum(f.size for f in files), count)
        progress.bytes_progress(processed_bytes)

        # one index per run; it only ever sees this run's uploads
        dedup = DeduplicationIndex(self.store, self.costs) if self.options.deduplicate else None
        reconciler = UploadReconciler(
            self.store,
            self.storage.container,
            conflict_resolution=self.options.conflict_resolution,
            verify=self.options.verify,
            access_tier=self.options.access_tier,
            dedup=dedup,
            costs=self.costs,
        )

        last_directory = None
        for file in files:
            if cancel_event is not None and cancel_event.is_set():
                self.log.warning("Cancelled; %d of %d files processed", processed_count, count)
                result.cancelled = True
                break

            current_directory = str(file.path.parent)
            if current_directory != last_directory:
                self.log.info("Processing directory '%s'", current_directory)
                last_directory = current_directory

            token = {"file_token": file_token_for(file.path)}
            with UploadItem(file) as item:
                try:
                    self.log.debug("Processing %s", file, extra=token)
                    shim = TransferProgressShim(progress, processed_bytes, limit=file.size)
                    outcome = self._process(item, files, reconciler, dedup, shim)
                    result.results.append(FileUploadResult(file, outcome))
                    self.log.log(outcome.log_level, "%s\t%s\t(%d of %d)",
                                 outcome, file.name, processed_count + 1, count, extra=token)
                except Exception as e:
                    # Catch-all so one bad file doesn't kill the batch
                    result.results.append(FileUploadResult(file, UploadResult.ERROR, e))
                    self.log.exception("Failed to process %s", file.name, extra=token)
                    progress.error()
                finally:
                    processed_count += 1
                    processed_bytes += file.size
                    progress.item_progress(processed_count)
                    progress.bytes_progress(processed_bytes)

        progress.finished()
        return result

    def _process(
        self,
        item: UploadItem,
        peers: Sequence[LocalFile],
        reconciler: UploadReconciler,
        dedup: Optional[DeduplicationIndex],
        shim: TransferProgressShim,
    ) -> UploadResult:
        file = item.file

        date = self.date_resolver.resolve(item, peers)
        if date is None:
            return UploadResult.DATE_MISSING

        directory = self.storage.directory_for(date)
        item.metadata["OriginalFileName"] = remove_diacritics(str(file.path))
        item.metadata["CreatedAt"] = date.isoformat()
        item.metadata["OriginalFileSize"] = str(file.size)

        if dedup is not None:
            self.log.debug("Computing hash for %s", file)
            if dedup.contains(self.storage.container, directory, item.compute_hash()):
                return UploadResult.ALREADY_EXISTS

        if self.enricher is not None:
            self.enricher.enrich(item)

        outcome, key = reconciler.reconcile(item, directory, shim)
        if not outcome.is_successful():
            return outcome

        if (
            self.thumbnails.is_enabled()
            and file.extension in JPEG_EXT
            and (outcome is UploadResult.UPLOADED or self.thumbnails.force)
        ):
            self._upload_thumbnail(item, key)

        if self.options.delete:
            self.log.debug("Deleting %s", file)
            file.delete()
        return outcome

    def _upload_thumbnail(self, item: UploadItem, key: str) -> None:
        data = self.thumbnailer.generate(item.data, self.thumbnails.max_width, self.thumbnails.max_height)
        container = self.thumbnails.container
        kwargs = dict(metadata=dict(item.metadata), content_type=THUMBNAIL_CONTENT_TYPE)

        self.log.debug("Uploading thumbnail of %s to %s/%s", item.file, container, key)
        try:
            self.store.upload(container, key, data, **kwargs)
        except ContainerNotFoundError:
            self.store.create_container_if_not_exists(container)
            self.costs.add_list_or_create_container()
            self.store.upload(container, key, data, **kwargs)
        self.costs.add_write(len(data))
