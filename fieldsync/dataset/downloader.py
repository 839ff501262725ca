"""Resumable, chunked download of the reference dataset.

Pages are fetched by a bounded pool of worker threads. Only the calling
thread touches the store: each page is normalised and written as its own
chunk, and the manifest marks the page received after that write
returns. The manifest flips to ``complete`` only after the indexing pass
has read back every chunk.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from typing import Callable, Iterator

from fieldsync.common.api import RecordPage, RemoteApi
from fieldsync.common.errors import DownloadError, HttpRequestError
from fieldsync.common.logging import log_event
from fieldsync.common.models import DatasetManifest, ManifestStatus
from fieldsync.common.time_utils import Clock, to_iso, utc_now
from fieldsync.dataset.cache import (
    chunk_key,
    clear_dataset,
    iter_chunks,
    read_manifest,
    write_chunk,
    write_index,
    write_manifest,
)
from fieldsync.dataset.normalise import WGS84_EPSG, normalise_page, positional_id
from fieldsync.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

PHASE_DOWNLOADING = "downloading"
PHASE_INDEXING = "indexing"

ProgressCallback = Callable[[int, int, int, str], None]


@dataclass(frozen=True)
class DownloadResult:
    status: str
    total_records: int = 0
    total_pages: int = 0
    pages_fetched: int = 0
    pages_skipped: int = 0
    records_stored: int = 0
    error: str | None = None
    error_code: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class DatasetDownloader:
    def __init__(
        self,
        store: KeyValueStore,
        api: RemoteApi,
        *,
        source_epsg: int = WGS84_EPSG,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.api = api
        self.source_epsg = source_epsg
        self.clock = clock
        self._lock = threading.Lock()

    def download(
        self,
        page_size: int,
        concurrency: int,
        on_progress: ProgressCallback | None = None,
        *,
        force: bool = False,
    ) -> DownloadResult:
        if page_size < 1 or concurrency < 1:
            raise ValueError("page_size and concurrency must be positive")
        if not self._lock.acquire(blocking=False):
            return DownloadResult(
                status="error",
                error="A dataset download is already in progress",
                error_code=DownloadError.error_code,
            )
        try:
            return self._download(page_size, concurrency, on_progress, force)
        finally:
            self._lock.release()

    def _emit(self, on_progress: ProgressCallback | None, percent: int, pages: int, records: int, phase: str) -> None:
        if on_progress is None:
            return
        try:
            on_progress(percent, pages, records, phase)
        except Exception:
            logger.exception("progress callback failed")

    def _error(self, manifest: DatasetManifest, fetched: int, skipped: int, exc: Exception) -> DownloadResult:
        error_code = getattr(exc, "error_code", DownloadError.error_code)
        log_event(
            logger,
            f"dataset download stopped: {exc}",
            level=logging.WARNING,
            component="downloader",
            event="DOWNLOAD_FAIL",
            status="error",
            error_code=error_code,
        )
        current = read_manifest(self.store)
        return DownloadResult(
            status="error",
            total_records=manifest.total_records,
            total_pages=manifest.total_pages,
            pages_fetched=fetched,
            pages_skipped=skipped,
            records_stored=current.records_received,
            error=str(exc),
            error_code=error_code,
        )

    def _prepare_manifest(self, total: int, page_size: int) -> DatasetManifest:
        manifest = read_manifest(self.store)
        if manifest.status is not ManifestStatus.NOT_STARTED and (
            manifest.total_records != total or manifest.page_size != page_size
        ):
            # Chunk boundaries no longer line up with the remote dataset.
            log_event(
                logger,
                "discarding partial download after remote count or page size changed",
                component="downloader",
                event="MANIFEST_RESET",
                status="ok",
                records=total,
            )
            clear_dataset(self.store)
            manifest = DatasetManifest()

        total_pages = math.ceil(total / page_size) if total else 0
        received = {
            page: count
            for page, count in manifest.pages_received.items()
            if page <= total_pages and self.store.contains(chunk_key(page))
        }
        manifest = replace(
            manifest,
            status=ManifestStatus.PARTIAL,
            total_records=total,
            page_size=page_size,
            total_pages=total_pages,
            pages_received=received,
            indexed_records=0,
            updated_at=to_iso(self.clock()),
        )
        write_manifest(self.store, manifest)
        return manifest

    def _store_page(self, page: int, result: RecordPage, page_size: int) -> int:
        if result.page_size is not None and result.page_size < page_size:
            raise DownloadError(
                f"Remote capped page size at {result.page_size} (requested {page_size}); "
                f"download again with page_size={result.page_size}"
            )
        records = normalise_page(result.records, page=page, default_epsg=self.source_epsg)
        write_chunk(self.store, page, records)
        # Re-read so a receipt marker written since our last look is never dropped.
        current = read_manifest(self.store)
        write_manifest(self.store, current.with_page(page, len(records), to_iso(self.clock())))
        return len(records)

    def _fetch_pages(
        self,
        pages: list[int],
        page_size: int,
        concurrency: int,
    ) -> Iterator[tuple[int, RecordPage | None, Exception | None]]:
        """Yield fetched pages as they complete with at most ``concurrency`` requests in flight.

        After the first failure no new requests are started; requests
        already in flight still finish and are yielded.
        """
        queue = iter(pages)
        failed = False
        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="fieldsync-page") as pool:
            in_flight: dict[Future, int] = {}

            def submit_next() -> None:
                page = next(queue, None)
                if page is not None:
                    in_flight[pool.submit(self.api.page_of_records, page, page_size)] = page

            for _ in range(concurrency):
                submit_next()

            while in_flight:
                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for future in done:
                    page = in_flight.pop(future)
                    try:
                        yield page, future.result(), None
                    except HttpRequestError as exc:
                        failed = True
                        yield page, None, exc
                        continue
                    if not failed:
                        submit_next()

    def _build_index(self, manifest: DatasetManifest, on_progress: ProgressCallback | None) -> DatasetManifest:
        self._emit(on_progress, 100, manifest.total_pages, manifest.records_received, PHASE_INDEXING)
        entries: list[list] = []
        seen_ids: set[str] = set()
        for page, records in iter_chunks(self.store):
            if page > manifest.total_pages:
                continue
            renamed = False
            for row, record in enumerate(records):
                if record.id in seen_ids:
                    # The first page to carry an id keeps it.
                    record = replace(record, id=positional_id(page, row))
                    records[row] = record
                    renamed = True
                seen_ids.add(record.id)
                if record.has_coordinates:
                    entries.append([record.latitude, record.longitude, record.entity_key, page, row])
            if renamed:
                write_chunk(self.store, page, records)
        write_index(self.store, entries)

        current = read_manifest(self.store)
        missing = current.missing_pages()
        if missing:
            raise DownloadError(f"Cannot complete dataset: pages {missing} are not stored")
        completed = replace(
            current,
            status=ManifestStatus.COMPLETE,
            indexed_records=len(entries),
            updated_at=to_iso(self.clock()),
        )
        write_manifest(self.store, completed)
        return completed

    def _download(
        self,
        page_size: int,
        concurrency: int,
        on_progress: ProgressCallback | None,
        force: bool,
    ) -> DownloadResult:
        started = time.monotonic()
        manifest = read_manifest(self.store)
        if manifest.status is ManifestStatus.COMPLETE and not force:
            return DownloadResult(
                status="cached",
                total_records=manifest.total_records,
                total_pages=manifest.total_pages,
                pages_skipped=manifest.total_pages,
                records_stored=manifest.records_received,
            )
        try:
            total = self.api.total_customer_count()
        except HttpRequestError as exc:
            return self._error(manifest, 0, 0, exc)

        if force:
            # The old cache stays until the remote has answered.
            clear_dataset(self.store)

        manifest = self._prepare_manifest(total, page_size)
        missing = manifest.missing_pages()
        skipped = manifest.total_pages - len(missing)
        pages_done = skipped
        records_done = manifest.records_received
        log_event(
            logger,
            f"dataset download start: {len(missing)} of {manifest.total_pages} pages to fetch",
            component="downloader",
            event="DOWNLOAD_START",
            status="ok",
            records=total,
        )
        if manifest.total_pages:
            self._emit(
                on_progress,
                pages_done * 100 // manifest.total_pages,
                pages_done,
                records_done,
                PHASE_DOWNLOADING,
            )

        fetched = 0
        failure: Exception | None = None
        for page, result, exc in self._fetch_pages(missing, page_size, concurrency):
            if exc is not None:
                failure = failure or exc
                continue
            try:
                count = self._store_page(page, result, page_size)
            except DownloadError as store_exc:
                failure = failure or store_exc
                break
            fetched += 1
            pages_done += 1
            records_done += count
            log_event(
                logger,
                f"stored page {page}",
                level=logging.DEBUG,
                component="downloader",
                event="PAGE_STORED",
                status="ok",
                page=page,
                records=count,
            )
            self._emit(
                on_progress,
                pages_done * 100 // manifest.total_pages,
                pages_done,
                records_done,
                PHASE_DOWNLOADING,
            )

        if failure is not None:
            return self._error(manifest, fetched, skipped, failure)

        try:
            completed = self._build_index(read_manifest(self.store), on_progress)
        except DownloadError as exc:
            return self._error(manifest, fetched, skipped, exc)

        log_event(
            logger,
            "dataset download complete",
            component="downloader",
            event="DOWNLOAD_COMPLETE",
            status="ok",
            records=completed.records_received,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return DownloadResult(
            status="complete",
            total_records=completed.total_records,
            total_pages=completed.total_pages,
            pages_fetched=fetched,
            pages_skipped=skipped,
            records_stored=completed.records_received,
        )
