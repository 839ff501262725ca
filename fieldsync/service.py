"""Entry points the UI and session-lifecycle layers call into."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fieldsync.common.api import RemoteApi
from fieldsync.common.config_loader import AppConfig
from fieldsync.common.http import HttpClient
from fieldsync.common.logging import log_event
from fieldsync.common.models import DatasetManifest, FormSnapshot, ReferenceRecord
from fieldsync.common.time_utils import Clock, utc_now
from fieldsync.dataset.cache import read_manifest
from fieldsync.dataset.downloader import DatasetDownloader, DownloadResult, ProgressCallback
from fieldsync.dataset.freshness import FreshnessReport, check_for_new_data
from fieldsync.dataset.search import search_records
from fieldsync.drafts.session import IdleLogoutGuard
from fieldsync.drafts.store import DraftStore, SnapshotLike
from fieldsync.geo.nearest import Coordinate, NearestMeter, find_nearest
from fieldsync.storage.kv import FileKeyValueStore, KeyValueStore
from fieldsync.sync.connectivity import ConnectivityMonitor
from fieldsync.sync.queue import DrainResult, SubmissionQueue
from fieldsync.sync.scheduler import SyncScheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DownloadOptions:
    page_size: int
    concurrency: int
    force: bool = False


class FieldSyncService:
    def __init__(
        self,
        config: AppConfig,
        store: KeyValueStore,
        api: RemoteApi,
        monitor: ConnectivityMonitor,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self.config = config
        self.store = store
        self.api = api
        self.monitor = monitor
        self.clock = clock
        self.drafts = DraftStore(store, clock=clock)
        self.session = IdleLogoutGuard(
            store,
            self.drafts,
            idle_timeout_seconds=float(config.session["idle_timeout_seconds"]),
            check_interval_seconds=float(config.session["idle_check_interval_seconds"]),
            clock=clock,
        )
        self.queue = SubmissionQueue.from_config(
            store,
            api,
            monitor,
            config.queue,
            clock=clock,
            on_session_expired=self.session.handle_session_expiry,
        )
        if monitor.pending_count_source is None:
            monitor.pending_count_source = self.queue.pending_count
        self.scheduler = SyncScheduler(
            self.queue,
            monitor,
            interval_seconds=float(config.queue["drain_interval_seconds"]),
        )
        self.downloader = DatasetDownloader(
            store,
            api,
            source_epsg=int(config.dataset["source_epsg"]),
            clock=clock,
        )

    def start(self) -> None:
        recovered = self.queue.recover_in_flight()
        self.scheduler.start()
        # Subscribed first, so an initial offline->online transition drains.
        # A signal-fed monitor has no probe and keeps its reported state.
        if self.monitor.probe is not None:
            self.monitor.refresh()
        else:
            self.scheduler.drain()
        self.session.start()
        log_event(logger, f"service started ({recovered} submissions recovered)", component="service", event="START", status="ok")

    def stop(self) -> None:
        self.scheduler.stop()
        self.session.stop()

    def enqueue_report(self, payload: SnapshotLike | dict[str, Any]) -> str:
        if isinstance(payload, FormSnapshot):
            payload = payload.to_payload()
        return self.queue.enqueue(dict(payload))

    def save_draft(self, snapshot: SnapshotLike, *, offline_saved: bool = False) -> str:
        return self.drafts.save(snapshot, offline_saved=offline_saved)

    def submit_draft(self, draft_id: str) -> str:
        draft = self.drafts.get(draft_id)
        if draft is None:
            raise KeyError(f"Unknown draft: {draft_id}")
        submission_id = self.queue.enqueue(draft.snapshot.to_payload())
        self.drafts.delete(draft_id)
        return submission_id

    def flush_open_form_to_draft(self) -> str | None:
        return self.drafts.flush_current_form()

    def download_dataset(
        self,
        opts: DownloadOptions | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> DownloadResult:
        opts = opts or DownloadOptions(
            page_size=int(self.config.dataset["page_size"]),
            concurrency=int(self.config.dataset["concurrency"]),
        )
        return self.downloader.download(opts.page_size, opts.concurrency, on_progress, force=opts.force)

    def dataset_manifest(self) -> DatasetManifest:
        return read_manifest(self.store)

    def check_for_new_data(self, *, force: bool = False) -> FreshnessReport | None:
        return check_for_new_data(
            self.store,
            self.api,
            interval_seconds=float(self.config.dataset["freshness_check_seconds"]),
            force=force,
            clock=self.clock,
        )

    def find_nearest_meters(self, coord: Coordinate, k: int = 3) -> list[NearestMeter]:
        return find_nearest(self.store, coord, k, batch_size=int(self.config.dataset["search_batch_size"]))

    def search_meters(self, query: str) -> list[ReferenceRecord]:
        return search_records(self.store, query)

    def drain(self) -> DrainResult:
        return self.queue.drain_once()

    def is_online(self) -> bool:
        return self.monitor.is_online()

    def pending_count(self) -> int:
        return self.queue.pending_count()


def build_service(
    config: AppConfig,
    *,
    data_dir: Path | None = None,
    store: KeyValueStore | None = None,
    api: RemoteApi | None = None,
    monitor: ConnectivityMonitor | None = None,
    clock: Clock = utc_now,
) -> FieldSyncService:
    if store is None:
        store = FileKeyValueStore(config.storage_dir(data_dir))
    if api is None:
        api = RemoteApi(HttpClient.from_config(config.api), config.api["endpoints"])
    if monitor is None:
        monitor = ConnectivityMonitor(probe=api.is_reachable)
    return FieldSyncService(config, store, api, monitor, clock=clock)
