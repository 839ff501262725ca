"""Detect when the remote reference dataset has changed size."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from fieldsync.common.api import RemoteApi
from fieldsync.common.constants import LAST_CHECK_KEY
from fieldsync.common.logging import log_event
from fieldsync.common.time_utils import Clock, parse_iso, to_iso, utc_now
from fieldsync.dataset.cache import read_manifest
from fieldsync.storage.kv import KeyValueStore, get_json, set_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FreshnessReport:
    local_count: int
    remote_count: int

    @property
    def difference(self) -> int:
        return self.remote_count - self.local_count

    @property
    def has_new_data(self) -> bool:
        return self.difference > 0

    @property
    def needs_download(self) -> bool:
        return self.remote_count != self.local_count

    def to_dict(self) -> dict:
        return {
            "has_new_data": self.has_new_data,
            "needs_download": self.needs_download,
            "local_count": self.local_count,
            "remote_count": self.remote_count,
            "difference": self.difference,
        }


def check_for_new_data(
    store: KeyValueStore,
    api: RemoteApi,
    *,
    interval_seconds: float,
    force: bool = False,
    clock: Clock = utc_now,
) -> FreshnessReport | None:
    """Compare the cached record count with the remote total.

    Returns None when the last check is more recent than
    ``interval_seconds`` and ``force`` is not set. Transport errors
    propagate and leave the throttle timestamp untouched.
    """
    now = clock()
    if not force:
        last_check = parse_iso(get_json(store, LAST_CHECK_KEY))
        if last_check is not None and now - last_check < timedelta(seconds=interval_seconds):
            return None

    remote_count = api.total_customer_count()
    set_json(store, LAST_CHECK_KEY, to_iso(now))

    manifest = read_manifest(store)
    report = FreshnessReport(local_count=manifest.records_received, remote_count=remote_count)
    log_event(
        logger,
        f"data check: local={report.local_count} remote={report.remote_count}",
        component="freshness",
        event="DATA_CHECK",
        status="changed" if report.needs_download else "ok",
        records=remote_count,
    )
    return report
