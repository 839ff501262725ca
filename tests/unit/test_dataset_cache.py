from __future__ import annotations

import pytest

from fieldsync.common.constants import LAST_CHECK_KEY
from fieldsync.common.models import DatasetManifest, ManifestStatus, ReferenceRecord
from fieldsync.dataset.cache import (
    clear_dataset,
    iter_record_batches,
    read_chunk,
    read_manifest,
    write_chunk,
    write_index,
    write_manifest,
)
from fieldsync.dataset.freshness import check_for_new_data
from fieldsync.dataset.search import search_records


def _record(i: int, address: str = "") -> ReferenceRecord:
    return ReferenceRecord(
        id=str(i),
        account_number=f"ACC-{i:05d}",
        meter_number=f"MTR-{i:05d}",
        address=address,
        latitude=7.0,
        longitude=125.0,
        district="",
    )


def test_manifest_defaults_to_not_started(store):
    manifest = read_manifest(store)
    assert manifest.status is ManifestStatus.NOT_STARTED
    assert manifest.records_received == 0


def test_manifest_roundtrip_keeps_page_receipts(store):
    manifest = DatasetManifest(status=ManifestStatus.PARTIAL, total_records=2500, page_size=1000, total_pages=3)
    manifest = manifest.with_page(1, 1000, "2026-03-01T08:00:00.000+00:00")
    write_manifest(store, manifest)

    loaded = read_manifest(store)

    assert loaded == manifest
    assert loaded.missing_pages() == [2, 3]
    assert loaded.chunks_received == 1


def test_iter_record_batches_spans_chunks_in_page_order(store):
    write_chunk(store, 2, [_record(3)])
    write_chunk(store, 1, [_record(1), _record(2)])

    batches = list(iter_record_batches(store, 2))

    assert [[(page, row) for page, row, _ in batch] for batch in batches] == [[(1, 0), (1, 1)], [(2, 0)]]


def test_clear_dataset_removes_manifest_index_and_chunks(store):
    write_manifest(store, DatasetManifest(status=ManifestStatus.COMPLETE))
    write_chunk(store, 1, [_record(1)])
    write_index(store, [])
    store.set("queue.items", b"[]")

    clear_dataset(store)

    assert read_manifest(store).status is ManifestStatus.NOT_STARTED
    assert read_chunk(store, 1) is None
    assert store.keys() == ["queue.items"]


def test_search_requires_five_characters(store):
    write_chunk(store, 1, [_record(1, "12 Bonifacio Street")])
    assert search_records(store, "Boni") == []
    assert [r.id for r in search_records(store, "  bonif ")] == ["1"]


def test_search_matches_account_meter_and_address_with_limit(store):
    write_chunk(store, 1, [_record(i) for i in range(30)])
    assert [r.id for r in search_records(store, "MTR-00012")] == ["12"]
    assert len(search_records(store, "acc-000")) == 20
    assert len(search_records(store, "acc-000", limit=5)) == 5


def test_freshness_check_compares_counts_and_throttles(store, fake_api, clock):
    write_manifest(store, DatasetManifest(total_pages=1).with_page(1, 2, "x"))
    fake_api.rows = [{}, {}, {}]

    report = check_for_new_data(store, fake_api, interval_seconds=3600, clock=clock)

    assert report.has_new_data is True
    assert report.difference == 1
    assert store.contains(LAST_CHECK_KEY)

    clock.advance(60)
    assert check_for_new_data(store, fake_api, interval_seconds=3600, clock=clock) is None
    assert check_for_new_data(store, fake_api, interval_seconds=3600, clock=clock, force=True) is not None
    assert fake_api.count_calls == 2


@pytest.mark.parametrize("remote,needs", [(2, False), (1, True)])
def test_freshness_needs_download_on_any_difference(store, fake_api, clock, remote, needs):
    write_manifest(store, DatasetManifest(total_pages=1).with_page(1, 2, "x"))
    fake_api.rows = [{}] * remote

    report = check_for_new_data(store, fake_api, interval_seconds=3600, clock=clock)

    assert report.needs_download is needs
    assert report.has_new_data is False
