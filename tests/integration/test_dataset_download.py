from __future__ import annotations

import pytest

from conftest import FakeApi, make_rows

from fieldsync.common.api import RecordPage
from fieldsync.common.errors import RetryableHttpError
from fieldsync.common.models import ManifestStatus
from fieldsync.dataset.cache import read_chunk, read_index, read_manifest, stored_pages
from fieldsync.dataset.downloader import PHASE_DOWNLOADING, PHASE_INDEXING, DatasetDownloader
from fieldsync.geo.nearest import Coordinate, find_nearest


def _downloader(store, api, clock) -> DatasetDownloader:
    return DatasetDownloader(store, api, clock=clock)


@pytest.mark.integration
def test_interrupted_download_resumes_only_missing_pages(store, clock):
    api = FakeApi(make_rows(2500))
    api.failing_pages = {2, 3}
    downloader = _downloader(store, api, clock)

    first = downloader.download(page_size=1000, concurrency=1)

    assert first.status == "error"
    assert first.error_code == "HTTP_RETRYABLE"
    assert api.page_calls == [1, 2]
    manifest = read_manifest(store)
    assert manifest.status is ManifestStatus.PARTIAL
    assert manifest.chunks_received == 1
    assert manifest.records_received == 1000
    assert manifest.missing_pages() == [2, 3]

    api.failing_pages = set()
    api.page_calls = []
    progress: list[tuple[int, int, int, str]] = []

    second = downloader.download(page_size=1000, concurrency=1, on_progress=lambda *event: progress.append(event))

    assert second.status == "complete"
    assert second.pages_skipped == 1
    assert second.pages_fetched == 2
    assert sorted(api.page_calls) == [2, 3]
    assert second.records_stored == 2500
    manifest = read_manifest(store)
    assert manifest.status is ManifestStatus.COMPLETE
    assert manifest.records_received == 2500
    assert manifest.indexed_records == 2500
    assert stored_pages(store) == [1, 2, 3]
    assert len(read_chunk(store, 3)) == 500

    assert progress[0] == (33, 1, 1000, PHASE_DOWNLOADING)
    assert progress[-1] == (100, 3, 2500, PHASE_INDEXING)
    percents = [event[0] for event in progress]
    assert percents == sorted(percents)


@pytest.mark.integration
def test_complete_dataset_is_not_downloaded_again(store, clock):
    api = FakeApi(make_rows(250))
    downloader = _downloader(store, api, clock)
    assert downloader.download(page_size=100, concurrency=2).status == "complete"

    api.page_calls = []
    api.count_calls = 0
    result = downloader.download(page_size=100, concurrency=2)

    assert result.status == "cached"
    assert result.records_stored == 250
    assert api.page_calls == []
    assert api.count_calls == 0


@pytest.mark.integration
def test_force_download_replaces_complete_dataset(store, clock):
    api = FakeApi(make_rows(250))
    downloader = _downloader(store, api, clock)
    downloader.download(page_size=100, concurrency=2)

    api.rows = make_rows(120)
    api.page_calls = []
    result = downloader.download(page_size=100, concurrency=2, force=True)

    assert result.status == "complete"
    assert sorted(api.page_calls) == [1, 2]
    assert stored_pages(store) == [1, 2]
    assert read_manifest(store).records_received == 120


@pytest.mark.integration
def test_partial_download_restarts_when_remote_count_changes(store, clock):
    api = FakeApi(make_rows(250))
    api.failing_pages = {2}
    downloader = _downloader(store, api, clock)
    downloader.download(page_size=100, concurrency=1)
    assert read_manifest(store).chunks_received == 1

    api.rows = make_rows(310)
    api.failing_pages = set()
    api.page_calls = []
    result = downloader.download(page_size=100, concurrency=1)

    assert result.status == "complete"
    assert api.page_calls == [1, 2, 3, 4]
    assert read_manifest(store).records_received == 310


@pytest.mark.integration
def test_partial_download_restarts_when_page_size_changes(store, clock):
    api = FakeApi(make_rows(250))
    api.failing_pages = {3}
    downloader = _downloader(store, api, clock)
    downloader.download(page_size=100, concurrency=1)

    api.failing_pages = set()
    api.page_calls = []
    result = downloader.download(page_size=50, concurrency=1)

    assert result.status == "complete"
    assert api.page_calls == [1, 2, 3, 4, 5]
    assert stored_pages(store) == [1, 2, 3, 4, 5]


@pytest.mark.integration
def test_concurrent_page_requests_stay_within_bound(store, clock):
    api = FakeApi(make_rows(1000), delay=0.02)
    result = _downloader(store, api, clock).download(page_size=100, concurrency=3)

    assert result.status == "complete"
    assert sorted(api.page_calls) == list(range(1, 11))
    assert 1 <= api.max_in_flight <= 3


@pytest.mark.integration
def test_capped_page_size_stops_download(store, clock):
    class CappingApi(FakeApi):
        def page_of_records(self, page, page_size):
            result = super().page_of_records(page, min(page_size, 50))
            return RecordPage(page=page, records=result.records, total_count=result.total_count, page_size=50)

    result = _downloader(store, CappingApi(make_rows(120)), clock).download(page_size=100, concurrency=1)

    assert result.status == "error"
    assert result.error_code == "DOWNLOAD_ERROR"
    assert "page_size=50" in result.error
    assert read_manifest(store).status is ManifestStatus.PARTIAL


@pytest.mark.integration
def test_empty_remote_dataset_completes_with_no_pages(store, clock):
    api = FakeApi([])
    result = _downloader(store, api, clock).download(page_size=100, concurrency=2)

    assert result.status == "complete"
    assert api.page_calls == []
    assert read_manifest(store).status is ManifestStatus.COMPLETE
    assert read_index(store) == []


@pytest.mark.integration
def test_downloaded_dataset_answers_nearest_queries(store, clock):
    api = FakeApi(make_rows(300))
    _downloader(store, api, clock).download(page_size=100, concurrency=3)

    results = find_nearest(store, Coordinate(lat=7.0, lng=125.0), 3)

    assert [r.record.meter_number for r in results] == ["M00000", "M00001", "M00002"]
    assert len(read_index(store)) == 300


@pytest.mark.integration
def test_invalid_arguments_are_rejected(store, clock):
    with pytest.raises(ValueError):
        _downloader(store, FakeApi(), clock).download(page_size=0, concurrency=1)


@pytest.mark.integration
def test_forced_refresh_while_offline_keeps_complete_cache(store, clock):
    api = FakeApi(make_rows(30))
    downloader = _downloader(store, api, clock)
    assert downloader.download(page_size=10, concurrency=2).status == "complete"

    def offline_count() -> int:
        raise RetryableHttpError("connection refused")

    api.total_customer_count = offline_count
    api.page_calls = []
    result = downloader.download(page_size=10, concurrency=2, force=True)

    assert result.status == "error"
    assert result.error_code == "HTTP_RETRYABLE"
    assert api.page_calls == []
    manifest = read_manifest(store)
    assert manifest.status is ManifestStatus.COMPLETE
    assert manifest.records_received == 30
    assert len(find_nearest(store, Coordinate(lat=7.0, lng=125.0), 3)) == 3


@pytest.mark.integration
@pytest.mark.parametrize("concurrency", [1, 3])
def test_id_repeated_on_a_later_page_takes_its_positional_id(store, clock, concurrency):
    rows = make_rows(30)
    rows[12]["id"] = rows[3]["id"]
    rows[25]["id"] = rows[3]["id"]
    downloader = _downloader(store, FakeApi(rows), clock)

    result = downloader.download(page_size=10, concurrency=concurrency)

    assert result.status == "complete"
    assert read_chunk(store, 1)[3].id == "C00003"
    assert read_chunk(store, 2)[2].id == "p2r2"
    assert read_chunk(store, 3)[5].id == "p3r5"
    ids = [record.id for page in stored_pages(store) for record in read_chunk(store, page)]
    assert len(ids) == len(set(ids)) == 30
    assert read_manifest(store).indexed_records == 30
