from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FakeApi, make_rows

from fieldsync.dataset.cache import iter_chunks, read_index, read_manifest
from fieldsync.dataset.downloader import DatasetDownloader
from fieldsync.storage.kv import FileKeyValueStore

ROWS = make_rows(1234) + [{"accountNumber": "X", "address": "no id, no gps"}] * 3


def _snapshot(store: FileKeyValueStore):
    manifest = read_manifest(store).to_dict()
    manifest.pop("updated_at")
    return manifest, list(iter_chunks(store)), read_index(store)


@pytest.mark.regression
def test_resumed_download_matches_uninterrupted_download(tmp_path: Path, clock):
    straight = FileKeyValueStore(tmp_path / "straight")
    DatasetDownloader(straight, FakeApi(ROWS), clock=clock).download(page_size=100, concurrency=3)

    resumed = FileKeyValueStore(tmp_path / "resumed")
    api = FakeApi(ROWS)
    downloader = DatasetDownloader(resumed, api, clock=clock)
    api.failing_pages = {4, 9}
    assert downloader.download(page_size=100, concurrency=2).status == "error"
    api.failing_pages = set()
    api.failing_pages.add(11)
    assert downloader.download(page_size=100, concurrency=3).status == "error"
    api.failing_pages = set()
    assert downloader.download(page_size=100, concurrency=3).status == "complete"

    assert _snapshot(resumed) == _snapshot(straight)
    assert read_manifest(resumed).records_received == len(ROWS)
