from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from fieldsync.common.api import RecordPage
from fieldsync.common.config_loader import load_config
from fieldsync.common.errors import RetryableHttpError
from fieldsync.storage.kv import FileKeyValueStore
from fieldsync.sync.connectivity import ConnectivityMonitor

REPO_ROOT = Path(__file__).resolve().parents[1]


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeApi:
    """In-memory stand-in for the remote API.

    ``submit_outcomes`` is consumed one entry per submit call: None means
    accepted, an exception instance is raised.
    """

    def __init__(self, rows: list[dict] | None = None, *, delay: float = 0.0):
        self.rows = rows or []
        self.delay = delay
        self.failing_pages: set[int] = set()
        self.page_calls: list[int] = []
        self.count_calls = 0
        self.submitted: list[dict] = []
        self.submit_outcomes: list[Exception | None] = []
        self.reachable = True
        self._lock = threading.Lock()
        self._in_flight = 0
        self.max_in_flight = 0

    def page_of_records(self, page: int, page_size: int) -> RecordPage:
        with self._lock:
            self.page_calls.append(page)
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if page in self.failing_pages:
                raise RetryableHttpError(f"page {page} timed out")
            start = (page - 1) * page_size
            return RecordPage(
                page=page,
                records=[dict(row) for row in self.rows[start : start + page_size]],
                total_count=len(self.rows),
                page_size=page_size,
            )
        finally:
            with self._lock:
                self._in_flight -= 1

    def total_customer_count(self) -> int:
        self.count_calls += 1
        return len(self.rows)

    def submit_report(self, payload: dict) -> str:
        outcome = self.submit_outcomes.pop(0) if self.submit_outcomes else None
        if outcome is not None:
            raise outcome
        self.submitted.append(payload)
        return f"remote-{len(self.submitted)}"

    def is_reachable(self) -> bool:
        return self.reachable


def make_rows(count: int, *, lat0: float = 7.0, lng0: float = 125.0) -> list[dict]:
    return [
        {
            "id": f"C{i:05d}",
            "accountNumber": f"A{i:05d}",
            "meterNumber": f"M{i:05d}",
            "address": f"{i} Rizal Street",
            "latitude": lat0 + i * 0.0001,
            "longitude": lng0 + i * 0.0001,
            "dma": "DMA-01",
        }
        for i in range(count)
    ]


@pytest.fixture
def store(tmp_path: Path) -> FileKeyValueStore:
    return FileKeyValueStore(tmp_path / "store")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def monitor() -> ConnectivityMonitor:
    return ConnectivityMonitor()


@pytest.fixture
def app_config():
    return load_config(REPO_ROOT / "config")
