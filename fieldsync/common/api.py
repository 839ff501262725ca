"""Remote API operations consumed by the offline subsystem."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fieldsync.common.errors import (
    HttpRequestError,
    RetryableHttpError,
    SessionExpiredError,
    SubmissionRejectedError,
)
from fieldsync.common.http import HttpClient

COUNT_KEYS = ("count", "totalRecords", "total", "totalCount")
RECORD_LIST_KEYS = ("data", "customers", "records")


@dataclass(frozen=True)
class RecordPage:
    page: int
    records: list[dict[str, Any]]
    total_count: int
    page_size: int | None


def _unwrap(payload: Any) -> dict:
    # The backend nests the page body under "data" on most deployments.
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    return payload if isinstance(payload, dict) else {}


def _lookup_count(body: dict) -> int:
    for key in COUNT_KEYS:
        value = body.get(key)
        if value in (None, ""):
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    return 0


def _lookup_records(body: dict) -> list[dict]:
    for key in RECORD_LIST_KEYS:
        value = body.get(key)
        if isinstance(value, list):
            return [row for row in value if isinstance(row, dict)]
    return []


class RemoteApi:
    def __init__(self, client: HttpClient, endpoints: dict[str, str]) -> None:
        self.client = client
        self.endpoints = endpoints

    def page_of_records(self, page: int, page_size: int) -> RecordPage:
        payload = self.client.get_json(
            self.endpoints["records"],
            params={"page": page, "pageSize": page_size},
        )
        body = _unwrap(payload)
        reported_size = body.get("pageSize")
        try:
            reported_size = int(reported_size) if reported_size is not None else None
        except (TypeError, ValueError):
            reported_size = None
        return RecordPage(
            page=page,
            records=_lookup_records(body),
            total_count=_lookup_count(body),
            page_size=reported_size,
        )

    def total_customer_count(self) -> int:
        return self.page_of_records(1, 1).total_count

    def submit_report(self, payload: dict[str, Any]) -> str | None:
        try:
            response = self.client.post_json(self.endpoints["submit"], body=payload, max_attempts=1)
        except (RetryableHttpError, SessionExpiredError):
            raise
        except HttpRequestError as exc:
            if exc.status_code is not None and 200 <= exc.status_code < 300:
                # Accepted; the body carried no readable id.
                return None
            if exc.status_code is not None and 400 <= exc.status_code < 500:
                raise SubmissionRejectedError(str(exc), status_code=exc.status_code) from exc
            raise
        body = _unwrap(response)
        remote_id = body.get("id") or body.get("_id")
        return str(remote_id) if remote_id is not None else None

    def is_reachable(self) -> bool:
        return self.client.head_ok(self.endpoints["health"])
