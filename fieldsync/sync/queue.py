"""Durable outbound submission queue.

The whole queue lives under a single store key, so every state change is
one atomic write. Submissions leave the queue only after the remote API
confirms acceptance.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable

from fieldsync.common.api import RemoteApi
from fieldsync.common.constants import QUEUE_KEY, SYNC_STATUS_KEY
from fieldsync.common.errors import HttpRequestError, SessionExpiredError, SubmissionRejectedError
from fieldsync.common.ids import generate_submission_id
from fieldsync.common.logging import log_event
from fieldsync.common.models import QueuedSubmission, SubmissionStatus
from fieldsync.common.time_utils import Clock, parse_iso, to_iso, utc_now
from fieldsync.storage.kv import KeyValueStore, get_json, set_json
from fieldsync.sync.connectivity import ConnectivityMonitor

logger = logging.getLogger(__name__)

OUTSTANDING = {
    SubmissionStatus.PENDING,
    SubmissionStatus.IN_FLIGHT,
    SubmissionStatus.FAILED_RETRYABLE,
}


@dataclass(frozen=True)
class DrainResult:
    delivered: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    remaining: int = 0
    skipped: bool = False
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "delivered": len(self.delivered),
            "failed": len(self.failed),
            "remaining": self.remaining,
            "skipped": self.skipped,
            "reason": self.reason,
        }


class SubmissionQueue:
    def __init__(
        self,
        store: KeyValueStore,
        api: RemoteApi,
        monitor: ConnectivityMonitor,
        *,
        max_attempts: int = 5,
        backoff_initial_seconds: float = 30.0,
        backoff_max_seconds: float = 300.0,
        drain_on_enqueue: bool = True,
        clock: Clock = utc_now,
        on_session_expired: Callable[[], None] | None = None,
    ) -> None:
        self.store = store
        self.api = api
        self.monitor = monitor
        self.max_attempts = max_attempts
        self.backoff_initial_seconds = backoff_initial_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.drain_on_enqueue = drain_on_enqueue
        self.clock = clock
        self.on_session_expired = on_session_expired
        self._lock = threading.RLock()
        self._drain_lock = threading.Lock()

    @classmethod
    def from_config(cls, store: KeyValueStore, api: RemoteApi, monitor: ConnectivityMonitor, queue_cfg: dict, **kwargs) -> "SubmissionQueue":
        return cls(
            store,
            api,
            monitor,
            max_attempts=int(queue_cfg["max_attempts"]),
            backoff_initial_seconds=float(queue_cfg["backoff_initial_seconds"]),
            backoff_max_seconds=float(queue_cfg["backoff_max_seconds"]),
            **kwargs,
        )

    def _load(self) -> list[QueuedSubmission]:
        return [QueuedSubmission.from_dict(row) for row in get_json(self.store, QUEUE_KEY, [])]

    def _save(self, items: list[QueuedSubmission]) -> None:
        set_json(self.store, QUEUE_KEY, [item.to_dict() for item in items])

    def _update(self, submission_id: str, **changes: Any) -> QueuedSubmission | None:
        with self._lock:
            items = self._load()
            for idx, item in enumerate(items):
                if item.id == submission_id:
                    items[idx] = replace(item, **changes)
                    self._save(items)
                    return items[idx]
        return None

    def _remove(self, submission_id: str) -> bool:
        with self._lock:
            items = self._load()
            kept = [item for item in items if item.id != submission_id]
            if len(kept) == len(items):
                return False
            self._save(kept)
            return True

    def enqueue(self, payload: dict[str, Any], kind: str = "leak_report") -> str:
        item = QueuedSubmission(
            id=generate_submission_id(),
            payload=dict(payload),
            created_at=to_iso(self.clock()),
            kind=kind,
        )
        with self._lock:
            items = self._load()
            items.append(item)
            self._save(items)
        log_event(
            logger,
            f"queued {kind}",
            component="queue",
            event="ENQUEUED",
            status=item.status.value,
            submission_id=item.id,
        )
        if self.drain_on_enqueue and self.monitor.is_online():
            self.drain_once()
        return item.id

    def items(self) -> list[QueuedSubmission]:
        with self._lock:
            return self._load()

    def get(self, submission_id: str) -> QueuedSubmission | None:
        for item in self.items():
            if item.id == submission_id:
                return item
        return None

    def pending_count(self) -> int:
        return sum(1 for item in self.items() if item.status in OUTSTANDING)

    def failed_items(self) -> list[QueuedSubmission]:
        return [item for item in self.items() if item.status is SubmissionStatus.FAILED_PERMANENT]

    def recover_in_flight(self) -> int:
        """Reset submissions left in flight by a previous process to pending."""
        with self._lock:
            items = self._load()
            recovered = 0
            for idx, item in enumerate(items):
                if item.status is SubmissionStatus.IN_FLIGHT:
                    items[idx] = replace(item, status=SubmissionStatus.PENDING)
                    recovered += 1
            if recovered:
                self._save(items)
        if recovered:
            log_event(
                logger,
                f"recovered {recovered} unconfirmed submissions",
                component="queue",
                event="RECOVERED",
                status="pending",
            )
        return recovered

    def retry_failed(self, submission_id: str) -> bool:
        with self._lock:
            item = self.get(submission_id)
            if item is None or item.status is not SubmissionStatus.FAILED_PERMANENT:
                return False
            self._update(
                submission_id,
                status=SubmissionStatus.PENDING,
                attempt_count=0,
                last_error=None,
                next_attempt_at=None,
            )
        return True

    def discard(self, submission_id: str) -> bool:
        return self._remove(submission_id)

    def backoff_seconds(self, attempt: int) -> float:
        return min(self.backoff_initial_seconds * (2 ** max(attempt - 1, 0)), self.backoff_max_seconds)

    def _eligible(self, item: QueuedSubmission, now: datetime) -> bool:
        if item.status is SubmissionStatus.PENDING:
            return True
        if item.status is SubmissionStatus.FAILED_RETRYABLE:
            due = parse_iso(item.next_attempt_at)
            return due is None or due <= now
        return False

    def _claim(self, submission_id: str, now: datetime) -> QueuedSubmission | None:
        with self._lock:
            items = self._load()
            for idx, item in enumerate(items):
                if item.id == submission_id:
                    if not self._eligible(item, now):
                        return None
                    items[idx] = replace(item, status=SubmissionStatus.IN_FLIGHT)
                    self._save(items)
                    return items[idx]
        return None

    def _record_transient(self, item: QueuedSubmission, exc: Exception, now: datetime) -> bool:
        """Mark a transport failure; returns True when the item gave up for good."""
        attempts = item.attempt_count + 1
        if attempts >= self.max_attempts:
            self._update(
                item.id,
                status=SubmissionStatus.FAILED_PERMANENT,
                attempt_count=attempts,
                last_error=f"retries exhausted: {exc}",
                next_attempt_at=None,
            )
            return True
        self._update(
            item.id,
            status=SubmissionStatus.FAILED_RETRYABLE,
            attempt_count=attempts,
            last_error=str(exc),
            next_attempt_at=to_iso(now + timedelta(seconds=self.backoff_seconds(attempts))),
        )
        return False

    def _deliver(self, item: QueuedSubmission, now: datetime) -> str:
        try:
            self.api.submit_report(item.payload)
        except SubmissionRejectedError as exc:
            self._update(
                item.id,
                status=SubmissionStatus.FAILED_PERMANENT,
                attempt_count=item.attempt_count + 1,
                last_error=str(exc),
                next_attempt_at=None,
            )
            outcome, error_code = "rejected", exc.error_code
        except SessionExpiredError as exc:
            self._update(item.id, status=SubmissionStatus.PENDING)
            outcome, error_code = "session_expired", exc.error_code
        except HttpRequestError as exc:
            gave_up = self._record_transient(item, exc, now)
            outcome, error_code = ("exhausted" if gave_up else "retry"), exc.error_code
        except Exception as exc:
            logger.exception("unexpected failure submitting %s", item.id)
            gave_up = self._record_transient(item, exc, now)
            outcome, error_code = ("exhausted" if gave_up else "retry"), "UNEXPECTED_ERROR"
        else:
            self._remove(item.id)
            outcome, error_code = "delivered", None

        log_event(
            logger,
            f"submission {outcome}",
            level=logging.INFO if error_code is None else logging.WARNING,
            component="queue",
            event="SUBMIT",
            status=outcome,
            attempt=item.attempt_count + 1,
            submission_id=item.id,
            error_code=error_code,
        )
        return outcome

    def drain_once(self) -> DrainResult:
        if not self.monitor.is_online():
            return DrainResult(remaining=self.pending_count(), skipped=True, reason="offline")
        if not self._drain_lock.acquire(blocking=False):
            return DrainResult(remaining=self.pending_count(), skipped=True, reason="drain_in_progress")
        try:
            return self._drain()
        finally:
            self._drain_lock.release()

    def _drain(self) -> DrainResult:
        now = self.clock()
        candidates = [item.id for item in self.items() if self._eligible(item, now)]
        delivered: list[str] = []
        failed: list[str] = []
        reason = None

        for submission_id in candidates:
            if not self.monitor.is_online():
                reason = "went_offline"
                break
            item = self._claim(submission_id, now)
            if item is None:
                continue
            outcome = self._deliver(item, now)
            if outcome == "delivered":
                delivered.append(item.id)
            elif outcome in ("rejected", "exhausted"):
                failed.append(item.id)
            elif outcome == "session_expired":
                reason = "session_expired"
                if self.on_session_expired is not None:
                    self.on_session_expired()
                break

        result = DrainResult(
            delivered=delivered,
            failed=failed,
            remaining=self.pending_count(),
            reason=reason,
        )
        if candidates:
            summary = result.to_dict()
            summary["last_sync"] = to_iso(self.clock())
            set_json(self.store, SYNC_STATUS_KEY, summary)
        return result

    def last_sync_status(self) -> dict | None:
        return get_json(self.store, SYNC_STATUS_KEY)
