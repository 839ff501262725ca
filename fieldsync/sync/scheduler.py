"""Automatic draining of the submission queue."""

from __future__ import annotations

import logging
from typing import Callable

from fieldsync.common.logging import log_event
from fieldsync.common.periodic import PeriodicTask
from fieldsync.sync.connectivity import ConnectivityMonitor
from fieldsync.sync.queue import DrainResult, SubmissionQueue

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Drains on every offline->online transition and on a periodic safety-net timer."""

    def __init__(
        self,
        queue: SubmissionQueue,
        monitor: ConnectivityMonitor,
        *,
        interval_seconds: float = 180.0,
        on_drained: Callable[[DrainResult], None] | None = None,
    ) -> None:
        self.queue = queue
        self.monitor = monitor
        self.on_drained = on_drained
        self._timer = PeriodicTask("queue-drain", interval_seconds, self.tick)
        self._unsubscribe: Callable[[], None] | None = None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.monitor.subscribe(self._on_connectivity)
        self._timer.start()

    def stop(self) -> None:
        self._timer.stop()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_connectivity(self, online: bool) -> None:
        if online:
            log_event(logger, "connection restored, draining queue", component="scheduler", event="DRAIN_TRIGGER", status="online")
            self.drain()

    def tick(self) -> None:
        if self.monitor.probe is not None:
            # refresh() fires the transition listener, which drains on its own.
            was_online = self.monitor.is_online()
            if self.monitor.refresh() and was_online:
                self.drain()
            return
        self.drain()

    def drain(self) -> DrainResult:
        result = self.queue.drain_once()
        if not result.skipped and self.on_drained is not None:
            self.on_drained(result)
        return result
