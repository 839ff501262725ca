"""Idle-timeout logout that saves the open form before tearing down the session."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Callable

from fieldsync.common.constants import ACTIVITY_KEY, SESSION_PREFIX
from fieldsync.common.logging import log_event
from fieldsync.common.periodic import PeriodicTask
from fieldsync.common.time_utils import Clock, parse_iso, to_iso, utc_now
from fieldsync.drafts.store import DraftStore
from fieldsync.storage.kv import KeyValueStore, get_json, set_json

logger = logging.getLogger(__name__)

REASON_IDLE = "idle_timeout"
REASON_SESSION_EXPIRED = "session_expired"


class IdleLogoutGuard:
    def __init__(
        self,
        store: KeyValueStore,
        drafts: DraftStore,
        *,
        idle_timeout_seconds: float = 5 * 60 * 60,
        check_interval_seconds: float = 5 * 60,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.drafts = drafts
        self.idle_timeout = timedelta(seconds=idle_timeout_seconds)
        self.clock = clock
        self._listeners: list[Callable[[str], None]] = []
        self._timer = PeriodicTask("idle-check", check_interval_seconds, self.check_idle)

    def on_logout(self, listener: Callable[[str], None]) -> None:
        self._listeners.append(listener)

    def record_activity(self) -> None:
        set_json(self.store, ACTIVITY_KEY, to_iso(self.clock()))

    def last_activity(self):
        return parse_iso(get_json(self.store, ACTIVITY_KEY))

    def start(self) -> bool:
        """Begin monitoring; returns False if the stored session had already idled out."""
        if self.last_activity() is None:
            self.record_activity()
        elif self.check_idle():
            return False
        self._timer.start()
        return True

    def stop(self) -> None:
        self._timer.stop()

    def check_idle(self) -> bool:
        last = self.last_activity()
        if last is None:
            return False
        if self.clock() - last < self.idle_timeout:
            return False
        self.logout(REASON_IDLE)
        return True

    def handle_session_expiry(self) -> None:
        self.logout(REASON_SESSION_EXPIRED)

    def logout(self, reason: str) -> str | None:
        draft_id = self.drafts.flush_current_form()
        self.store.delete(ACTIVITY_KEY)
        self.store.delete_prefix(SESSION_PREFIX)
        log_event(
            logger,
            f"logged out ({reason})" + (f", open form saved as {draft_id}" if draft_id else ""),
            component="session",
            event="LOGOUT",
            status=reason,
        )
        for listener in list(self._listeners):
            try:
                listener(reason)
            except Exception:
                logger.exception("logout listener failed")
        return draft_id
