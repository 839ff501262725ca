"""Saved, not-yet-submitted report drafts and the current-form slot."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Any, Mapping

from fieldsync.common.constants import CURRENT_FORM_KEY, DRAFTS_KEY, FORM_ACTIVE_KEY
from fieldsync.common.ids import generate_draft_id
from fieldsync.common.logging import log_event
from fieldsync.common.models import Draft, FormSnapshot
from fieldsync.common.time_utils import Clock, to_iso, utc_now
from fieldsync.storage.kv import KeyValueStore, get_json, set_json

logger = logging.getLogger(__name__)

SnapshotLike = FormSnapshot | Mapping[str, Any]


def as_snapshot(snapshot: SnapshotLike) -> FormSnapshot:
    if isinstance(snapshot, FormSnapshot):
        return snapshot
    return FormSnapshot.from_dict(snapshot)


class DraftStore:
    def __init__(self, store: KeyValueStore, *, clock: Clock = utc_now) -> None:
        self.store = store
        self.clock = clock
        self._lock = threading.RLock()

    def _load(self) -> list[Draft]:
        return [Draft.from_dict(row) for row in get_json(self.store, DRAFTS_KEY, [])]

    def _save(self, drafts: list[Draft]) -> None:
        set_json(self.store, DRAFTS_KEY, [draft.to_dict() for draft in drafts])

    def save(self, snapshot: SnapshotLike, *, auto_saved: bool = False, offline_saved: bool = False) -> str:
        now = to_iso(self.clock())
        draft = Draft(
            id=generate_draft_id(),
            created_at=now,
            updated_at=now,
            snapshot=as_snapshot(snapshot),
            auto_saved=auto_saved,
            offline_saved=offline_saved,
        )
        with self._lock:
            drafts = self._load()
            drafts.insert(0, draft)
            self._save(drafts)
            # The form now lives in the drafts list.
            self.clear_current_form()
        log_event(
            logger,
            f"draft saved (auto_saved={auto_saved}, offline_saved={offline_saved})",
            component="drafts",
            event="DRAFT_SAVED",
            status="ok",
        )
        return draft.id

    def update(self, draft_id: str, snapshot: SnapshotLike) -> bool:
        with self._lock:
            drafts = self._load()
            for idx, draft in enumerate(drafts):
                if draft.id == draft_id:
                    drafts[idx] = replace(draft, snapshot=as_snapshot(snapshot), updated_at=to_iso(self.clock()))
                    self._save(drafts)
                    return True
        return False

    def delete(self, draft_id: str) -> bool:
        with self._lock:
            drafts = self._load()
            kept = [draft for draft in drafts if draft.id != draft_id]
            if len(kept) == len(drafts):
                return False
            self._save(kept)
            return True

    def get(self, draft_id: str) -> Draft | None:
        for draft in self.list():
            if draft.id == draft_id:
                return draft
        return None

    def list(self) -> list[Draft]:
        with self._lock:
            drafts = self._load()
        return sorted(drafts, key=lambda draft: draft.created_at, reverse=True)

    def clear_all(self) -> None:
        with self._lock:
            self.store.delete(DRAFTS_KEY)

    def set_form_active(self, active: bool) -> None:
        if active:
            self.store.set(FORM_ACTIVE_KEY, b"true")
        else:
            self.store.delete(FORM_ACTIVE_KEY)

    def is_form_active(self) -> bool:
        return self.store.get(FORM_ACTIVE_KEY) == b"true"

    def save_current_form(self, snapshot: SnapshotLike) -> bool:
        """Persist the open form for recovery; ignored unless the form is active."""
        if not self.is_form_active():
            return False
        payload = as_snapshot(snapshot).to_dict()
        payload["saved_at"] = to_iso(self.clock())
        set_json(self.store, CURRENT_FORM_KEY, payload)
        return True

    def current_form(self) -> FormSnapshot | None:
        payload = get_json(self.store, CURRENT_FORM_KEY)
        if payload is None:
            return None
        payload.pop("saved_at", None)
        return FormSnapshot.from_dict(payload)

    def clear_current_form(self) -> None:
        self.store.delete(CURRENT_FORM_KEY)

    def flush_current_form(self) -> str | None:
        """Promote the open form to an auto-saved draft, if it holds anything."""
        with self._lock:
            snapshot = self.current_form()
            if not self.is_form_active() or snapshot is None or not snapshot.has_data():
                return None
            draft_id = self.save(snapshot, auto_saved=True)
            self.set_form_active(False)
        return draft_id
