"""Periodic persistence of the form a user currently has open."""

from __future__ import annotations

from typing import Callable

from fieldsync.common.periodic import PeriodicTask
from fieldsync.drafts.store import DraftStore, SnapshotLike


class FormAutoSaver:
    def __init__(
        self,
        drafts: DraftStore,
        snapshot_provider: Callable[[], SnapshotLike | None],
        *,
        interval_seconds: float = 30.0,
    ) -> None:
        self.drafts = drafts
        self.snapshot_provider = snapshot_provider
        self._timer = PeriodicTask("form-autosave", interval_seconds, self.save_now)

    def open(self) -> None:
        self.drafts.set_form_active(True)
        self._timer.start()

    def changed(self, snapshot: SnapshotLike) -> bool:
        return self.drafts.save_current_form(snapshot)

    def save_now(self) -> bool:
        snapshot = self.snapshot_provider()
        if snapshot is None:
            return False
        return self.drafts.save_current_form(snapshot)

    def close(self, *, discard: bool = True) -> None:
        self._timer.stop()
        self.drafts.set_form_active(False)
        if discard:
            self.drafts.clear_current_form()
