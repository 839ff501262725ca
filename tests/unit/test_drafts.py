from __future__ import annotations

import pytest

from fieldsync.common.constants import CURRENT_FORM_KEY
from fieldsync.common.models import FormSnapshot
from fieldsync.drafts.autosave import FormAutoSaver
from fieldsync.drafts.store import DraftStore

SNAPSHOT = {
    "meterData": {"meterNumber": "M-1"},
    "leakType": "Pipe burst",
    "location": "Purok 3",
    "leakPhotos": ["file:///photos/1.jpg"],
    "leakLatitude": 7.07,
    "leakLongitude": 125.61,
    "reporterNote": "near the chapel",
}


@pytest.fixture
def drafts(store, clock) -> DraftStore:
    return DraftStore(store, clock=clock)


def test_form_snapshot_accepts_camel_case_and_keeps_unknown_fields():
    snapshot = FormSnapshot.from_dict(SNAPSHOT)

    assert snapshot.leak_type == "Pipe burst"
    assert snapshot.leak_photos == ["file:///photos/1.jpg"]
    assert snapshot.extra == {"reporterNote": "near the chapel"}
    assert FormSnapshot.from_dict(snapshot.to_dict()) == snapshot
    assert snapshot.to_payload() == SNAPSHOT


def test_empty_snapshot_has_no_data():
    assert FormSnapshot().has_data() is False
    assert FormSnapshot.from_dict({"leakPhotos": None}).has_data() is False
    assert FormSnapshot(leak_latitude=0.0).has_data() is True


def test_save_and_list_newest_first(drafts, clock):
    first = drafts.save(SNAPSHOT)
    clock.advance(60)
    second = drafts.save({"leakType": "Valve"}, offline_saved=True)

    listed = drafts.list()

    assert [d.id for d in listed] == [second, first]
    assert listed[0].offline_saved is True
    assert listed[1].snapshot.location == "Purok 3"


def test_update_and_delete(drafts, clock):
    draft_id = drafts.save(SNAPSHOT)
    clock.advance(5)

    assert drafts.update(draft_id, {"leakType": "Seepage"}) is True
    updated = drafts.get(draft_id)
    assert updated.snapshot.leak_type == "Seepage"
    assert updated.updated_at > updated.created_at

    assert drafts.delete(draft_id) is True
    assert drafts.delete(draft_id) is False
    assert drafts.update(draft_id, SNAPSHOT) is False
    assert drafts.list() == []


def test_clear_all(drafts):
    drafts.save(SNAPSHOT)
    drafts.save(SNAPSHOT)
    drafts.clear_all()
    assert drafts.list() == []


def test_current_form_only_saved_while_active(drafts, store):
    assert drafts.save_current_form(SNAPSHOT) is False
    assert store.get(CURRENT_FORM_KEY) is None

    drafts.set_form_active(True)
    assert drafts.save_current_form(SNAPSHOT) is True
    assert drafts.current_form() == FormSnapshot.from_dict(SNAPSHOT)


def test_saving_a_draft_clears_current_form(drafts):
    drafts.set_form_active(True)
    drafts.save_current_form(SNAPSHOT)

    drafts.save(SNAPSHOT)

    assert drafts.current_form() is None


def test_flush_promotes_active_form_to_auto_saved_draft(drafts):
    drafts.set_form_active(True)
    drafts.save_current_form(SNAPSHOT)

    draft_id = drafts.flush_current_form()

    draft = drafts.get(draft_id)
    assert draft.auto_saved is True
    assert draft.snapshot.leak_type == "Pipe burst"
    assert drafts.is_form_active() is False
    assert drafts.current_form() is None
    assert drafts.flush_current_form() is None


def test_flush_ignores_empty_form(drafts):
    drafts.set_form_active(True)
    drafts.save_current_form(FormSnapshot())
    assert drafts.flush_current_form() is None
    assert drafts.list() == []


def test_autosaver_saves_provider_snapshot(drafts):
    current = {"value": None}
    saver = FormAutoSaver(drafts, lambda: current["value"], interval_seconds=3600)

    saver.open()
    try:
        assert saver.save_now() is False
        current["value"] = SNAPSHOT
        assert saver.save_now() is True
        assert drafts.current_form().leak_type == "Pipe burst"

        assert saver.changed({"leakType": "Valve"}) is True
        assert drafts.current_form().leak_type == "Valve"
    finally:
        saver.close()

    assert drafts.is_form_active() is False
    assert drafts.current_form() is None


def test_autosaver_close_can_keep_form_for_recovery(drafts):
    saver = FormAutoSaver(drafts, lambda: SNAPSHOT, interval_seconds=3600)
    saver.open()
    saver.save_now()
    saver.close(discard=False)

    assert drafts.current_form() is not None
