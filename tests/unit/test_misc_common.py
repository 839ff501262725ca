import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path

from fieldsync.common.ids import generate_draft_id, generate_submission_id
from fieldsync.common.logging import build_logger, log_event
from fieldsync.common.periodic import PeriodicTask
from fieldsync.common.time_utils import parse_iso, to_iso


def test_generated_ids_are_prefixed_and_unique():
    ids = {generate_submission_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(value.startswith("sub-") for value in ids)
    assert generate_draft_id().startswith("draft-")


def test_iso_roundtrip_and_bad_input():
    moment = datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)
    assert parse_iso(to_iso(moment)) == moment
    assert parse_iso("2026-03-01T08:30:00") == moment
    assert parse_iso("yesterday") is None
    assert parse_iso(None) is None


def test_periodic_task_runs_and_survives_failures():
    calls = []
    fired = threading.Event()

    def tick():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first tick fails")
        fired.set()

    task = PeriodicTask("test", 0.01, tick)
    task.start()
    try:
        assert fired.wait(2.0)
    finally:
        task.stop()
    assert task.running is False
    assert len(calls) >= 2


def test_build_logger_writes_json_lines(tmp_path: Path):
    logger = build_logger(tmp_path, level="INFO")
    child = logging.getLogger("fieldsync.sync.queue")

    log_event(child, "queued leak_report", component="queue", event="ENQUEUED", status="pending", submission_id="sub-1")
    for handler in logger.handlers:
        handler.flush()

    lines = (tmp_path / "logs" / "fieldsync.log.jsonl").read_text(encoding="utf-8").splitlines()
    payload = json.loads(lines[-1])
    assert payload["event"] == "ENQUEUED"
    assert payload["submission_id"] == "sub-1"
    assert payload["logger"] == "fieldsync.sync.queue"
    assert payload["page"] is None

    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
