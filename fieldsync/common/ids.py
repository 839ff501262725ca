"""Locally generated identifiers."""

from __future__ import annotations

import secrets
from datetime import datetime, timezone


def _stamp(prefix: str) -> str:
    now = datetime.now(tz=timezone.utc)
    # Sortable by creation time; the random suffix separates same-microsecond ids.
    return f"{now.strftime(prefix + '-%Y%m%dT%H%M%S%fZ')}-{secrets.token_hex(3)}"


def generate_submission_id() -> str:
    return _stamp("sub")


def generate_draft_id() -> str:
    return _stamp("draft")
