"""Free-text lookup of cached meters."""

from __future__ import annotations

from fieldsync.common.constants import DEFAULT_SEARCH_LIMIT, MIN_SEARCH_QUERY_LENGTH
from fieldsync.common.models import ReferenceRecord
from fieldsync.dataset.cache import iter_chunks
from fieldsync.storage.kv import KeyValueStore


def _matches(record: ReferenceRecord, needle: str) -> bool:
    return any(
        needle in value.lower()
        for value in (record.account_number, record.meter_number, record.address)
        if value
    )


def search_records(store: KeyValueStore, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> list[ReferenceRecord]:
    needle = (query or "").strip().lower()
    if len(needle) < MIN_SEARCH_QUERY_LENGTH:
        return []

    results: list[ReferenceRecord] = []
    for _page, records in iter_chunks(store):
        for record in records:
            if _matches(record, needle):
                results.append(record)
                if len(results) >= limit:
                    return results
    return results
