"""Access to the cached reference dataset held in the durable store."""

from __future__ import annotations

from typing import Iterator

from fieldsync.common.constants import CHUNK_KEY_PREFIX, INDEX_KEY, MANIFEST_KEY
from fieldsync.common.models import DatasetManifest, ReferenceRecord
from fieldsync.storage.kv import KeyValueStore, get_json, set_json


def chunk_key(page: int) -> str:
    return f"{CHUNK_KEY_PREFIX}{page}"


def read_manifest(store: KeyValueStore) -> DatasetManifest:
    return DatasetManifest.from_dict(get_json(store, MANIFEST_KEY))


def write_manifest(store: KeyValueStore, manifest: DatasetManifest) -> None:
    set_json(store, MANIFEST_KEY, manifest.to_dict())


def write_chunk(store: KeyValueStore, page: int, records: list[ReferenceRecord]) -> None:
    set_json(store, chunk_key(page), [record.to_dict() for record in records])


def read_chunk(store: KeyValueStore, page: int) -> list[ReferenceRecord] | None:
    rows = get_json(store, chunk_key(page))
    if rows is None:
        return None
    return [ReferenceRecord.from_dict(row) for row in rows]


def stored_pages(store: KeyValueStore) -> list[int]:
    pages = []
    for key in store.keys(CHUNK_KEY_PREFIX):
        suffix = key[len(CHUNK_KEY_PREFIX):]
        if suffix.isdigit():
            pages.append(int(suffix))
    return sorted(pages)


def iter_chunks(store: KeyValueStore) -> Iterator[tuple[int, list[ReferenceRecord]]]:
    """Yield ``(page, records)`` one chunk at a time in page order."""
    for page in stored_pages(store):
        records = read_chunk(store, page)
        if records is not None:
            yield page, records


def iter_record_batches(store: KeyValueStore, batch_size: int) -> Iterator[list[tuple[int, int, ReferenceRecord]]]:
    """Yield ``(page, row, record)`` triples in batches of at most ``batch_size``."""
    batch: list[tuple[int, int, ReferenceRecord]] = []
    for page, records in iter_chunks(store):
        for row, record in enumerate(records):
            batch.append((page, row, record))
            if len(batch) >= batch_size:
                yield batch
                batch = []
    if batch:
        yield batch


def read_index(store: KeyValueStore) -> list[list] | None:
    return get_json(store, INDEX_KEY)


def write_index(store: KeyValueStore, entries: list[list]) -> None:
    set_json(store, INDEX_KEY, entries)


def clear_dataset(store: KeyValueStore) -> None:
    # Manifest first, so an interrupted clear never leaves "complete" pointing at missing chunks.
    store.delete(MANIFEST_KEY)
    store.delete(INDEX_KEY)
    store.delete_prefix(CHUNK_KEY_PREFIX)
