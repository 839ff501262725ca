"""Nearest-meter search over the cached reference dataset."""

from __future__ import annotations

import bisect
import math
from dataclasses import dataclass
from typing import Generic, Iterable, TypeVar

from fieldsync.common.constants import EARTH_RADIUS_M
from fieldsync.common.models import ReferenceRecord
from fieldsync.dataset.cache import iter_record_batches, read_chunk, read_index
from fieldsync.dataset.normalise import valid_lat_lon
from fieldsync.storage.kv import KeyValueStore

T = TypeVar("T")


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float


@dataclass(frozen=True)
class NearestMeter:
    record: ReferenceRecord
    distance_m: float

    def to_dict(self) -> dict:
        out = self.record.to_dict()
        out["distance_m"] = round(self.distance_m, 2)
        return out


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


class BoundedTopK(Generic[T]):
    """Keep the ``k`` smallest-distance items, sorted ascending."""

    def __init__(self, k: int) -> None:
        self.k = k
        self._entries: list[tuple[float, T]] = []

    def offer(self, distance: float, item: T) -> bool:
        if self.k <= 0:
            return False
        if len(self._entries) >= self.k:
            if distance >= self._entries[-1][0]:
                return False
            self._entries.pop()
        bisect.insort(self._entries, (distance, item), key=lambda entry: entry[0])
        return True

    def items(self) -> list[tuple[float, T]]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


def _closest_per_entity(candidates: Iterable[tuple[float, float, str, int, int]], origin: Coordinate) -> dict[str, tuple[float, int, int]]:
    best: dict[str, tuple[float, int, int]] = {}
    for lat, lng, entity_key, page, row in candidates:
        if not valid_lat_lon(lat, lng):
            continue
        distance = haversine_m(origin.lat, origin.lng, lat, lng)
        current = best.get(entity_key)
        if current is None or distance < current[0]:
            best[entity_key] = (distance, page, row)
    return best


def _index_candidates(entries: list[list]) -> Iterable[tuple[float, float, str, int, int]]:
    for entry in entries:
        if len(entry) != 5:
            continue
        lat, lng, entity_key, page, row = entry
        yield lat, lng, str(entity_key), int(page), int(row)


def _chunk_candidates(store: KeyValueStore, batch_size: int) -> Iterable[tuple[float, float, str, int, int]]:
    for batch in iter_record_batches(store, batch_size):
        for page, row, record in batch:
            if record.has_coordinates:
                yield record.latitude, record.longitude, record.entity_key, page, row


def find_nearest(
    store: KeyValueStore,
    origin: Coordinate,
    k: int = 3,
    *,
    batch_size: int = 5000,
) -> list[NearestMeter]:
    """Return up to ``k`` distinct meters closest to ``origin``, nearest first.

    Uses the flat index written by the downloader when present and
    otherwise streams the cached chunks. An empty cache yields an empty
    list; callers check the manifest to tell "not downloaded" apart.
    """
    if not valid_lat_lon(origin.lat, origin.lng):
        raise ValueError(f"Invalid origin coordinate: {origin}")

    entries = read_index(store)
    if entries is not None:
        best = _closest_per_entity(_index_candidates(entries), origin)
    else:
        best = _closest_per_entity(_chunk_candidates(store, batch_size), origin)

    top: BoundedTopK[tuple[int, int]] = BoundedTopK(k)
    for distance, page, row in best.values():
        top.offer(distance, (page, row))

    chunks: dict[int, list[ReferenceRecord] | None] = {}
    results: list[NearestMeter] = []
    for distance, (page, row) in top.items():
        if page not in chunks:
            chunks[page] = read_chunk(store, page)
        records = chunks[page]
        if records is None or row >= len(records):
            continue
        results.append(NearestMeter(record=records[row], distance_m=distance))
    return results
