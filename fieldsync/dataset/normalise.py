"""Normalise raw customer/meter rows into validated reference records."""

from __future__ import annotations

from functools import lru_cache
from dataclasses import replace
from typing import Any

from pyproj import CRS, Transformer

from fieldsync.common.models import ReferenceRecord

WGS84_EPSG = 4326

ID_CANDIDATES = ["id", "_id", "customerId", "ID"]
ACCOUNT_CANDIDATES = ["accountNumber", "account_number", "accountNo", "AccountNumber"]
METER_CANDIDATES = ["meterNumber", "meter_number", "meterNo", "MeterNumber"]
ADDRESS_CANDIDATES = ["address", "Address", "fullAddress"]
DISTRICT_CANDIDATES = ["dma", "DMA", "district", "districtCode"]
LAT_CANDIDATES = ["latitude", "lat", "Latitude", "LAT"]
LON_CANDIDATES = ["longitude", "lng", "lon", "Longitude", "LNG"]

MODELLED_FIELDS = {
    *ID_CANDIDATES,
    *ACCOUNT_CANDIDATES,
    *METER_CANDIDATES,
    *ADDRESS_CANDIDATES,
    *DISTRICT_CANDIDATES,
    *LAT_CANDIDATES,
    *LON_CANDIDATES,
}


def _lookup_first(attributes: dict, candidates: list[str]) -> object | None:
    for key in candidates:
        if key in attributes and attributes[key] not in (None, ""):
            return attributes[key]
    return None


def _safe_float(value: object) -> float | None:
    if value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if result != result or result in (float("inf"), float("-inf")):
        return None
    return result


def _text(value: object | None) -> str:
    return str(value).strip() if value is not None else ""


def _parse_wkid(row: dict) -> int | None:
    spatial_ref = row.get("spatialReference")
    if not isinstance(spatial_ref, dict):
        geometry = row.get("geometry")
        spatial_ref = geometry.get("spatialReference") if isinstance(geometry, dict) else None
    if not isinstance(spatial_ref, dict):
        spatial_ref = {}
    wkid = spatial_ref.get("latestWkid") or spatial_ref.get("wkid") or row.get("wkid")
    if wkid is None:
        return None
    try:
        return int(wkid)
    except (TypeError, ValueError):
        return None


def valid_lat_lon(lat: float | None, lon: float | None) -> bool:
    if lat is None or lon is None:
        return False
    return -90 <= lat <= 90 and -180 <= lon <= 180


@lru_cache(maxsize=8)
def _transformer(source_epsg: int) -> Transformer:
    return Transformer.from_crs(CRS.from_epsg(source_epsg), CRS.from_epsg(WGS84_EPSG), always_xy=True)


def to_wgs84(lat: float, lon: float, source_epsg: int) -> tuple[float, float] | None:
    """Return ``(lat, lon)`` in WGS84, or None when the CRS is unusable."""
    if source_epsg == WGS84_EPSG:
        return lat, lon
    try:
        transformed_lon, transformed_lat = _transformer(source_epsg).transform(lon, lat)
    except Exception:
        return None
    return transformed_lat, transformed_lon


def extract_coordinates(row: dict, default_epsg: int = WGS84_EPSG) -> tuple[float | None, float | None]:
    lat = _safe_float(_lookup_first(row, LAT_CANDIDATES))
    lon = _safe_float(_lookup_first(row, LON_CANDIDATES))

    geometry = row.get("geometry")
    if (lat is None or lon is None) and isinstance(geometry, dict):
        geom_x = _safe_float(geometry.get("x"))
        geom_y = _safe_float(geometry.get("y"))
        if geom_x is not None and geom_y is not None:
            lat, lon = geom_y, geom_x

    if lat is None or lon is None:
        return None, None

    epsg = _parse_wkid(row) or default_epsg
    transformed = to_wgs84(lat, lon, epsg)
    if transformed is None:
        return None, None
    lat, lon = transformed
    if not valid_lat_lon(lat, lon):
        return None, None
    return lat, lon


def derive_record_id(row: dict, page: int, row_index: int) -> str:
    server_id = _lookup_first(row, ID_CANDIDATES)
    if server_id is not None:
        return _text(server_id)
    account = _text(_lookup_first(row, ACCOUNT_CANDIDATES))
    meter = _text(_lookup_first(row, METER_CANDIDATES))
    if account or meter:
        return f"{account}:{meter}"
    return positional_id(page, row_index)


def positional_id(page: int, row_index: int) -> str:
    return f"p{page}r{row_index}"


def normalise_row(row: dict, *, page: int, row_index: int, default_epsg: int = WGS84_EPSG) -> ReferenceRecord:
    lat, lon = extract_coordinates(row, default_epsg)
    return ReferenceRecord(
        id=derive_record_id(row, page, row_index),
        account_number=_text(_lookup_first(row, ACCOUNT_CANDIDATES)),
        meter_number=_text(_lookup_first(row, METER_CANDIDATES)),
        address=_text(_lookup_first(row, ADDRESS_CANDIDATES)),
        latitude=lat,
        longitude=lon,
        district=_text(_lookup_first(row, DISTRICT_CANDIDATES)),
        raw={key: value for key, value in row.items() if key not in MODELLED_FIELDS},
    )


def normalise_page(rows: list[dict[str, Any]], *, page: int, default_epsg: int = WGS84_EPSG) -> list[ReferenceRecord]:
    records: list[ReferenceRecord] = []
    seen_ids: set[str] = set()
    for row_index, row in enumerate(rows):
        record = normalise_row(row, page=page, row_index=row_index, default_epsg=default_epsg)
        if record.id in seen_ids:
            record = replace(record, id=positional_id(page, row_index))
        seen_ids.add(record.id)
        records.append(record)
    return records
