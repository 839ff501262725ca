"""Data models used across the offline subsystem."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Mapping


class ManifestStatus(str, Enum):
    NOT_STARTED = "not_started"
    PARTIAL = "partial"
    COMPLETE = "complete"


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_PERMANENT = "failed_permanent"
    DELIVERED = "delivered"


@dataclass(frozen=True)
class ReferenceRecord:
    id: str
    account_number: str
    meter_number: str
    address: str
    latitude: float | None
    longitude: float | None
    district: str
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def entity_key(self) -> str:
        return self.meter_number or self.account_number or self.id

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ReferenceRecord":
        return cls(
            id=str(payload["id"]),
            account_number=payload.get("account_number") or "",
            meter_number=payload.get("meter_number") or "",
            address=payload.get("address") or "",
            latitude=payload.get("latitude"),
            longitude=payload.get("longitude"),
            district=payload.get("district") or "",
            raw=dict(payload.get("raw") or {}),
        )


@dataclass(frozen=True)
class DatasetManifest:
    """Download progress. ``pages_received`` maps page number to its record count."""

    status: ManifestStatus = ManifestStatus.NOT_STARTED
    total_records: int = 0
    page_size: int = 0
    total_pages: int = 0
    pages_received: dict[int, int] = field(default_factory=dict)
    indexed_records: int = 0
    updated_at: str | None = None

    @property
    def chunks_received(self) -> int:
        return len(self.pages_received)

    @property
    def records_received(self) -> int:
        return sum(self.pages_received.values())

    def missing_pages(self) -> list[int]:
        return [page for page in range(1, self.total_pages + 1) if page not in self.pages_received]

    def with_page(self, page: int, record_count: int, updated_at: str) -> "DatasetManifest":
        pages = dict(self.pages_received)
        pages[page] = record_count
        return replace(self, pages_received=pages, updated_at=updated_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "total_records": self.total_records,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
            "pages_received": {str(page): count for page, count in sorted(self.pages_received.items())},
            "indexed_records": self.indexed_records,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> "DatasetManifest":
        if not payload:
            return cls()
        return cls(
            status=ManifestStatus(payload.get("status", ManifestStatus.NOT_STARTED.value)),
            total_records=int(payload.get("total_records", 0)),
            page_size=int(payload.get("page_size", 0)),
            total_pages=int(payload.get("total_pages", 0)),
            pages_received={int(page): int(count) for page, count in (payload.get("pages_received") or {}).items()},
            indexed_records=int(payload.get("indexed_records", 0)),
            updated_at=payload.get("updated_at"),
        )


@dataclass(frozen=True)
class QueuedSubmission:
    id: str
    payload: dict[str, Any]
    created_at: str
    kind: str = "leak_report"
    status: SubmissionStatus = SubmissionStatus.PENDING
    attempt_count: int = 0
    last_error: str | None = None
    next_attempt_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["status"] = self.status.value
        return out

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "QueuedSubmission":
        return cls(
            id=str(payload["id"]),
            payload=dict(payload.get("payload") or {}),
            created_at=payload["created_at"],
            kind=payload.get("kind", "leak_report"),
            status=SubmissionStatus(payload.get("status", SubmissionStatus.PENDING.value)),
            attempt_count=int(payload.get("attempt_count", 0)),
            last_error=payload.get("last_error"),
            next_attempt_at=payload.get("next_attempt_at"),
        )


# Form fields as the UI and the remote API name them.
FORM_FIELD_ALIASES = {
    "meter_data": "meterData",
    "leak_type": "leakType",
    "location": "location",
    "landmark": "landmark",
    "leak_photos": "leakPhotos",
    "landmark_photo": "landmarkPhoto",
    "leak_latitude": "leakLatitude",
    "leak_longitude": "leakLongitude",
}
_CAMEL_TO_SNAKE = {camel: snake for snake, camel in FORM_FIELD_ALIASES.items()}


@dataclass(frozen=True)
class FormSnapshot:
    meter_data: dict[str, Any] | None = None
    leak_type: str | None = None
    location: str | None = None
    landmark: str | None = None
    leak_photos: list[str] = field(default_factory=list)
    landmark_photo: str | None = None
    leak_latitude: float | None = None
    leak_longitude: float | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def has_data(self) -> bool:
        return bool(
            self.meter_data
            or self.leak_type
            or self.location
            or self.landmark
            or self.leak_photos
            or self.landmark_photo
            or self.leak_latitude is not None
            or self.leak_longitude is not None
        )

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> "FormSnapshot":
        known: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in (payload or {}).items():
            snake = _CAMEL_TO_SNAKE.get(key, key)
            if snake in FORM_FIELD_ALIASES:
                known[snake] = value
            elif key == "extra" and isinstance(value, dict):
                extra.update(value)
            else:
                extra[key] = value
        if known.get("leak_photos") is None:
            known["leak_photos"] = []
        else:
            known["leak_photos"] = list(known["leak_photos"])
        return cls(**known, extra=extra)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_payload(self) -> dict[str, Any]:
        """Submission body in the remote API's field naming."""
        body = dict(self.extra)
        for snake, camel in FORM_FIELD_ALIASES.items():
            value = getattr(self, snake)
            if value is None or value == []:
                continue
            body[camel] = value
        return body


@dataclass(frozen=True)
class Draft:
    id: str
    created_at: str
    updated_at: str
    snapshot: FormSnapshot
    auto_saved: bool = False
    offline_saved: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "auto_saved": self.auto_saved,
            "offline_saved": self.offline_saved,
            "snapshot": self.snapshot.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Draft":
        return cls(
            id=str(payload["id"]),
            created_at=payload["created_at"],
            updated_at=payload.get("updated_at", payload["created_at"]),
            snapshot=FormSnapshot.from_dict(payload.get("snapshot")),
            auto_saved=bool(payload.get("auto_saved", False)),
            offline_saved=bool(payload.get("offline_saved", False)),
        )
