"""Data models shared by the snapping engine and the batch pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

SNAPPED = "snapped"
EXTRAPOLATED_NO_MATCH = "extrapolated_no_match"
HEADING_REJECTED = "heading_rejected"
SNAP_FAILED = "snap_failed"
DUPLICATE_SKIPPED = "duplicate_skipped"

# Outcomes eligible for the duplicate guard. heading_rejected is still
# persisted but never duplicate-checked.
ACCEPTED_METHODS = (SNAPPED, EXTRAPOLATED_NO_MATCH)


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lon: float

    def __post_init__(self) -> None:
        if not (-90 <= self.lat <= 90 and -180 <= self.lon <= 180):
            raise ValueError(f"Coordinate out of range: lat={self.lat}, lon={self.lon}")


@dataclass(frozen=True)
class SourceRecord:
    key: Any
    point: GeoPoint
    heading: float
    country_code: str | None = None
    expected_value: Any = None
    accuracy: Any = None
    speed_limit_read_by_engine: Any = None
    override_type: str | None = None
    override_value: Any = None
    extra: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RoadMatch:
    point: GeoPoint
    road_heading: float | None
    provider_id: str
    way_id: Any
    way_name: str | None
    search_radius_m: float
    source_provider: str
    distance: float = 0.0


@dataclass(frozen=True)
class SnapOutcome:
    key: Any
    original_point: GeoPoint
    final_point: GeoPoint
    final_heading: float
    method: str
    message: str
    way_id: Any = None
    way_name: str | None = None
    provider_id: str | None = None
    search_radius_m: float | None = None
    snap_offset_m: float | None = None

    @property
    def accepted(self) -> bool:
        return self.method in ACCEPTED_METHODS


@dataclass(frozen=True)
class DuplicateCheck:
    duplicate: bool
    existing_id: Any = None


@dataclass(frozen=True)
class StoreBatch:
    """Authoritative rows plus the store's own pre-classification of a batch."""

    processed_count: int
    failed_count: int
    failed_ids: list[Any]
    skipped_count: int
    skipped_ids: list[Any]
    rows: list[dict[str, Any]]

    @classmethod
    def from_row(cls, row: Mapping[str, Any] | None, data_key: str) -> "StoreBatch":
        row = row or {}
        return cls(
            processed_count=int(row.get("processed_count") or 0),
            failed_count=int(row.get("failed_count") or 0),
            failed_ids=list(row.get("failed_ids") or []),
            skipped_count=int(row.get("skipped_count") or 0),
            skipped_ids=list(row.get("skipped_ids") or []),
            rows=list(row.get(data_key) or []),
        )
