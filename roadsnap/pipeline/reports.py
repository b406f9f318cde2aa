"""Batch report assembly: per-input details in input order plus aggregate counts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from roadsnap.common.models import SNAPPED, SnapOutcome, SourceRecord, StoreBatch
from roadsnap.pipeline.categories import CategorySpec

STATUS_SUCCESS = "success"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"
STATUS_NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ItemResult:
    """What happened to one fetched store row."""

    key: Any
    status: str
    method: str
    message: str
    record: SourceRecord | None = None
    outcome: SnapOutcome | None = None
    existing_id: Any = None


def _key(value: Any) -> str:
    return str(value)


def _unmatched_detail(spec: CategorySpec, key: Any, batch: StoreBatch, detailed: bool) -> tuple[str, Any]:
    failed = {_key(x) for x in batch.failed_ids}
    skipped = {_key(x) for x in batch.skipped_ids}
    label = spec.label(key)

    if _key(key) in failed:
        status, message = STATUS_NOT_FOUND, f"{label} not found or invalid"
    elif _key(key) in skipped:
        status, message = STATUS_SKIPPED, f"{label} skipped (already have active override)"
    else:
        status, message = STATUS_NOT_FOUND, f"{label} not processed"

    if detailed:
        return status, {spec.id_field: key, "status": status, "message": message}
    return status, message


def _result_detail(spec: CategorySpec, key: Any, result: ItemResult) -> dict[str, Any]:
    detail: dict[str, Any] = {
        spec.id_field: key,
        "status": result.status,
        "method": result.method,
        "message": result.message,
        "inserted": result.status == STATUS_SUCCESS,
    }
    if result.existing_id is not None:
        detail["existing_id"] = result.existing_id

    record = result.record
    if record is not None:
        detail["original"] = {
            "lat": record.point.lat,
            "lon": record.point.lon,
            "bearing": record.heading,
            "accuracy": record.accuracy,
            "speed_limit": record.speed_limit_read_by_engine,
            "override_value": record.override_value,
        }

    outcome = result.outcome
    if outcome is not None:
        detail["final"] = {
            "lat": outcome.final_point.lat,
            "lon": outcome.final_point.lon,
            "bearing": outcome.final_heading,
        }
        if outcome.method == SNAPPED:
            detail["snapped"] = {
                "way_id": outcome.way_id,
                "way_name": outcome.way_name,
                "provider": outcome.provider_id,
                "search_radius_m": outcome.search_radius_m,
                "snap_offset_m": outcome.snap_offset_m,
            }
    return detail


def build_details(
    spec: CategorySpec,
    items: list[dict],
    results: dict[str, ItemResult],
    batch: StoreBatch,
    detailed: bool,
) -> tuple[list[Any], list[tuple[Any, str]]]:
    """One detail per input item, in input order, with each item's status."""
    details: list[Any] = []
    statuses: list[tuple[Any, str]] = []
    for item in items:
        key = spec.item_key(item)
        result = results.get(_key(key))
        if result is None:
            status, detail = _unmatched_detail(spec, key, batch, detailed)
        else:
            status = result.status
            detail = _result_detail(spec, key, result) if detailed else result.message
        details.append(detail)
        statuses.append((key, status))
    return details, statuses


def summarise(statuses: list[tuple[Any, str]]) -> dict[str, Any]:
    processed = [key for key, status in statuses if status == STATUS_SUCCESS]
    skipped = [key for key, status in statuses if status == STATUS_SKIPPED]
    failed = [key for key, status in statuses if status in (STATUS_FAILED, STATUS_NOT_FOUND)]
    return {
        "total_requested": len(statuses),
        "processed_count": len(processed),
        "skipped_count": len(skipped),
        "failed_count": len(failed),
        "processed_ids": processed,
        "skipped_ids": skipped,
        "failed_ids": failed,
    }


def build_report(
    spec: CategorySpec,
    items: list[dict],
    results: dict[str, ItemResult],
    batch: StoreBatch,
    detailed: bool,
) -> dict[str, Any]:
    details, statuses = build_details(spec, items, results, batch, detailed)
    summary = summarise(statuses)

    if not results:
        if summary["skipped_count"] == len(items):
            message = f"All {len(items)} {spec.noun_plural} already have ACTIVE overrides"
        else:
            message = spec.no_items_message
    else:
        message = (
            f"Batch override completed: {summary['processed_count']} processed, "
            f"{summary['failed_count']} failed, {summary['skipped_count']} skipped"
        )

    return {
        "success": True,
        "message": message,
        "processed_count": summary["processed_count"],
        "skipped_count": summary["skipped_count"],
        "failed_count": summary["failed_count"],
        "details": details,
        "summary": summary,
    }


def error_body(message: str, details: list[Any] | None = None) -> dict[str, Any]:
    return {
        "success": False,
        "message": message,
        "processed_count": 0,
        "skipped_count": 0,
        "failed_count": 0,
        "details": list(details or []),
    }
