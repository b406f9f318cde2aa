"""Override categories: request schema, store row mapping and written row shape."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from roadsnap.common.constants import DEFAULT_OVERRIDE_TYPE, OVERRIDE_SOURCE_TAG
from roadsnap.common.models import GeoPoint, SnapOutcome, SourceRecord
from roadsnap.pipeline.validate import (
    FieldSpec,
    ItemSchema,
    check_identifier,
    check_non_empty_string,
    check_non_negative_int,
    check_optional_number,
    check_override_type,
)


def build_point_key(tsp_name: str, trip_id: Any, event_index: Any) -> str:
    prefix = tsp_name if tsp_name.startswith("trips_") else f"trips_{tsp_name}"
    return f"{prefix}::{trip_id}::{event_index}"


def _point_item_key(item: dict) -> str:
    return build_point_key(str(item["tsp_name"]), item["trip_id"], item["event_index"])


def _point_row_key(row: dict) -> str:
    if row.get("point_key"):
        return str(row["point_key"])
    return build_point_key(str(row["tsp_name"]), row["trip_id"], row["event_index"])


def _float(row: dict, name: str) -> float:
    value = row.get(name)
    if value is None:
        raise ValueError(f"store row is missing {name}")
    return float(value)


@dataclass(frozen=True)
class CategorySpec:
    name: str
    log_tag: str
    list_field: str
    id_field: str
    subject: str
    created_subject: str
    noun_plural: str
    no_items_message: str
    item_schema: ItemSchema
    item_key: Callable[[dict], Any]
    row_key: Callable[[dict], Any]
    build_record: Callable[[dict], SourceRecord]
    build_override_row: Callable[[SourceRecord, SnapOutcome], dict]
    snap_to_road: bool = True
    check_duplicates: bool = False

    def label(self, key: Any) -> str:
        return f"{self.subject} {key}"

    def describe_item(self, item: dict) -> str:
        try:
            return f"{self.id_field} {self.item_key(item)}"
        except (KeyError, TypeError, AttributeError):
            return f"{self.id_field} (unknown id)"


# -- cluster ------------------------------------------------------------------


def _cluster_record(row: dict) -> SourceRecord:
    return SourceRecord(
        key=row["cluster_id"],
        point=GeoPoint(lat=_float(row, "lat"), lon=_float(row, "lon")),
        heading=_float(row, "bearing"),
        country_code=row.get("country_code_iso3") or None,
        accuracy=row.get("accuracy"),
        speed_limit_read_by_engine=row.get("speed_limit_read_by_engine"),
        override_type=row.get("override_type"),
        override_value=row.get("override_value"),
    )


def _cluster_override_row(record: SourceRecord, outcome: SnapOutcome) -> dict:
    return {
        "cluster_id": record.key,
        "lat": outcome.final_point.lat,
        "lon": outcome.final_point.lon,
        "bearing": outcome.final_heading,
        "accuracy": record.accuracy,
        "speed_limit_read_by_engine": record.speed_limit_read_by_engine,
        "override_type": record.override_type or DEFAULT_OVERRIDE_TYPE,
        "override_value": record.override_value,
        "expected_speed_sign_board_value": None if record.override_value else record.speed_limit_read_by_engine,
        "src": OVERRIDE_SOURCE_TAG,
    }


CLUSTER = CategorySpec(
    name="cluster",
    log_tag="CLUSTER",
    list_field="cluster_ids",
    id_field="cluster_id",
    subject="Cluster",
    created_subject="cluster id:",
    noun_plural="clusters",
    no_items_message="No valid clusters to process",
    item_schema=ItemSchema(
        fields=(
            FieldSpec("cluster_id", check_identifier),
            FieldSpec("type", check_override_type, required=False),
        )
    ),
    item_key=lambda item: item["cluster_id"],
    row_key=lambda row: row["cluster_id"],
    build_record=_cluster_record,
    build_override_row=_cluster_override_row,
)


# -- violation points ---------------------------------------------------------


_POINT_FIELDS = (
    FieldSpec("tsp_name", check_non_empty_string),
    FieldSpec("trip_id", check_identifier),
    FieldSpec("event_index", check_non_negative_int),
    FieldSpec("type", check_override_type, required=False),
)


def _violation_record(row: dict) -> SourceRecord:
    return SourceRecord(
        key=_point_row_key(row),
        point=GeoPoint(lat=_float(row, "lat"), lon=_float(row, "lon")),
        heading=_float(row, "bearing"),
        country_code=row.get("sign") or None,
        expected_value=row.get("expected_value"),
        accuracy=row.get("accuracy"),
        speed_limit_read_by_engine=row.get("speed_limit_read_by_engine"),
        override_type=row.get("override_type"),
        override_value=row.get("override_value"),
        extra={"violation_id": row.get("violation_id")},
    )


def _violation_override_row(record: SourceRecord, outcome: SnapOutcome) -> dict:
    return {
        "violation_id": record.extra.get("violation_id"),
        "point_key": record.key,
        "lat": outcome.final_point.lat,
        "lon": outcome.final_point.lon,
        "bearing": outcome.final_heading,
        "accuracy": record.accuracy,
        "speed_limit_read_by_engine": record.speed_limit_read_by_engine,
        "override_type": record.override_type,
        "override_speed_sign_board_value": record.override_value,
        "expected_speed_sign_board_value": None if record.override_value else record.expected_value,
        "src": OVERRIDE_SOURCE_TAG,
    }


VIOLATION = CategorySpec(
    name="violation",
    log_tag="ADAS",
    list_field="point_ids",
    id_field="point_id",
    subject="Point id:",
    created_subject="Point id:",
    noun_plural="points",
    no_items_message="No valid points to process",
    item_schema=ItemSchema(
        fields=(*_POINT_FIELDS, FieldSpec("OVERRIDE_VALUE", check_optional_number, required=False)),
        aliases={"OVERRIDE_VALUE": "override_value"},
    ),
    item_key=_point_item_key,
    row_key=_point_row_key,
    build_record=_violation_record,
    build_override_row=_violation_override_row,
    check_duplicates=True,
)


# -- stop signs ---------------------------------------------------------------


def _stop_sign_record(row: dict) -> SourceRecord:
    return SourceRecord(
        key=_point_row_key(row),
        point=GeoPoint(lat=_float(row, "ss_latitude"), lon=_float(row, "ss_longitude")),
        heading=_float(row, "ss_bearing"),
        accuracy=row.get("ss_accuracy"),
    )


def _stop_sign_override_row(record: SourceRecord, outcome: SnapOutcome) -> dict:
    return {
        "point_key": record.key,
        "ep_latitude": outcome.final_point.lat,
        "ep_longitude": outcome.final_point.lon,
        "ss_bearing": outcome.final_heading,
        "ss_accuracy": record.accuracy,
        "src": OVERRIDE_SOURCE_TAG,
    }


STOP_SIGN = CategorySpec(
    name="stop-sign",
    log_tag="STOP",
    list_field="point_ids",
    id_field="point_id",
    subject="Point id:",
    created_subject="Point id:",
    noun_plural="stop-sign events",
    no_items_message="No valid stop-sign events found",
    item_schema=ItemSchema(fields=_POINT_FIELDS),
    item_key=_point_item_key,
    row_key=_point_row_key,
    build_record=_stop_sign_record,
    build_override_row=_stop_sign_override_row,
    snap_to_road=False,
)


CATEGORY_SPECS = {spec.name: spec for spec in (CLUSTER, VIOLATION, STOP_SIGN)}
