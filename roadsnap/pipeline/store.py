"""External override store boundary.

The store owns referential validation and bookkeeping through PostgreSQL
stored functions; this module only calls them. Every call runs in its own
transaction and database errors surface as ``StoreError`` without retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from roadsnap.common.errors import StoreError
from roadsnap.common.logging import log_event
from roadsnap.common.models import DuplicateCheck, GeoPoint, StoreBatch

logger = logging.getLogger(__name__)


class OverrideStore(Protocol):
    def fetch_batch(self, category: str, items: list[dict[str, Any]]) -> StoreBatch: ...

    def check_duplicate(self, point: GeoPoint, heading: float, expected_value: Any) -> DuplicateCheck: ...

    def write_overrides(self, category: str, rows: list[dict[str, Any]]) -> None: ...


@dataclass(frozen=True)
class StoreRoutines:
    fetch_function: str
    data_key: str
    write_procedure: str
    # get_stop_sign_data takes one JSON document rather than a jsonb[] array.
    fetch_as_document: bool = False


STORE_ROUTINES = {
    "cluster": StoreRoutines("get_batch_cluster_data_v2", "cluster_data", "write_batch_overrides"),
    "violation": StoreRoutines("get_batch_violation_data", "violation_data", "write_adas_overrides"),
    "stop-sign": StoreRoutines("get_stop_sign_data", "stop_data", "write_stop_overrides", fetch_as_document=True),
}
DUPLICATE_CHECK_FUNCTION = "check_adas_duplicate"


def routines_for(category: str) -> StoreRoutines:
    try:
        return STORE_ROUTINES[category]
    except KeyError as exc:
        raise StoreError(f"No store routines registered for category {category}") from exc


class PostgresOverrideStore:
    def __init__(self, dsn: str, *, connect_timeout: int = 5) -> None:
        self.dsn = dsn
        self.connect_timeout = connect_timeout

    def _connect(self) -> psycopg.Connection:
        return psycopg.connect(self.dsn, row_factory=dict_row, connect_timeout=self.connect_timeout)

    def call_function(self, name: str, params: list[Any]) -> list[dict[str, Any]]:
        placeholders = sql.SQL(", ").join(sql.Placeholder() for _ in params)
        query = sql.SQL("SELECT * FROM {}({})").format(sql.Identifier(name), placeholders)
        try:
            with self._connect() as conn:
                conn.execute("SET search_path TO public")
                return conn.execute(query, params).fetchall()
        except psycopg.Error as exc:
            log_event(
                logger,
                f"store function {name} failed",
                level=logging.ERROR,
                event="STORE_ERROR",
                error_code=StoreError.error_code,
            )
            raise StoreError(f"Store function {name} failed: {exc}") from exc

    def call_procedure(self, name: str, params: list[Any]) -> None:
        placeholders = sql.SQL(", ").join(sql.Placeholder() for _ in params)
        query = sql.SQL("CALL {}({})").format(sql.Identifier(name), placeholders)
        try:
            with self._connect() as conn:
                conn.execute("SET search_path TO public")
                conn.execute(query, params)
        except psycopg.Error as exc:
            log_event(
                logger,
                f"store procedure {name} failed",
                level=logging.ERROR,
                event="STORE_ERROR",
                error_code=StoreError.error_code,
            )
            raise StoreError(f"Store procedure {name} failed: {exc}") from exc

    def fetch_batch(self, category: str, items: list[dict[str, Any]]) -> StoreBatch:
        routines = routines_for(category)
        payload = Jsonb(items) if routines.fetch_as_document else [Jsonb(item) for item in items]
        rows = self.call_function(routines.fetch_function, [payload])
        return StoreBatch.from_row(rows[0] if rows else None, routines.data_key)

    def check_duplicate(self, point: GeoPoint, heading: float, expected_value: Any) -> DuplicateCheck:
        rows = self.call_function(DUPLICATE_CHECK_FUNCTION, [point.lat, point.lon, heading, expected_value])
        if not rows:
            return DuplicateCheck(duplicate=False)
        row = rows[0]
        return DuplicateCheck(duplicate=bool(row.get("duplicate")), existing_id=row.get("existing_id"))

    def write_overrides(self, category: str, rows: list[dict[str, Any]]) -> None:
        routines = routines_for(category)
        self.call_procedure(routines.write_procedure, [[Jsonb(row) for row in rows]])
