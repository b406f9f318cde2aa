from __future__ import annotations

import psycopg
import pytest
from psycopg import sql
from psycopg.types.json import Jsonb

from roadsnap.common.errors import StoreError
from roadsnap.common.models import GeoPoint
from roadsnap.pipeline.store import PostgresOverrideStore, routines_for


class FakeCursor:
    def __init__(self, rows):
        self.rows = rows

    def fetchall(self):
        return self.rows


class FakeConnection:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.executed: list[tuple] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, query, params=None):
        self.executed.append((query, params))
        if self.error is not None and params is not None:
            raise self.error
        return FakeCursor(self.rows)


@pytest.fixture
def connect(monkeypatch):
    """Replace psycopg.connect; returns the list of connections handed out."""
    connections: list[FakeConnection] = []
    state = {"rows": [], "error": None}

    def fake_connect(dsn, **kwargs):
        conn = FakeConnection(rows=state["rows"], error=state["error"])
        conn.dsn = dsn
        conn.kwargs = kwargs
        connections.append(conn)
        return conn

    monkeypatch.setattr(psycopg, "connect", fake_connect)
    return connections, state


def _routine_call(conn):
    query, params = conn.executed[-1]
    return query, params


def test_call_function_pins_search_path_and_quotes_name(connect):
    connections, state = connect
    state["rows"] = [{"processed_count": 1}]
    store = PostgresOverrideStore("postgresql://example/db", connect_timeout=3)

    rows = store.call_function("get_batch_cluster_data_v2", [1, 2])

    assert rows == [{"processed_count": 1}]
    conn = connections[0]
    assert conn.dsn == "postgresql://example/db"
    assert conn.kwargs["connect_timeout"] == 3
    assert conn.executed[0] == ("SET search_path TO public", None)
    query, params = _routine_call(conn)
    assert isinstance(query, sql.Composed)
    assert sql.Identifier("get_batch_cluster_data_v2") in query.seq
    assert sql.SQL("SELECT * FROM ") in query.seq
    assert params == [1, 2]


def test_call_procedure_uses_call(connect):
    connections, _state = connect
    PostgresOverrideStore("dsn").call_procedure("write_stop_overrides", [[]])

    query, params = _routine_call(connections[0])
    assert sql.SQL("CALL ") in query.seq
    assert sql.Identifier("write_stop_overrides") in query.seq
    assert params == [[]]


def test_each_call_opens_its_own_connection(connect):
    connections, _state = connect
    store = PostgresOverrideStore("dsn")
    store.call_function("check_adas_duplicate", [1.0, 2.0, 3.0, 40])
    store.call_procedure("write_adas_overrides", [[]])
    assert len(connections) == 2


def test_database_error_becomes_store_error(connect):
    _connections, state = connect
    state["error"] = psycopg.OperationalError("server closed the connection")

    with pytest.raises(StoreError, match="get_batch_violation_data"):
        PostgresOverrideStore("dsn").call_function("get_batch_violation_data", [[]])


def test_procedure_error_becomes_store_error(connect):
    _connections, state = connect
    state["error"] = psycopg.errors.RaiseException("bad row")

    with pytest.raises(StoreError, match="write_batch_overrides"):
        PostgresOverrideStore("dsn").call_procedure("write_batch_overrides", [[]])


class RecordingStore(PostgresOverrideStore):
    def __init__(self, rows=None):
        super().__init__("dsn")
        self.rows = rows or []
        self.calls: list[tuple] = []

    def call_function(self, name, params):
        self.calls.append(("function", name, params))
        return self.rows

    def call_procedure(self, name, params):
        self.calls.append(("procedure", name, params))


@pytest.mark.parametrize("category", ["cluster", "violation"])
def test_fetch_batch_sends_one_jsonb_per_item(category):
    routines = routines_for(category)
    store = RecordingStore(rows=[{"processed_count": 1, routines.data_key: [{"x": 1}], "failed_ids": [9]}])
    items = [{"cluster_id": 1}, {"cluster_id": 9}]

    batch = store.fetch_batch(category, items)

    kind, name, params = store.calls[0]
    assert (kind, name) == ("function", routines.fetch_function)
    assert isinstance(params[0], list)
    assert all(isinstance(value, Jsonb) for value in params[0])
    assert [value.obj for value in params[0]] == items
    assert batch.rows == [{"x": 1}]
    assert batch.failed_ids == [9]


def test_fetch_batch_sends_stop_sign_items_as_one_document():
    store = RecordingStore(rows=[])
    items = [{"tsp_name": "acme", "trip_id": 3, "event_index": 0}]

    batch = store.fetch_batch("stop-sign", items)

    _kind, name, params = store.calls[0]
    assert name == "get_stop_sign_data"
    assert isinstance(params[0], Jsonb)
    assert params[0].obj == items
    assert batch.rows == []
    assert batch.processed_count == 0


def test_check_duplicate_parses_hit():
    store = RecordingStore(rows=[{"duplicate": True, "existing_id": 42}])

    check = store.check_duplicate(GeoPoint(lat=40.0, lon=-74.0), 90.0, 35)

    assert check.duplicate is True
    assert check.existing_id == 42
    assert store.calls[0] == ("function", "check_adas_duplicate", [40.0, -74.0, 90.0, 35])


def test_check_duplicate_without_rows_is_not_duplicate():
    check = RecordingStore(rows=[]).check_duplicate(GeoPoint(lat=1.0, lon=2.0), 0.0, None)
    assert check.duplicate is False
    assert check.existing_id is None


def test_write_overrides_wraps_rows_for_category_procedure():
    store = RecordingStore()
    rows = [{"cluster_id": 1, "src": "MANUAL"}]

    store.write_overrides("cluster", rows)

    kind, name, params = store.calls[0]
    assert (kind, name) == ("procedure", "write_batch_overrides")
    assert [value.obj for value in params[0]] == rows


def test_unknown_category_has_no_routines():
    with pytest.raises(StoreError):
        routines_for("speed-camera")
