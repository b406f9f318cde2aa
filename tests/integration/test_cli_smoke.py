import json
from pathlib import Path

import pytest

from roadsnap import cli
from roadsnap.common.constants import EXIT_HARD_FAIL, EXIT_PARTIAL, EXIT_SUCCESS
from roadsnap.common.models import DuplicateCheck, StoreBatch


class FakeStore:
    def __init__(self, batch):
        self.batch = batch
        self.writes = []

    def fetch_batch(self, category, items):
        return self.batch

    def check_duplicate(self, point, heading, expected_value):
        return DuplicateCheck(duplicate=False)

    def write_overrides(self, category, rows):
        self.writes.append((category, rows))


def _stop_sign_batch(*, failed_ids=()):
    row = {
        "point_key": "trips_acme::3::0",
        "ss_latitude": 12.0,
        "ss_longitude": 77.0,
        "ss_bearing": 180.0,
        "ss_accuracy": 3.0,
    }
    return StoreBatch(
        processed_count=1,
        failed_count=len(failed_ids),
        failed_ids=list(failed_ids),
        skipped_count=0,
        skipped_ids=[],
        rows=[row],
    )


@pytest.fixture
def store(monkeypatch):
    holder = {"store": FakeStore(_stop_sign_batch())}
    monkeypatch.setenv("OVERRIDE_STORE_DSN", "postgresql://example/overrides")
    monkeypatch.setattr(cli, "PostgresOverrideStore", lambda dsn: holder["store"])
    return holder


def _write_request(tmp_path: Path, body) -> Path:
    path = tmp_path / "request.json"
    path.write_text(json.dumps(body), encoding="utf-8")
    return path


def _args(tmp_path: Path, request: Path, *extra: str):
    return cli.parse_args(
        ["stop-sign", "--request", str(request), "--config-dir", "config", "--log-dir", str(tmp_path / "logs"), *extra]
    )


@pytest.mark.integration
def test_cli_stop_sign_batch_writes_output_and_succeeds(tmp_path: Path, store, capsys):
    request = _write_request(tmp_path, {"point_ids": [{"tsp_name": "acme", "trip_id": 3, "event_index": 0}]})
    output = tmp_path / "out" / "response.json"

    exit_code = cli.run_command(_args(tmp_path, request, "--output", str(output), "--detailed"))

    assert exit_code == EXIT_SUCCESS
    printed = json.loads(capsys.readouterr().out)
    assert printed["status_code"] == 200
    assert printed["processed_count"] == 1
    assert printed["details"][0]["point_id"] == "trips_acme::3::0"
    assert json.loads(output.read_text(encoding="utf-8")) == printed
    assert store["store"].writes[0][0] == "stop-sign"
    assert (tmp_path / "logs" / "roadsnap.log.jsonl").exists()


@pytest.mark.integration
def test_cli_partial_batch_exits_partial(tmp_path: Path, store, capsys):
    store["store"] = FakeStore(_stop_sign_batch(failed_ids=["trips_acme::3::1"]))
    request = _write_request(
        tmp_path,
        {
            "point_ids": [
                {"tsp_name": "acme", "trip_id": 3, "event_index": 0},
                {"tsp_name": "acme", "trip_id": 3, "event_index": 1},
            ]
        },
    )

    exit_code = cli.run_command(_args(tmp_path, request))

    assert exit_code == EXIT_PARTIAL
    printed = json.loads(capsys.readouterr().out)
    assert printed["processed_count"] == 1
    assert printed["failed_count"] == 1


@pytest.mark.integration
def test_cli_invalid_request_exits_hard_fail(tmp_path: Path, store, capsys):
    request = _write_request(tmp_path, {"point_ids": []})

    exit_code = cli.run_command(_args(tmp_path, request))

    assert exit_code == EXIT_HARD_FAIL
    assert json.loads(capsys.readouterr().out)["status_code"] == 400


@pytest.mark.integration
def test_cli_missing_dsn_exits_hard_fail(tmp_path: Path, monkeypatch, capsys):
    monkeypatch.delenv("OVERRIDE_STORE_DSN", raising=False)
    request = _write_request(tmp_path, {"point_ids": [{"tsp_name": "acme", "trip_id": 3, "event_index": 0}]})

    exit_code = cli.main(["stop-sign", "--request", str(request), "--config-dir", "config"])

    assert exit_code == EXIT_HARD_FAIL
    assert "CONFIG_ERROR" in capsys.readouterr().err
