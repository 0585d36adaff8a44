from __future__ import annotations

import json

import pytest

from sheets_etl import cli
from sheets_etl.etl.sync_service import JobFailure, LoadReport, RunReport

CONFIG = {
    "$schema": "./config-schema.json",
    "D1": {"Sheet1": {"targetTable": "people", "columnMapping": {"name": "Name"}}},
}


class _FakeAgent:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class _FakeService:
    def __init__(self, report: RunReport) -> None:
        self.report = report
        self.calls = []

    def run_once(self, jobs, **kwargs):
        self.calls.append((list(jobs), kwargs))
        return self.report


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in ("DATABASE_URL", "ETL_CONFIG_FILE", "LOG_FILE", "TABLE_PREFIX", "DATABASE_SCHEMA"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ETL_CONFIG_FILE", str(tmp_path / "etl-config.json"))
    (tmp_path / "etl-config.json").write_text(json.dumps(CONFIG), encoding="utf-8")
    return tmp_path


def _install(monkeypatch, report: RunReport):
    service, agent = _FakeService(report), _FakeAgent()
    monkeypatch.setattr(cli, "build_from_settings", lambda config: (service, agent, None))
    return service, agent


def test_full_run_ok(workdir, monkeypatch):
    service, agent = _install(monkeypatch, RunReport(load=LoadReport(loaded=1)))

    assert cli.main([]) == 0

    jobs, kwargs = service.calls[0]
    assert [(j.document_id, j.sub_table_name) for j in jobs] == [("D1", "Sheet1")]
    assert kwargs["discover"] and kwargs["load"] and kwargs["verify"]
    assert agent.closed


def test_job_failures_exit_non_zero(workdir, monkeypatch):
    failure = JobFailure("D1", "Sheet1", "COLUMN_NOT_FOUND", "Columna requerida no encontrada: 'Email'")
    _install(monkeypatch, RunReport(load=LoadReport(failures=[failure])))

    assert cli.main([]) == 1


def test_discover_only_does_not_read_job_config(workdir, monkeypatch):
    (workdir / "etl-config.json").unlink()
    service, _ = _install(monkeypatch, RunReport())

    assert cli.main(["--discover-only", "--limit", "20", "--no-verify"]) == 0

    jobs, kwargs = service.calls[0]
    assert jobs == []
    assert kwargs["load"] is False
    assert kwargs["verify"] is False
    assert kwargs["discover_limit"] == 20


def test_load_only(workdir, monkeypatch):
    service, _ = _install(monkeypatch, RunReport(load=LoadReport()))
    assert cli.main(["--load-only"]) == 0
    assert service.calls[0][1]["discover"] is False


def test_invalid_config_exits_with_config_error(workdir, monkeypatch):
    (workdir / "etl-config.json").write_text(json.dumps({"D1": {"S": {"columnMapping": {}}}}), encoding="utf-8")
    _install(monkeypatch, RunReport())
    assert cli.main([]) == 2


def test_explicit_config_path(workdir, monkeypatch):
    other = workdir / "otro.json"
    other.write_text(json.dumps({"D9": {"S": {"targetTable": "t", "columnMapping": {"a": 0}}}}), encoding="utf-8")
    service, _ = _install(monkeypatch, RunReport(load=LoadReport()))

    assert cli.main(["--config", str(other)]) == 0
    assert service.calls[0][0][0].document_id == "D9"


def test_locked_out_run_is_not_an_error(workdir, monkeypatch):
    _install(monkeypatch, RunReport(locked_out=True))
    assert cli.main([]) == 0


def test_discover_only_and_load_only_are_exclusive(workdir):
    with pytest.raises(SystemExit):
        cli.main(["--discover-only", "--load-only"])


@pytest.mark.parametrize("value", ["0", "-5"])
def test_limit_below_one_is_rejected(workdir, monkeypatch, value):
    service, _ = _install(monkeypatch, RunReport())
    with pytest.raises(SystemExit):
        cli.main(["--discover-only", "--limit", value])
    assert service.calls == []
