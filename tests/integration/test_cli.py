from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from flowscreen.cli import app
from flowscreen.schemas.flow import default_flow_definition

CLEAN_ENV = {"WEBHOOK_TARGET_URL": None, "WEBHOOK_SECRET": None, "DATABASE_URL": None}


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def write_yaml(path: Path, payload: object) -> Path:
    path.write_text(yaml.safe_dump(payload, allow_unicode=True), encoding="utf-8")
    return path


def test_validate_flow_accepts_default_flow(tmp_path: Path, runner: CliRunner) -> None:
    path = write_yaml(
        tmp_path / "flow.yaml",
        {"flow": default_flow_definition().to_document(), "scoring_rules": {"pass_threshold": 70}},
    )

    result = runner.invoke(app, ["validate-flow", str(path)])

    assert result.exit_code == 0, result.output
    assert "OK: 7 nodes, 6 edges, 0 warnings." in result.output


def test_validate_flow_reports_errors(tmp_path: Path, runner: CliRunner) -> None:
    path = tmp_path / "flow.json"
    path.write_text(
        json.dumps({"nodes": [{"key": "a", "type": "intro"}], "edges": [{"from": "a", "to": "missing"}]}),
        encoding="utf-8",
    )

    result = runner.invoke(app, ["validate-flow", str(path)])

    assert result.exit_code == 1
    assert "error: unknown_edge_target" in result.output


def test_validate_flow_rejects_malformed_document(tmp_path: Path, runner: CliRunner) -> None:
    path = write_yaml(tmp_path / "flow.yaml", {"nodes": [{"key": "a", "type": "video"}]})

    result = runner.invoke(app, ["validate-flow", str(path)])

    assert result.exit_code == 1
    assert "invalid flow document" in result.output


def test_dispatch_without_target_exits_with_code_2(runner: CliRunner) -> None:
    result = runner.invoke(app, ["dispatch", "--log-level", "WARNING"], env=CLEAN_ENV)

    assert result.exit_code == 2
    assert "webhook_target_not_configured" in result.output


def test_dispatch_with_configured_target_reports_counts(tmp_path: Path, runner: CliRunner) -> None:
    config = write_yaml(tmp_path / "config.yaml", {"webhook": {"target_url": "https://hooks.example.test"}})
    audit = tmp_path / "audit.jsonl"

    result = runner.invoke(
        app,
        ["dispatch", "--config", str(config), "--log-level", "WARNING", "--audit-log", str(audit)],
        env=CLEAN_ENV,
    )

    assert result.exit_code == 0, result.output
    assert json.loads(result.output.strip().splitlines()[-1]) == {"due": 0, "sent": 0, "retried": 0, "failed": 0}


def test_pending_and_init_db_on_sqlite(tmp_path: Path, runner: CliRunner) -> None:
    database_url = f"sqlite:///{tmp_path / 'flows.db'}"
    env = {**CLEAN_ENV, "DATABASE_URL": database_url}

    init = runner.invoke(app, ["init-db", "--log-level", "WARNING"], env=env)
    pending = runner.invoke(app, ["pending", "--log-level", "WARNING"], env=env)

    assert init.exit_code == 0, init.output
    assert "Database schema created." in init.output
    assert (tmp_path / "flows.db").exists()
    assert pending.exit_code == 0, pending.output
    assert json.loads(pending.output) == []


def test_init_db_requires_sql_backend(runner: CliRunner) -> None:
    result = runner.invoke(app, ["init-db"], env=CLEAN_ENV)

    assert result.exit_code == 1
    assert "not sql" in result.output
