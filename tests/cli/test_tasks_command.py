"""Tests for the ``harvester tasks`` commands."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from harvester.cli import cli

CONFIG = {
    "tasks": [
        {
            "id": "hourly",
            "name": "Hourly docs",
            "trigger": {"type": "cron", "expression": "0 * * * *"},
            "source": {"plugin_type": "http-crawler"},
            "destination": {"plugin_type": "file-system", "config": {"output_path": "./out"}},
        },
        {
            "id": "nightly",
            "trigger": {"type": "cron", "expression": "0 2 * * *"},
            "source": {"plugin_type": "git-crawler"},
        },
        {
            "id": "push",
            "trigger": {"type": "webhook", "endpoint_id": "github"},
            "source": {"plugin_type": "git-crawler"},
        },
    ]
}


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "harvester.yaml"
    path.write_text(yaml.safe_dump(CONFIG))
    return path


def test_validate_accepts_valid_config(runner, config_path):
    result = runner.invoke(cli, ["tasks", "validate", str(config_path)])

    assert result.exit_code == 0
    assert "Configuration valid: 3 tasks" in result.output


def test_validate_reports_errors(runner, tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text(yaml.safe_dump({"tasks": [{"id": "x", "trigger": {"type": "cron", "expression": "bad"}}]}))

    result = runner.invoke(cli, ["tasks", "validate", str(path)])

    assert result.exit_code == 1
    assert "Configuration invalid" in result.output
    assert "tasks.0.source" in result.output


def test_list_json_includes_next_cron_run(runner, config_path):
    result = runner.invoke(
        cli, ["tasks", "list", str(config_path), "--json", "--at", "2024-05-01T12:30:00+00:00"]
    )

    assert result.exit_code == 0
    rows = {row["id"]: row for row in json.loads(result.output)}
    assert rows["hourly"]["next_run"] == "2024-05-01T13:00:00+00:00"
    assert rows["hourly"]["destination"] == "file-system"
    assert rows["push"]["next_run"] is None
    assert rows["push"]["trigger"] == {"type": "webhook", "endpoint_id": "github"}


def test_list_table_output(runner, config_path):
    result = runner.invoke(cli, ["tasks", "list", str(config_path)])

    assert result.exit_code == 0
    assert "Ingestion Tasks (3 total)" in result.output
    assert "hourly" in result.output


def test_due_reports_which_cron_tasks_fire(runner, config_path):
    result = runner.invoke(
        cli, ["tasks", "due", str(config_path), "--json", "--at", "2024-05-01T13:00:20+00:00"]
    )

    assert result.exit_code == 0
    payload = json.loads(result.output)
    due = {task["id"]: task["due"] for task in payload["tasks"]}
    assert due == {"hourly": True, "nightly": False}


def test_due_rejects_bad_time(runner, config_path):
    result = runner.invoke(cli, ["tasks", "due", str(config_path), "--at", "yesterday"])

    assert result.exit_code == 2


def test_missing_config_file(runner, tmp_path):
    result = runner.invoke(cli, ["tasks", "list", str(tmp_path / "absent.yaml")])

    assert result.exit_code == 1
    assert "not found" in result.output
