"""Tests for task definitions, triggers and Status."""

from datetime import datetime, timezone

import pytest

from harvester.orchestrator.exceptions import ConfigurationError
from harvester.orchestrator.models import (
    CronTrigger,
    IngestionTaskDefinition,
    ManualTrigger,
    PluginRef,
    Status,
    TaskStatus,
    WebhookTrigger,
    trigger_from_dict,
    trigger_to_dict,
)


def test_status_constructors():
    ok = Status.ok("done", {"n": 1})
    failed = Status.fail("boom", code=503)

    assert ok.success and ok.code == 200 and ok.data == {"n": 1}
    assert not failed.success and failed.code == 503
    assert failed.to_dict() == {"success": False, "code": 503, "message": "boom"}


@pytest.mark.parametrize(
    "data, expected",
    [
        ({"type": "cron", "expression": "0 * * * *"}, CronTrigger("0 * * * *")),
        ({"type": "webhook", "endpoint_id": "gh"}, WebhookTrigger("gh")),
        ({"type": "webhook", "endpointId": "gh"}, WebhookTrigger("gh")),
        ({"type": "manual"}, ManualTrigger()),
    ],
)
def test_trigger_from_dict(data, expected):
    assert trigger_from_dict(data) == expected


@pytest.mark.parametrize(
    "data",
    [{"type": "cron"}, {"type": "webhook"}, {"type": "interval", "seconds": 5}, {}],
)
def test_trigger_from_dict_rejects_invalid(data):
    with pytest.raises(ConfigurationError):
        trigger_from_dict(data)


def test_trigger_to_dict_carries_type():
    assert trigger_to_dict(WebhookTrigger("x")) == {"type": "webhook", "endpoint_id": "x"}
    assert CronTrigger("* * * * *").type == "cron"


def test_task_from_dict_accepts_camel_case_plugin_type():
    task = IngestionTaskDefinition.from_dict(
        {
            "id": "t1",
            "trigger": {"type": "cron", "expression": "*/5 * * * *"},
            "source": {"pluginType": "git-crawler", "config": {"repo": "x"}},
            "destination": {"plugin_type": "file-system"},
        }
    )

    assert task.source == PluginRef("git-crawler", {"repo": "x"})
    assert task.destination.plugin_type == "file-system"
    assert task.enabled is True
    assert task.current_status is None


def test_task_from_dict_requires_source():
    with pytest.raises(ConfigurationError):
        IngestionTaskDefinition.from_dict({"id": "t1"})


def test_merged_replaces_nested_objects_wholesale():
    task = IngestionTaskDefinition(
        id="t1",
        source=PluginRef("a", {"keep": False, "old": True}),
        trigger=ManualTrigger(),
    )

    merged = task.merged({"source": {"plugin_type": "b", "config": {"keep": True}}, "name": "renamed"})

    assert merged.source == PluginRef("b", {"keep": True})
    assert merged.name == "renamed"
    assert task.source.plugin_type == "a"


def test_snapshot_is_independent_copy():
    task = IngestionTaskDefinition(id="t1", source=PluginRef("a", {"nested": [1]}))
    snap = task.snapshot()
    snap.source.config["nested"].append(2)
    snap.current_status = TaskStatus.FAILED

    assert task.source.config == {"nested": [1]}
    assert task.current_status is None


def test_to_dict_serialises_runtime_fields():
    task = IngestionTaskDefinition(
        id="t1",
        source=PluginRef("a"),
        trigger=CronTrigger("0 0 * * *"),
        current_status=TaskStatus.COMPLETED,
        last_run=datetime(2024, 1, 1, tzinfo=timezone.utc),
        last_run_status=Status.ok("fine"),
    )

    data = task.to_dict()

    assert data["trigger"] == {"type": "cron", "expression": "0 0 * * *"}
    assert data["current_status"] == "COMPLETED"
    assert data["last_run"] == "2024-01-01T00:00:00+00:00"
    assert data["last_run_status"]["message"] == "fine"
