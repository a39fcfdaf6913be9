"""Tests for registering the bundled destinations on a manager."""

import pytest

from harvester.ingestion import (
    FileSystemDestination,
    GenericApiDestination,
    passthrough_transformer,
    register_builtin_destinations,
)
from harvester.orchestrator.manager import IngestionLifecycleManager
from harvester.orchestrator.models import IngestionTaskDefinition, PluginRef, Status, TaskStatus


class StaticSource:
    def __init__(self, config=None) -> None:
        self.config = config

    async def init_client(self):
        return None

    async def execute(self, context, payload=None) -> Status:
        return Status.ok("fetched", {"data": [{"id": "note.txt", "content": "hello"}]})


def test_builtin_destinations_registered_by_name():
    manager = IngestionLifecycleManager()

    register_builtin_destinations(manager)

    assert manager.registry.destination_types() == ["file-system", "generic-api"]
    assert manager.registry.get_destination("file-system") is FileSystemDestination
    assert manager.registry.get_destination("generic-api") is GenericApiDestination


@pytest.mark.asyncio
async def test_task_delivers_through_builtin_file_system_destination(tmp_path):
    manager = IngestionLifecycleManager()
    register_builtin_destinations(manager)
    manager.register_source("static", StaticSource, passthrough_transformer)
    await manager.schedule_task(
        IngestionTaskDefinition(
            id="t1",
            source=PluginRef("static", {}),
            destination=PluginRef("file-system", {"output_path": str(tmp_path / "out")}),
        )
    )

    status = await manager.trigger_manual_task(None, "t1")

    assert status.success
    assert manager.get_task("t1").current_status is TaskStatus.COMPLETED
    assert "hello" in (tmp_path / "out" / "note.txt").read_text()
