"""Fake plugins and task builders shared by the test suite."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from harvester.ingestion.contracts import TriggerContext
from harvester.orchestrator.events import EventBus
from harvester.orchestrator.models import (
    CronTrigger,
    IngestionRecord,
    IngestionTaskDefinition,
    ManualTrigger,
    PluginRef,
    Status,
    WebhookTrigger,
)

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 30, tzinfo=timezone.utc)


class FakeSource:
    """Source whose behaviour is driven by its config mapping.

    Config keys: ``items`` (returned as ``{"data": items}``, two by default), ``data``
    (returned verbatim as Status.data), ``fail`` (return a failed status),
    ``raise_on`` (``"init"`` or ``"execute"``), ``init_status``.
    """

    instances: List["FakeSource"] = []

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        self.config = dict(config or {})
        self.init_calls = 0
        self.calls: List[tuple] = []
        FakeSource.instances.append(self)

    async def init_client(self) -> Any:
        self.init_calls += 1
        if self.config.get("raise_on") == "init":
            raise RuntimeError("client init exploded")
        return self.config.get("init_status")

    async def execute(self, context: TriggerContext, payload: Any = None) -> Status:
        self.calls.append((context, payload))
        if self.config.get("raise_on") == "execute":
            raise RuntimeError("source exploded")
        if self.config.get("fail"):
            return Status.fail("upstream unavailable", {"attempt": len(self.calls)}, code=503)
        if "data" in self.config:
            return Status.ok("fetched", self.config["data"])
        return Status.ok("fetched", {"data": list(self.config.get("items", ["a", "b"]))})


class RecordingDestination:
    """Destination that keeps every batch it receives."""

    instances: List["RecordingDestination"] = []

    def __init__(self) -> None:
        self.config: Any = None
        self.batches: List[List[IngestionRecord]] = []
        RecordingDestination.instances.append(self)

    async def init(self, config: Any) -> None:
        self.config = config or {}

    async def process_data(self, records: List[IngestionRecord]) -> Status:
        if self.config.get("raise"):
            raise RuntimeError("sink exploded")
        if self.config.get("fail"):
            return Status.fail("sink rejected batch", {"rejected": len(records)})
        self.batches.append(list(records))
        return Status.ok("stored", {"stored": len(records)})


def item_transformer(raw_items: List[Any], payload: Optional[Dict[str, Any]] = None) -> List[IngestionRecord]:
    return [IngestionRecord(id=f"item-{i}", content=str(item)) for i, item in enumerate(raw_items)]


async def async_item_transformer(
    raw_items: List[Any], payload: Optional[Dict[str, Any]] = None
) -> List[IngestionRecord]:
    return item_transformer(raw_items, payload)


def empty_transformer(raw_items: List[Any], payload: Optional[Dict[str, Any]] = None) -> List[IngestionRecord]:
    return []


class EventRecorder:
    """Collects every event emitted on a bus as ``(name, args)``."""

    def __init__(self, bus: EventBus) -> None:
        self.events: List[tuple] = []
        bus.subscribe_all(self._record)

    def _record(self, event: str, *args: Any) -> None:
        self.events.append((event, args))

    def names(self, task_id: Optional[str] = None) -> List[str]:
        return [name for name, args in self.events if task_id is None or task_id in args]

    def of(self, event: str) -> List[tuple]:
        return [args for name, args in self.events if name == event]

    def clear(self) -> None:
        self.events.clear()


class MutableClock:
    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def make_task(
    task_id: Optional[str] = "task-1",
    *,
    trigger: Any = None,
    source_config: Optional[Dict[str, Any]] = None,
    source_type: str = "fake",
    destination: Optional[Dict[str, Any]] = None,
    enabled: bool = True,
) -> IngestionTaskDefinition:
    return IngestionTaskDefinition(
        id=task_id,
        name=f"Task {task_id}",
        trigger=trigger or ManualTrigger(),
        source=PluginRef(source_type, source_config if source_config is not None else {"items": ["a", "b"]}),
        destination=PluginRef(**destination) if destination else None,
        enabled=enabled,
    )


def cron_task(task_id: str, expression: str = "*/1 * * * *", **kwargs: Any) -> IngestionTaskDefinition:
    return make_task(task_id, trigger=CronTrigger(expression), **kwargs)


def webhook_task(task_id: str, endpoint_id: str = "hook", **kwargs: Any) -> IngestionTaskDefinition:
    return make_task(task_id, trigger=WebhookTrigger(endpoint_id), **kwargs)
