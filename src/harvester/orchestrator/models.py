"""Domain models for ingestion tasks, triggers and pipeline results."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from .exceptions import ConfigurationError


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    SCHEDULED = "SCHEDULED"  # Armed, waiting for a trigger
    RUNNING = "RUNNING"  # Pipeline executing
    COMPLETED = "COMPLETED"  # Last run succeeded
    FAILED = "FAILED"  # Last run failed
    DISABLED = "DISABLED"  # Never triggered until re-enabled


@dataclass
class Status:
    """Uniform success/failure result returned by every pipeline-facing call."""

    success: bool
    code: int = 200
    message: str = ""
    data: Any = None

    @classmethod
    def ok(cls, message: str = "", data: Any = None, *, code: int = 200) -> "Status":
        return cls(success=True, code=code, message=message, data=data)

    @classmethod
    def fail(cls, message: str, data: Any = None, *, code: int = 500) -> "Status":
        return cls(success=False, code=code, message=message, data=data)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "code": self.code,
            "message": self.message,
        }
        if self.data is not None:
            payload["data"] = self.data
        return payload


@dataclass
class IngestionRecord:
    """Uniform item produced by transformers and consumed by destinations.

    ``content`` is text, raw bytes or a structured object; the core never
    narrows it further. ``metadata`` is open, though filesystem-style
    destinations honour ``changeType == "removed"``.
    """

    id: str
    content: Union[str, bytes, Dict[str, Any], list]
    metadata: Dict[str, Any] = field(default_factory=dict)
    fetched_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CronTrigger:
    expression: str
    type: str = field(default="cron", init=False)


@dataclass(frozen=True)
class WebhookTrigger:
    endpoint_id: str
    type: str = field(default="webhook", init=False)


@dataclass(frozen=True)
class ManualTrigger:
    type: str = field(default="manual", init=False)


TaskTrigger = Union[CronTrigger, WebhookTrigger, ManualTrigger]


def trigger_from_dict(data: Union[TaskTrigger, Mapping[str, Any]]) -> TaskTrigger:
    """Build a trigger from its mapping form.

    Accepts ``{"type": "cron", "expression": ...}``,
    ``{"type": "webhook", "endpoint_id": ...}`` (``endpointId`` is also
    accepted) and ``{"type": "manual"}``. Trigger instances pass through.

    Raises:
        ConfigurationError: If the type is unknown or a field is missing
    """
    if isinstance(data, (CronTrigger, WebhookTrigger, ManualTrigger)):
        return data
    trigger_type = data.get("type")
    if trigger_type == "cron":
        expression = data.get("expression")
        if not expression:
            raise ConfigurationError("Cron trigger requires an 'expression'")
        return CronTrigger(expression=str(expression))
    if trigger_type == "webhook":
        endpoint_id = data.get("endpoint_id") or data.get("endpointId")
        if not endpoint_id:
            raise ConfigurationError("Webhook trigger requires an 'endpoint_id'")
        return WebhookTrigger(endpoint_id=str(endpoint_id))
    if trigger_type == "manual":
        return ManualTrigger()
    raise ConfigurationError(f"Unknown trigger type: {trigger_type!r}")


def trigger_to_dict(trigger: TaskTrigger) -> Dict[str, Any]:
    if isinstance(trigger, CronTrigger):
        return {"type": "cron", "expression": trigger.expression}
    if isinstance(trigger, WebhookTrigger):
        return {"type": "webhook", "endpoint_id": trigger.endpoint_id}
    return {"type": "manual"}


# ---------------------------------------------------------------------------
# Task definition
# ---------------------------------------------------------------------------


@dataclass
class PluginRef:
    """Reference to a registered plugin by name plus its opaque config."""

    plugin_type: str
    config: Any = None

    @classmethod
    def from_value(cls, value: Union["PluginRef", Mapping[str, Any]]) -> "PluginRef":
        if isinstance(value, PluginRef):
            return value
        plugin_type = value.get("plugin_type") or value.get("pluginType")
        if not plugin_type:
            raise ConfigurationError("Plugin reference requires a 'plugin_type'")
        return cls(plugin_type=str(plugin_type), config=value.get("config"))

    def to_dict(self) -> Dict[str, Any]:
        return {"plugin_type": self.plugin_type, "config": self.config}


# Fields a caller may change through update_task; runtime fields are owned
# by the manager and the id is immutable.
UPDATABLE_FIELDS = frozenset(
    {"name", "description", "enabled", "trigger", "source", "destination", "transformer_params"}
)


@dataclass
class IngestionTaskDefinition:
    """A named, independently schedulable ingestion pipeline."""

    source: PluginRef
    trigger: TaskTrigger = field(default_factory=ManualTrigger)
    id: Optional[str] = None
    name: str = ""
    description: Optional[str] = None
    enabled: bool = True
    destination: Optional[PluginRef] = None
    transformer_params: Optional[Dict[str, Any]] = None

    # Runtime fields, mutated only by the lifecycle manager
    current_status: Optional[TaskStatus] = None
    last_run: Optional[datetime] = None
    last_run_status: Optional[Status] = None
    next_run: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IngestionTaskDefinition":
        if "source" not in data:
            raise ConfigurationError("Task definition requires a 'source'")
        destination = data.get("destination")
        return cls(
            id=data.get("id"),
            name=data.get("name") or "",
            description=data.get("description"),
            enabled=bool(data.get("enabled", True)),
            trigger=trigger_from_dict(data.get("trigger") or {"type": "manual"}),
            source=PluginRef.from_value(data["source"]),
            destination=PluginRef.from_value(destination) if destination else None,
            transformer_params=data.get("transformer_params"),
        )

    def merged(self, updates: Mapping[str, Any]) -> "IngestionTaskDefinition":
        """Return a copy with ``updates`` shallow-merged over this definition.

        Nested values (``trigger``, ``source``, ``destination``) are replaced
        wholesale, never merged key by key.
        """
        normalized: Dict[str, Any] = {}
        for key, value in updates.items():
            if key == "trigger":
                value = trigger_from_dict(value)
            elif key == "source":
                value = PluginRef.from_value(value)
            elif key == "destination" and value is not None:
                value = PluginRef.from_value(value)
            normalized[key] = value
        return replace(self, **normalized)

    def snapshot(self) -> "IngestionTaskDefinition":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if item.name == "trigger":
                value = trigger_to_dict(value)
            elif isinstance(value, PluginRef):
                value = value.to_dict()
            elif isinstance(value, TaskStatus):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, Status):
                value = value.to_dict()
            payload[item.name] = value
        return payload


__all__ = [
    "TaskStatus",
    "Status",
    "IngestionRecord",
    "CronTrigger",
    "WebhookTrigger",
    "ManualTrigger",
    "TaskTrigger",
    "trigger_from_dict",
    "trigger_to_dict",
    "PluginRef",
    "UPDATABLE_FIELDS",
    "IngestionTaskDefinition",
]
