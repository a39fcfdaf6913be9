"""Lifecycle manager configuration with validation.

Configuration is a YAML document validated by Pydantic models. A missing
file yields secure defaults; an invalid one raises ``ConfigurationError``
with every failing field location flattened into the message.

Example ``harvester.yaml``::

    version: 1
    cron:
      tick_interval_seconds: 60
      due_window_seconds: 65
    concurrency:
      overlap_policy: reject
    tasks:
      - id: nightly-docs
        name: Nightly docs crawl
        trigger: {type: cron, expression: "0 2 * * *"}
        source: {plugin_type: http-crawler, config: {start_url: "https://example.com"}}
        destination: {plugin_type: file-system, config: {output_path: ./crawled}}
"""

from __future__ import annotations

from datetime import timedelta, tzinfo
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .exceptions import ConfigurationError, CronExpressionError
from .models import IngestionTaskDefinition
from .triggers import validate_expression

DEFAULT_CONFIG_PATH = Path.home() / ".harvester" / "config" / "harvester.yaml"


class OverlapPolicy(str, Enum):
    """What happens when a task is triggered while it is already running."""

    REJECT = "reject"  # Fail the new trigger with code 409
    QUEUE = "queue"  # Wait for the running invocation, then run
    ALLOW = "allow"  # No mutual exclusion


class CronConfig(BaseModel):
    """Cron evaluation configuration.

    Attributes:
        tick_interval_seconds: How often the ticker evaluates cron tasks
        due_window_seconds: How far back a due slot may lie and still fire
        timezone: Zone used to interpret cron expressions and naive times
    """

    model_config = ConfigDict(extra="forbid")

    tick_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        le=3600,
        description="Scheduler tick interval",
    )
    due_window_seconds: float = Field(
        default=65.0,
        gt=0,
        le=86400,
        description="Recency window for due slots",
    )
    timezone: str = Field(default="UTC", description="IANA zone name")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone '{v}'") from exc
        return v

    @model_validator(mode="after")
    def window_covers_tick(self) -> "CronConfig":
        if self.due_window_seconds < self.tick_interval_seconds:
            raise ValueError(
                "due_window_seconds must be at least tick_interval_seconds, "
                "otherwise due slots can fall between two ticks"
            )
        return self

    @property
    def due_window(self) -> timedelta:
        return timedelta(seconds=self.due_window_seconds)

    @property
    def tz(self) -> tzinfo:
        return ZoneInfo(self.timezone)


class ConcurrencyConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    overlap_policy: OverlapPolicy = Field(
        default=OverlapPolicy.REJECT,
        description="Handling of overlapping triggers for the same task",
    )


class PluginRefConfig(BaseModel):
    plugin_type: str = Field(..., min_length=1)
    config: Any = None


class TriggerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str = Field(default="manual")
    expression: Optional[str] = None
    endpoint_id: Optional[str] = None

    @model_validator(mode="after")
    def check_fields(self) -> "TriggerConfig":
        if self.type == "cron":
            if not self.expression:
                raise ValueError("cron trigger requires 'expression'")
            try:
                validate_expression(self.expression)
            except CronExpressionError as exc:
                raise ValueError(str(exc)) from exc
        elif self.type == "webhook":
            if not self.endpoint_id:
                raise ValueError("webhook trigger requires 'endpoint_id'")
        elif self.type != "manual":
            raise ValueError(f"unknown trigger type '{self.type}'")
        return self


class TaskConfig(BaseModel):
    """YAML form of a task definition."""

    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = None
    name: str = ""
    description: Optional[str] = None
    enabled: bool = True
    trigger: TriggerConfig = Field(default_factory=TriggerConfig)
    source: PluginRefConfig
    destination: Optional[PluginRefConfig] = None
    transformer_params: Optional[Dict[str, Any]] = None


class ManagerConfig(BaseModel):
    """Root configuration for the lifecycle manager."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    version: int = Field(default=1, ge=1)
    cron: CronConfig = Field(default_factory=CronConfig)
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    tasks: List[TaskConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def unique_task_ids(self) -> "ManagerConfig":
        seen = set()
        for task in self.tasks:
            if task.id is None:
                continue
            if task.id in seen:
                raise ValueError(f"duplicate task id '{task.id}'")
            seen.add(task.id)
        return self


def load_task_definitions(config: ManagerConfig) -> List[IngestionTaskDefinition]:
    """Convert configured tasks into task definitions ready for scheduling."""
    return [
        IngestionTaskDefinition.from_dict(task.model_dump(exclude_none=True))
        for task in config.tasks
    ]


def _format_errors(exc: ValidationError) -> List[str]:
    return [
        f"{'.'.join(str(loc) for loc in err['loc']) or '<root>'}: {err['msg']}"
        for err in exc.errors()
    ]


class ConfigurationManager:
    """Loads, validates and saves the manager configuration file."""

    def __init__(self, config_path: Optional[Path] = None) -> None:
        self._config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self._config: Optional[ManagerConfig] = None

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(self) -> ManagerConfig:
        """Load and validate configuration.

        Returns:
            Validated configuration, or defaults if the file does not exist

        Raises:
            ConfigurationError: If the file is unreadable or invalid
        """
        if not self._config_path.exists():
            self._config = ManagerConfig()
            return self._config

        try:
            with open(self._config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {self._config_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self._config_path}")

        try:
            self._config = ManagerConfig(**data)
        except ValidationError as exc:
            raise ConfigurationError(
                f"Invalid configuration: {'; '.join(_format_errors(exc))}"
            ) from exc
        return self._config

    def save(self, config: ManagerConfig) -> None:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        data = config.model_dump(mode="json", exclude_none=True)
        with open(self._config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)

    def validate(self, config_path: Optional[Path] = None) -> List[str]:
        """Validate a configuration file without keeping it.

        Returns:
            List of validation errors (empty if valid)
        """
        path = Path(config_path) if config_path else self._config_path
        if not path.exists():
            return [f"Configuration file not found: {path}"]

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                return ["<root>: configuration root must be a mapping"]
            ManagerConfig(**data)
        except ValidationError as exc:
            return _format_errors(exc)
        except (OSError, yaml.YAMLError) as exc:
            return [f"Failed to load configuration: {exc}"]
        return []


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "OverlapPolicy",
    "CronConfig",
    "ConcurrencyConfig",
    "PluginRefConfig",
    "TriggerConfig",
    "TaskConfig",
    "ManagerConfig",
    "ConfigurationManager",
    "load_task_definitions",
]
