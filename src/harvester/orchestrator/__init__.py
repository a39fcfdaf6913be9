"""Ingestion lifecycle orchestration package."""

from .config import (
    ConcurrencyConfig,
    ConfigurationManager,
    CronConfig,
    ManagerConfig,
    OverlapPolicy,
    load_task_definitions,
)
from .events import EventBus, IngestionEvents
from .exceptions import (
    ConfigurationError,
    CronExpressionError,
    HarvesterError,
    InvalidStateTransitionError,
    PluginNotRegisteredError,
    TaskNotFoundError,
)
from .manager import IngestionLifecycleManager
from .models import (
    CronTrigger,
    IngestionRecord,
    IngestionTaskDefinition,
    ManualTrigger,
    PluginRef,
    Status,
    TaskStatus,
    TaskTrigger,
    WebhookTrigger,
)
from .pipeline import IngestionOrchestrator
from .registry import PluginRegistry
from .scheduler import CronTicker
from .state_machine import VALID_TRANSITIONS, StateMachineValidator, StateTransition
from .triggers import evaluate_cron, find_due_slot, is_due, next_fire_time

__all__ = [
    "ConcurrencyConfig",
    "ConfigurationManager",
    "CronConfig",
    "ManagerConfig",
    "OverlapPolicy",
    "load_task_definitions",
    "EventBus",
    "IngestionEvents",
    "ConfigurationError",
    "CronExpressionError",
    "HarvesterError",
    "InvalidStateTransitionError",
    "PluginNotRegisteredError",
    "TaskNotFoundError",
    "IngestionLifecycleManager",
    "CronTrigger",
    "IngestionRecord",
    "IngestionTaskDefinition",
    "ManualTrigger",
    "PluginRef",
    "Status",
    "TaskStatus",
    "TaskTrigger",
    "WebhookTrigger",
    "IngestionOrchestrator",
    "PluginRegistry",
    "CronTicker",
    "VALID_TRANSITIONS",
    "StateMachineValidator",
    "StateTransition",
    "evaluate_cron",
    "find_due_slot",
    "is_due",
    "next_fire_time",
]
