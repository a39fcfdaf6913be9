"""Custom exceptions for the ingestion lifecycle manager."""

from __future__ import annotations


class HarvesterError(Exception):
    """Base exception for all harvester errors."""


class TaskNotFoundError(HarvesterError, KeyError):
    """Raised when a task id is not present in the task store.

    The manager converts this into a failed ``Status`` at its public
    boundary; it only escapes from internal helpers.
    """

    def __init__(self, task_id: str) -> None:
        super().__init__(task_id)
        self.task_id = task_id

    def __str__(self) -> str:
        return f"Task '{self.task_id}' not found."


class PluginNotRegisteredError(HarvesterError):
    """Raised when a task references a plugin type nobody registered."""

    def __init__(self, role: str, plugin_type: str) -> None:
        super().__init__(f"{role.capitalize()} plugin '{plugin_type}' not registered.")
        self.role = role
        self.plugin_type = plugin_type


class CronExpressionError(HarvesterError, ValueError):
    """Raised when a cron expression cannot be parsed."""

    def __init__(self, expression: str, reason: str) -> None:
        super().__init__(f"Invalid cron expression '{expression}': {reason}")
        self.expression = expression
        self.reason = reason


class InvalidStateTransitionError(HarvesterError, ValueError):
    """Raised when a task status transition violates VALID_TRANSITIONS.

    Example:
        Moving a DISABLED task straight to RUNNING would raise this,
        since a disabled task must be re-enabled (SCHEDULED) first.
    """


class ConfigurationError(HarvesterError):
    """Raised when configuration is invalid or cannot be loaded."""
