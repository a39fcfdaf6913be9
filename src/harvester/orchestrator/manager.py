"""Ingestion lifecycle manager: task store, trigger evaluation, plugin registry.

The manager owns all mutable task state. Triggers (manual calls, webhook
deliveries and cron ticks from an external scheduler) converge on a single
private execution routine, so status bookkeeping and event emission do not
depend on how a run was started.

Public methods return a ``Status`` for every expected failure (unknown
task, disabled task, unregistered plugin); only genuinely unexpected
faults raise.
"""

from __future__ import annotations

import asyncio
import copy
import functools
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from ..ingestion.contracts import DestinationFactory, SourceFactory, Transformer, TriggerContext
from .config import ManagerConfig, OverlapPolicy, load_task_definitions
from .events import EventBus, IngestionEvents
from .exceptions import (
    ConfigurationError,
    CronExpressionError,
    PluginNotRegisteredError,
    TaskNotFoundError,
)
from .models import (
    UPDATABLE_FIELDS,
    CronTrigger,
    IngestionTaskDefinition,
    ManualTrigger,
    Status,
    TaskStatus,
    WebhookTrigger,
)
from .pipeline import IngestionOrchestrator
from .registry import PluginRegistry
from .state_machine import StateMachineValidator
from .triggers import ensure_aware, evaluate_cron, next_fire_time

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aggregate(kind: str, results: List[Dict[str, Any]]) -> Status:
    successful = sum(1 for r in results if r["status"].success)
    failed = len(results) - successful
    data = [{"task_id": r["task_id"], "status": r["status"].to_dict()} for r in results]
    if failed:
        return Status.fail(
            f"{kind} triggered {len(results)} tasks. {successful} succeeded, {failed} failed.",
            data,
        )
    return Status.ok(f"{kind} successfully triggered {successful} tasks.", data)


class IngestionLifecycleManager:
    """Schedules, triggers and tracks ingestion tasks.

    Args:
        config: Manager configuration (cron window, overlap policy)
        event_bus: Bus shared with every orchestrator; created if omitted
        registry: Plugin registry; created if omitted
        clock: Source of "now" when a trigger context carries no event time
    """

    def __init__(
        self,
        config: Optional[ManagerConfig] = None,
        *,
        event_bus: Optional[EventBus] = None,
        registry: Optional[PluginRegistry] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config or ManagerConfig()
        self._event_bus = event_bus or EventBus()
        self._registry = registry or PluginRegistry()
        self._clock = clock
        self._validator = StateMachineValidator()
        self._tasks: Dict[str, IngestionTaskDefinition] = {}
        self._orchestrators: Dict[str, IngestionOrchestrator] = {}
        self._run_locks: Dict[str, asyncio.Lock] = {}
        self._armed: Set[str] = set()
        self._lifecycle_started = False
        logger.info("Ingestion lifecycle manager initialised")

    # ========================================================================
    # PLUGINS
    # ========================================================================

    @property
    def registry(self) -> PluginRegistry:
        return self._registry

    @property
    def config(self) -> ManagerConfig:
        return self._config

    @property
    def state_machine(self) -> StateMachineValidator:
        return self._validator

    @property
    def is_started(self) -> bool:
        return self._lifecycle_started

    def register_source(self, name: str, factory: SourceFactory, transformer: Transformer) -> None:
        self._registry.register_source(name, factory, transformer)
        self._evict_orchestrators(
            lambda task: task.source.plugin_type == name
        )

    def register_destination(self, name: str, factory: DestinationFactory) -> None:
        self._registry.register_destination(name, factory)
        self._evict_orchestrators(
            lambda task: task.destination is not None and task.destination.plugin_type == name
        )

    def _evict_orchestrators(self, uses_plugin: Callable[[IngestionTaskDefinition], bool]) -> None:
        # Re-registration takes effect on the next run of every affected task
        for task_id in [tid for tid in self._orchestrators if uses_plugin(self._tasks[tid])]:
            del self._orchestrators[task_id]

    def get_event_bus(self) -> EventBus:
        return self._event_bus

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def start(self) -> Status:
        if self._lifecycle_started:
            logger.warning("Ingestion lifecycle manager is already started")
            return Status.ok("Manager already started.")
        self._lifecycle_started = True
        for task in self._tasks.values():
            self._arm_trigger(task)
        logger.info(
            "Ingestion lifecycle manager started",
            extra={"armed_tasks": len(self._armed)},
        )
        return Status.ok("Manager started.", {"armed_tasks": len(self._armed)})

    async def stop(self) -> Status:
        if not self._lifecycle_started:
            logger.warning("Ingestion lifecycle manager is not running")
            return Status.ok("Manager not running.")
        for task in self._tasks.values():
            self._disarm_trigger(task)
        self._lifecycle_started = False
        logger.info("Ingestion lifecycle manager stopped")
        return Status.ok("Manager stopped.")

    # ========================================================================
    # TASK STORE
    # ========================================================================

    async def schedule_task(self, definition: IngestionTaskDefinition) -> Status:
        """Store a new task and arm its trigger when the lifecycle is started.

        The caller's object is copied; later reads return snapshots.
        """
        try:
            task = definition.snapshot()
        except (TypeError, copy.Error) as exc:
            logger.error(
                f"Task '{definition.id}' rejected: definition cannot be copied: {exc}",
                extra={"ingestion_task_id": definition.id},
            )
            return Status.fail(
                f"Task definition must hold copyable plugin configuration: {exc}", code=400
            )
        if not task.id:
            task.id = self._generate_task_id()
        elif task.id in self._tasks:
            logger.warning(
                f"Task '{task.id}' already exists. Use update_task to modify.",
                extra={"ingestion_task_id": task.id},
            )
            return Status.fail(f"Task '{task.id}' already exists.", code=409)

        if isinstance(task.trigger, CronTrigger):
            try:
                next_fire_time(task.trigger.expression, self._clock(), self._config.cron.tz)
            except CronExpressionError as exc:
                logger.warning(
                    f"Task '{task.id}' has an unparseable cron expression; it will fail at evaluation: {exc}",
                    extra={"ingestion_task_id": task.id},
                )

        initial = TaskStatus.SCHEDULED if task.enabled else TaskStatus.DISABLED
        self._transition(task, initial, reason="scheduled")
        task.last_run = None
        task.last_run_status = None
        task.next_run = None

        self._tasks[task.id] = task
        logger.info(f"Task '{task.id}' scheduled.", extra={"ingestion_task_id": task.id})
        self._event_bus.emit(IngestionEvents.TASK_SCHEDULED, task.id, task.snapshot())

        if self._lifecycle_started:
            self._arm_trigger(task)
        return Status.ok(f"Task '{task.id}' scheduled successfully.", {"task_id": task.id})

    async def schedule_configured_tasks(self) -> List[Status]:
        """Schedule every task declared in the manager configuration."""
        results = []
        for definition in load_task_definitions(self._config):
            results.append(await self.schedule_task(definition))
        return results

    async def update_task(self, task_id: str, updates: Mapping[str, Any]) -> Status:
        """Shallow-merge ``updates`` over an existing task.

        Nested objects (``trigger``, ``source``, ``destination``) must be
        supplied whole. Changing the source or destination discards the
        cached orchestrator so the next run builds fresh plugin instances.
        """
        try:
            task = self._require_task(task_id)
        except TaskNotFoundError as exc:
            logger.warning(f"Update failed: {exc}", extra={"ingestion_task_id": task_id})
            return Status.fail(str(exc), code=404)

        if "id" in updates and updates["id"] != task_id:
            return Status.fail(f"Task id is immutable (task '{task_id}').", code=400)
        unknown = set(updates) - UPDATABLE_FIELDS - {"id"}
        if unknown:
            return Status.fail(
                f"Cannot update fields {sorted(unknown)} of task '{task_id}'.", code=400
            )

        try:
            updated = task.merged({k: v for k, v in updates.items() if k != "id"}).snapshot()
        except (ConfigurationError, TypeError, AttributeError, copy.Error) as exc:
            logger.error(
                f"Update of task '{task_id}' rejected: {exc}",
                extra={"ingestion_task_id": task_id},
            )
            return Status.fail(f"Invalid update for task '{task_id}': {exc}", code=400)

        self._disarm_trigger(task)
        if updated.enabled != task.enabled:
            target = TaskStatus.SCHEDULED if updated.enabled else TaskStatus.DISABLED
            self._transition(task, target, reason="update")
        if {"source", "destination", "transformer_params"} & set(updates):
            self._orchestrators.pop(task_id, None)

        # Applied in place so an in-flight run records its outcome on the stored task
        for name in UPDATABLE_FIELDS:
            setattr(task, name, getattr(updated, name))
        logger.info(f"Task '{task_id}' updated.", extra={"ingestion_task_id": task_id})
        self._event_bus.emit(IngestionEvents.TASK_UPDATED, task_id, task.snapshot())

        if self._lifecycle_started:
            self._arm_trigger(task)
        return Status.ok(f"Task '{task_id}' updated successfully.", {"task_id": task_id})

    async def enable_task(self, task_id: str) -> Status:
        task = self._tasks.get(task_id)
        if task is None:
            return Status.fail(f"Task '{task_id}' not found.", code=404)
        if task.enabled:
            logger.info(f"Task '{task_id}' is already enabled.", extra={"ingestion_task_id": task_id})
            return Status.ok(f"Task '{task_id}' is already enabled.")

        task.enabled = True
        self._transition(task, TaskStatus.SCHEDULED, reason="enabled")
        logger.info(f"Task '{task_id}' enabled.", extra={"ingestion_task_id": task_id})
        self._event_bus.emit(IngestionEvents.TASK_ENABLED, task_id, task.snapshot())
        if self._lifecycle_started:
            self._arm_trigger(task)
        return Status.ok(f"Task '{task_id}' enabled successfully.")

    async def disable_task(self, task_id: str) -> Status:
        task = self._tasks.get(task_id)
        if task is None:
            return Status.fail(f"Task '{task_id}' not found.", code=404)
        if not task.enabled:
            logger.info(f"Task '{task_id}' is already disabled.", extra={"ingestion_task_id": task_id})
            return Status.ok(f"Task '{task_id}' is already disabled.")

        task.enabled = False
        self._transition(task, TaskStatus.DISABLED, reason="disabled")
        self._disarm_trigger(task)
        logger.info(f"Task '{task_id}' disabled.", extra={"ingestion_task_id": task_id})
        self._event_bus.emit(IngestionEvents.TASK_DISABLED, task_id, task.snapshot())
        return Status.ok(f"Task '{task_id}' disabled successfully.")

    async def delete_task(self, task_id: str) -> Status:
        task = self._tasks.get(task_id)
        if task is None:
            return Status.fail(f"Task '{task_id}' not found.", code=404)
        self._disarm_trigger(task)
        del self._tasks[task_id]
        self._orchestrators.pop(task_id, None)
        self._run_locks.pop(task_id, None)
        logger.info(f"Task '{task_id}' deleted.", extra={"ingestion_task_id": task_id})
        self._event_bus.emit(IngestionEvents.TASK_DELETED, task_id, None)
        return Status.ok(f"Task '{task_id}' deleted successfully.")

    def get_task(self, task_id: str) -> Optional[IngestionTaskDefinition]:
        task = self._tasks.get(task_id)
        return task.snapshot() if task is not None else None

    def list_tasks(self) -> List[IngestionTaskDefinition]:
        return [task.snapshot() for task in self._tasks.values()]

    def is_armed(self, task_id: str) -> bool:
        return task_id in self._armed

    def has_orchestrator(self, task_id: str) -> bool:
        return task_id in self._orchestrators

    # ========================================================================
    # TRIGGERS
    # ========================================================================

    async def trigger_manual_task(
        self, context: Optional[TriggerContext], task_id: str, payload: Any = None
    ) -> Status:
        task = self._tasks.get(task_id)
        if task is None:
            logger.warning(
                f"Manual trigger failed: task '{task_id}' not found.",
                extra={"ingestion_task_id": task_id},
            )
            return Status.fail(f"Task '{task_id}' not found.", code=404)
        if not task.enabled:
            logger.warning(
                f"Manual trigger failed: task '{task_id}' is disabled.",
                extra={"ingestion_task_id": task_id},
            )
            return Status.fail(f"Task '{task_id}' is disabled.", {"code": "TASK_DISABLED"}, code=400)

        logger.info(
            f"Manual trigger activated for task '{task_id}'.",
            extra={"ingestion_task_id": task_id, "ingestion_trigger": "manual"},
        )
        context = context or TriggerContext(trigger="manual")
        return await self._execute_task(context, task_id, payload)

    async def trigger_webhook_task(
        self, context: Optional[TriggerContext], endpoint_id: str, payload: Any
    ) -> Status:
        """Run every enabled task listening on ``endpoint_id``.

        Each task receives ``{"webhook_payload": payload}``. Zero matching
        tasks is a failure so misrouted webhooks are visible.
        """
        logger.info(
            f"Webhook trigger received for endpoint '{endpoint_id}'.",
            extra={"ingestion_trigger": "webhook", "webhook_endpoint": endpoint_id},
        )
        task_ids = [
            task.id
            for task in self._tasks.values()
            if task.enabled
            and isinstance(task.trigger, WebhookTrigger)
            and task.trigger.endpoint_id == endpoint_id
        ]
        if not task_ids:
            message = f"No enabled webhook task found for endpoint '{endpoint_id}'."
            logger.warning(message, extra={"webhook_endpoint": endpoint_id})
            return Status.fail(message, code=404)

        context = context or TriggerContext(trigger="webhook")
        results: List[Dict[str, Any]] = []
        for task_id in task_ids:
            logger.info(
                f"Executing webhook-triggered task '{task_id}'.",
                extra={"ingestion_task_id": task_id, "webhook_endpoint": endpoint_id},
            )
            status = await self._execute_task(context, task_id, {"webhook_payload": payload})
            results.append({"task_id": task_id, "status": status})
        return _aggregate("Webhook", results)

    async def trigger_all_enabled_cron_tasks(self, context: Optional[TriggerContext] = None) -> Status:
        """Run every enabled cron task whose current slot is due.

        The reference instant is ``context.event_time`` (or the manager's
        clock). A task with an unparseable expression is recorded as a
        failed result without stopping evaluation of the others.
        """
        context = context or TriggerContext(trigger="cron")
        cron_config = self._config.cron
        reference = ensure_aware(context.event_time or self._clock(), cron_config.tz)
        context = replace(context, event_time=reference)

        results: List[Dict[str, Any]] = []
        due_count = 0
        for task_id in [t.id for t in self._tasks.values()]:
            task = self._tasks.get(task_id)
            if task is None or not task.enabled or not isinstance(task.trigger, CronTrigger):
                continue
            expression = task.trigger.expression
            try:
                evaluation = evaluate_cron(
                    expression,
                    reference,
                    task.last_run,
                    window=cron_config.due_window,
                    tz=cron_config.tz,
                )
            except CronExpressionError as exc:
                logger.error(
                    f"Error parsing cron expression for task '{task_id}': {exc}",
                    extra={"ingestion_task_id": task_id},
                )
                results.append(
                    {
                        "task_id": task_id,
                        "status": Status.fail(f"Cron expression parse error: {exc.reason}", code=400),
                    }
                )
                continue

            if not evaluation.due:
                logger.debug(
                    f"Task '{task_id}' (cron: {expression}) not due. {evaluation.describe()}",
                    extra={"ingestion_task_id": task_id},
                )
                continue

            due_count += 1
            logger.info(
                f"Executing cron-triggered task '{task_id}' (expression: {expression}, "
                f"slot: {evaluation.slot.isoformat()}).",
                extra={"ingestion_task_id": task_id, "ingestion_trigger": "cron"},
            )
            status = await self._execute_task(context, task_id)
            results.append({"task_id": task_id, "status": status})

        if not results:
            logger.info("No enabled cron tasks were due at this time.")
            return Status.ok("No enabled cron tasks were due.", {"reference_time": reference.isoformat()})
        return _aggregate("Cron", results)

    # ========================================================================
    # EXECUTION
    # ========================================================================

    async def _execute_task(
        self, context: TriggerContext, task_id: str, payload: Any = None
    ) -> Status:
        task = self._tasks.get(task_id)
        if task is None:
            return Status.fail(f"Task '{task_id}' not found.", code=404)
        if not task.enabled:
            logger.warning(
                f"Attempted to execute disabled task '{task_id}'. Skipping.",
                extra={"ingestion_task_id": task_id},
            )
            return Status.fail(f"Task '{task_id}' is disabled.", {"code": "TASK_DISABLED"}, code=400)

        policy = self._config.concurrency.overlap_policy
        if policy is OverlapPolicy.ALLOW:
            return await self._run_task(context, task, payload)

        lock = self._run_locks.setdefault(task_id, asyncio.Lock())
        if policy is OverlapPolicy.REJECT and lock.locked():
            logger.warning(
                f"Task '{task_id}' is already running; trigger rejected.",
                extra={"ingestion_task_id": task_id},
            )
            return Status.fail(f"Task '{task_id}' is already running.", code=409)
        async with lock:
            # A queued trigger may wake up after the task was deleted or disabled
            current = self._tasks.get(task_id)
            if current is None:
                return Status.fail(f"Task '{task_id}' not found.", code=404)
            if not current.enabled:
                return Status.fail(f"Task '{task_id}' is disabled.", {"code": "TASK_DISABLED"}, code=400)
            return await self._run_task(context, current, payload)

    async def _run_task(
        self, context: TriggerContext, task: IngestionTaskDefinition, payload: Any
    ) -> Status:
        task_id = task.id
        task.last_run = context.event_time or self._clock()

        try:
            orchestrator = await self._get_orchestrator(task)
        except PluginNotRegisteredError as exc:
            logger.error(
                f"{exc} (task '{task_id}')",
                extra={"ingestion_task_id": task_id, "ingestion_plugin": exc.plugin_type},
            )
            return self._record_failure(task, Status.fail(str(exc), code=400))
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                f"Failed to build pipeline for task '{task_id}'",
                extra={"ingestion_task_id": task_id},
            )
            return self._record_failure(
                task, Status.fail(f"Failed to initialise plugins for task '{task_id}': {exc}")
            )

        # Plugin init may suspend; the task can be deleted or disabled meanwhile
        if self._tasks.get(task_id) is not task:
            if self._orchestrators.get(task_id) is orchestrator:
                del self._orchestrators[task_id]
            logger.warning(
                f"Task '{task_id}' was deleted before it started; run abandoned.",
                extra={"ingestion_task_id": task_id},
            )
            return Status.fail(f"Task '{task_id}' not found.", code=404)
        if not task.enabled:
            logger.warning(
                f"Task '{task_id}' was disabled before it started; run abandoned.",
                extra={"ingestion_task_id": task_id},
            )
            return Status.fail(f"Task '{task_id}' is disabled.", {"code": "TASK_DISABLED"}, code=400)

        self._transition(task, TaskStatus.RUNNING, reason=context.trigger)
        logger.info(
            f"Executing task '{task.name or task_id}' (ID: {task_id}).",
            extra={"ingestion_task_id": task_id, "ingestion_trigger": context.trigger},
        )
        self._event_bus.emit(IngestionEvents.TASK_TRIGGERED, task_id, task.snapshot())

        try:
            status = await orchestrator.execute(context, payload)
        except Exception as exc:  # noqa: BLE001
            # The orchestrator converts plugin errors itself; this is the last backstop
            logger.exception(
                f"Unhandled error during execution of task '{task_id}'",
                extra={"ingestion_task_id": task_id},
            )
            status = Status.fail(f"Unhandled error during task execution: {exc}")
            self._event_bus.emit(IngestionEvents.TASK_FAILED, status, task_id)

        self._complete(task, status)
        return status

    async def _get_orchestrator(self, task: IngestionTaskDefinition) -> IngestionOrchestrator:
        orchestrator = self._orchestrators.get(task.id)
        if orchestrator is not None:
            return orchestrator

        source_def = self._registry.get_source(task.source.plugin_type)
        destination_factory = (
            self._registry.get_destination(task.destination.plugin_type)
            if task.destination
            else None
        )

        source = source_def.factory(config=task.source.config)
        destination = None
        if destination_factory is not None:
            destination = destination_factory()
            await destination.init(task.destination.config)

        transformer = source_def.transformer
        if task.transformer_params:
            transformer = functools.partial(transformer, **task.transformer_params)

        orchestrator = IngestionOrchestrator(
            source,
            transformer,
            destination,
            self._event_bus,
            task.id,
            clock=self._clock,
        )
        self._orchestrators[task.id] = orchestrator
        return orchestrator

    def _record_failure(self, task: IngestionTaskDefinition, status: Status) -> Status:
        if task.current_status is not TaskStatus.DISABLED:
            self._transition(task, TaskStatus.FAILED, reason=status.message)
        task.last_run_status = status
        self._event_bus.emit(IngestionEvents.TASK_FAILED, status, task.id)
        return status

    def _complete(self, task: IngestionTaskDefinition, status: Status) -> None:
        task.last_run_status = status
        # Disabled (or re-enabled) mid-run: keep the status set by the caller.
        # COMPLETED/FAILED here means an overlapping run finished first; last write wins.
        if task.current_status in (TaskStatus.DISABLED, TaskStatus.SCHEDULED):
            logger.info(
                f"Task '{task.id}' finished while {task.current_status.value}",
                extra={"ingestion_task_id": task.id},
            )
            return
        if status.success:
            self._transition(task, TaskStatus.COMPLETED, reason="pipeline succeeded")
            logger.info(f"Task '{task.id}' completed successfully.", extra={"ingestion_task_id": task.id})
        else:
            self._transition(task, TaskStatus.FAILED, reason=status.message)
            logger.error(
                f"Task '{task.id}' failed: {status.message}",
                extra={"ingestion_task_id": task.id},
            )

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _require_task(self, task_id: str) -> IngestionTaskDefinition:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _generate_task_id(self) -> str:
        while True:
            candidate = str(uuid.uuid4())
            if candidate not in self._tasks:
                return candidate

    def _transition(self, task: IngestionTaskDefinition, to_status: TaskStatus, *, reason: str) -> None:
        self._validator.validate_transition(task.id, task.current_status, to_status, reason=reason)
        task.current_status = to_status

    def _arm_trigger(self, task: IngestionTaskDefinition) -> None:
        if not task.enabled or not self._lifecycle_started:
            self._disarm_trigger(task)
            return

        trigger = task.trigger
        if isinstance(trigger, CronTrigger):
            try:
                task.next_run = next_fire_time(trigger.expression, self._clock(), self._config.cron.tz)
            except CronExpressionError as exc:
                logger.error(
                    f"Cannot arm cron trigger for task '{task.id}': {exc}",
                    extra={"ingestion_task_id": task.id},
                )
                task.next_run = None
            logger.info(
                f"Task '{task.id}' armed for cron \"{trigger.expression}\"; "
                "an external scheduler must call trigger_all_enabled_cron_tasks().",
                extra={"ingestion_task_id": task.id},
            )
        elif isinstance(trigger, WebhookTrigger):
            logger.info(
                f"Task '{task.id}' armed for webhook endpoint '{trigger.endpoint_id}'.",
                extra={"ingestion_task_id": task.id},
            )
        elif isinstance(trigger, ManualTrigger):
            logger.info(f"Task '{task.id}' armed for manual trigger.", extra={"ingestion_task_id": task.id})
        self._armed.add(task.id)

    def _disarm_trigger(self, task: IngestionTaskDefinition) -> None:
        if task.id in self._armed:
            logger.debug(f"Trigger for task '{task.id}' disarmed.", extra={"ingestion_task_id": task.id})
        self._armed.discard(task.id)
        task.next_run = None


__all__ = ["IngestionLifecycleManager"]
