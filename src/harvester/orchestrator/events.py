"""Lifecycle event names and the publish/subscribe bus that carries them.

Event Types:
- Task management events (scheduled, updated, enabled, disabled, deleted,
  triggered) are emitted as ``(task_id, task_snapshot)``
- Pipeline events (data fetched/transformed/processed, task completed or
  failed) are emitted as ``(payload, task_id)``

Subscribers receive every event for every task and filter on the task id
themselves. A failing subscriber is logged and skipped; it never reaches
the pipeline that emitted the event.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Set

logger = logging.getLogger(__name__)


class IngestionEvents:
    """Closed set of event names published on the bus."""

    # Task management events
    TASK_SCHEDULED = "task_scheduled"
    TASK_UPDATED = "task_updated"
    TASK_ENABLED = "task_enabled"
    TASK_DISABLED = "task_disabled"
    TASK_DELETED = "task_deleted"
    TASK_TRIGGERED = "task_triggered"

    # Terminal events, exactly one per invocation
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"

    # Pipeline stage events
    DATA_FETCHED = "data_fetched"
    DATA_TRANSFORMED = "data_transformed"
    DATA_PROCESSED = "data_processed"

    ALL = frozenset(
        {
            TASK_SCHEDULED,
            TASK_UPDATED,
            TASK_ENABLED,
            TASK_DISABLED,
            TASK_DELETED,
            TASK_TRIGGERED,
            TASK_COMPLETED,
            TASK_FAILED,
            DATA_FETCHED,
            DATA_TRANSFORMED,
            DATA_PROCESSED,
        }
    )
    TERMINAL = frozenset({TASK_COMPLETED, TASK_FAILED})


EventHandler = Callable[..., Any]


class EventBus:
    """Process-wide broadcast channel for lifecycle events.

    Constructed explicitly and passed to the lifecycle manager, which hands
    it to every orchestrator it builds. Handlers may be plain callables or
    coroutine functions; coroutine results are scheduled on the running
    event loop.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)
        self._wildcard: List[EventHandler] = []
        self._pending: Set[asyncio.Future] = set()

    def subscribe(self, event: str, handler: EventHandler) -> None:
        self._check_event(event)
        self._handlers[event].append(handler)

    def unsubscribe(self, event: str, handler: EventHandler) -> None:
        self._check_event(event)
        try:
            self._handlers[event].remove(handler)
        except ValueError:
            logger.debug("Handler was not subscribed", extra={"ingestion_event": event})

    def subscribe_all(self, handler: EventHandler) -> None:
        """Subscribe to every event; the handler receives the event name first."""
        self._wildcard.append(handler)

    def listener_count(self, event: str) -> int:
        self._check_event(event)
        return len(self._handlers[event]) + len(self._wildcard)

    def emit(self, event: str, *args: Any) -> None:
        """Deliver ``args`` to every handler subscribed to ``event``.

        Raises:
            ValueError: If ``event`` is not one of IngestionEvents.ALL
        """
        self._check_event(event)
        for handler in list(self._handlers[event]):
            self._dispatch(event, handler, args)
        for handler in list(self._wildcard):
            self._dispatch(event, handler, (event, *args))

    async def drain(self) -> None:
        """Wait for scheduled coroutine handlers to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _dispatch(self, event: str, handler: EventHandler, args: tuple) -> None:
        try:
            result = handler(*args)
        except Exception:  # noqa: BLE001
            logger.exception(
                "Event handler failed",
                extra={"ingestion_event": event, "handler": getattr(handler, "__name__", repr(handler))},
            )
            return
        if inspect.isawaitable(result):
            self._schedule(event, result)

    def _schedule(self, event: str, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
            future = asyncio.ensure_future(awaitable, loop=loop)
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning(
                "Dropped coroutine handler result: no running event loop",
                extra={"ingestion_event": event},
            )
            return
        self._pending.add(future)
        future.add_done_callback(lambda done: self._on_done(event, done))

    def _on_done(self, event: str, future: asyncio.Future) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error(
                "Async event handler failed",
                exc_info=exc,
                extra={"ingestion_event": event},
            )

    @staticmethod
    def _check_event(event: str) -> None:
        if event not in IngestionEvents.ALL:
            raise ValueError(f"Unknown ingestion event: {event!r}")


__all__ = ["IngestionEvents", "EventBus", "EventHandler"]
