"""Per-task ingestion pipeline: fetch, transform, deliver.

One ``IngestionOrchestrator`` is bound to one task's source, transformer
and optional destination. The lifecycle manager caches it per task id so
repeated triggers reuse connector state (for example an authenticated
client).

Every invocation emits exactly one terminal event (``TASK_COMPLETED`` or
``TASK_FAILED``) and returns the matching ``Status``; nothing raised by a
plugin escapes ``execute``.
"""

from __future__ import annotations

import inspect
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..ingestion.contracts import DestinationPlugin, SourcePlugin, Transformer, TriggerContext
from .events import EventBus, IngestionEvents
from .models import IngestionRecord, Status

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    INIT = "init"
    FETCHED = "fetched"
    TRANSFORMED = "transformed"
    DELIVERED = "delivered"
    SKIPPED = "skipped"
    DONE = "done"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def extract_raw_items(data: Any) -> List[Any]:
    """Pull raw items out of a source's ``Status.data``.

    Prefers a nested ``data`` field (a list is used as-is, a single value is
    wrapped), then wraps any other non-empty result into one item, and
    otherwise yields no items.
    """
    if isinstance(data, dict) and data.get("data") is not None:
        nested = data["data"]
        return list(nested) if isinstance(nested, (list, tuple)) else [nested]
    if data is not None:
        return [data]
    return []


class IngestionOrchestrator:
    """Executes the fetch, transform, deliver pipeline for one task."""

    def __init__(
        self,
        source: Optional[SourcePlugin],
        transformer: Optional[Transformer],
        destination: Optional[DestinationPlugin],
        event_bus: EventBus,
        task_id: str,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._source = source
        self._transformer = transformer
        self._destination = destination
        self._event_bus = event_bus
        self._task_id = task_id
        self._clock = clock
        self.stage = PipelineStage.INIT
        logger.info(
            "Orchestrator created",
            extra={
                "ingestion_task_id": task_id,
                "ingestion_source": type(source).__name__,
                "ingestion_destination": type(destination).__name__ if destination else None,
            },
        )

    @property
    def task_id(self) -> str:
        return self._task_id

    @property
    def source(self) -> Optional[SourcePlugin]:
        return self._source

    @property
    def destination(self) -> Optional[DestinationPlugin]:
        return self._destination

    def get_event_bus(self) -> EventBus:
        return self._event_bus

    async def execute(self, context: TriggerContext, payload: Any = None) -> Status:
        """Run one invocation of the pipeline and return its terminal status."""
        self.stage = PipelineStage.INIT
        if self._source is None or self._transformer is None:
            message = "Orchestrator not fully configured. A source and a transformer are required."
            logger.error(message, extra={"ingestion_task_id": self._task_id})
            return self._finish(Status.fail(message, {"items_processed": 0}, code=400))

        logger.info("Starting ingestion pipeline", extra={"ingestion_task_id": self._task_id})
        try:
            status = await self._run(context, payload)
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "Ingestion pipeline failed",
                extra={"ingestion_task_id": self._task_id, "pipeline_stage": self.stage.value},
            )
            status = Status.fail(
                f"Ingestion task {self._task_id} failed: {exc}",
                {"items_processed": 0, "error": str(exc), "stage": self.stage.value},
            )
        return self._finish(status)

    async def _run(self, context: TriggerContext, payload: Any) -> Status:
        init_result = await self._source.init_client()
        if isinstance(init_result, Status) and not init_result.success:
            logger.warning(
                f"Source client reported degraded readiness: {init_result.message}",
                extra={"ingestion_task_id": self._task_id},
            )
        else:
            logger.debug("Source client initialised", extra={"ingestion_task_id": self._task_id})

        source_status = await self._source.execute(context, payload)
        fetched_at = self._clock()

        if not source_status.success:
            message = f"Source execution failed for task {self._task_id}: {source_status.message}"
            logger.error(message, extra={"ingestion_task_id": self._task_id})
            return Status.fail(
                message,
                {"items_processed": 0, "source_data": source_status.data},
                code=source_status.code if source_status.code >= 400 else 500,
            )

        raw_items = extract_raw_items(source_status.data)
        if not raw_items:
            logger.warning(
                "Source returned no data",
                extra={"ingestion_task_id": self._task_id},
            )
        else:
            logger.info(
                f"Source yielded {len(raw_items)} raw items",
                extra={"ingestion_task_id": self._task_id},
            )
        self.stage = PipelineStage.FETCHED
        self._event_bus.emit(IngestionEvents.DATA_FETCHED, raw_items, self._task_id)

        records = await self._transform(raw_items, payload, fetched_at)
        self.stage = PipelineStage.TRANSFORMED
        self._event_bus.emit(IngestionEvents.DATA_TRANSFORMED, records, self._task_id)
        logger.info(
            f"Transformed {len(records)} records",
            extra={"ingestion_task_id": self._task_id},
        )

        if not records:
            self.stage = PipelineStage.SKIPPED
            logger.warning(
                "No records produced; completing without delivery",
                extra={"ingestion_task_id": self._task_id},
            )
            return Status.ok(
                "Ingestion task completed: no data from source.",
                {"items_processed": 0},
            )

        if self._destination is None:
            self.stage = PipelineStage.SKIPPED
            logger.info(
                "No destination configured; records count as processed after transform",
                extra={"ingestion_task_id": self._task_id},
            )
            return Status.ok(
                "Ingestion task completed successfully.",
                {"items_processed": len(records)},
            )

        return await self._deliver(records)

    async def _transform(
        self, raw_items: List[Any], payload: Any, fetched_at: datetime
    ) -> List[IngestionRecord]:
        transformer_payload: Dict[str, Any] = dict(payload) if isinstance(payload, dict) else {}
        if payload is not None and not isinstance(payload, dict):
            transformer_payload["payload"] = payload
        transformer_payload["fetched_at"] = fetched_at

        result = self._transformer(raw_items, transformer_payload)
        if inspect.isawaitable(result):
            result = await result
        records = list(result or [])
        for record in records:
            record.fetched_at = fetched_at
        return records

    async def _deliver(self, records: List[IngestionRecord]) -> Status:
        try:
            result = await self._destination.process_data(records)
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "Destination raised during delivery",
                extra={"ingestion_task_id": self._task_id},
            )
            return Status.fail(
                f"Error during destination processing for task {self._task_id}: {exc}",
                {"items_processed": 0, "error": str(exc)},
            )

        if not result.success:
            logger.error(
                f"Destination processing failed: {result.message}",
                extra={"ingestion_task_id": self._task_id},
            )
            return Status.fail(
                f"Destination processing failed for task {self._task_id}: {result.message}",
                {"items_processed": 0, "destination_data": result.data},
            )

        self.stage = PipelineStage.DELIVERED
        self._event_bus.emit(IngestionEvents.DATA_PROCESSED, records, self._task_id)
        logger.info(
            f"Delivered {len(records)} records",
            extra={"ingestion_task_id": self._task_id},
        )
        return Status.ok(
            "Ingestion task completed successfully.",
            {"items_processed": len(records), "destination_data": result.data},
        )

    def _finish(self, status: Status) -> Status:
        self.stage = PipelineStage.DONE
        event = IngestionEvents.TASK_COMPLETED if status.success else IngestionEvents.TASK_FAILED
        self._event_bus.emit(event, status, self._task_id)
        return status


__all__ = ["PipelineStage", "IngestionOrchestrator", "extract_raw_items"]
