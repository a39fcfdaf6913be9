"""Destination that POSTs record batches to an HTTP endpoint."""

from __future__ import annotations

import base64
import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx

from ...orchestrator.models import IngestionRecord, Status

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_BATCH_SIZE = 100


def record_to_json(record: IngestionRecord) -> Dict[str, Any]:
    """JSON form of a record; bytes content is base64 encoded."""
    payload: Dict[str, Any] = {
        "id": record.id,
        "metadata": record.metadata,
        "fetchedAt": record.fetched_at.isoformat() if record.fetched_at else None,
    }
    if isinstance(record.content, bytes):
        payload["content"] = base64.b64encode(record.content).decode("ascii")
        payload["contentEncoding"] = "base64"
    else:
        payload["content"] = record.content
    return payload


class GenericApiDestination:
    """Sends records as ``{"data": [...]}`` JSON batches.

    Config keys: ``endpoint`` (required), ``headers``, ``timeout_seconds``
    and ``batch_size``. A batch counts as delivered on any 2xx response.
    """

    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._transport = transport
        self.endpoint: Optional[str] = None
        self.headers: Dict[str, str] = {}
        self.timeout = DEFAULT_TIMEOUT_SECONDS
        self.batch_size = DEFAULT_BATCH_SIZE

    async def init(self, config: Any) -> None:
        config = config if isinstance(config, Mapping) else {}
        self.endpoint = config.get("endpoint")
        self.headers = dict(config.get("headers") or {})
        self.timeout = float(config.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS))
        self.batch_size = max(1, int(config.get("batch_size", DEFAULT_BATCH_SIZE)))
        logger.info(
            "API destination initialised",
            extra={"endpoint": self.endpoint, "batch_size": self.batch_size},
        )

    async def process_data(self, records: List[IngestionRecord]) -> Status:
        if not self.endpoint:
            message = "API destination: endpoint configuration missing."
            logger.error(message)
            return Status.fail(message, code=400)

        logger.info(f"Sending {len(records)} records to {self.endpoint}")
        sent = failed = 0
        errors: List[str] = []
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for start in range(0, len(records), self.batch_size):
                batch = records[start : start + self.batch_size]
                body = {"data": [record_to_json(record) for record in batch]}
                try:
                    response = await client.post(self.endpoint, json=body, headers=self.headers)
                    response.raise_for_status()
                except httpx.HTTPStatusError as exc:
                    logger.error(f"API destination rejected batch: {exc}")
                    failed += len(batch)
                    errors.append(f"HTTP {exc.response.status_code} for batch at offset {start}")
                except httpx.HTTPError as exc:
                    logger.error(f"API destination request failed: {exc}")
                    failed += len(batch)
                    errors.append(f"{type(exc).__name__} for batch at offset {start}: {exc}")
                else:
                    sent += len(batch)

        if failed:
            return Status.fail(
                f"API batch send failed for {failed} records.",
                {"successful": sent, "failed": failed, "errors": errors},
                code=500,
            )
        logger.info(f"Sent {sent} records to {self.endpoint}")
        return Status.ok(f"Successfully sent {sent} records to API.", {"items_sent": sent})


__all__ = ["GenericApiDestination", "record_to_json"]
