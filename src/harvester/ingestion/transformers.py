"""Built-in transformers mapping raw source items to ``IngestionRecord``s.

Transformers are called as ``transformer(raw_items, payload)`` where
``payload`` carries the invocation payload plus ``fetched_at``. A task's
``transformer_params`` are passed as keyword arguments.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from ..orchestrator.models import IngestionRecord
from .payload_path import extract_path

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def _fetched_at(payload: Optional[Mapping[str, Any]]) -> Optional[datetime]:
    if payload is None:
        return None
    value = payload.get("fetched_at")
    return value if isinstance(value, datetime) else None


def to_record(item: Any, *, id_path: Optional[str] = None) -> IngestionRecord:
    """Coerce a raw item into a fresh ``IngestionRecord``.

    Records are copied; mappings with a ``content`` key are read as record
    fields; anything else becomes the content of a new record.
    """
    if isinstance(item, IngestionRecord):
        return IngestionRecord(
            id=item.id,
            content=item.content,
            metadata=dict(item.metadata),
            fetched_at=item.fetched_at,
        )

    record_id = extract_path(item, id_path) if id_path else None
    if isinstance(item, Mapping) and "content" in item:
        return IngestionRecord(
            id=str(record_id or item.get("id") or uuid.uuid4()),
            content=item["content"],
            metadata=dict(item.get("metadata") or {}),
        )
    if isinstance(item, Mapping):
        record_id = record_id or item.get("id")
    return IngestionRecord(id=str(record_id or uuid.uuid4()), content=item)


def passthrough_transformer(
    raw_items: List[Any], payload: Optional[Dict[str, Any]] = None
) -> List[IngestionRecord]:
    """Return the items as records without touching their content."""
    logger.info(f"Passthrough transformer: passing {len(raw_items)} items through unchanged")
    fetched_at = _fetched_at(payload)
    records = []
    for item in raw_items:
        record = to_record(item)
        if fetched_at is not None:
            record.fetched_at = fetched_at
        records.append(record)
    return records


def _as_text(record: IngestionRecord) -> str:
    content = record.content
    if isinstance(content, bytes):
        try:
            return content.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning(
                f"Could not decode content of record '{record.id}' as UTF-8; using empty text"
            )
            return ""
    if isinstance(content, (dict, list)):
        return json.dumps(content, ensure_ascii=False, default=str)
    if content is None:
        return ""
    return str(content)


def generic_ingestion_preprocessor(
    raw_items: List[Any],
    payload: Optional[Dict[str, Any]] = None,
    *,
    id_path: Optional[str] = None,
) -> List[IngestionRecord]:
    """Normalise any items into text records with ingestion metadata.

    Content becomes UTF-8 text with runs of whitespace collapsed. Each
    record gains ``ingestionTimestamp``, ``contentLength`` and
    ``processedByGenericPreprocessor`` metadata; existing keys are kept.

    Args:
        raw_items: Items from the source
        payload: Invocation payload, including ``fetched_at``
        id_path: Optional payload path used to read record ids from
            structured items, for example ``"sha"`` or ``"issue.number"``
    """
    logger.info(f"Generic preprocessor: processing {len(raw_items)} items")
    ingestion_timestamp = datetime.now(timezone.utc).isoformat()
    fetched_at = _fetched_at(payload)

    records = []
    for item in raw_items:
        record = to_record(item, id_path=id_path)
        text = _WHITESPACE.sub(" ", _as_text(record)).strip()
        record.content = text
        record.metadata = {
            **record.metadata,
            "ingestionTimestamp": ingestion_timestamp,
            "contentLength": len(text),
            "processedByGenericPreprocessor": True,
        }
        if fetched_at is not None:
            record.fetched_at = fetched_at
        records.append(record)
        logger.debug(f"Generic preprocessor: processed record '{record.id}'")

    logger.info(f"Generic preprocessor: returning {len(records)} records")
    return records


__all__ = ["passthrough_transformer", "generic_ingestion_preprocessor", "to_record"]
