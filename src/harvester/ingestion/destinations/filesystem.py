"""Destination that mirrors records into a directory tree."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path, PurePosixPath
from typing import Any, List, Mapping, Optional

from ...orchestrator.models import IngestionRecord, Status

logger = logging.getLogger(__name__)

REMOVED_CHANGE_TYPE = "removed"


class FileSystemDestination:
    """Writes each record to ``output_path`` as one file.

    The file lives at ``<output_path>/<dir of metadata.relativePath>/<name>``
    where the name is ``metadata.filename`` or the last segment of the
    record id. Text and bytes are written after a short metadata header;
    dicts and lists are written as JSON. Records whose
    ``metadata.changeType`` is ``"removed"`` delete their file instead.
    """

    def __init__(self) -> None:
        self._output_path: Optional[Path] = None
        self._ready = False

    @property
    def output_path(self) -> Optional[Path]:
        return self._output_path

    async def init(self, config: Any) -> None:
        config = config or {}
        raw_path = None
        if isinstance(config, Mapping):
            raw_path = config.get("output_path") or config.get("outputPath")
        if not raw_path:
            logger.warning("File system destination has no 'output_path'; records will not be saved")
            self._ready = False
            return

        self._output_path = Path(raw_path).expanduser()
        try:
            await asyncio.to_thread(self._output_path.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            logger.error(f"Failed to create output directory {self._output_path}: {exc}")
            self._ready = False
            return
        self._ready = True
        logger.info(f"File system destination initialised at {self._output_path}")

    async def process_data(self, records: List[IngestionRecord]) -> Status:
        if not self._ready or self._output_path is None:
            return Status.fail(
                f"Skipping save of {len(records)} records: output path missing or not creatable.",
                code=400,
            )

        logger.info(f"Saving batch of {len(records)} records to {self._output_path}")
        results = await asyncio.gather(
            *(asyncio.to_thread(self._save_record, record) for record in records),
            return_exceptions=True,
        )

        errors = []
        saved = removed = 0
        for record, result in zip(records, results):
            if isinstance(result, BaseException):
                logger.error(f"Failed to save record '{record.id}': {result}")
                errors.append(f"Record '{record.id}' failed: {result}")
            elif result == REMOVED_CHANGE_TYPE:
                removed += 1
            else:
                saved += 1

        if errors:
            return Status.fail(
                f"Batch save failed for {len(errors)} records.",
                {"errors": errors, "saved": saved, "removed": removed},
                code=500,
            )
        logger.info(f"Saved {saved} records, removed {removed}")
        return Status.ok(
            f"Successfully saved {saved} records in batch.",
            {"saved": saved, "removed": removed},
        )

    def target_path(self, record: IngestionRecord) -> Path:
        """Resolve where ``record`` is stored.

        Raises:
            ValueError: If the metadata would place the file outside the
                output directory
        """
        metadata = record.metadata or {}
        filename = metadata.get("filename") or PurePosixPath(record.id).name or record.id
        relative = metadata.get("relativePath") or ""
        directory = PurePosixPath(relative).parent if relative else PurePosixPath("")

        root = self._output_path.resolve()
        target = (root / directory / filename).resolve()
        if root not in target.parents:
            raise ValueError(f"Target path {target} escapes output directory {root}")
        return target

    def _save_record(self, record: IngestionRecord) -> str:
        target = self.target_path(record)
        if (record.metadata or {}).get("changeType") == REMOVED_CHANGE_TYPE:
            target.unlink(missing_ok=True)
            logger.debug(f"Removed {target}")
            return REMOVED_CHANGE_TYPE

        body = self._render(record)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(body)
        logger.debug(f"Saved {target}")
        return "saved"

    @staticmethod
    def _render(record: IngestionRecord) -> bytes:
        metadata = record.metadata or {}
        fetched_at = record.fetched_at.isoformat() if record.fetched_at else "N/A"
        header = (
            "--- Metadata ---\n"
            f"ID: {record.id}\n"
            f"URL: {metadata.get('url', 'N/A')}\n"
            f"Status Code: {metadata.get('statusCode', metadata.get('status_code', 'N/A'))}\n"
            f"Fetched At: {fetched_at}\n"
            "----------------\n\n"
        ).encode("utf-8")

        content = record.content
        if isinstance(content, bytes):
            return header + content
        if isinstance(content, str):
            return header + content.encode("utf-8")
        if isinstance(content, (dict, list)):
            return header + json.dumps(content, indent=2, ensure_ascii=False, default=str).encode("utf-8")
        raise TypeError(f"Unsupported content type {type(content).__name__}")


__all__ = ["FileSystemDestination", "REMOVED_CHANGE_TYPE"]
