"""Plugin contracts and built-in plugins for ingestion pipelines."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .contracts import (
    DestinationFactory,
    DestinationPlugin,
    SourceFactory,
    SourcePlugin,
    Transformer,
    TriggerContext,
)
from .destinations import FileSystemDestination, GenericApiDestination
from .payload_path import extract_path
from .transformers import generic_ingestion_preprocessor, passthrough_transformer

if TYPE_CHECKING:
    from ..orchestrator.manager import IngestionLifecycleManager


def register_builtin_destinations(manager: IngestionLifecycleManager) -> None:
    """Register the bundled destinations under their conventional names."""
    manager.register_destination("file-system", FileSystemDestination)
    manager.register_destination("generic-api", GenericApiDestination)


__all__ = [
    "DestinationFactory",
    "DestinationPlugin",
    "SourceFactory",
    "SourcePlugin",
    "Transformer",
    "TriggerContext",
    "FileSystemDestination",
    "GenericApiDestination",
    "extract_path",
    "generic_ingestion_preprocessor",
    "passthrough_transformer",
    "register_builtin_destinations",
]
