"""Plugin registry mapping plugin type names to implementations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List

from ..ingestion.contracts import DestinationFactory, SourceFactory, Transformer
from .exceptions import PluginNotRegisteredError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceRegistration:
    factory: SourceFactory
    transformer: Transformer


class PluginRegistry:
    """Name-keyed lookup table for source and destination plugins.

    Re-registering a name overwrites the previous entry with a warning;
    the last registration wins. There is no unregister operation.
    """

    def __init__(self) -> None:
        self._sources: Dict[str, SourceRegistration] = {}
        self._destinations: Dict[str, DestinationFactory] = {}

    def register_source(self, name: str, factory: SourceFactory, transformer: Transformer) -> None:
        if name in self._sources:
            logger.warning(
                f"Source plugin '{name}' already registered. Overwriting.",
                extra={"ingestion_plugin": name},
            )
        self._sources[name] = SourceRegistration(factory=factory, transformer=transformer)
        logger.info(f"Source plugin '{name}' registered.", extra={"ingestion_plugin": name})

    def register_destination(self, name: str, factory: DestinationFactory) -> None:
        if name in self._destinations:
            logger.warning(
                f"Destination plugin '{name}' already registered. Overwriting.",
                extra={"ingestion_plugin": name},
            )
        self._destinations[name] = factory
        logger.info(f"Destination plugin '{name}' registered.", extra={"ingestion_plugin": name})

    def get_source(self, name: str) -> SourceRegistration:
        """Look up a source registration.

        Raises:
            PluginNotRegisteredError: If ``name`` was never registered
        """
        try:
            return self._sources[name]
        except KeyError:
            raise PluginNotRegisteredError("source", name) from None

    def get_destination(self, name: str) -> DestinationFactory:
        """Look up a destination factory.

        Raises:
            PluginNotRegisteredError: If ``name`` was never registered
        """
        try:
            return self._destinations[name]
        except KeyError:
            raise PluginNotRegisteredError("destination", name) from None

    def has_source(self, name: str) -> bool:
        return name in self._sources

    def has_destination(self, name: str) -> bool:
        return name in self._destinations

    def source_types(self) -> List[str]:
        return sorted(self._sources)

    def destination_types(self) -> List[str]:
        return sorted(self._destinations)


__all__ = ["SourceRegistration", "PluginRegistry"]
