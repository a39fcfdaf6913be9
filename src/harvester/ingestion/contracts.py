"""Role contracts for source, transformer and destination plugins.

Any object with matching method names satisfies a role; the protocols are
``runtime_checkable`` so tests and registries can assert conformance.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Union,
    runtime_checkable,
)

if TYPE_CHECKING:
    from ..orchestrator.models import IngestionRecord, Status


@dataclass
class TriggerContext:
    """Invocation context handed to sources and used as the reference clock.

    ``event_time`` is the reference instant for cron due-slot evaluation;
    when it is None the manager's clock supplies the current UTC time.
    """

    event_time: Optional[datetime] = None
    trigger: str = "manual"
    metadata: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class SourcePlugin(Protocol):
    """Fetches raw data from one external system.

    Constructed by its registered factory as ``factory(config=...)``.
    """

    async def init_client(self) -> Any:
        """Readiness probe; may return a degraded status instead of raising."""

    async def execute(self, context: TriggerContext, payload: Any = None) -> Status:
        """Fetch and return raw data inside ``Status.data``."""


@runtime_checkable
class DestinationPlugin(Protocol):
    """Delivers batches of records to a sink.

    Constructed by its registered factory with no arguments, then
    initialised once with the task's destination config.
    """

    async def init(self, config: Any) -> None:
        ...

    async def process_data(self, records: List[IngestionRecord]) -> Status:
        ...


Transformer = Callable[
    [List[Any], Optional[Dict[str, Any]]],
    Union[List["IngestionRecord"], Awaitable[List["IngestionRecord"]]],
]
"""Maps raw source items to records; may be a plain or a coroutine function."""

SourceFactory = Callable[..., SourcePlugin]
DestinationFactory = Callable[[], DestinationPlugin]


__all__ = [
    "TriggerContext",
    "SourcePlugin",
    "DestinationPlugin",
    "Transformer",
    "SourceFactory",
    "DestinationFactory",
]
