"""Shared fixtures for harvester tests."""

from __future__ import annotations

import pytest

from fakes import EventRecorder, FakeSource, MutableClock, RecordingDestination, empty_transformer, item_transformer
from harvester.orchestrator.config import ConcurrencyConfig, ManagerConfig, OverlapPolicy
from harvester.orchestrator.events import EventBus
from harvester.orchestrator.manager import IngestionLifecycleManager


@pytest.fixture(autouse=True)
def _reset_fake_instances():
    FakeSource.instances = []
    RecordingDestination.instances = []
    yield


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(event_bus: EventBus) -> EventRecorder:
    return EventRecorder(event_bus)


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def manager_config() -> ManagerConfig:
    return ManagerConfig()


@pytest.fixture
def manager(event_bus: EventBus, clock: MutableClock, manager_config: ManagerConfig) -> IngestionLifecycleManager:
    manager = IngestionLifecycleManager(manager_config, event_bus=event_bus, clock=clock)
    manager.register_source("fake", FakeSource, item_transformer)
    manager.register_source("fake-empty", FakeSource, empty_transformer)
    manager.register_destination("recording", RecordingDestination)
    return manager


@pytest.fixture
def queueing_config() -> ManagerConfig:
    return ManagerConfig(concurrency=ConcurrencyConfig(overlap_policy=OverlapPolicy.QUEUE))
