"""Tests for the plugin registry."""

import pytest

from fakes import FakeSource, RecordingDestination, empty_transformer, item_transformer
from harvester.orchestrator.exceptions import PluginNotRegisteredError
from harvester.orchestrator.registry import PluginRegistry


def test_register_and_lookup_source():
    registry = PluginRegistry()
    registry.register_source("fake", FakeSource, item_transformer)

    registration = registry.get_source("fake")

    assert registration.factory is FakeSource
    assert registration.transformer is item_transformer
    assert registry.has_source("fake")
    assert registry.source_types() == ["fake"]


def test_reregistration_overwrites_with_warning(caplog):
    registry = PluginRegistry()
    registry.register_source("fake", FakeSource, item_transformer)
    registry.register_source("fake", FakeSource, empty_transformer)

    assert registry.get_source("fake").transformer is empty_transformer
    assert "already registered. Overwriting." in caplog.text


def test_missing_plugins_raise():
    registry = PluginRegistry()
    registry.register_destination("recording", RecordingDestination)

    with pytest.raises(PluginNotRegisteredError, match="Source plugin 'ghost' not registered"):
        registry.get_source("ghost")
    with pytest.raises(PluginNotRegisteredError) as excinfo:
        registry.get_destination("ghost")
    assert excinfo.value.role == "destination"
    assert registry.destination_types() == ["recording"]
