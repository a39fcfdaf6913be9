"""Harvester: task lifecycle management and ingestion pipelines."""

__version__ = "0.3.0"
