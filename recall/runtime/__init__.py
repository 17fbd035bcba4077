"""Async runtime: per-user locks, ingestion and sweeps."""

from recall.runtime.ingestion import IngestionPipeline, IngestionService, MemoryDraft
from recall.runtime.partition import UserLocks
from recall.runtime.sweeps import SweepCoordinator, SweepSnapshot

__all__ = [
    "IngestionPipeline",
    "IngestionService",
    "MemoryDraft",
    "SweepCoordinator",
    "SweepSnapshot",
    "UserLocks",
]
