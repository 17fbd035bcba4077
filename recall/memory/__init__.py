"""Memory store: append-only log of reflective records."""

from recall.memory.models import Memory, PhaseTag, SourceType, TrajectoryPoint
from recall.memory.store import MemoryStore, MemoryStream

__all__ = [
    "Memory",
    "MemoryStore",
    "MemoryStream",
    "PhaseTag",
    "SourceType",
    "TrajectoryPoint",
]
