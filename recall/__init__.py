"""Memory & recall engine.

Turns a stream of embedded, emotion-tagged reflective records into semantic
clusters, recurring patterns and confidence-scored predictions.
"""

from recall.app import RecallApp
from recall.config import RecallConfig
from recall.errors import (
    ClusteringInconsistency,
    DependencyUnavailable,
    NotFound,
    RecallError,
    ValidationError,
)
from recall.memory.models import Memory, PhaseTag, SourceType

__version__ = "0.1.0"

__all__ = [
    "ClusteringInconsistency",
    "DependencyUnavailable",
    "Memory",
    "NotFound",
    "PhaseTag",
    "RecallApp",
    "RecallConfig",
    "RecallError",
    "SourceType",
    "ValidationError",
]
