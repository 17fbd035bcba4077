"""Read contracts: pattern query, cluster query and associative recall."""

from recall.insight.associative import AssociativeRecall, RecallResult
from recall.insight.schemas import (
    ClusterQuery,
    ClusterQueryResponse,
    PatternQuery,
    PatternQueryResponse,
)
from recall.insight.service import InsightService

__all__ = [
    "AssociativeRecall",
    "ClusterQuery",
    "ClusterQueryResponse",
    "InsightService",
    "PatternQuery",
    "PatternQueryResponse",
    "RecallResult",
]
