"""Online semantic clustering of memories."""

from recall.clustering.cluster import ClusterState, MemoryCluster
from recall.clustering.concepts import categorize_domains, extract_concepts
from recall.clustering.engine import ClusteringEngine, MaintenanceReport

__all__ = [
    "ClusterState",
    "ClusteringEngine",
    "MaintenanceReport",
    "MemoryCluster",
    "categorize_domains",
    "extract_concepts",
]
