"""Error taxonomy for the memory & recall engine.

Only ValidationError ever reaches a query caller. The others are handled
inside the engine: DependencyUnavailable defers ingestion through the retry
queue, ClusteringInconsistency triggers a rebuild of the affected cluster,
and NotFound is translated into empty collections.
"""


class RecallError(Exception):
    """Base class for engine errors."""


class ValidationError(RecallError):
    """Malformed input: bad embedding, unknown pattern type, missing user."""


class DependencyUnavailable(RecallError):
    """The upstream embedding or emotion-tagging service could not be reached."""

    def __init__(self, message: str, dependency: str = "enricher"):
        super().__init__(message)
        self.dependency = dependency


class ClusteringInconsistency(RecallError):
    """A cluster's running sum or member count disagrees with its members."""

    def __init__(self, cluster_id: str, reason: str):
        super().__init__(f"Cluster {cluster_id} inconsistent: {reason}")
        self.cluster_id = cluster_id
        self.reason = reason


class NotFound(RecallError):
    """No memories or clusters exist for the requested user or timeframe."""
