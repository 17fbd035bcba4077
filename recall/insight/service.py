"""Read API over committed clusters and sweep snapshots.

Queries never wait on clustering and only wait on a sweep when a user has
no committed snapshot yet. Snapshots older than the sweep interval are
served as-is while a refresh runs in the background.

Only ValidationError reaches the caller. Any other failure while producing
a pattern response is logged and answered with an empty response.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Optional, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from recall.clustering.cluster import ClusterState
from recall.clustering.engine import ClusteringEngine
from recall.config import InsightConfig
from recall.errors import NotFound, ValidationError
from recall.insight.schemas import (
    ClusterOut,
    ClusterQuery,
    ClusterQueryResponse,
    ConceptHierarchy,
    ConceptNode,
    DormantConcept,
    DormantConcepts,
    EmotionalTrajectory,
    MemoryOut,
    PatternOut,
    PatternQuery,
    PatternQueryResponse,
    PredictionOut,
    TrajectoryEntry,
)
from recall.memory.models import Memory
from recall.memory.store import MemoryStore
from recall.patterns.models import PatternType, Timeframe
from recall.runtime.sweeps import SweepCoordinator, SweepSnapshot
from recall.utils.clock import days_between, ensure_utc, utc_now

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT", bound=BaseModel)


def parse_request(model: type[RequestT], request: Union[RequestT, dict[str, Any]]) -> RequestT:
    """Validate a request model or dict, raising the engine's ValidationError."""
    if isinstance(request, model):
        return request
    try:
        return model.model_validate(request)
    except SchemaError as e:
        raise ValidationError(f"Invalid {model.__name__}: {e.errors()}") from e


def memory_out(memory: Memory) -> MemoryOut:
    return MemoryOut(
        id=memory.id,
        content=memory.content,
        timestamp=memory.timestamp,
        emotional_valence=memory.emotional_valence,
        dominant_emotion=memory.dominant_emotion,
        phase_tag=memory.phase_tag.value,
        source_type=memory.source_type.value,
    )


class InsightService:
    """Answers the pattern and cluster queries.

    Attributes:
        store: Memory store, for resolving supporting memories
        engine: Clustering engine, for committed cluster snapshots
        sweeps: Sweep coordinator, for committed pattern snapshots
        config: Query-layer settings
    """

    def __init__(
        self,
        store: MemoryStore,
        engine: ClusteringEngine,
        sweeps: SweepCoordinator,
        config: Optional[InsightConfig] = None,
    ):
        self.store = store
        self.engine = engine
        self.sweeps = sweeps
        self.config = config or InsightConfig()

    # ------------------------------------------------------------------ #
    # Pattern query
    # ------------------------------------------------------------------ #

    async def query_patterns(
        self,
        request: Union[PatternQuery, dict[str, Any]],
        now: Optional[datetime] = None,
    ) -> PatternQueryResponse:
        """Patterns of one type over a timeframe, with their predictions.

        Raises:
            ValidationError: Missing user, unknown pattern type or timeframe
        """
        query = parse_request(PatternQuery, request)
        pattern_type = PatternType.parse(query.pattern)
        timeframe = Timeframe.parse(query.timeframe)
        now = ensure_utc(now) if now is not None else utc_now()

        try:
            snapshot = await self._snapshot(query.user_id, now)
            return self._pattern_response(snapshot, pattern_type, timeframe, now)
        except ValidationError:
            raise
        except NotFound:
            logger.debug(f"No memories for user {query.user_id}")
            return PatternQueryResponse()
        except Exception as e:
            logger.error(
                f"Pattern query for user {query.user_id} ({pattern_type.value}, "
                f"{timeframe.value}) failed: {e}"
            )
            return PatternQueryResponse()

    async def _snapshot(self, user_id: str, now: datetime) -> SweepSnapshot:
        snapshot = self.sweeps.snapshot(user_id)
        if snapshot is None:
            return await self.sweeps.sweep(user_id, now=now)

        age = (now - snapshot.computed_at).total_seconds()
        if age > self.sweeps.config.sweep_interval_seconds:
            logger.debug(f"Snapshot for user {user_id} is {age:.0f}s old, refreshing")
            self.sweeps.request_sweep(user_id, now=now)
        return snapshot

    def _pattern_response(
        self,
        snapshot: SweepSnapshot,
        pattern_type: PatternType,
        timeframe: Timeframe,
        now: datetime,
    ) -> PatternQueryResponse:
        patterns = snapshot.patterns_for(timeframe, pattern_type)
        predictions = snapshot.predictions_for(timeframe, patterns, now)

        supporting_ids = {mid for p in patterns for mid in p.supporting_memory_ids}
        memories = sorted(
            (
                m for m in self.store.get_many(supporting_ids)
                if not self.store.is_superseded(m.id)
            ),
            key=lambda m: (m.timestamp, m.id),
        )

        ranked = sorted(
            ((p, p.confidence_at(now)) for p in predictions),
            key=lambda item: (-item[1], item[0].prediction_text),
        )
        return PatternQueryResponse(
            memories=[memory_out(m) for m in memories],
            patterns=[
                PatternOut(pattern=p.description, frequency=p.frequency, insights=list(p.insights))
                for p in patterns
            ],
            predictions=[
                PredictionOut(prediction=p.prediction_text, confidence=confidence)
                for p, confidence in ranked
            ],
        )

    # ------------------------------------------------------------------ #
    # Cluster query
    # ------------------------------------------------------------------ #

    def query_clusters(self, request: Union[ClusterQuery, dict[str, Any]]) -> ClusterQueryResponse:
        """Live clusters, emergent themes and the concept hierarchy.

        Raises:
            ValidationError: Missing user
        """
        query = parse_request(ClusterQuery, request)
        clusters = sorted(
            self.engine.live_clusters(query.user_id),
            key=lambda c: (-c.strength_score, c.id),
        )

        visible = Counter()
        for cluster in clusters:
            if (
                cluster.state == ClusterState.ACTIVE
                and cluster.strength_score > self.config.theme_visibility_threshold
            ):
                for concept in cluster.concepts:
                    visible[concept] += cluster.concept_counts.get(concept, 1)

        overall = Counter()
        for cluster in clusters:
            for concept in cluster.concepts:
                overall[concept] += cluster.concept_counts.get(concept, 1)

        return ClusterQueryResponse(
            clusters=[
                ClusterOut(
                    id=c.id,
                    concepts=list(c.concepts),
                    emotional_context=round(c.emotional_context, 4),
                    phase_context=c.phase_context.value,
                    strength_score=round(c.strength_score, 4),
                )
                for c in clusters
            ],
            emergent_themes=[term for term, _ in _ranked(visible)],
            concept_hierarchy=ConceptHierarchy(
                children=[
                    ConceptNode(name=term, frequency=count)
                    for term, count in _ranked(overall)[: self.config.hierarchy_size]
                ]
            ),
        )

    # ------------------------------------------------------------------ #
    # Supplementary reads
    # ------------------------------------------------------------------ #

    def emotional_trajectory(
        self, user_id: str, days: int = 30, now: Optional[datetime] = None
    ) -> EmotionalTrajectory:
        """Valence over the last `days` days, oldest first."""
        if not user_id or not user_id.strip():
            raise ValidationError("user_id is required")
        points = self.store.trajectory(user_id, days=days, now=now)
        return EmotionalTrajectory(
            user_id=user_id,
            days=days,
            points=[
                TrajectoryEntry(
                    timestamp=p.timestamp,
                    valence=p.valence,
                    dominant_emotion=p.dominant_emotion,
                )
                for p in points
            ],
        )

    def dormant_concepts(self, user_id: str, now: Optional[datetime] = None) -> DormantConcepts:
        """Concepts of substantial dormant clusters, most mentioned first."""
        if not user_id or not user_id.strip():
            raise ValidationError("user_id is required")
        now = ensure_utc(now) if now is not None else utc_now()

        entries = []
        for cluster in self.engine.live_clusters(user_id):
            if cluster.state != ClusterState.DORMANT or cluster.size < self.config.dormant_min_members:
                continue
            for concept in cluster.concepts:
                entries.append(
                    DormantConcept(
                        concept=concept,
                        cluster_id=cluster.id,
                        last_mentioned=cluster.last_updated,
                        mention_count=cluster.concept_counts.get(concept, 0),
                    )
                )
        entries.sort(key=lambda e: (-e.mention_count, e.concept, e.cluster_id))
        if entries:
            oldest = min(e.last_mentioned for e in entries)
            logger.debug(
                f"{len(entries)} dormant concepts for user {user_id}, "
                f"oldest silent {days_between(oldest, now):.0f} days"
            )
        return DormantConcepts(user_id=user_id, concepts=entries)


def _ranked(counts: Counter) -> list[tuple[str, int]]:
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))
