"""Associative recall: surface past memories related to a present moment.

Candidates are the user's effective memories whose embedding is at least
`recall_min_similarity` from the query. Each is scored

    0.4 * similarity
  + 0.2 * emotional resonance   (1 - |valence - context| / 2)
  + 0.1 * phase match
  + 0.3 * recency               (linear decay to zero over recall_recency_days)

Dormant clusters close to the query are reported as themes worth revisiting.
Recall only reads; it never reactivates or otherwise touches clusters.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

import numpy as np

from recall.clustering.cluster import ClusterState
from recall.clustering.engine import ClusteringEngine
from recall.config import InsightConfig
from recall.errors import ValidationError
from recall.memory.models import Memory, PhaseTag
from recall.memory.store import MemoryStore
from recall.utils.clock import days_between, ensure_utc, utc_now
from recall.utils.vectors import as_vector, cosine_similarities, cosine_similarity

logger = logging.getLogger(__name__)

SIMILARITY_WEIGHT = 0.4
RESONANCE_WEIGHT = 0.2
PHASE_WEIGHT = 0.1
RECENCY_WEIGHT = 0.3


@dataclass
class RecallResult:
    """Ranked memories for a recall request.

    Attributes:
        memories: Best matches, highest score first
        scores: Score per returned memory, same order
        reasoning: One-sentence summary of what was recalled
        relevance_score: Mean score of the returned memories (0-100)
        dormant_themes: Concepts of dormant clusters the query resembles
    """

    memories: list[Memory] = field(default_factory=list)
    scores: list[float] = field(default_factory=list)
    reasoning: str = "No relevant memories found"
    relevance_score: float = 0.0
    dormant_themes: list[str] = field(default_factory=list)


class AssociativeRecall:
    """Similarity-and-context ranking over one user's memories."""

    def __init__(
        self,
        store: MemoryStore,
        engine: ClusteringEngine,
        config: Optional[InsightConfig] = None,
    ):
        self.store = store
        self.engine = engine
        self.config = config or InsightConfig()

    def recall(
        self,
        user_id: str,
        query_embedding: Sequence[float],
        emotional_context: float = 0.0,
        phase: PhaseTag = PhaseTag.UNKNOWN,
        limit: int = 5,
        now: Optional[datetime] = None,
    ) -> RecallResult:
        """Rank the user's memories against a query embedding.

        Raises:
            ValidationError: Missing user or wrong embedding length
        """
        if not user_id or not user_id.strip():
            raise ValidationError("user_id is required")
        query = as_vector(query_embedding)
        dimension = self.store.config.embedding_dimension
        if query.shape[0] != dimension:
            raise ValidationError(
                f"Query embedding has {query.shape[0]} dimensions, expected {dimension}"
            )
        now = ensure_utc(now) if now is not None else utc_now()
        phase = PhaseTag(phase)

        memories = [m for m in self.store.stream_since(user_id) if m.timestamp <= now]
        result = RecallResult(dormant_themes=self._dormant_themes(user_id, query))
        if not memories:
            return result

        sims = cosine_similarities(query, np.vstack([as_vector(m.embedding) for m in memories]))
        scored = []
        for memory, sim in zip(memories, sims):
            if sim < self.config.recall_min_similarity:
                continue
            scored.append((self.score(memory, float(sim), emotional_context, phase, now), memory))

        scored.sort(key=lambda item: (-item[0], -item[1].timestamp.timestamp(), item[1].id))
        top = scored[:limit]
        if not top:
            return result

        result.memories = [m for _, m in top]
        result.scores = [round(s, 4) for s, _ in top]
        result.relevance_score = round(100.0 * sum(result.scores) / len(top), 1)
        result.reasoning = self._reasoning(result.memories)
        logger.debug(f"Recalled {len(top)} memories for user {user_id} (of {len(scored)} candidates)")
        return result

    def score(
        self,
        memory: Memory,
        similarity: float,
        emotional_context: float,
        phase: PhaseTag,
        now: datetime,
    ) -> float:
        resonance = 1.0 - abs(memory.emotional_valence - emotional_context) / 2.0
        phase_match = 1.0 if phase != PhaseTag.UNKNOWN and memory.phase_tag == phase else 0.0
        age = max(0.0, days_between(memory.timestamp, now))
        recency = max(0.0, 1.0 - age / self.config.recall_recency_days)
        return (
            SIMILARITY_WEIGHT * similarity
            + RESONANCE_WEIGHT * resonance
            + PHASE_WEIGHT * phase_match
            + RECENCY_WEIGHT * recency
        )

    def _dormant_themes(self, user_id: str, query: np.ndarray) -> list[str]:
        threshold = self.engine.config.similarity_threshold
        themes: list[str] = []
        for cluster in self.engine.clusters(user_id):
            if cluster.state != ClusterState.DORMANT or cluster.count == 0:
                continue
            if cosine_similarity(query, cluster.centroid) < threshold:
                continue
            for concept in cluster.concepts:
                if concept not in themes:
                    themes.append(concept)
        return themes

    @staticmethod
    def _reasoning(memories: list[Memory]) -> str:
        phases = sorted({m.phase_tag.value for m in memories})
        average = sum(m.emotional_valence for m in memories) / len(memories)
        noun = "memory" if len(memories) == 1 else "memories"
        return (
            f"Recalled {len(memories)} relevant {noun} spanning {', '.join(phases)} "
            f"{'phase' if len(phases) == 1 else 'phases'}, average mood {average:+.2f}."
        )
