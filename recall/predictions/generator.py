"""Turn detected patterns into short-horizon predictions.

confidence = min(cap[type], base * recency * consistency) * 100

    base        = logistic(slope * (frequency - midpoint))
    recency     = 0.5 ** (age of newest supporting memory / half-life)
    consistency = 1 / (1 + penalty * variance of supporting valences)

Patterns with too little support produce nothing. Predictions are
regenerated wholesale on every sweep; nothing here is persisted.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Mapping, Optional, Sequence

import numpy as np

from recall.config import PredictionConfig
from recall.memory.models import Memory
from recall.patterns.models import Pattern, PatternType
from recall.predictions.models import Prediction, new_prediction_id
from recall.utils.clock import ensure_utc, utc_now

logger = logging.getLogger(__name__)


def logistic(x: float) -> float:
    return 1.0 / (1.0 + math.exp(-x))


def _topic(concepts: Sequence[str], fallback: str) -> str:
    return ", ".join(concepts[:2]) if concepts else fallback


class PredictionGenerator:
    """Scores patterns and phrases a prediction for each.

    Attributes:
        config: Confidence model parameters
    """

    def __init__(self, config: Optional[PredictionConfig] = None):
        self.config = config or PredictionConfig()

    def cap_for(self, pattern_type: PatternType) -> float:
        return self.config.caps.get(pattern_type.value, 1.0)

    def generate(
        self,
        patterns: Sequence[Pattern],
        memories_by_id: Mapping[str, Memory],
        concepts_by_cluster: Optional[Mapping[str, Sequence[str]]] = None,
        now: Optional[datetime] = None,
    ) -> list[Prediction]:
        """Build one prediction per sufficiently supported pattern.

        Args:
            patterns: Patterns from a single detection run
            memories_by_id: Lookup for supporting memories
            concepts_by_cluster: Cluster concepts, used to phrase cluster-based predictions
            now: Generation time

        Returns:
            Predictions ordered by confidence (highest first)
        """
        now = ensure_utc(now) if now is not None else utc_now()
        concepts_by_cluster = concepts_by_cluster or {}
        predictions = []

        for pattern in patterns:
            supporting = [
                memories_by_id[mid] for mid in pattern.supporting_memory_ids if mid in memories_by_id
            ]
            if len(supporting) < self.config.min_support:
                logger.debug(
                    f"Skipping pattern {pattern.id}: {len(supporting)} supporting memories"
                )
                continue

            valences = np.array([m.emotional_valence for m in supporting])
            base = logistic(
                self.config.logistic_slope * (pattern.frequency - self.config.logistic_midpoint)
            )
            consistency = 1.0 / (1.0 + self.config.variance_penalty * float(np.var(valences)))
            concepts = concepts_by_cluster.get(pattern.cluster_id, []) if pattern.cluster_id else []

            predictions.append(
                Prediction(
                    id=new_prediction_id(),
                    user_id=pattern.user_id,
                    pattern_id=pattern.id,
                    prediction_text=self.phrase(pattern, supporting, concepts),
                    generated_at=now,
                    expires_at=now + timedelta(days=self.config.ttl_days),
                    base=base,
                    consistency=consistency,
                    cap=self.cap_for(pattern.pattern_type),
                    latest_support_at=max(m.timestamp for m in supporting),
                    recency_half_life_days=self.config.recency_half_life_days,
                )
            )

        predictions.sort(key=lambda p: (-p.confidence, p.prediction_text))
        return predictions

    def phrase(self, pattern: Pattern, supporting: Sequence[Memory], concepts: Sequence[str]) -> str:
        """Template text for a prediction."""
        if pattern.pattern_type is PatternType.EMOTIONAL_CYCLE:
            mean = float(np.mean([m.emotional_valence for m in supporting]))
            mood = "brighter" if mean > 0 else "heavier"
            return f"A {mood} stretch like the ones before is likely to come around again."
        if pattern.pattern_type is PatternType.BREAKTHROUGH_MOMENT:
            return "New reflection on a familiar theme may open up another breakthrough."
        if pattern.pattern_type is PatternType.RECURRING_CHALLENGE:
            topic = _topic(concepts, "this challenge")
            return f"{topic[0].upper()}{topic[1:]} is likely to come up again in the coming days."
        topic = _topic(concepts, "this theme")
        return f"Returning to {topic} is likely to lift your mood."
