"""Derived-field formulas for memory clusters.

All functions are pure so that a cluster's derived fields can be rebuilt
from its members at any point (after a merge, after a correction, or when a
running invariant has been found violated).
"""

from __future__ import annotations

import math
from collections import Counter
from datetime import datetime
from typing import Sequence

import numpy as np

from recall.config import ClusteringConfig
from recall.memory.models import Memory, PhaseTag
from recall.utils.clock import days_between

# Strength score weights: size, emotional consistency, recency
SIZE_WEIGHT = 0.45
CONSISTENCY_WEIGHT = 0.30
RECENCY_WEIGHT = 0.25

# Member count scale for the saturating size term
SIZE_SCALE = 3.0

# Valence standard deviation at which consistency bottoms out
MAX_VALENCE_SPREAD = 0.5


def recency_weighted_valence(members: Sequence[Memory], half_life_days: float) -> float:
    """Exponentially recency-weighted mean valence.

    Ages are measured back from the newest member, so the result depends only
    on the member set and not on wall-clock time.
    """
    if not members:
        return 0.0
    newest = max(m.timestamp for m in members)
    decay = math.log(2) / half_life_days
    weights = np.array([math.exp(-decay * days_between(m.timestamp, newest)) for m in members])
    valences = np.array([m.emotional_valence for m in members])
    return float(np.dot(weights, valences) / weights.sum())


def dominant_phase(members: Sequence[Memory]) -> PhaseTag:
    """Most frequent phase tag; ties go to the phase seen most recently."""
    if not members:
        return PhaseTag.UNKNOWN
    counts = Counter(m.phase_tag for m in members)
    last_seen = {m.phase_tag: i for i, m in enumerate(members)}
    return max(counts, key=lambda phase: (counts[phase], last_seen[phase]))


def strength_score(
    valences: Sequence[float],
    last_addition: datetime,
    now: datetime,
    config: ClusteringConfig,
) -> float:
    """Composite 0-1 strength from size, emotional consistency and recency.

    Args:
        valences: Member valences
        last_addition: Timestamp of the most recent member
        now: Reference time for the recency term
        config: Clustering configuration (recency scale)

    Returns:
        Strength in [0, 1]
    """
    n = len(valences)
    if n == 0:
        return 0.0

    size = 1.0 - math.exp(-n / SIZE_SCALE)
    spread = float(np.std(valences)) if n > 1 else 0.0
    consistency = 1.0 - min(1.0, spread / MAX_VALENCE_SPREAD)
    # A single member says little about consistency
    confidence = min(1.0, n / SIZE_SCALE)
    idle_days = max(0.0, days_between(last_addition, now))
    recency = math.exp(-idle_days / config.recency_scale_days)

    score = (
        SIZE_WEIGHT * size
        + CONSISTENCY_WEIGHT * consistency * confidence
        + RECENCY_WEIGHT * recency
    )
    return max(0.0, min(1.0, score))


def strength_history(
    members: Sequence[Memory],
    config: ClusteringConfig,
) -> list[tuple[datetime, float]]:
    """Strength as it stood right after each member was added.

    Members must be in timestamp order. Used to measure strength trends.
    """
    history = []
    valences: list[float] = []
    for member in members:
        valences.append(member.emotional_valence)
        history.append(
            (member.timestamp, strength_score(valences, member.timestamp, member.timestamp, config))
        )
    return history
