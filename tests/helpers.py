"""Builders for memories, embeddings and timestamps used across the tests."""

import math
from datetime import datetime, timedelta, timezone
from itertools import count

from recall.memory.models import Memory, PhaseTag

DIM = 8
BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def axis(i: int, dim: int = DIM) -> tuple[float, ...]:
    """Unit vector along one axis; distinct axes are orthogonal."""
    v = [0.0] * dim
    v[i] = 1.0
    return tuple(v)


def tilted(i: int, j: int, cos: float, dim: int = DIM) -> tuple[float, ...]:
    """Unit vector with cosine similarity `cos` to axis(i), leaning toward axis(j)."""
    v = [0.0] * dim
    v[i] = cos
    v[j] = math.sqrt(max(0.0, 1.0 - cos * cos))
    return tuple(v)


def at(days: float = 0.0, hours: float = 0.0) -> datetime:
    return BASE_TIME + timedelta(days=days, hours=hours)


_ids = count(1)


def make_memory(
    embedding=None,
    *,
    user_id: str = "user-1",
    memory_id: str | None = None,
    content: str = "work deadline stress",
    timestamp: datetime | None = None,
    valence: float = 0.0,
    emotion: str = "neutral",
    phase: PhaseTag = PhaseTag.UNKNOWN,
    supersedes: str | None = None,
) -> Memory:
    return Memory(
        id=memory_id or f"m{next(_ids)}",
        user_id=user_id,
        content=content,
        embedding=embedding if embedding is not None else axis(0),
        timestamp=timestamp or BASE_TIME,
        emotional_valence=valence,
        dominant_emotion=emotion,
        phase_tag=phase,
        supersedes=supersedes,
    )
