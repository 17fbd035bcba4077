"""MemoryCluster record and its lifecycle states."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

import numpy as np

from recall.memory.models import PhaseTag
from recall.utils.clock import parse_timestamp, utc_now


class ClusterState(str, Enum):
    """Lifecycle state of a cluster.

    FORMING -> ACTIVE once it has enough members
    ACTIVE -> DORMANT after an inactivity window
    DORMANT -> ACTIVE when a matching memory arrives
    DORMANT -> PRUNED when strength falls below the floor
    """

    FORMING = "forming"
    ACTIVE = "active"
    DORMANT = "dormant"
    PRUNED = "pruned"


def new_cluster_id() -> str:
    return f"cl_{uuid.uuid4().hex[:12]}"


@dataclass
class MemoryCluster:
    """A semantic grouping of one user's memories.

    The centroid is never stored directly: the cluster keeps a running sum of
    member embeddings and a member count, and the centroid is their quotient.

    Attributes:
        id: Unique identifier
        user_id: Owning user
        sum_vector: Running sum of member embeddings
        count: Number of members folded into sum_vector
        member_ids: Member memory ids, most recent last
        concepts: Top keywords across member content
        concept_counts: Term counts for the entries in concepts
        emotional_context: Recency-weighted mean member valence
        phase_context: Most frequent member phase tag
        strength_score: Composite of size, consistency and recency (0-1)
        state: Lifecycle state
        last_updated: Timestamp of the most recent membership change
        created_at: Timestamp of the founding member
    """

    id: str
    user_id: str
    sum_vector: np.ndarray
    count: int = 0
    member_ids: list[str] = field(default_factory=list)
    concepts: list[str] = field(default_factory=list)
    concept_counts: dict[str, int] = field(default_factory=dict)
    emotional_context: float = 0.0
    phase_context: PhaseTag = PhaseTag.UNKNOWN
    strength_score: float = 0.0
    state: ClusterState = ClusterState.FORMING
    last_updated: datetime = field(default_factory=utc_now)
    created_at: datetime = field(default_factory=utc_now)

    @property
    def centroid(self) -> np.ndarray:
        if self.count == 0:
            return np.zeros_like(self.sum_vector)
        return self.sum_vector / self.count

    @property
    def size(self) -> int:
        return len(self.member_ids)

    @property
    def is_live(self) -> bool:
        """True for every state except PRUNED."""
        return self.state != ClusterState.PRUNED

    def copy(self) -> "MemoryCluster":
        """Independent copy, safe to hand to readers."""
        return MemoryCluster(
            id=self.id,
            user_id=self.user_id,
            sum_vector=self.sum_vector.copy(),
            count=self.count,
            member_ids=list(self.member_ids),
            concepts=list(self.concepts),
            concept_counts=dict(self.concept_counts),
            emotional_context=self.emotional_context,
            phase_context=self.phase_context,
            strength_score=self.strength_score,
            state=self.state,
            last_updated=self.last_updated,
            created_at=self.created_at,
        )

    def to_dict(self) -> dict:
        """Serialize for storage."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "sum_vector": self.sum_vector.tolist(),
            "count": self.count,
            "member_ids": list(self.member_ids),
            "concepts": list(self.concepts),
            "concept_counts": dict(self.concept_counts),
            "emotional_context": self.emotional_context,
            "phase_context": self.phase_context.value,
            "strength_score": self.strength_score,
            "state": self.state.value,
            "last_updated": self.last_updated.isoformat(),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MemoryCluster":
        """Deserialize from storage."""
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            sum_vector=np.asarray(data["sum_vector"], dtype=np.float64),
            count=data.get("count", len(data.get("member_ids", []))),
            member_ids=list(data.get("member_ids", [])),
            concepts=list(data.get("concepts", [])),
            concept_counts=dict(data.get("concept_counts", {})),
            emotional_context=data.get("emotional_context", 0.0),
            phase_context=PhaseTag(data.get("phase_context", PhaseTag.UNKNOWN.value)),
            strength_score=data.get("strength_score", 0.0),
            state=ClusterState(data.get("state", ClusterState.FORMING.value)),
            last_updated=parse_timestamp(data["last_updated"]),
            created_at=parse_timestamp(data.get("created_at", data["last_updated"])),
        )


def founding_cluster(user_id: str, embedding, timestamp: datetime, cluster_id: Optional[str] = None) -> MemoryCluster:
    """Empty FORMING cluster sized for the given embedding."""
    return MemoryCluster(
        id=cluster_id or new_cluster_id(),
        user_id=user_id,
        sum_vector=np.zeros(len(embedding), dtype=np.float64),
        last_updated=timestamp,
        created_at=timestamp,
    )
