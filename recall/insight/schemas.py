"""Pydantic schemas for the read contracts.

Field names are snake_case in Python and camelCase on the wire; both forms
are accepted on input.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

# Surrounding whitespace is dropped; a blank id counts as missing
UserId = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class WireModel(BaseModel):
    """Base for every request/response: camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------- #
# Pattern query
# ---------------------------------------------------------------------- #


class PatternQuery(WireModel):
    """Request for one pattern type over a timeframe."""

    user_id: UserId
    pattern: str
    timeframe: str = "all"


class MemoryOut(WireModel):
    id: str
    content: str
    timestamp: datetime
    emotional_valence: float
    dominant_emotion: str
    phase_tag: str
    source_type: str


class PatternOut(WireModel):
    pattern: str
    frequency: int
    insights: list[str] = Field(default_factory=list)


class PredictionOut(WireModel):
    prediction: str
    confidence: float = Field(..., ge=0.0, le=100.0)


class PatternQueryResponse(WireModel):
    memories: list[MemoryOut] = Field(default_factory=list)
    patterns: list[PatternOut] = Field(default_factory=list)
    predictions: list[PredictionOut] = Field(default_factory=list)


# ---------------------------------------------------------------------- #
# Cluster query
# ---------------------------------------------------------------------- #


class ClusterQuery(WireModel):
    user_id: UserId


class ClusterOut(WireModel):
    id: str
    concepts: list[str]
    emotional_context: float
    phase_context: str
    strength_score: float


class ConceptNode(WireModel):
    name: str
    frequency: int


class ConceptHierarchy(WireModel):
    root: str = "user_concepts"
    children: list[ConceptNode] = Field(default_factory=list)


class ClusterQueryResponse(WireModel):
    clusters: list[ClusterOut] = Field(default_factory=list)
    emergent_themes: list[str] = Field(default_factory=list)
    concept_hierarchy: ConceptHierarchy = Field(default_factory=ConceptHierarchy)


# ---------------------------------------------------------------------- #
# Supplementary reads
# ---------------------------------------------------------------------- #


class TrajectoryEntry(WireModel):
    timestamp: datetime
    valence: float
    dominant_emotion: str


class EmotionalTrajectory(WireModel):
    user_id: str
    days: int
    points: list[TrajectoryEntry] = Field(default_factory=list)


class DormantConcept(WireModel):
    concept: str
    cluster_id: str
    last_mentioned: datetime
    mention_count: int


class DormantConcepts(WireModel):
    user_id: str
    concepts: list[DormantConcept] = Field(default_factory=list)
