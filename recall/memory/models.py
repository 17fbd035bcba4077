"""Memory records: the atomic reflective units every other component reads.

A Memory arrives already embedded and tagged. Once stored it is never
mutated or deleted; corrections are new records that name the memory they
supersede.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from recall.errors import ValidationError
from recall.utils.clock import ensure_utc, parse_timestamp, utc_now


class PhaseTag(str, Enum):
    """Growth phase a memory was recorded in."""

    EXPANSION = "expansion"
    CONTRACTION = "contraction"
    RENEWAL = "renewal"
    UNKNOWN = "unknown"


class SourceType(str, Enum):
    """Where a memory came from."""

    CHAT = "chat"
    JOURNAL = "journal"
    CHECK_IN = "check_in"


def _coerce_enum(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).replace("-", "_").lower())
    except ValueError:
        raise ValidationError(f"Unknown {field_name}: {value!r}") from None


@dataclass(frozen=True)
class Memory:
    """One reflective unit.

    Attributes:
        id: Caller-assigned idempotency key
        user_id: Owning user
        content: Raw text of the chat turn, journal entry or check-in
        embedding: Fixed-length vector, immutable once attached
        timestamp: When the memory was recorded (UTC)
        emotional_valence: Polarity from -1 (negative) to 1 (positive)
        dominant_emotion: Label from the emotion tagger
        phase_tag: Growth phase at recording time
        source_type: Chat, journal or check-in
        supersedes: Id of an earlier memory this record corrects
    """

    id: str
    user_id: str
    content: str
    embedding: tuple[float, ...]
    timestamp: datetime = field(default_factory=utc_now)
    emotional_valence: float = 0.0
    dominant_emotion: str = "neutral"
    phase_tag: PhaseTag = PhaseTag.UNKNOWN
    source_type: SourceType = SourceType.CHAT
    supersedes: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            raise ValidationError("Memory id is required")
        if not self.user_id:
            raise ValidationError("Memory user_id is required")

        embedding = tuple(float(v) for v in self.embedding)
        if not embedding:
            raise ValidationError(f"Memory {self.id} has an empty embedding")
        if not all(math.isfinite(v) for v in embedding):
            raise ValidationError(f"Memory {self.id} embedding contains non-finite values")

        valence = float(self.emotional_valence)
        if not -1.0 <= valence <= 1.0:
            raise ValidationError(
                f"Memory {self.id} valence {valence} outside [-1, 1]"
            )

        # frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "embedding", embedding)
        object.__setattr__(self, "emotional_valence", valence)
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))
        object.__setattr__(self, "phase_tag", _coerce_enum(PhaseTag, self.phase_tag, "phase_tag"))
        object.__setattr__(
            self, "source_type", _coerce_enum(SourceType, self.source_type, "source_type")
        )

    @property
    def dimension(self) -> int:
        return len(self.embedding)

    def to_dict(self) -> dict:
        """Serialize for storage."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "content": self.content,
            "embedding": list(self.embedding),
            "timestamp": self.timestamp.isoformat(),
            "emotional_valence": self.emotional_valence,
            "dominant_emotion": self.dominant_emotion,
            "phase_tag": self.phase_tag.value,
            "source_type": self.source_type.value,
            "supersedes": self.supersedes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Memory":
        """Deserialize from storage or an ingestion payload.

        Accepts both snake_case and the camelCase names used by the client.

        Raises:
            ValidationError: If the payload is not an object or a field
                cannot be parsed
        """
        if not isinstance(data, dict):
            raise ValidationError(f"Memory payload must be an object, got {type(data).__name__}")

        def pick(snake: str, camel: str, default=None):
            if snake in data:
                return data[snake]
            return data.get(camel, default)

        timestamp = pick("timestamp", "timestamp")
        try:
            return cls(
                id=data.get("id", ""),
                user_id=pick("user_id", "userId", ""),
                content=data.get("content", ""),
                embedding=tuple(data.get("embedding") or ()),
                timestamp=parse_timestamp(timestamp) if timestamp else utc_now(),
                emotional_valence=pick("emotional_valence", "emotionalValence", 0.0),
                dominant_emotion=pick("dominant_emotion", "dominantEmotion", "neutral"),
                phase_tag=pick("phase_tag", "phaseTag", PhaseTag.UNKNOWN),
                source_type=pick("source_type", "sourceType", SourceType.CHAT),
                supersedes=data.get("supersedes"),
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise ValidationError(f"Unparseable memory {data.get('id')!r}: {e}") from e


@dataclass(frozen=True)
class TrajectoryPoint:
    """One point on a user's emotional trajectory."""

    timestamp: datetime
    valence: float
    dominant_emotion: str
