"""Pattern records, pattern types and query timeframes."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from recall.errors import ValidationError
from recall.utils.clock import utc_now


class PatternType(str, Enum):
    """Kinds of recurring structure the detector looks for."""

    EMOTIONAL_CYCLE = "emotional_cycle"
    BREAKTHROUGH_MOMENT = "breakthrough_moment"
    RECURRING_CHALLENGE = "recurring_challenge"
    GROWTH_ACCELERATOR = "growth_accelerator"

    @property
    def query_name(self) -> str:
        """Plural name used by the pattern query contract."""
        return f"{self.value}s"

    @classmethod
    def parse(cls, value: "str | PatternType") -> "PatternType":
        """Accept enum members, singular values, or plural query names.

        Raises:
            ValidationError: If the name matches no pattern type
        """
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower()
        for member in cls:
            if name in (member.value, member.query_name):
                return member
        raise ValidationError(f"Unknown pattern type: {value!r}")


class Timeframe(str, Enum):
    """Window a pattern query looks back over."""

    WEEK = "week"
    MONTH = "month"
    THREE_MONTHS = "3months"
    ALL = "all"

    @property
    def days(self) -> Optional[int]:
        return _TIMEFRAME_DAYS[self]

    def window_start(self, now: datetime) -> Optional[datetime]:
        """Start of the window ending at `now`; None means unbounded."""
        if self.days is None:
            return None
        return now - timedelta(days=self.days)

    @classmethod
    def parse(cls, value: "str | Timeframe") -> "Timeframe":
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower()
        aliases = {"three_months": cls.THREE_MONTHS, "quarter": cls.THREE_MONTHS}
        if name in aliases:
            return aliases[name]
        try:
            return cls(name)
        except ValueError:
            raise ValidationError(f"Unknown timeframe: {value!r}") from None


_TIMEFRAME_DAYS = {
    Timeframe.WEEK: 7,
    Timeframe.MONTH: 30,
    Timeframe.THREE_MONTHS: 90,
    Timeframe.ALL: None,
}


def new_pattern_id() -> str:
    return f"pt_{uuid.uuid4().hex[:12]}"


@dataclass
class Pattern:
    """A recurring structure found in one user's memories.

    Supporting memory ids are restricted to the detection window when the
    pattern is built, so frequency is simply their count.

    Attributes:
        id: Unique identifier
        user_id: Owning user
        pattern_type: Which detector produced it
        description: One-line summary
        supporting_memory_ids: Evidence, in timestamp order
        insights: Short observations derived from the evidence
        detected_at: Sweep time
        timeframe: Window the pattern was computed over
        cluster_id: Cluster the pattern is about, for cluster-based types
    """

    id: str
    user_id: str
    pattern_type: PatternType
    description: str
    supporting_memory_ids: list[str] = field(default_factory=list)
    insights: list[str] = field(default_factory=list)
    detected_at: datetime = field(default_factory=utc_now)
    timeframe: Timeframe = Timeframe.ALL
    cluster_id: Optional[str] = None

    @property
    def frequency(self) -> int:
        return len(self.supporting_memory_ids)

    def to_dict(self) -> dict:
        """Serialize for logging/debugging."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "pattern_type": self.pattern_type.value,
            "description": self.description,
            "frequency": self.frequency,
            "supporting_memory_ids": list(self.supporting_memory_ids),
            "insights": list(self.insights),
            "detected_at": self.detected_at.isoformat(),
            "timeframe": self.timeframe.value,
            "cluster_id": self.cluster_id,
        }
