"""Prediction records with re-evaluable confidence."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar

from recall.utils.clock import days_between, ensure_utc, utc_now


def new_prediction_id() -> str:
    return f"pr_{uuid.uuid4().hex[:12]}"


@dataclass
class Prediction:
    """A forward-looking statement derived from one pattern.

    Confidence is stored as its components so it can be re-evaluated at any
    later time. Only the recency factor depends on time, and it decays, so
    confidence_at() never rises as `now` moves forward.

    Attributes:
        id: Unique identifier
        user_id: Owning user
        pattern_id: Pattern this prediction was generated from
        prediction_text: Human-readable statement
        generated_at: Sweep time
        expires_at: After this the prediction is no longer served
        base: Logistic frequency term (0-1)
        consistency: Valence consistency term (0-1)
        cap: Ceiling for the pattern type (0-1)
        latest_support_at: Timestamp of the newest supporting memory
        recency_half_life_days: Half-life of the recency term
    """

    id: str
    user_id: str
    pattern_id: str
    prediction_text: str
    generated_at: datetime
    expires_at: datetime
    base: float
    consistency: float
    cap: float
    latest_support_at: datetime
    recency_half_life_days: float = 14.0
    confidence: float = field(init=False)

    MAX_CONFIDENCE: ClassVar[float] = 100.0

    def __post_init__(self):
        self.generated_at = ensure_utc(self.generated_at)
        self.expires_at = ensure_utc(self.expires_at)
        self.latest_support_at = ensure_utc(self.latest_support_at)
        self.base = max(0.0, min(1.0, self.base))
        self.consistency = max(0.0, min(1.0, self.consistency))
        self.cap = max(0.0, min(1.0, self.cap))
        self.confidence = self.confidence_at(self.generated_at)

    def recency_at(self, now: datetime) -> float:
        age = max(0.0, days_between(self.latest_support_at, ensure_utc(now)))
        return 0.5 ** (age / self.recency_half_life_days)

    def confidence_at(self, now: datetime | None = None) -> float:
        """Confidence in [0, 100] as of `now`."""
        now = now or utc_now()
        raw = self.base * self.recency_at(now) * self.consistency
        return round(min(self.cap, raw) * self.MAX_CONFIDENCE, 2)

    def is_expired(self, now: datetime | None = None) -> bool:
        return ensure_utc(now or utc_now()) >= self.expires_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "pattern_id": self.pattern_id,
            "prediction_text": self.prediction_text,
            "confidence": self.confidence,
            "generated_at": self.generated_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }
