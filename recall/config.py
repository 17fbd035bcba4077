"""Configuration for the memory & recall engine.

Every tunable threshold lives here as a dataclass default. A RecallConfig can
be loaded from a JSON file whose top-level keys match the section names:

    {
        "clustering": {"similarity_threshold": 0.8},
        "runtime": {"sweep_interval_seconds": 600}
    }

Unknown keys are ignored so that older config files keep loading.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_DIMENSION = 1536


def _filtered(cls, data: dict) -> dict:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class StoreConfig:
    """Memory store settings.

    Attributes:
        embedding_dimension: Required length of every memory embedding
        storage_path: Directory for the append-only log (None keeps memories in RAM)
    """

    embedding_dimension: int = DEFAULT_EMBEDDING_DIMENSION
    storage_path: Optional[Path] = None

    def __post_init__(self):
        if self.embedding_dimension <= 0:
            raise ValueError("embedding_dimension must be positive")
        if self.storage_path is not None:
            self.storage_path = Path(self.storage_path)


@dataclass
class ClusteringConfig:
    """Online clustering thresholds.

    Attributes:
        similarity_threshold: Minimum centroid similarity to join a cluster (tau)
        merge_threshold: Centroid similarity at which two active clusters merge
        active_member_count: Members needed for Forming -> Active
        inactivity_window_days: Days without additions before a cluster goes dormant
        prune_floor: Strength below which a dormant cluster is pruned
        max_concepts: Size bound for a cluster's concept set
        valence_half_life_days: Half-life of the recency weighting of member valence
        recency_scale_days: Decay scale of the recency term in the strength score
    """

    similarity_threshold: float = 0.78
    merge_threshold: float = 0.92
    active_member_count: int = 3
    inactivity_window_days: float = 14.0
    prune_floor: float = 0.3
    max_concepts: int = 8
    valence_half_life_days: float = 7.0
    recency_scale_days: float = 14.0

    def __post_init__(self):
        if not 0.0 < self.similarity_threshold <= 1.0:
            raise ValueError("similarity_threshold must be in (0, 1]")
        if self.merge_threshold <= self.similarity_threshold:
            raise ValueError("merge_threshold must be stricter than similarity_threshold")
        if self.active_member_count < 1:
            raise ValueError("active_member_count must be at least 1")
        if self.max_concepts < 1:
            raise ValueError("max_concepts must be at least 1")


@dataclass
class PatternConfig:
    """Pattern detection parameters."""

    min_cycle_repeats: int = 2
    breakthrough_margin: float = 0.4
    breakthrough_baseline_days: float = 7.0
    breakthrough_adjacency_hours: float = 24.0
    challenge_min_growth: int = 3
    accelerator_lookahead_hours: float = 72.0
    accelerator_min_lift: float = 0.1


@dataclass
class PredictionConfig:
    """Confidence model for predictions.

    Attributes:
        min_support: Patterns with fewer supporting memories yield no prediction
        logistic_slope: Steepness of the frequency -> base confidence curve
        logistic_midpoint: Frequency at which base confidence is 0.5
        recency_half_life_days: Half-life applied to the age of the newest support
        variance_penalty: Weight of valence variance in the consistency term
        ttl_days: Lifetime of a prediction before it expires
        caps: Per pattern-type ceiling on confidence (0-1)
    """

    min_support: int = 2
    logistic_slope: float = 0.6
    logistic_midpoint: float = 3.0
    recency_half_life_days: float = 14.0
    variance_penalty: float = 2.0
    ttl_days: float = 7.0
    caps: dict[str, float] = field(
        default_factory=lambda: {
            "emotional_cycle": 0.85,
            "recurring_challenge": 0.80,
            "growth_accelerator": 0.75,
            "breakthrough_moment": 0.60,
        }
    )

    def __post_init__(self):
        for name, cap in self.caps.items():
            if not 0.0 <= cap <= 1.0:
                raise ValueError(f"Cap for {name} must be in [0, 1]")


@dataclass
class RuntimeConfig:
    """Concurrency and retry settings."""

    sweep_interval_seconds: float = 900.0
    retry_base_delay: float = 0.5
    retry_factor: float = 2.0
    retry_max_delay: float = 30.0
    retry_max_attempts: int = 5


@dataclass
class InsightConfig:
    """Query-layer settings."""

    theme_visibility_threshold: float = 0.5
    hierarchy_size: int = 20
    dormant_min_members: int = 3
    recall_min_similarity: float = 0.5
    recall_recency_days: float = 30.0


@dataclass
class RecallConfig:
    """Top-level configuration grouping every section."""

    store: StoreConfig = field(default_factory=StoreConfig)
    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)
    patterns: PatternConfig = field(default_factory=PatternConfig)
    predictions: PredictionConfig = field(default_factory=PredictionConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    insight: InsightConfig = field(default_factory=InsightConfig)

    def to_dict(self) -> dict:
        """Serialize for logging or writing back to disk."""
        data = asdict(self)
        if self.store.storage_path is not None:
            data["store"]["storage_path"] = str(self.store.storage_path)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecallConfig":
        """Build a config from a (possibly partial) dict."""
        sections = {
            "store": StoreConfig,
            "clustering": ClusteringConfig,
            "patterns": PatternConfig,
            "predictions": PredictionConfig,
            "runtime": RuntimeConfig,
            "insight": InsightConfig,
        }
        kwargs = {}
        for name, section_cls in sections.items():
            section = data.get(name)
            if section:
                kwargs[name] = section_cls(**_filtered(section_cls, section))
        return cls(**kwargs)

    @classmethod
    def load(cls, path: Path) -> "RecallConfig":
        """Load a config from a JSON file, falling back to defaults if absent."""
        path = Path(path)
        if not path.exists():
            logger.debug(f"No config file at {path}, using defaults")
            return cls()

        with open(path) as f:
            data = json.load(f)

        logger.info(f"Loaded recall config from {path}")
        return cls.from_dict(data)
