"""Temporal pattern mining over a user's memory stream and clusters.

Four detectors run over the memories that fall inside a query window:

- emotional cycles: runs of same-sign valence whose (polarity, length,
  intensity band) signature repeats
- breakthrough moments: sharp positive departures from the prior week's
  mood that arrive right after a cluster gained a member
- recurring challenges: negative clusters that keep growing in the window
- growth accelerators: strengthening clusters whose entries are followed by
  better-than-baseline mood

The detector is a pure function of its inputs. It never touches the store
or the clustering engine, so sweeps can run it on snapshots off the event
loop.
"""

from __future__ import annotations

import bisect
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

import numpy as np

from recall.clustering.cluster import MemoryCluster
from recall.clustering.scoring import strength_history
from recall.config import ClusteringConfig, PatternConfig
from recall.memory.models import Memory
from recall.patterns import insights as text
from recall.patterns.models import Pattern, PatternType, Timeframe, new_pattern_id
from recall.utils.clock import ensure_utc, utc_now

logger = logging.getLogger(__name__)

# Mean |valence| boundaries between low / moderate / high intensity runs
LOW_BAND_LIMIT = 0.33
MODERATE_BAND_LIMIT = 0.66


def intensity_band(amplitude: float) -> str:
    if amplitude < LOW_BAND_LIMIT:
        return "low"
    if amplitude < MODERATE_BAND_LIMIT:
        return "moderate"
    return "high"


@dataclass(frozen=True)
class CycleSignature:
    """Shape of one same-sign valence run."""

    polarity: str  # "positive" | "negative"
    length: int
    band: str


@dataclass
class _Context:
    """Per-detection inputs shared by the individual detectors."""

    user_id: str
    now: datetime
    timeframe: Timeframe
    history: list[Memory]  # every effective memory, timestamp order
    stamps: list[datetime]
    window: list[Memory]
    window_ids: set[str]
    clusters: list[MemoryCluster]
    by_id: dict[str, Memory]

    def pattern(self, pattern_type: PatternType, description: str, supporting: Iterable[Memory],
                insights: list[str], cluster_id: Optional[str] = None) -> Pattern:
        ids = [m.id for m in sorted(supporting, key=lambda m: (m.timestamp, m.id))
               if m.id in self.window_ids]
        return Pattern(
            id=new_pattern_id(),
            user_id=self.user_id,
            pattern_type=pattern_type,
            description=description,
            supporting_memory_ids=ids,
            insights=insights,
            detected_at=self.now,
            timeframe=self.timeframe,
            cluster_id=cluster_id,
        )

    def between(self, start: datetime, end: datetime, inclusive_end: bool = False) -> list[Memory]:
        """History entries with start <= timestamp < end (or <= end)."""
        lo = bisect.bisect_left(self.stamps, start)
        if inclusive_end:
            hi = bisect.bisect_right(self.stamps, end)
        else:
            hi = bisect.bisect_left(self.stamps, end)
        return self.history[lo:hi]


class PatternDetector:
    """Finds recurring emotional and behavioural structure for one user.

    Attributes:
        config: Detection thresholds
        clustering_config: Used to replay strength trends for clusters
    """

    def __init__(
        self,
        config: Optional[PatternConfig] = None,
        clustering_config: Optional[ClusteringConfig] = None,
    ):
        self.config = config or PatternConfig()
        self.clustering_config = clustering_config or ClusteringConfig()
        self._detectors = {
            PatternType.EMOTIONAL_CYCLE: self._emotional_cycles,
            PatternType.BREAKTHROUGH_MOMENT: self._breakthrough_moments,
            PatternType.RECURRING_CHALLENGE: self._recurring_challenges,
            PatternType.GROWTH_ACCELERATOR: self._growth_accelerators,
        }

    def detect(
        self,
        user_id: str,
        memories: Sequence[Memory],
        clusters: Sequence[MemoryCluster],
        timeframe: Timeframe = Timeframe.ALL,
        pattern_types: Optional[Iterable[PatternType]] = None,
        now: Optional[datetime] = None,
    ) -> dict[PatternType, list[Pattern]]:
        """Detect patterns of the requested types inside a timeframe.

        Args:
            user_id: User the memories belong to
            memories: The user's effective memory stream (any order)
            clusters: Snapshot of the user's clusters
            timeframe: Query window, ending at `now`
            pattern_types: Types to detect (default: all)
            now: Reference time for the window

        Returns:
            Mapping of every requested type to its (possibly empty) patterns
        """
        now = ensure_utc(now) if now is not None else utc_now()
        types = list(pattern_types) if pattern_types is not None else list(PatternType)
        results: dict[PatternType, list[Pattern]] = {t: [] for t in types}

        history = sorted(
            (m for m in memories if m.timestamp <= now),
            key=lambda m: (m.timestamp, m.id),
        )
        start = timeframe.window_start(now)
        window = [m for m in history if start is None or m.timestamp >= start]
        if not window:
            logger.debug(f"No memories for user {user_id} in {timeframe.value} window")
            return results

        context = _Context(
            user_id=user_id,
            now=now,
            timeframe=timeframe,
            history=history,
            stamps=[m.timestamp for m in history],
            window=window,
            window_ids={m.id for m in window},
            clusters=[c for c in clusters if c.is_live],
            by_id={m.id: m for m in history},
        )

        for pattern_type in types:
            patterns = self._detectors[pattern_type](context)
            patterns.sort(key=lambda p: (-p.frequency, p.description))
            results[pattern_type] = patterns

        found = sum(len(p) for p in results.values())
        logger.debug(
            f"Detected {found} patterns for user {user_id} over {len(window)} memories "
            f"({timeframe.value})"
        )
        return results

    # ------------------------------------------------------------------ #
    # Emotional cycles
    # ------------------------------------------------------------------ #

    def _emotional_cycles(self, ctx: _Context) -> list[Pattern]:
        runs: list[tuple[int, list[Memory]]] = []
        for memory in ctx.window:
            valence = memory.emotional_valence
            if valence == 0.0:
                continue
            sign = 1 if valence > 0 else -1
            if runs and runs[-1][0] == sign:
                runs[-1][1].append(memory)
            else:
                runs.append((sign, [memory]))

        by_signature: dict[CycleSignature, list[list[Memory]]] = defaultdict(list)
        for sign, run in runs:
            amplitude = float(np.mean([abs(m.emotional_valence) for m in run]))
            signature = CycleSignature(
                polarity="positive" if sign > 0 else "negative",
                length=len(run),
                band=intensity_band(amplitude),
            )
            by_signature[signature].append(run)

        patterns = []
        for signature, matching in by_signature.items():
            if len(matching) < self.config.min_cycle_repeats:
                continue
            supporting = [m for run in matching for m in run]
            patterns.append(
                ctx.pattern(
                    PatternType.EMOTIONAL_CYCLE,
                    f"Recurring {signature.polarity} stretches of {signature.length} "
                    f"{'entry' if signature.length == 1 else 'entries'} at "
                    f"{signature.band} intensity",
                    supporting,
                    text.cycle_insights(
                        signature.polarity,
                        signature.length,
                        signature.band,
                        len(matching),
                        supporting,
                    ),
                )
            )
        return patterns

    # ------------------------------------------------------------------ #
    # Breakthrough moments
    # ------------------------------------------------------------------ #

    def _breakthrough_moments(self, ctx: _Context) -> list[Pattern]:
        # Non-founding memberships: moments a cluster gained a member
        growth_events: list[tuple[datetime, str, str]] = []
        for cluster in ctx.clusters:
            for memory_id in cluster.member_ids[1:]:
                member = ctx.by_id.get(memory_id)
                if member is not None:
                    growth_events.append((member.timestamp, member.id, cluster.id))
        growth_events.sort()
        event_stamps = [e[0] for e in growth_events]
        concepts_by_cluster = {c.id: c.concepts for c in ctx.clusters}

        baseline_span = timedelta(days=self.config.breakthrough_baseline_days)
        adjacency = timedelta(hours=self.config.breakthrough_adjacency_hours)

        breakthroughs: list[Memory] = []
        lifts: list[float] = []
        trigger_concepts: list[str] = []
        for memory in ctx.window:
            prior = ctx.between(memory.timestamp - baseline_span, memory.timestamp)
            if not prior:
                continue
            baseline = float(np.mean([m.emotional_valence for m in prior]))
            lift = memory.emotional_valence - baseline
            if lift <= self.config.breakthrough_margin:
                continue

            lo = bisect.bisect_left(event_stamps, memory.timestamp - adjacency)
            hi = bisect.bisect_right(event_stamps, memory.timestamp)
            triggers = [e for e in growth_events[lo:hi] if e[1] != memory.id]
            if not triggers:
                continue

            breakthroughs.append(memory)
            lifts.append(lift)
            for concept in concepts_by_cluster.get(triggers[-1][2], [])[:2]:
                if concept not in trigger_concepts:
                    trigger_concepts.append(concept)

        if not breakthroughs:
            return []
        return [
            ctx.pattern(
                PatternType.BREAKTHROUGH_MOMENT,
                "Breakthrough moments following new reflection",
                breakthroughs,
                text.breakthrough_insights(breakthroughs, lifts, trigger_concepts),
            )
        ]

    # ------------------------------------------------------------------ #
    # Recurring challenges
    # ------------------------------------------------------------------ #

    def _recurring_challenges(self, ctx: _Context) -> list[Pattern]:
        patterns = []
        for cluster in ctx.clusters:
            if cluster.emotional_context >= 0:
                continue
            in_window = [
                ctx.by_id[mid] for mid in cluster.member_ids if mid in ctx.window_ids
            ]
            if len(in_window) < self.config.challenge_min_growth:
                continue
            topic = ", ".join(cluster.concepts[:3]) or "an unnamed theme"
            patterns.append(
                ctx.pattern(
                    PatternType.RECURRING_CHALLENGE,
                    f"Recurring challenge around {topic}",
                    in_window,
                    text.challenge_insights(
                        cluster.concepts,
                        in_window,
                        cluster.emotional_context,
                        cluster.phase_context.value,
                    ),
                    cluster_id=cluster.id,
                )
            )
        return patterns

    # ------------------------------------------------------------------ #
    # Growth accelerators
    # ------------------------------------------------------------------ #

    def _growth_accelerators(self, ctx: _Context) -> list[Pattern]:
        lookahead = timedelta(hours=self.config.accelerator_lookahead_hours)
        patterns = []
        for cluster in ctx.clusters:
            members = [ctx.by_id[mid] for mid in cluster.member_ids if mid in ctx.by_id]
            history = strength_history(members, self.clustering_config)
            points = [
                (index, score)
                for index, (member, (_, score)) in enumerate(zip(members, history))
                if member.id in ctx.window_ids
            ]
            if len(points) < 2:
                continue
            xs, ys = zip(*points)
            slope = float(np.polyfit(xs, ys, 1)[0])
            if slope <= 0:
                continue

            baseline = float(np.mean([m.emotional_valence for m in members]))
            member_ids = set(cluster.member_ids)
            supporting: list[Memory] = []
            follower_means: list[float] = []
            for member in members:
                if member.id not in ctx.window_ids:
                    continue
                followers = [
                    f for f in ctx.between(member.timestamp, member.timestamp + lookahead, inclusive_end=True)
                    if f.id not in member_ids and f.timestamp > member.timestamp
                ]
                if not followers:
                    continue
                mean_after = float(np.mean([f.emotional_valence for f in followers]))
                follower_means.append(mean_after)
                if mean_after > baseline:
                    supporting.append(member)

            if not follower_means or not supporting:
                continue
            lift = float(np.mean(follower_means)) - baseline
            if lift < self.config.accelerator_min_lift:
                continue

            topic = ", ".join(cluster.concepts[:3]) or "this theme"
            patterns.append(
                ctx.pattern(
                    PatternType.GROWTH_ACCELERATOR,
                    f"Reflecting on {topic} tends to lift your mood",
                    supporting,
                    text.accelerator_insights(cluster.concepts, supporting, lift, slope),
                    cluster_id=cluster.id,
                )
            )
        return patterns
