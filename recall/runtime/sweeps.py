"""Per-user pattern and prediction sweeps.

A sweep copies the user's committed cluster snapshot and memory stream,
runs detection for every timeframe and prediction generation off the event
loop, and commits the result as an immutable SweepSnapshot.

Requests are numbered. When several sweeps for one user overlap, only the
one with the newest number commits; older ones finish and are discarded.
Readers always see the last committed snapshot and never wait on a sweep
unless they ask to.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Mapping, Optional, Sequence

from recall.clustering.cluster import MemoryCluster
from recall.clustering.engine import ClusteringEngine
from recall.config import RuntimeConfig
from recall.errors import NotFound
from recall.memory.models import Memory
from recall.memory.store import MemoryStore
from recall.patterns.detector import PatternDetector
from recall.patterns.models import Pattern, PatternType, Timeframe
from recall.predictions.generator import PredictionGenerator
from recall.predictions.models import Prediction
from recall.runtime.partition import UserLocks
from recall.utils.clock import ensure_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepSnapshot:
    """Committed result of one sweep for one user.

    Attributes:
        user_id: Owning user
        sequence: Request number that produced it
        computed_at: Reference time the sweep ran at
        patterns: Timeframe -> pattern type -> patterns
        predictions: Timeframe -> predictions for that timeframe's patterns
        memory_counts: Timeframe -> effective memories inside the window
    """

    user_id: str
    sequence: int
    computed_at: datetime
    patterns: Mapping[Timeframe, Mapping[PatternType, tuple[Pattern, ...]]]
    predictions: Mapping[Timeframe, tuple[Prediction, ...]]
    memory_counts: Mapping[Timeframe, int] = field(default_factory=dict)

    def patterns_for(self, timeframe: Timeframe, pattern_type: PatternType) -> list[Pattern]:
        return list(self.patterns.get(timeframe, {}).get(pattern_type, ()))

    def predictions_for(
        self,
        timeframe: Timeframe,
        patterns: Sequence[Pattern],
        now: Optional[datetime] = None,
    ) -> list[Prediction]:
        """Unexpired predictions generated from the given patterns."""
        now = ensure_utc(now) if now is not None else utc_now()
        pattern_ids = {p.id for p in patterns}
        return [
            p for p in self.predictions.get(timeframe, ())
            if p.pattern_id in pattern_ids and not p.is_expired(now)
        ]

    def memory_count(self, timeframe: Timeframe) -> int:
        return self.memory_counts.get(timeframe, 0)


class SweepCoordinator:
    """Schedules, supersedes and commits per-user sweeps."""

    def __init__(
        self,
        store: MemoryStore,
        engine: ClusteringEngine,
        detector: Optional[PatternDetector] = None,
        generator: Optional[PredictionGenerator] = None,
        config: Optional[RuntimeConfig] = None,
        locks: Optional[UserLocks] = None,
    ):
        self.store = store
        self.engine = engine
        self.detector = detector or PatternDetector()
        self.generator = generator or PredictionGenerator()
        self.config = config or RuntimeConfig()
        self.locks = locks or UserLocks()

        self._sequence = itertools.count(1)
        self._requested: dict[str, int] = {}
        self._latest: dict[str, asyncio.Task] = {}
        self._in_flight: set[asyncio.Task] = set()
        self._snapshots: dict[str, SweepSnapshot] = {}
        self._schedule_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def snapshot(self, user_id: str) -> Optional[SweepSnapshot]:
        """Last committed snapshot for a user, if any."""
        return self._snapshots.get(user_id)

    @property
    def running(self) -> bool:
        return self._schedule_task is not None and not self._schedule_task.done()

    # ------------------------------------------------------------------ #
    # Sweeps
    # ------------------------------------------------------------------ #

    def request_sweep(self, user_id: str, now: Optional[datetime] = None) -> asyncio.Task:
        """Start a sweep in the background, superseding any older request."""
        sequence = next(self._sequence)
        self._requested[user_id] = sequence
        task = asyncio.create_task(self._run(user_id, sequence, now))
        self._latest[user_id] = task
        self._in_flight.add(task)
        task.add_done_callback(self._finished)
        logger.debug(f"Sweep #{sequence} requested for user {user_id}")
        return task

    async def sweep(self, user_id: str, now: Optional[datetime] = None) -> SweepSnapshot:
        """Request a sweep and wait for the newest one for this user to commit.

        Raises:
            NotFound: If the user has no memories
        """
        if self.store.count(user_id) == 0:
            raise NotFound(f"No memories for user {user_id}")
        self.request_sweep(user_id, now)
        while True:
            task = self._latest[user_id]
            result = await asyncio.shield(task)
            if task is self._latest[user_id] and result is not None:
                return result

    async def _run(
        self, user_id: str, sequence: int, now: Optional[datetime]
    ) -> Optional[SweepSnapshot]:
        now = ensure_utc(now) if now is not None else utc_now()
        memories = self.store.stream_since(user_id).to_list()
        clusters = self.engine.clusters(user_id)

        result = await asyncio.to_thread(self.compute, user_id, sequence, memories, clusters, now)

        if self._requested.get(user_id) != sequence:
            logger.debug(f"Sweep #{sequence} for user {user_id} superseded, discarding")
            return None

        self._snapshots[user_id] = result
        logger.info(
            f"Committed sweep #{sequence} for user {user_id}: "
            f"{sum(len(v) for v in result.patterns[Timeframe.ALL].values())} patterns, "
            f"{len(result.predictions[Timeframe.ALL])} predictions (all time)"
        )
        return result

    def compute(
        self,
        user_id: str,
        sequence: int,
        memories: Sequence[Memory],
        clusters: Sequence[MemoryCluster],
        now: datetime,
    ) -> SweepSnapshot:
        """Detect patterns and generate predictions for every timeframe.

        Pure with respect to engine state; safe to run in a worker thread.
        """
        by_id = {m.id: m for m in memories}
        concepts_by_cluster = {c.id: list(c.concepts) for c in clusters}

        patterns: dict[Timeframe, Mapping[PatternType, tuple[Pattern, ...]]] = {}
        predictions: dict[Timeframe, tuple[Prediction, ...]] = {}
        counts: dict[Timeframe, int] = {}

        for timeframe in Timeframe:
            detected = self.detector.detect(user_id, memories, clusters, timeframe=timeframe, now=now)
            patterns[timeframe] = MappingProxyType({t: tuple(p) for t, p in detected.items()})

            flat = [p for group in detected.values() for p in group]
            predictions[timeframe] = tuple(
                self.generator.generate(flat, by_id, concepts_by_cluster, now=now)
            )

            start = timeframe.window_start(now)
            counts[timeframe] = sum(
                1 for m in memories if m.timestamp <= now and (start is None or m.timestamp >= start)
            )

        return SweepSnapshot(
            user_id=user_id,
            sequence=sequence,
            computed_at=now,
            patterns=MappingProxyType(patterns),
            predictions=MappingProxyType(predictions),
            memory_counts=MappingProxyType(counts),
        )

    def _finished(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Sweep failed: {error}")

    # ------------------------------------------------------------------ #
    # Schedule
    # ------------------------------------------------------------------ #

    async def run_cycle(self, now: Optional[datetime] = None) -> None:
        """Maintain clusters and sweep every known user once."""
        users = sorted(set(self.store.user_ids()) | set(self.engine.user_ids()))
        for user_id in users:
            async with self.locks(user_id):
                report = self.engine.maintain(user_id, now=now)
            if report.changed:
                logger.info(
                    f"Maintenance for user {user_id}: {len(report.dormant)} dormant, "
                    f"{len(report.pruned)} pruned, {len(report.merged)} merged"
                )
            try:
                await self.sweep(user_id, now=now)
            except Exception as e:
                logger.error(f"Scheduled sweep for user {user_id} failed: {e}")
        self.engine.save()

    async def _schedule(self) -> None:
        while True:
            await self.run_cycle()
            await asyncio.sleep(self.config.sweep_interval_seconds)

    def start(self) -> None:
        """Start the periodic maintenance-and-sweep loop."""
        if self.running:
            return
        self._schedule_task = asyncio.create_task(self._schedule())
        logger.info(f"Sweep schedule started (every {self.config.sweep_interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the schedule and cancel in-flight sweeps."""
        tasks = list(self._in_flight)
        if self._schedule_task is not None:
            tasks.append(self._schedule_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._schedule_task = None
        self._in_flight.clear()
        logger.info("Sweep schedule stopped")
