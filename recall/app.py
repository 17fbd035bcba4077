"""Wiring for a complete recall engine from a RecallConfig."""

from __future__ import annotations

import logging
from typing import Optional

from recall.clustering.engine import ClusteringEngine
from recall.config import RecallConfig
from recall.insight.associative import AssociativeRecall
from recall.insight.service import InsightService
from recall.memory.store import MemoryStore
from recall.patterns.detector import PatternDetector
from recall.predictions.generator import PredictionGenerator
from recall.runtime.ingestion import Enricher, IngestionPipeline, IngestionService
from recall.runtime.partition import UserLocks
from recall.runtime.sweeps import SweepCoordinator

logger = logging.getLogger(__name__)


class RecallApp:
    """Owns one instance of every component and shares the per-user locks.

    With sweep_on_ingest, every newly stored memory requests a background
    sweep for its user; overlapping requests collapse to the newest.
    """

    def __init__(
        self,
        config: Optional[RecallConfig] = None,
        enricher: Optional[Enricher] = None,
        sweep_on_ingest: bool = True,
    ):
        self.config = config or RecallConfig()
        self.locks = UserLocks()

        self.store = MemoryStore(self.config.store)
        self.engine = ClusteringEngine(
            self.store, self.config.clustering, storage_path=self.config.store.storage_path
        )
        self.sweeps = SweepCoordinator(
            self.store,
            self.engine,
            PatternDetector(self.config.patterns, self.config.clustering),
            PredictionGenerator(self.config.predictions),
            self.config.runtime,
            self.locks,
        )
        self.ingestion = IngestionService(self.store, self.engine, self.locks)
        if sweep_on_ingest:
            self.ingestion.set_on_ingested(self.sweeps.request_sweep)

        self.pipeline = (
            IngestionPipeline(self.ingestion, enricher, self.config.runtime)
            if enricher is not None
            else None
        )
        self.insight = InsightService(self.store, self.engine, self.sweeps, self.config.insight)
        self.recall = AssociativeRecall(self.store, self.engine, self.config.insight)

        logger.info(
            f"Recall engine ready: {len(self.store)} memories, "
            f"{len(self.engine.user_ids())} users with clusters"
        )

    async def close(self) -> None:
        """Stop background work and flush clusters to disk."""
        if self.pipeline is not None:
            await self.pipeline.close()
        await self.sweeps.stop()
        self.engine.save()
