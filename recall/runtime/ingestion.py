"""Ingestion: store, then cluster, serialized per user.

IngestionService takes fully formed memories. IngestionPipeline sits in
front of it for raw drafts that still need embedding and emotion tagging:
when the enricher reports DependencyUnavailable the draft is retried with
exponential backoff in the background and, after the final attempt, parked
in a dead-letter list. Retries for one user never block another user.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional, Protocol

from recall.clustering.cluster import MemoryCluster
from recall.clustering.engine import ClusteringEngine
from recall.config import RuntimeConfig
from recall.errors import DependencyUnavailable
from recall.memory.models import Memory, SourceType
from recall.memory.store import MemoryStore
from recall.runtime.partition import UserLocks
from recall.utils.clock import utc_now

logger = logging.getLogger(__name__)


@dataclass
class MemoryDraft:
    """A memory before embedding and emotion tagging.

    Attributes:
        id: Idempotency key carried through to the stored Memory
        user_id: Owning user
        content: Raw text
        timestamp: When it was recorded
        source_type: Chat, journal or check-in
        supersedes: Id of an earlier memory this corrects
        attempts: Enrichment attempts so far
        last_error: Message of the most recent failure
    """

    id: str
    user_id: str
    content: str
    timestamp: datetime = field(default_factory=utc_now)
    source_type: SourceType = SourceType.CHAT
    supersedes: Optional[str] = None
    attempts: int = 0
    last_error: Optional[str] = None


class Enricher(Protocol):
    """Attaches embedding, valence, emotion and phase to a draft."""

    async def enrich(self, draft: MemoryDraft) -> Memory:
        """Raises DependencyUnavailable when the upstream service is down."""
        ...


class IngestionService:
    """Appends memories and assigns them to clusters under the user's lock."""

    def __init__(
        self,
        store: MemoryStore,
        engine: ClusteringEngine,
        locks: Optional[UserLocks] = None,
        on_ingested: Optional[Callable[[str], None]] = None,
    ):
        self.store = store
        self.engine = engine
        self.locks = locks or UserLocks()
        self._on_ingested = on_ingested

    def set_on_ingested(self, callback: Callable[[str], None]) -> None:
        """Register a hook called with the user id after each new memory."""
        self._on_ingested = callback

    async def ingest(self, memory: Memory) -> Optional[MemoryCluster]:
        """Store and cluster a memory. Idempotent by memory id.

        Returns:
            The cluster the memory belongs to, or None if it has since been
            superseded or its cluster pruned. A repeated id never changes
            cluster state.

        Raises:
            ValidationError: If the store rejects the memory
        """
        async with self.locks(memory.user_id):
            record, created = self.store.append_new(memory)
            cluster = self._cluster_for(record, created)

        if created and self._on_ingested is not None:
            self._on_ingested(record.user_id)
        return cluster

    def _cluster_for(self, record: Memory, created: bool) -> Optional[MemoryCluster]:
        if self.store.is_superseded(record.id):
            return None
        if created:
            return self.engine.assign(record)

        cluster_id = self.engine.cluster_of(record.id)
        if cluster_id is None:
            return None
        for cluster in self.engine.clusters(record.user_id):
            if cluster.id == cluster_id:
                return cluster
        return None


class IngestionPipeline:
    """Enrich-then-ingest with background retries for unavailable dependencies.

    Attributes:
        dead_letters: Drafts that exhausted every retry attempt
    """

    def __init__(
        self,
        service: IngestionService,
        enricher: Enricher,
        config: Optional[RuntimeConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.service = service
        self.enricher = enricher
        self.config = config or RuntimeConfig()
        self._sleep = sleep
        self._retries: dict[str, asyncio.Task] = {}
        self.dead_letters: list[MemoryDraft] = []

    @property
    def pending(self) -> int:
        """Drafts currently waiting on a retry."""
        return len(self._retries)

    def backoff(self, attempt: int) -> float:
        """Delay before the retry that follows failed attempt number `attempt`."""
        delay = self.config.retry_base_delay * self.config.retry_factor ** (attempt - 1)
        return min(delay, self.config.retry_max_delay)

    async def submit(self, draft: MemoryDraft) -> Optional[MemoryCluster]:
        """Enrich and ingest a draft.

        Returns:
            The memory's cluster, or None when enrichment was deferred
        """
        memory = await self._attempt(draft)
        if memory is None:
            if draft.id not in self._retries:
                self._retries[draft.id] = asyncio.create_task(self._retry(draft))
            return None
        return await self.service.ingest(memory)

    async def _attempt(self, draft: MemoryDraft) -> Optional[Memory]:
        draft.attempts += 1
        try:
            return await self.enricher.enrich(draft)
        except DependencyUnavailable as e:
            draft.last_error = str(e)
            logger.warning(
                f"{e.dependency} unavailable for memory {draft.id} "
                f"(attempt {draft.attempts}/{self.config.retry_max_attempts}): {e}"
            )
            return None

    async def _retry(self, draft: MemoryDraft) -> None:
        try:
            while draft.attempts < self.config.retry_max_attempts:
                await self._sleep(self.backoff(draft.attempts))
                memory = await self._attempt(draft)
                if memory is not None:
                    await self.service.ingest(memory)
                    logger.info(f"Memory {draft.id} ingested after {draft.attempts} attempts")
                    return

            self.dead_letters.append(draft)
            logger.error(
                f"Giving up on memory {draft.id} for user {draft.user_id} after "
                f"{draft.attempts} attempts: {draft.last_error}"
            )
        except Exception as e:
            logger.error(f"Retry for memory {draft.id} failed: {e}")
            self.dead_letters.append(draft)
        finally:
            self._retries.pop(draft.id, None)

    async def drain(self) -> None:
        """Wait for every pending retry to finish."""
        while self._retries:
            await asyncio.gather(*list(self._retries.values()), return_exceptions=True)

    async def close(self) -> None:
        """Cancel pending retries."""
        tasks = list(self._retries.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._retries.clear()
