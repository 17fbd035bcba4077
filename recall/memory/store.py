"""Append-only, per-user memory log.

The store is the system of record for the engine. Appends are idempotent by
memory id so that retried ingestion never duplicates a record, and reads are
lazy timestamp-ordered streams that can be iterated more than once.

Storage layout (optional, when StoreConfig.storage_path is set):
    memories.jsonl: one Memory.to_dict() per line, in append order

The log is replayed on construction; nothing is ever rewritten in place.
"""

from __future__ import annotations

import bisect
import itertools
import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, Iterator, Optional

from recall.config import StoreConfig
from recall.errors import ValidationError
from recall.memory.models import Memory, TrajectoryPoint
from recall.utils.clock import ensure_utc, utc_now

logger = logging.getLogger(__name__)

LOG_FILENAME = "memories.jsonl"

# (timestamp, append sequence, memory id); equal timestamps keep append order
_IndexEntry = tuple[datetime, int, str]


class MemoryStream:
    """Lazy, finite, restartable view over one user's memories.

    Each iteration takes a fresh snapshot of the user's index, so a stream
    created before later appends will include them when iterated again.
    """

    def __init__(
        self,
        store: "MemoryStore",
        user_id: str,
        since: Optional[datetime],
        include_superseded: bool,
    ):
        self._store = store
        self._user_id = user_id
        self._since = ensure_utc(since) if since is not None else None
        self._include_superseded = include_superseded

    def __iter__(self) -> Iterator[Memory]:
        index = list(self._store._index.get(self._user_id, ()))
        start = 0
        if self._since is not None:
            start = bisect.bisect_left(index, (self._since, -1, ""))
        for _, _, memory_id in index[start:]:
            if not self._include_superseded and memory_id in self._store._superseded:
                continue
            yield self._store._memories[memory_id]

    def to_list(self) -> list[Memory]:
        return list(self)


class MemoryStore:
    """Per-user append-only memory log.

    Attributes:
        config: Store configuration (embedding dimension, storage path)
    """

    def __init__(self, config: Optional[StoreConfig] = None):
        self.config = config or StoreConfig()
        self._memories: dict[str, Memory] = {}
        self._index: dict[str, list[_IndexEntry]] = {}
        self._superseded: dict[str, str] = {}  # superseded id -> correcting id
        self._sequence = itertools.count()

        if self.config.storage_path is not None:
            self.config.storage_path.mkdir(parents=True, exist_ok=True)
            self._load()

    @property
    def log_path(self) -> Optional[Path]:
        if self.config.storage_path is None:
            return None
        return self.config.storage_path / LOG_FILENAME

    def _load(self) -> None:
        """Replay the append-only log from disk."""
        path = self.log_path
        if path is None or not path.exists():
            logger.debug("No existing memory log found")
            return

        loaded = 0
        with open(path) as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    memory = Memory.from_dict(json.loads(line))
                    self._validate(memory)
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.error(f"Skipping malformed memory log line {line_no}: {e}")
                    continue
                if memory.id not in self._memories:
                    self._insert(memory)
                    loaded += 1

        logger.info(f"Loaded {loaded} memories from {path}")

    def _persist(self, memory: Memory) -> None:
        path = self.log_path
        if path is None:
            return
        with open(path, "a") as f:
            f.write(json.dumps(memory.to_dict()) + "\n")

    def _validate(self, memory: Memory) -> None:
        if memory.dimension != self.config.embedding_dimension:
            raise ValidationError(
                f"Memory {memory.id} embedding has length {memory.dimension}, "
                f"expected {self.config.embedding_dimension}"
            )
        if memory.supersedes is not None:
            original = self._memories.get(memory.supersedes)
            if original is None:
                raise ValidationError(
                    f"Memory {memory.id} supersedes unknown memory {memory.supersedes}"
                )
            if original.user_id != memory.user_id:
                raise ValidationError(
                    f"Memory {memory.id} cannot supersede another user's memory"
                )

    def _insert(self, memory: Memory) -> None:
        self._memories[memory.id] = memory
        entries = self._index.setdefault(memory.user_id, [])
        bisect.insort(entries, (memory.timestamp, next(self._sequence), memory.id))
        if memory.supersedes is not None:
            self._superseded[memory.supersedes] = memory.id

    def append_new(self, memory: Memory) -> tuple[Memory, bool]:
        """Append a memory, reporting whether it was newly written.

        Returns:
            (stored record, created). When the id already exists the original
            record is returned unchanged and created is False.
        """
        existing = self._memories.get(memory.id)
        if existing is not None:
            logger.debug(f"Memory {memory.id} already stored, ignoring re-append")
            return existing, False

        self._validate(memory)
        self._insert(memory)
        self._persist(memory)
        logger.debug(f"Appended memory {memory.id} for user {memory.user_id}")
        return memory, True

    def append(self, memory: Memory) -> Memory:
        """Append a memory; idempotent by id."""
        stored, _ = self.append_new(memory)
        return stored

    def get(self, memory_id: str) -> Optional[Memory]:
        return self._memories.get(memory_id)

    def get_many(self, memory_ids: Iterable[str]) -> list[Memory]:
        """Fetch memories by id, silently skipping unknown ids."""
        return [self._memories[mid] for mid in memory_ids if mid in self._memories]

    def is_superseded(self, memory_id: str) -> bool:
        return memory_id in self._superseded

    def superseded_by(self, memory_id: str) -> Optional[str]:
        return self._superseded.get(memory_id)

    def stream_since(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        include_superseded: bool = False,
    ) -> MemoryStream:
        """Timestamp-ascending stream of a user's memories at or after `since`."""
        if not user_id:
            raise ValidationError("user_id is required")
        return MemoryStream(self, user_id, since, include_superseded)

    def count(self, user_id: str) -> int:
        return len(self._index.get(user_id, ()))

    def user_ids(self) -> list[str]:
        return sorted(self._index)

    def trajectory(
        self,
        user_id: str,
        days: float = 30,
        now: Optional[datetime] = None,
    ) -> list[TrajectoryPoint]:
        """Emotional trajectory over the last `days` days, oldest first."""
        now = ensure_utc(now) if now is not None else utc_now()
        since = now - timedelta(days=days)
        return [
            TrajectoryPoint(m.timestamp, m.emotional_valence, m.dominant_emotion)
            for m in self.stream_since(user_id, since)
            if m.timestamp <= now
        ]

    def __len__(self) -> int:
        return len(self._memories)
