"""Per-user serialization.

All state is partitioned by user. Work for one user runs under that user's
lock; different users never contend.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict


class UserLocks:
    """Lazily created asyncio.Lock per user id."""

    def __init__(self):
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def __call__(self, user_id: str) -> asyncio.Lock:
        return self._locks[user_id]

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._locks

    def __len__(self) -> int:
        return len(self._locks)
