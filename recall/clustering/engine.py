"""Incremental online clustering of a user's memories.

Each new memory is compared with the centroids of the user's live clusters.
If the best cosine similarity clears the threshold the memory joins that
cluster; otherwise it founds a new one. Centroids are maintained as running
(sum, count) pairs so an insertion never re-reads member embeddings.

A periodic maintenance pass moves idle clusters to DORMANT, prunes weak
dormant clusters, and merges active clusters whose centroids have converged.

Readers never see a half-applied change: after every write or maintenance
pass the engine publishes an immutable per-user snapshot of cluster copies,
and queries read that snapshot instead of the working set.

Storage layout (optional):
    clusters.json: {"clusters": [MemoryCluster.to_dict(), ...], "saved_at": ...}
"""

from __future__ import annotations

import bisect
import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

import numpy as np

from recall.clustering.cluster import ClusterState, MemoryCluster, founding_cluster
from recall.clustering.concepts import term_counts, top_terms, tokenize
from recall.clustering.scoring import dominant_phase, recency_weighted_valence, strength_score
from recall.config import ClusteringConfig
from recall.errors import ClusteringInconsistency
from recall.memory.models import Memory
from recall.memory.store import MemoryStore
from recall.utils.clock import days_between, ensure_utc, utc_now
from recall.utils.vectors import as_vector, cosine_similarities, cosine_similarity

logger = logging.getLogger(__name__)

CLUSTERS_FILENAME = "clusters.json"

# Absolute tolerance for the running-sum consistency check
SUM_TOLERANCE = 1e-6

# Similarities closer than this count as a tie
TIE_EPSILON = 1e-12


@dataclass
class MaintenanceReport:
    """What a maintenance pass changed for one user."""

    user_id: str
    dormant: list[str] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)
    merged: list[tuple[str, str]] = field(default_factory=list)  # (kept, absorbed)
    healed: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.dormant or self.pruned or self.merged or self.healed)


class ClusteringEngine:
    """Maintains each user's working set of memory clusters.

    Callers must serialize writes per user (see recall.runtime.partition);
    the engine itself holds no locks.

    Attributes:
        store: Memory store used to resolve member records
        config: Clustering thresholds
    """

    def __init__(
        self,
        store: MemoryStore,
        config: Optional[ClusteringConfig] = None,
        storage_path: Optional[Path] = None,
    ):
        self.store = store
        self.config = config or ClusteringConfig()
        self.storage_path = Path(storage_path) if storage_path is not None else None
        self._clusters: dict[str, dict[str, MemoryCluster]] = {}
        self._memberships: dict[str, str] = {}  # memory id -> live cluster id
        self._term_counts: dict[str, Counter] = {}
        self._snapshots: dict[str, tuple[MemoryCluster, ...]] = {}
        self._dirty: bool = False

        if self.storage_path is not None:
            self.storage_path.mkdir(parents=True, exist_ok=True)
            self._load()
        self.recover_unclustered()

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #

    def recover_unclustered(self) -> int:
        """Cluster stored memories that no cluster has ever held.

        Covers memories appended after the last save of a process that
        stopped before saving. Members of pruned clusters stay unclustered.

        Returns:
            Number of memories assigned
        """
        recovered = 0
        for user_id in self.store.user_ids():
            known = {
                memory_id
                for cluster in self._clusters.get(user_id, {}).values()
                for memory_id in cluster.member_ids
            }
            for memory in self.store.stream_since(user_id).to_list():
                if memory.id in known:
                    continue
                self.assign(memory)
                recovered += 1
        if recovered:
            logger.warning(f"Clustered {recovered} memories missing from saved clusters")
        return recovered

    def _load(self) -> None:
        """Load clusters from disk."""
        clusters_file = self.storage_path / CLUSTERS_FILENAME
        if not clusters_file.exists():
            logger.debug("No existing clusters file found")
            return

        with open(clusters_file) as f:
            data = json.load(f)

        for entry in data.get("clusters", []):
            cluster = MemoryCluster.from_dict(entry)
            self._clusters.setdefault(cluster.user_id, {})[cluster.id] = cluster
            if cluster.is_live:
                for memory_id in cluster.member_ids:
                    self._memberships[memory_id] = cluster.id

        for user_id in self._clusters:
            self._publish(user_id)

        logger.info(f"Loaded {sum(len(c) for c in self._clusters.values())} clusters")

    def save(self, force: bool = False) -> None:
        """Save clusters to disk.

        Args:
            force: Save even if not dirty
        """
        if self.storage_path is None or (not self._dirty and not force):
            return

        clusters_file = self.storage_path / CLUSTERS_FILENAME
        data = {
            "clusters": [
                cluster.to_dict()
                for user_clusters in self._clusters.values()
                for cluster in user_clusters.values()
            ],
            "saved_at": utc_now().isoformat(),
        }
        with open(clusters_file, "w") as f:
            json.dump(data, f, indent=2)

        self._dirty = False
        logger.info(f"Saved {len(data['clusters'])} clusters")

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def clusters(self, user_id: str) -> tuple[MemoryCluster, ...]:
        """Latest committed snapshot of a user's clusters (pruned included)."""
        return self._snapshots.get(user_id, ())

    def live_clusters(self, user_id: str) -> list[MemoryCluster]:
        """Committed non-pruned clusters for a user."""
        return [c for c in self.clusters(user_id) if c.is_live]

    def cluster_of(self, memory_id: str) -> Optional[str]:
        """Id of the live cluster holding a memory, if any."""
        return self._memberships.get(memory_id)

    def user_ids(self) -> list[str]:
        return sorted(self._clusters)

    def _publish(self, user_id: str) -> None:
        working = self._clusters.get(user_id, {})
        self._snapshots[user_id] = tuple(c.copy() for c in working.values())

    # ------------------------------------------------------------------ #
    # Assignment
    # ------------------------------------------------------------------ #

    def assign(self, memory: Memory) -> MemoryCluster:
        """Place a newly stored memory in a cluster.

        Re-assigning a memory that is already clustered is a no-op that
        returns its current cluster.

        Returns:
            Snapshot copy of the cluster the memory now belongs to
        """
        user_clusters = self._clusters.setdefault(memory.user_id, {})

        existing_id = self._memberships.get(memory.id)
        if existing_id is not None and existing_id in user_clusters:
            return user_clusters[existing_id].copy()

        if memory.supersedes is not None:
            self._release(memory.supersedes, user_clusters)

        target, similarity = self._best_match(memory, user_clusters)

        if target is not None and similarity >= self.config.similarity_threshold:
            self._ensure_consistent(target)
            was_dormant = target.state == ClusterState.DORMANT
            self._add_member(target, memory)
            self._advance_state(target)
            if was_dormant:
                logger.info(f"Cluster {target.id} reactivated by memory {memory.id}")
            logger.debug(
                f"Memory {memory.id} joined cluster {target.id} "
                f"(similarity={similarity:.3f}, size={target.size})"
            )
        else:
            target = founding_cluster(memory.user_id, memory.embedding, memory.timestamp)
            user_clusters[target.id] = target
            self._add_member(target, memory)
            self._advance_state(target)
            logger.debug(f"Memory {memory.id} founded cluster {target.id}")

        self._dirty = True
        self._publish(memory.user_id)
        return target.copy()

    def _best_match(
        self,
        memory: Memory,
        user_clusters: dict[str, MemoryCluster],
    ) -> tuple[Optional[MemoryCluster], float]:
        """Most similar live cluster, ties going to the most recently updated."""
        candidates = [c for c in user_clusters.values() if c.is_live and c.count > 0]
        if not candidates:
            return None, -1.0

        centroids = np.vstack([c.centroid for c in candidates])
        sims = cosine_similarities(memory.embedding, centroids)
        best = float(sims.max())

        tied = [c for c, s in zip(candidates, sims) if best - float(s) <= TIE_EPSILON]
        tied.sort(key=lambda c: (-c.last_updated.timestamp(), c.id))
        return tied[0], best

    def _add_member(self, cluster: MemoryCluster, memory: Memory) -> None:
        cluster.sum_vector = cluster.sum_vector + as_vector(memory.embedding)
        cluster.count += 1

        members = self.store.get_many(cluster.member_ids)
        counts = self._term_counts.get(cluster.id)
        if counts is None:
            counts = term_counts(m.content for m in members)
            self._term_counts[cluster.id] = counts
        counts.update(tokenize(memory.content))

        # keep member_ids in timestamp order even for late-arriving memories
        stamps = [(m.timestamp, m.id) for m in members]
        position = bisect.bisect_right(stamps, (memory.timestamp, memory.id))
        cluster.member_ids.insert(position, memory.id)
        members.insert(position, memory)

        self._memberships[memory.id] = cluster.id
        self._refresh_derived(cluster, members)

    def _release(self, memory_id: str, user_clusters: dict[str, MemoryCluster]) -> None:
        """Take a superseded memory out of its cluster."""
        cluster_id = self._memberships.pop(memory_id, None)
        if cluster_id is None or cluster_id not in user_clusters:
            return

        cluster = user_clusters[cluster_id]
        memory = self.store.get(memory_id)
        cluster.member_ids = [mid for mid in cluster.member_ids if mid != memory_id]

        if not cluster.member_ids:
            cluster.count = 0
            cluster.sum_vector = np.zeros_like(cluster.sum_vector)
            cluster.state = ClusterState.PRUNED
            cluster.strength_score = 0.0
            self._term_counts.pop(cluster.id, None)
            logger.info(f"Cluster {cluster.id} pruned after its only member was superseded")
            return

        if memory is not None:
            cluster.sum_vector = cluster.sum_vector - as_vector(memory.embedding)
            cluster.count -= 1
            counts = self._term_counts.get(cluster.id)
            if counts is not None:
                counts.subtract(tokenize(memory.content))
                self._term_counts[cluster.id] = +counts
        self._ensure_consistent(cluster)
        self._refresh_derived(cluster, self.store.get_many(cluster.member_ids))
        logger.debug(f"Released superseded memory {memory_id} from cluster {cluster.id}")

    def _refresh_derived(
        self,
        cluster: MemoryCluster,
        members: list[Memory],
        now: Optional[datetime] = None,
    ) -> None:
        """Recompute concepts, emotional/phase context and strength from members."""
        if not members:
            return
        counts = self._term_counts.get(cluster.id)
        if counts is None:
            counts = term_counts(m.content for m in members)
            self._term_counts[cluster.id] = counts

        ranked = top_terms(counts, self.config.max_concepts)
        cluster.concepts = [term for term, _ in ranked]
        cluster.concept_counts = dict(ranked)
        cluster.emotional_context = recency_weighted_valence(
            members, self.config.valence_half_life_days
        )
        cluster.phase_context = dominant_phase(members)
        cluster.last_updated = max(m.timestamp for m in members)
        cluster.strength_score = strength_score(
            [m.emotional_valence for m in members],
            cluster.last_updated,
            now or cluster.last_updated,
            self.config,
        )

    def _advance_state(self, cluster: MemoryCluster) -> None:
        """State after a membership gain."""
        if cluster.size >= self.config.active_member_count:
            cluster.state = ClusterState.ACTIVE
        elif cluster.state == ClusterState.DORMANT:
            cluster.state = ClusterState.FORMING

    # ------------------------------------------------------------------ #
    # Consistency
    # ------------------------------------------------------------------ #

    def verify(self, cluster: MemoryCluster, deep: bool = False) -> None:
        """Check a cluster's running invariants.

        The shallow check compares count with member_ids and is cheap enough
        for every insertion. The deep check also re-sums member embeddings.

        Raises:
            ClusteringInconsistency: If an invariant is violated
        """
        if cluster.count != len(cluster.member_ids):
            raise ClusteringInconsistency(
                cluster.id,
                f"count {cluster.count} != {len(cluster.member_ids)} members",
            )
        if not np.all(np.isfinite(cluster.sum_vector)):
            raise ClusteringInconsistency(cluster.id, "running sum is not finite")
        if not deep or not cluster.member_ids:
            return

        members = self.store.get_many(cluster.member_ids)
        if len(members) != len(cluster.member_ids):
            raise ClusteringInconsistency(cluster.id, "members missing from store")
        expected = np.sum([as_vector(m.embedding) for m in members], axis=0)
        if not np.allclose(expected, cluster.sum_vector, atol=SUM_TOLERANCE):
            raise ClusteringInconsistency(cluster.id, "running sum disagrees with members")

    def _ensure_consistent(self, cluster: MemoryCluster, deep: bool = False) -> bool:
        """Verify a cluster, rebuilding it from members if needed.

        Returns:
            True if the cluster had to be healed
        """
        try:
            self.verify(cluster, deep=deep)
            return False
        except ClusteringInconsistency as e:
            logger.warning(f"{e}; rebuilding from members")
            self.rebuild(cluster)
            return True

    def rebuild(self, cluster: MemoryCluster, now: Optional[datetime] = None) -> None:
        """Recompute every derived field of a cluster from its member ids."""
        members = sorted(
            self.store.get_many(dict.fromkeys(cluster.member_ids)),
            key=lambda m: (m.timestamp, m.id),
        )
        cluster.member_ids = [m.id for m in members]
        cluster.count = len(members)
        if members:
            cluster.sum_vector = np.sum([as_vector(m.embedding) for m in members], axis=0)
        else:
            cluster.sum_vector = np.zeros_like(cluster.sum_vector)
        self._term_counts[cluster.id] = term_counts(m.content for m in members)
        self._refresh_derived(cluster, members, now)

    # ------------------------------------------------------------------ #
    # Maintenance
    # ------------------------------------------------------------------ #

    def maintain(self, user_id: str, now: Optional[datetime] = None) -> MaintenanceReport:
        """Dormancy, pruning and merge pass for one user.

        Works on copies and publishes once at the end, so readers keep
        seeing the pre-pass snapshot until the pass completes.
        """
        now = ensure_utc(now) if now is not None else utc_now()
        report = MaintenanceReport(user_id=user_id)
        current = self._clusters.get(user_id)
        if not current:
            return report

        working = {cid: c.copy() for cid, c in current.items()}

        for cluster in working.values():
            if not cluster.is_live:
                continue
            if self._ensure_consistent(cluster, deep=True):
                report.healed.append(cluster.id)

        self._merge_pass(working, report, now)

        inactivity = self.config.inactivity_window_days
        for cluster in working.values():
            if not cluster.is_live:
                continue
            members = self.store.get_many(cluster.member_ids)
            self._refresh_derived(cluster, members, now)

            idle_days = days_between(cluster.last_updated, now)
            if cluster.state in (ClusterState.FORMING, ClusterState.ACTIVE) and idle_days > inactivity:
                cluster.state = ClusterState.DORMANT
                report.dormant.append(cluster.id)
                logger.info(f"Cluster {cluster.id} dormant after {idle_days:.1f} idle days")

            if cluster.state == ClusterState.DORMANT and cluster.strength_score < self.config.prune_floor:
                cluster.state = ClusterState.PRUNED
                report.pruned.append(cluster.id)
                logger.info(
                    f"Pruned dormant cluster {cluster.id} (strength={cluster.strength_score:.2f})"
                )

        self._clusters[user_id] = working
        for cluster in working.values():
            for memory_id in cluster.member_ids:
                if cluster.is_live:
                    self._memberships[memory_id] = cluster.id
                elif self._memberships.get(memory_id) == cluster.id:
                    del self._memberships[memory_id]

        if report.changed:
            self._dirty = True
        self._publish(user_id)
        return report

    def _merge_pass(
        self,
        working: dict[str, MemoryCluster],
        report: MaintenanceReport,
        now: datetime,
    ) -> None:
        """Merge active clusters until no pair clears the merge threshold."""
        while True:
            active = sorted(
                (c for c in working.values() if c.state == ClusterState.ACTIVE),
                key=lambda c: c.id,
            )
            best_pair = None
            best_sim = self.config.merge_threshold
            for i, a in enumerate(active):
                for b in active[i + 1:]:
                    sim = cosine_similarity(a.centroid, b.centroid)
                    if sim >= best_sim and (best_pair is None or sim > best_sim):
                        best_pair, best_sim = (a, b), sim
            if best_pair is None:
                return

            keep, absorb = sorted(
                best_pair, key=lambda c: (-c.size, c.created_at.timestamp(), c.id)
            )
            self._merge(keep, absorb, now)
            del working[absorb.id]
            report.merged.append((keep.id, absorb.id))
            logger.info(f"Merged cluster {absorb.id} into {keep.id} (similarity={best_sim:.3f})")

    def _merge(self, keep: MemoryCluster, absorb: MemoryCluster, now: datetime) -> None:
        members = sorted(
            self.store.get_many(keep.member_ids + absorb.member_ids),
            key=lambda m: (m.timestamp, m.id),
        )
        keep.member_ids = [m.id for m in members]
        keep.sum_vector = keep.sum_vector + absorb.sum_vector
        keep.count = keep.count + absorb.count
        keep.created_at = min(keep.created_at, absorb.created_at)
        self._term_counts.pop(absorb.id, None)
        self._term_counts[keep.id] = term_counts(m.content for m in members)
        self._refresh_derived(keep, members, now)
        for memory_id in absorb.member_ids:
            self._memberships[memory_id] = keep.id
