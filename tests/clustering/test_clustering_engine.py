"""Tests for ClusteringEngine: assignment, lifecycle, merge, healing."""

import numpy as np
import pytest

from helpers import DIM, at, axis, make_memory, tilted
from recall.clustering.cluster import ClusterState
from recall.clustering.engine import ClusteringEngine
from recall.config import ClusteringConfig
from recall.errors import ClusteringInconsistency


def live(engine, user_id="user-1"):
    return engine.live_clusters(user_id)


# =============================================================================
# Assignment
# =============================================================================


class TestAssignment:
    """Tests for online assignment of memories to clusters."""

    def test_similar_memories_share_a_cluster(self, ingest, engine):
        first = ingest(make_memory(axis(0), timestamp=at(0)))
        second = ingest(make_memory(tilted(0, 1, 0.9), timestamp=at(1)))

        assert first.id == second.id
        assert len(live(engine)) == 1
        assert second.size == 2

    def test_dissimilar_memories_found_separate_clusters(self, ingest, engine):
        first = ingest(make_memory(axis(0), timestamp=at(0)))
        second = ingest(make_memory(tilted(0, 1, 0.7), timestamp=at(1)))

        assert first.id != second.id
        assert len(live(engine)) == 2
        assert all(c.state == ClusterState.FORMING for c in live(engine))

    def test_centroid_is_running_mean(self, ingest, engine):
        ingest(make_memory(axis(0), timestamp=at(0)))
        cluster = ingest(make_memory(tilted(0, 1, 0.8), timestamp=at(1)))

        expected = (np.array(axis(0)) + np.array(tilted(0, 1, 0.8))) / 2
        assert cluster.count == 2
        assert np.allclose(cluster.centroid, expected)

    def test_reassigning_is_idempotent(self, store, engine):
        memory = store.append(make_memory(axis(0)))
        first = engine.assign(memory)
        second = engine.assign(memory)

        assert first.id == second.id
        assert second.count == 1
        assert second.member_ids == [memory.id]

    def test_users_are_partitioned(self, ingest, engine):
        ingest(make_memory(axis(0), user_id="user-1"))
        ingest(make_memory(axis(0), user_id="user-2"))

        assert len(live(engine, "user-1")) == 1
        assert len(live(engine, "user-2")) == 1
        assert engine.user_ids() == ["user-1", "user-2"]

    def test_members_kept_in_timestamp_order(self, ingest):
        ingest(make_memory(axis(0), memory_id="late", timestamp=at(5)))
        cluster = ingest(make_memory(axis(0), memory_id="early", timestamp=at(1)))
        assert cluster.member_ids == ["early", "late"]

    def test_tie_goes_to_most_recently_updated(self, store):
        """Equal similarity to two clusters: the fresher one wins."""
        engine = ClusteringEngine(
            store, ClusteringConfig(similarity_threshold=0.7, merge_threshold=0.92)
        )
        older = engine.assign(store.append(make_memory(axis(0), timestamp=at(0))))
        newer = engine.assign(store.append(make_memory(axis(1), timestamp=at(1))))
        between = tuple((np.array(axis(0)) + np.array(axis(1))) / np.sqrt(2))

        joined = engine.assign(store.append(make_memory(between, timestamp=at(2))))

        assert joined.id == newer.id
        assert joined.id != older.id

    def test_activates_at_three_members(self, ingest):
        states = [
            ingest(make_memory(axis(0), timestamp=at(day))).state for day in range(3)
        ]
        assert states == [ClusterState.FORMING, ClusterState.FORMING, ClusterState.ACTIVE]

    def test_cluster_count_never_decreases_on_insert(self, ingest, engine, rng):
        counts = []
        for day in range(25):
            vector = rng.normal(size=DIM)
            ingest(make_memory(tuple(vector / np.linalg.norm(vector)), timestamp=at(day)))
            counts.append(len(live(engine)))
        assert counts == sorted(counts)

    def test_published_snapshot_unaffected_by_later_writes(self, ingest, engine):
        ingest(make_memory(axis(0), timestamp=at(0)))
        snapshot = engine.clusters("user-1")

        ingest(make_memory(axis(0), timestamp=at(1)))

        assert snapshot[0].size == 1
        assert engine.clusters("user-1")[0].size == 2


class TestScenarioCareerTransition:
    """Five closely related memories over a week form one strong cluster."""

    def test_one_active_cluster_about_career(self, ingest, engine):
        texts = [
            "Thinking about a career transition into design",
            "Updated my portfolio for the career change",
            "Talked to a mentor about switching career paths",
            "Career fair gave me hope about the transition",
            "Applied to two design roles, career shift feels real",
        ]
        for day, text in zip([0, 1, 3, 5, 7], texts):
            ingest(
                make_memory(tilted(0, 1, 0.97), content=text, timestamp=at(day), valence=0.3)
            )

        clusters = live(engine)
        assert len(clusters) == 1
        cluster = clusters[0]
        assert cluster.state == ClusterState.ACTIVE
        assert cluster.strength_score > 0.5
        assert "career" in cluster.concepts
        assert cluster.concepts[0] == "career"


# =============================================================================
# Corrections
# =============================================================================


class TestCorrections:
    """Tests for memories that supersede earlier ones."""

    def test_superseded_member_released(self, ingest, engine, store):
        ingest(make_memory(axis(0), memory_id="keep", timestamp=at(0)))
        ingest(make_memory(axis(0), memory_id="wrong", timestamp=at(1), valence=-0.9))

        cluster = ingest(
            make_memory(axis(2), memory_id="fix", timestamp=at(2), supersedes="wrong")
        )

        original = next(c for c in live(engine) if "keep" in c.member_ids)
        assert original.member_ids == ["keep"]
        assert original.count == 1
        assert original.emotional_context == pytest.approx(0.0)
        assert engine.cluster_of("wrong") is None
        assert cluster.member_ids == ["fix"]

    def test_emptied_cluster_is_pruned(self, ingest, engine):
        first = ingest(make_memory(axis(0), memory_id="solo", timestamp=at(0)))
        ingest(make_memory(axis(3), memory_id="fix", timestamp=at(1), supersedes="solo"))

        states = {c.id: c.state for c in engine.clusters("user-1")}
        assert states[first.id] == ClusterState.PRUNED
        assert first.id not in {c.id for c in live(engine)}


# =============================================================================
# Maintenance
# =============================================================================


class TestMaintenance:
    """Tests for dormancy, pruning, reactivation and merging."""

    def test_idle_cluster_goes_dormant(self, ingest, engine):
        for day in range(3):
            ingest(make_memory(axis(0), timestamp=at(day)))

        report = engine.maintain("user-1", now=at(2 + 20))

        cluster = live(engine)[0]
        assert cluster.state == ClusterState.DORMANT
        assert report.dormant == [cluster.id]
        assert report.pruned == []

    def test_weak_dormant_cluster_is_pruned(self, ingest, engine):
        lone = ingest(make_memory(axis(0), timestamp=at(0)))

        report = engine.maintain("user-1", now=at(20))

        assert lone.id in report.pruned
        assert live(engine) == []

    def test_recent_cluster_untouched(self, ingest, engine):
        for day in range(3):
            ingest(make_memory(axis(0), timestamp=at(day)))
        report = engine.maintain("user-1", now=at(5))
        assert not report.changed
        assert live(engine)[0].state == ClusterState.ACTIVE

    def test_dormant_cluster_reactivates(self, ingest, engine):
        for day in range(3):
            ingest(make_memory(axis(0), timestamp=at(day)))
        engine.maintain("user-1", now=at(22))

        cluster = ingest(make_memory(axis(0), timestamp=at(23)))

        assert cluster.state == ClusterState.ACTIVE
        assert cluster.size == 4

    def test_small_dormant_cluster_reactivates_as_forming(self, ingest, engine):
        ingest(make_memory(axis(0), timestamp=at(0)))
        engine.maintain("user-1", now=at(15))
        assert live(engine)[0].state == ClusterState.DORMANT

        cluster = ingest(make_memory(axis(0), timestamp=at(16)))
        assert cluster.state == ClusterState.FORMING

    def test_close_active_clusters_merge_into_larger(self, store):
        """Clusters that drift together merge once thresholds allow it."""
        strict = ClusteringConfig(similarity_threshold=0.95, merge_threshold=0.99)
        engine = ClusteringEngine(store, strict)
        for day in range(4):
            engine.assign(store.append(make_memory(axis(0), timestamp=at(day))))
        for day in range(3):
            engine.assign(store.append(make_memory(tilted(0, 1, 0.93), timestamp=at(day))))
        assert len(engine.live_clusters("user-1")) == 2
        larger = max(engine.live_clusters("user-1"), key=lambda c: c.size)

        engine.config = ClusteringConfig()
        report = engine.maintain("user-1", now=at(4))

        clusters = engine.live_clusters("user-1")
        assert len(clusters) == 1
        assert clusters[0].id == larger.id
        assert clusters[0].size == 7
        assert clusters[0].count == 7
        assert report.merged[0][0] == larger.id
        absorbed = report.merged[0][1]
        assert absorbed not in {c.id for c in engine.clusters("user-1")}
        assert all(engine.cluster_of(mid) == larger.id for mid in clusters[0].member_ids)

    def test_maintain_unknown_user(self, engine):
        report = engine.maintain("nobody")
        assert not report.changed


# =============================================================================
# Consistency
# =============================================================================


class TestConsistency:
    """Tests for invariant checks and self-healing."""

    def test_verify_detects_bad_count(self, ingest, engine):
        cluster = ingest(make_memory(axis(0)))
        cluster.count = 5
        with pytest.raises(ClusteringInconsistency):
            engine.verify(cluster)

    def test_verify_detects_drifted_sum(self, ingest, engine):
        cluster = ingest(make_memory(axis(0)))
        cluster.sum_vector = cluster.sum_vector + 0.5
        engine.verify(cluster)
        with pytest.raises(ClusteringInconsistency):
            engine.verify(cluster, deep=True)

    def test_maintenance_heals_corrupted_cluster(self, ingest, engine):
        cluster = ingest(make_memory(axis(0), timestamp=at(0)))
        ingest(make_memory(axis(0), timestamp=at(1)))
        engine._clusters["user-1"][cluster.id].sum_vector = np.zeros(DIM)

        report = engine.maintain("user-1", now=at(2))

        healed = live(engine)[0]
        assert report.healed == [cluster.id]
        assert np.allclose(healed.sum_vector, np.array(axis(0)) * 2)

    def test_insert_heals_bad_count(self, ingest, engine):
        cluster = ingest(make_memory(axis(0), timestamp=at(0)))
        engine._clusters["user-1"][cluster.id].count = 7

        updated = ingest(make_memory(axis(0), timestamp=at(1)))

        assert updated.count == 2
        assert np.allclose(updated.centroid, np.array(axis(0)))


# =============================================================================
# Persistence
# =============================================================================


class TestClusterPersistence:
    """Tests for clusters.json save/load."""

    def test_save_and_reload(self, store, tmp_path):
        engine = ClusteringEngine(store, storage_path=tmp_path)
        for day in range(3):
            engine.assign(store.append(make_memory(axis(0), timestamp=at(day))))
        assert engine.is_dirty
        engine.save()
        assert not engine.is_dirty

        reloaded = ClusteringEngine(store, storage_path=tmp_path)
        original = engine.live_clusters("user-1")[0]
        restored = reloaded.live_clusters("user-1")[0]

        assert restored.id == original.id
        assert restored.member_ids == original.member_ids
        assert restored.state == ClusterState.ACTIVE
        assert np.allclose(restored.sum_vector, original.sum_vector)
        assert reloaded.cluster_of(original.member_ids[0]) == original.id

    def test_save_skipped_when_clean(self, store, tmp_path):
        engine = ClusteringEngine(store, storage_path=tmp_path)
        engine.save()
        assert not (tmp_path / "clusters.json").exists()

    def test_memories_stored_after_last_save_recovered(self, store, tmp_path):
        """Memories logged after the last save are clustered on the next start."""
        engine = ClusteringEngine(store, storage_path=tmp_path)
        for day in range(2):
            engine.assign(store.append(make_memory(axis(0), timestamp=at(day))))
        engine.save()
        for day in range(2, 4):
            engine.assign(store.append(make_memory(axis(0), timestamp=at(day))))
        store.append(make_memory(axis(1), memory_id="never-assigned", timestamp=at(5)))

        reloaded = ClusteringEngine(store, storage_path=tmp_path)

        clusters = reloaded.live_clusters("user-1")
        assert sorted(c.size for c in clusters) == [1, 4]
        assert sum(c.count for c in clusters) == store.count("user-1")
        assert reloaded.cluster_of("never-assigned") is not None
        assert reloaded.is_dirty

    def test_pruned_members_stay_unclustered_after_reload(self, store, tmp_path):
        engine = ClusteringEngine(store, storage_path=tmp_path)
        engine.assign(store.append(make_memory(axis(0), memory_id="solo", timestamp=at(0))))
        engine.maintain("user-1", now=at(40))
        engine.save()

        reloaded = ClusteringEngine(store, storage_path=tmp_path)

        assert reloaded.live_clusters("user-1") == []
        assert reloaded.cluster_of("solo") is None
        assert reloaded.recover_unclustered() == 0

    def test_recovered_correction_releases_superseded(self, store, tmp_path):
        engine = ClusteringEngine(store, storage_path=tmp_path)
        engine.assign(store.append(make_memory(axis(0), memory_id="old", timestamp=at(0))))
        engine.save()
        store.append(make_memory(axis(0), memory_id="new", timestamp=at(1), supersedes="old"))

        reloaded = ClusteringEngine(store, storage_path=tmp_path)

        assert reloaded.cluster_of("old") is None
        assert reloaded.cluster_of("new") is not None
        assert [c.member_ids for c in reloaded.live_clusters("user-1")] == [["new"]]
