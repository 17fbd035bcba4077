"""Tests for PatternDetector: cycles, breakthroughs, challenges, accelerators."""

import pytest

from helpers import at, axis, make_memory
from recall.patterns.detector import PatternDetector, intensity_band
from recall.patterns.models import PatternType, Timeframe


@pytest.fixture
def detector():
    return PatternDetector()


def detect(detector, store, engine, timeframe=Timeframe.ALL, now=None, types=None):
    return detector.detect(
        "user-1",
        store.stream_since("user-1").to_list(),
        engine.clusters("user-1"),
        timeframe=timeframe,
        pattern_types=types,
        now=now,
    )


# =============================================================================
# Emotional cycles
# =============================================================================


class TestEmotionalCycles:
    """Tests for repeating same-sign valence runs."""

    def test_alternating_valence_scenario(self, detector, store, engine, ingest):
        """Ten days of alternating strong mood is a cycle seen at least twice."""
        for day in range(10):
            valence = 0.8 if day % 2 == 0 else -0.8
            ingest(make_memory(axis(day % 4), timestamp=at(day), valence=valence))

        found = detect(detector, store, engine, now=at(10))[PatternType.EMOTIONAL_CYCLE]

        assert len(found) == 2
        assert all(p.frequency >= 4 for p in found)
        assert {p.description.split()[1] for p in found} == {"positive", "negative"}

    def test_runs_grouped_by_signature(self, detector, store, engine, ingest):
        valences = [0.5, 0.5, -0.5, 0.5, 0.5, -0.5]
        for day, valence in enumerate(valences):
            ingest(make_memory(axis(0), timestamp=at(day), valence=valence))

        found = detect(detector, store, engine, now=at(6))[PatternType.EMOTIONAL_CYCLE]

        by_length = {p.description: p.frequency for p in found}
        assert by_length == {
            "Recurring positive stretches of 2 entries at moderate intensity": 4,
            "Recurring negative stretches of 1 entry at moderate intensity": 2,
        }

    def test_neutral_entries_do_not_break_runs(self, detector, store, engine, ingest):
        valences = [0.9, 0.0, 0.9, -0.9, 0.9, 0.0, 0.9]
        for day, valence in enumerate(valences):
            ingest(make_memory(axis(0), timestamp=at(day), valence=valence))

        found = detect(detector, store, engine, now=at(7))[PatternType.EMOTIONAL_CYCLE]

        assert [p.frequency for p in found] == [4]
        assert "2 entries at high intensity" in found[0].description

    def test_single_run_is_not_a_cycle(self, detector, store, engine, ingest):
        for day in range(3):
            ingest(make_memory(axis(0), timestamp=at(day), valence=0.4))
        found = detect(detector, store, engine, now=at(3))[PatternType.EMOTIONAL_CYCLE]
        assert found == []

    def test_intensity_bands(self):
        assert intensity_band(0.2) == "low"
        assert intensity_band(0.5) == "moderate"
        assert intensity_band(0.66) == "high"


# =============================================================================
# Breakthrough moments
# =============================================================================


class TestBreakthroughMoments:
    """Tests for sharp mood lifts right after a cluster grows."""

    def _low_week(self, ingest):
        for day in range(5):
            ingest(make_memory(axis(0), timestamp=at(day), valence=-0.3))

    def test_lift_after_cluster_growth(self, detector, store, engine, ingest):
        self._low_week(ingest)
        ingest(make_memory(axis(3), memory_id="bt", timestamp=at(4, hours=12), valence=0.6))

        found = detect(detector, store, engine, now=at(6))[PatternType.BREAKTHROUGH_MOMENT]

        assert len(found) == 1
        assert found[0].supporting_memory_ids == ["bt"]
        assert found[0].frequency == 1
        assert any("lifting mood" in line for line in found[0].insights)

    def test_lift_without_recent_growth_ignored(self, detector, store, engine, ingest):
        self._low_week(ingest)
        ingest(make_memory(axis(3), timestamp=at(8), valence=0.6))

        found = detect(detector, store, engine, now=at(9))[PatternType.BREAKTHROUGH_MOMENT]
        assert found == []

    def test_small_lift_ignored(self, detector, store, engine, ingest):
        self._low_week(ingest)
        ingest(make_memory(axis(3), timestamp=at(4, hours=12), valence=0.0))

        found = detect(detector, store, engine, now=at(6))[PatternType.BREAKTHROUGH_MOMENT]
        assert found == []


# =============================================================================
# Recurring challenges
# =============================================================================


class TestRecurringChallenges:
    """Tests for negative clusters that keep growing."""

    def test_negative_growing_cluster(self, detector, store, engine, ingest):
        for day in range(4):
            ingest(
                make_memory(
                    axis(0),
                    timestamp=at(day),
                    valence=-0.6,
                    content="deadline pressure at work again",
                )
            )
        for day in range(4):
            ingest(make_memory(axis(1), timestamp=at(day), valence=0.6, content="garden"))

        found = detect(detector, store, engine, now=at(5))[PatternType.RECURRING_CHALLENGE]

        assert len(found) == 1
        cluster = next(c for c in engine.clusters("user-1") if c.emotional_context < 0)
        assert found[0].cluster_id == cluster.id
        assert found[0].frequency == 4
        assert "deadline" in found[0].description

    def test_growth_counted_inside_window(self, detector, store, engine, ingest):
        for day in range(4):
            ingest(make_memory(axis(0), timestamp=at(day), valence=-0.6))
        ingest(make_memory(axis(0), timestamp=at(20), valence=-0.6))

        week = detect(detector, store, engine, timeframe=Timeframe.WEEK, now=at(21))
        everything = detect(detector, store, engine, timeframe=Timeframe.ALL, now=at(21))

        assert week[PatternType.RECURRING_CHALLENGE] == []
        assert everything[PatternType.RECURRING_CHALLENGE][0].frequency == 5


# =============================================================================
# Growth accelerators
# =============================================================================


class TestGrowthAccelerators:
    """Tests for strengthening clusters followed by better mood."""

    def test_theme_followed_by_lift(self, detector, store, engine, ingest):
        for day in (0, 2, 4):
            ingest(
                make_memory(
                    axis(0),
                    memory_id=f"run-{day}",
                    timestamp=at(day),
                    valence=0.0,
                    content="morning run exercise",
                )
            )
            ingest(make_memory(axis(5), timestamp=at(day + 1), valence=0.6, content="good day"))

        found = detect(detector, store, engine, now=at(6))[PatternType.GROWTH_ACCELERATOR]

        assert len(found) == 1
        assert found[0].supporting_memory_ids == ["run-0", "run-2", "run-4"]
        assert "exercise" in found[0].description

    def test_no_lift_no_pattern(self, detector, store, engine, ingest):
        for day in (0, 2, 4):
            ingest(make_memory(axis(0), timestamp=at(day), valence=0.2))
            ingest(make_memory(axis(5), timestamp=at(day + 1), valence=0.2))

        found = detect(detector, store, engine, now=at(6))[PatternType.GROWTH_ACCELERATOR]
        assert found == []


# =============================================================================
# General properties
# =============================================================================


class TestDetectorProperties:
    """Tests for properties shared by every detector."""

    def test_no_memories_yields_empty_lists(self, detector):
        result = detector.detect("user-1", [], [], now=at(0))
        assert set(result) == set(PatternType)
        assert all(patterns == [] for patterns in result.values())

    def test_only_requested_types_returned(self, detector, store, engine, ingest):
        ingest(make_memory(axis(0), valence=0.5))
        result = detect(detector, store, engine, now=at(1), types=[PatternType.EMOTIONAL_CYCLE])
        assert list(result) == [PatternType.EMOTIONAL_CYCLE]

    def test_frequency_matches_window_support(self, detector, store, engine, ingest):
        for day in range(40):
            valence = 0.7 if (day // 2) % 2 == 0 else -0.7
            ingest(make_memory(axis(day % 3), timestamp=at(day), valence=valence))

        now = at(40)
        start = Timeframe.MONTH.window_start(now)
        window_ids = {m.id for m in store.stream_since("user-1", since=start)}
        result = detect(detector, store, engine, timeframe=Timeframe.MONTH, now=now)

        patterns = [p for group in result.values() for p in group]
        assert patterns
        for pattern in patterns:
            assert pattern.frequency == len(pattern.supporting_memory_ids)
            assert set(pattern.supporting_memory_ids) <= window_ids
            assert pattern.timeframe is Timeframe.MONTH
