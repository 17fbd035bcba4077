# tests/test_recall_config.py
"""Tests for recall configuration."""

import json

import pytest

from recall.config import ClusteringConfig, PredictionConfig, RecallConfig, StoreConfig


def test_defaults():
    config = RecallConfig()
    assert config.store.embedding_dimension == 1536
    assert config.store.storage_path is None
    assert config.clustering.similarity_threshold == 0.78
    assert config.runtime.retry_max_attempts == 5
    assert config.predictions.caps["breakthrough_moment"] == 0.60


def test_merge_threshold_must_be_stricter():
    with pytest.raises(ValueError):
        ClusteringConfig(similarity_threshold=0.8, merge_threshold=0.8)


def test_similarity_threshold_range():
    with pytest.raises(ValueError):
        ClusteringConfig(similarity_threshold=0.0)


def test_dimension_must_be_positive():
    with pytest.raises(ValueError):
        StoreConfig(embedding_dimension=0)


def test_caps_must_be_fractions():
    with pytest.raises(ValueError):
        PredictionConfig(caps={"emotional_cycle": 1.5})


def test_storage_path_coerced(tmp_path):
    config = StoreConfig(storage_path=str(tmp_path))
    assert config.storage_path == tmp_path


class TestLoading:
    """Tests for building a config from dicts and files."""

    def test_partial_dict_keeps_other_defaults(self):
        config = RecallConfig.from_dict({"clustering": {"similarity_threshold": 0.7}})
        assert config.clustering.similarity_threshold == 0.7
        assert config.clustering.merge_threshold == 0.92
        assert config.insight.hierarchy_size == 20

    def test_unknown_keys_ignored(self):
        config = RecallConfig.from_dict(
            {"runtime": {"sweep_interval_seconds": 60, "legacy_option": True}, "extra": {}}
        )
        assert config.runtime.sweep_interval_seconds == 60

    def test_invalid_values_rejected(self):
        with pytest.raises(ValueError):
            RecallConfig.from_dict({"store": {"embedding_dimension": -3}})

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "recall.json"
        path.write_text(json.dumps({"store": {"embedding_dimension": 8}}))

        config = RecallConfig.load(path)

        assert config.store.embedding_dimension == 8

    def test_missing_file_uses_defaults(self, tmp_path):
        config = RecallConfig.load(tmp_path / "absent.json")
        assert config.store.embedding_dimension == 1536

    def test_to_dict_round_trips_storage_path(self, tmp_path):
        config = RecallConfig.from_dict({"store": {"storage_path": str(tmp_path)}})
        data = config.to_dict()
        assert data["store"]["storage_path"] == str(tmp_path)
        assert RecallConfig.from_dict(data).store.storage_path == tmp_path
