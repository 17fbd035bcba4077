"""Pytest configuration and fixtures."""

import numpy as np
import pytest

from helpers import DIM
from recall.clustering.engine import ClusteringEngine
from recall.config import ClusteringConfig, StoreConfig
from recall.memory.models import Memory
from recall.memory.store import MemoryStore


@pytest.fixture
def store():
    """In-memory store sized for small test embeddings."""
    return MemoryStore(StoreConfig(embedding_dimension=DIM))


@pytest.fixture
def engine(store):
    return ClusteringEngine(store, ClusteringConfig())


@pytest.fixture
def ingest(store, engine):
    """Append then assign, the way IngestionService does under the user lock."""

    def _ingest(memory: Memory):
        record, created = store.append_new(memory)
        if created:
            return engine.assign(record)
        return None

    return _ingest


@pytest.fixture
def rng():
    return np.random.default_rng(7)
