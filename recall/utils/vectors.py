"""Vector helpers shared by clustering and recall."""

from __future__ import annotations

from typing import Sequence

import numpy as np


def as_vector(values: Sequence[float]) -> np.ndarray:
    """Convert a sequence of floats to a float64 numpy array."""
    return np.asarray(values, dtype=np.float64)


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero norm rather than dividing by zero.
    """
    va, vb = as_vector(a), as_vector(b)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm < 1e-12:
        return 0.0
    return float(np.dot(va, vb) / norm)


def cosine_similarities(query: Sequence[float] | np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of one query vector against each row of a matrix."""
    q = as_vector(query)
    if matrix.size == 0:
        return np.zeros(0)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(norms > 1e-12, dots / norms, 0.0)
    return sims
