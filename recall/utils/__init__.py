"""Shared utilities for the recall engine."""

from recall.utils.clock import days_between, ensure_utc, parse_timestamp, utc_now
from recall.utils.vectors import as_vector, cosine_similarities, cosine_similarity

__all__ = [
    "as_vector",
    "cosine_similarities",
    "cosine_similarity",
    "days_between",
    "ensure_utc",
    "parse_timestamp",
    "utc_now",
]
