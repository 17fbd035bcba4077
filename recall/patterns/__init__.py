"""Temporal pattern detection over memories and clusters."""

from recall.patterns.detector import PatternDetector
from recall.patterns.models import Pattern, PatternType, Timeframe

__all__ = ["Pattern", "PatternDetector", "PatternType", "Timeframe"]
