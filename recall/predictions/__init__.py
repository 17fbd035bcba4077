"""Confidence-scored predictions derived from patterns."""

from recall.predictions.generator import PredictionGenerator
from recall.predictions.models import Prediction

__all__ = ["Prediction", "PredictionGenerator"]
