"""Aggregation, prediction and engine assembly."""

from .aggregator import TrendAggregator
from .factory import TrendEngine, build_engine
from .predict import MomentumPredictor, predict_trending

__all__ = ["TrendAggregator", "TrendEngine", "build_engine", "MomentumPredictor", "predict_trending"]
