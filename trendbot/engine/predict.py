"""
Trend prediction over historical TrendData.

The predictor is a plain callable ``history -> ranked identifiers`` so the
model behind it can be swapped without touching orchestration. The default
is a momentum score: z-score of each identifier's latest metric against its
recent history, squashed to [0, 1].
"""

from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from trendbot.core.logging import get_logger
from trendbot.core.models import DataType, Platform, TrendData

logger = get_logger(__name__)

Predictor = Callable[[List[TrendData]], List[str]]

DEFAULT_WINDOW = 7
MIN_HISTORY = 3


def spike_score(latest: float, history: Sequence[float], window: int = DEFAULT_WINDOW) -> float:
    """
    Z-score of ``latest`` vs the last ``window`` observations, through a sigmoid.

    With too little history the score is 1.0 for anything currently active
    and 0.0 otherwise.
    """
    if len(history) < MIN_HISTORY:
        return 1.0 if latest > 0 else 0.0
    arr = np.array(history[-window:], dtype=float)
    mean = arr.mean()
    std = arr.std() if arr.std() > 0 else 1.0
    z = (latest - mean) / std
    return float(1 / (1 + np.exp(-z)))


def _series(
    history: Iterable[TrendData], data_types: Iterable[DataType]
) -> Dict[Tuple[Platform, str], List[float]]:
    """Per (platform, identifier) metric series, one point per usable snapshot."""
    by_platform: Dict[Platform, List[TrendData]] = defaultdict(list)
    for data in history:
        by_platform[data.platform].append(data)

    series: Dict[Tuple[Platform, str], List[float]] = {}
    for platform, snapshots in by_platform.items():
        snapshots.sort(key=lambda d: d.fetched_at)
        points: Dict[str, List[float]] = {}
        for index, snapshot in enumerate(snapshots):
            current: Dict[str, float] = defaultdict(float)
            for dt in data_types:
                if snapshot.has(dt):
                    for entry in snapshot.entries(dt):
                        current[entry.identifier] += float(entry.metric)

            # Absent from a snapshot means zero activity then
            for identifier in current.keys() - points.keys():
                points[identifier] = [0.0] * index
            for identifier, values in points.items():
                values.append(current.get(identifier, 0.0))

        series.update({(platform, identifier): values for identifier, values in points.items()})
    return series


def predict_trending(
    history: List[TrendData],
    data_types: Iterable[DataType] = (DataType.HASHTAGS, DataType.KEYWORDS),
    window: int = DEFAULT_WINDOW,
    top_k: Optional[int] = None,
) -> List[str]:
    """Rank identifiers by momentum; ties by latest metric, then identifier."""
    best: Dict[str, Tuple[float, float]] = {}
    for (_, identifier), points in _series(history, list(data_types)).items():
        latest, earlier = points[-1], points[:-1]
        candidate = (spike_score(latest, earlier, window), latest)
        if identifier not in best or candidate > best[identifier]:
            best[identifier] = candidate

    ranked = sorted(best, key=lambda ident: (-best[ident][0], -best[ident][1], ident))
    return ranked[:top_k] if top_k is not None else ranked


class MomentumPredictor:
    """Default predictor; configurable wrapper around predict_trending."""

    def __init__(
        self,
        data_types: Iterable[DataType] = (DataType.HASHTAGS, DataType.KEYWORDS),
        window: int = DEFAULT_WINDOW,
        top_k: Optional[int] = None,
    ):
        self.data_types = tuple(data_types)
        self.window = window
        self.top_k = top_k

    def __call__(self, history: List[TrendData]) -> List[str]:
        ranked = predict_trending(history, self.data_types, self.window, self.top_k)
        logger.debug(f"Predicted {len(ranked)} trending identifiers from {len(history)} snapshots")
        return ranked
