"""Ranking of trend entries.

The engagement/volume formula is not fixed: callers inject a scorer. The
ordering contract is fixed: score descending, identifier ascending on ties.
"""

from typing import Callable, Iterable, List, Optional, TypeVar

E = TypeVar("E")

Scorer = Callable[[object], float]


def default_scorer(entry) -> float:
    """The entry's own volume (hashtags, keywords) or engagement (viral)."""
    return float(entry.metric)


def rank_entries(entries: Iterable[E], scorer: Optional[Scorer] = None) -> List[E]:
    """Stable sort by score descending, then identifier ascending."""
    score = scorer or default_scorer
    return sorted(entries, key=lambda entry: (-score(entry), entry.identifier))


def default_engagement(views: int = 0, likes: int = 0, comments: int = 0, shares: int = 0) -> float:
    """Interaction count; falls back to views for content with no interactions reported."""
    interactions = likes + comments + shares
    return float(interactions if interactions > 0 else views)
