"""Normalization of raw trend snapshots.

Turns API or scrape output into a ranked TrendData:
- rows are validated against the entry model for their data type; malformed
  rows are dropped
- duplicates are merged case-insensitively (hashtags without '#')
- viral content without an explicit engagement value gets one derived from
  its interaction counts
- every sequence is ranked by metric descending, identifier ascending
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Type

from pydantic import BaseModel, ValidationError

from trendbot.core.logging import get_logger
from trendbot.core.models import (
    DataType,
    ErrorInfo,
    HashtagEntry,
    KeywordEntry,
    Platform,
    RawTrendSnapshot,
    TrendData,
    TrendStatus,
    ViralEntry,
)
from trendbot.core.ranking import Scorer, default_engagement, rank_entries

logger = get_logger(__name__)

ENTRY_MODELS: Dict[DataType, Type[BaseModel]] = {
    DataType.HASHTAGS: HashtagEntry,
    DataType.KEYWORDS: KeywordEntry,
    DataType.VIRAL_CONTENT: ViralEntry,
}

DATA_TYPE_ORDER = [DataType.HASHTAGS, DataType.KEYWORDS, DataType.VIRAL_CONTENT]


def _prepare_row(data_type: DataType, row: Mapping[str, Any]) -> Dict[str, Any]:
    prepared = {key: value for key, value in row.items() if value is not None}
    if data_type == DataType.VIRAL_CONTENT and "engagement" not in prepared:
        prepared["engagement"] = default_engagement(
            views=int(prepared.get("views", 0) or 0),
            likes=int(prepared.get("likes", 0) or 0),
            comments=int(prepared.get("comments", 0) or 0),
            shares=int(prepared.get("shares", 0) or 0),
        )
    return prepared


def _combine(existing, incoming):
    """Merge two entries with the same identifier."""
    if isinstance(existing, ViralEntry):
        return existing if existing.engagement >= incoming.engagement else incoming

    update: Dict[str, Any] = {"volume": existing.volume + incoming.volume}
    if isinstance(existing, HashtagEntry) and incoming.growth_rate is not None:
        update["growth_rate"] = max(existing.growth_rate or 0.0, incoming.growth_rate)
    if isinstance(existing, KeywordEntry) and incoming.related:
        update["related"] = sorted(set(existing.related) | set(incoming.related))
    return existing.model_copy(update=update)


def normalize_rows(data_type: DataType, rows: Iterable[Mapping[str, Any]], scorer: Optional[Scorer] = None) -> List[Any]:
    """Validate, merge and rank raw rows for one data type."""
    model = ENTRY_MODELS[data_type]
    merged: Dict[str, Any] = {}
    dropped = 0

    for row in rows:
        try:
            entry = model.model_validate(_prepare_row(data_type, row))
        except (ValidationError, TypeError, ValueError) as e:
            dropped += 1
            logger.debug(f"Dropping malformed {data_type.value} row: {e}")
            continue

        key = entry.identifier.lower()
        merged[key] = _combine(merged[key], entry) if key in merged else entry

    if dropped:
        logger.info(f"Dropped {dropped} malformed {data_type.value} rows during normalization")

    return rank_entries(merged.values(), scorer)


def normalize_snapshot(
    snapshot: RawTrendSnapshot,
    data_types: Iterable[DataType],
    scorer: Optional[Scorer] = None,
) -> TrendData:
    """Build a TrendData for the requested data types of a snapshot."""
    requested = [dt for dt in DATA_TYPE_ORDER if dt in set(data_types)]
    sequences = {
        dt.value: normalize_rows(dt, snapshot.entries(dt), scorer)
        for dt in requested
        if dt not in snapshot.failures
    }
    failed = [dt for dt in requested if dt in snapshot.failures]

    if not failed:
        status, error = TrendStatus.OK, None
    else:
        status = TrendStatus.FAILED if len(failed) == len(requested) else TrendStatus.PARTIAL
        error = snapshot.failures[failed[0]]

    return TrendData(
        platform=snapshot.platform,
        fetched_at=snapshot.captured_at,
        status=status,
        error=error,
        source=snapshot.origin if status != TrendStatus.FAILED else "none",
        failed_data_types=failed,
        **sequences,
    )


def merge_results(platform: Platform, parts: Mapping[DataType, TrendData]) -> TrendData:
    """
    Combine per-data-type results into one TrendData.

    Each data type's sequence comes from the part responsible for it. All
    parts usable -> ok, none usable -> failed, otherwise partial. The error
    reported is the first failure in data type order.
    """
    requested = [dt for dt in DATA_TYPE_ORDER if dt in parts]
    sequences: Dict[str, List[Any]] = {}
    failed: List[DataType] = []
    error: Optional[ErrorInfo] = None
    origins = set()
    fetched: List[datetime] = []

    for dt in requested:
        part = parts[dt]
        if part.has(dt):
            sequences[dt.value] = part.entries(dt)
            origins.add(part.source)
            fetched.append(part.fetched_at)
        else:
            failed.append(dt)
            if error is None:
                error = part.error

    if not failed:
        status = TrendStatus.OK
    elif len(failed) == len(requested):
        status = TrendStatus.FAILED
    else:
        status = TrendStatus.PARTIAL

    if not origins:
        source = "none"
    elif len(origins) == 1:
        source = origins.pop()
    else:
        source = "mixed"

    return TrendData(
        platform=platform,
        # Oldest contributing fetch bounds the freshness of the whole result
        fetched_at=min(fetched) if fetched else datetime.now(timezone.utc),
        status=status,
        error=error,
        source=source,
        failed_data_types=failed,
        **sequences,
    )
