"""
Core Pydantic models for the trend engine.

Defines the query, the normalized per-platform result and the closed set of
entry variants. Ordering of entry sequences is part of the contract: metric
descending, identifier ascending.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, FrozenSet, List, Literal, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Platform(str, Enum):
    """Supported trend sources."""
    YOUTUBE = "youtube"
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    TWITTER = "twitter"


class DataType(str, Enum):
    """Kinds of trend signal a platform can report."""
    HASHTAGS = "hashtags"
    KEYWORDS = "keywords"
    VIRAL_CONTENT = "viral_content"


class TimeRange(str, Enum):
    """Look-back window passed to the upstream APIs."""
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class TrendStatus(str, Enum):
    OK = "ok"
    PARTIAL = "partial"
    FAILED = "failed"


class ErrorCode(str, Enum):
    """Machine-readable failure codes surfaced in TrendData.error."""
    TRANSIENT_UPSTREAM_ERROR = "transient_upstream_error"
    RATE_LIMITED = "rate_limited"
    EXPIRED_CREDENTIALS = "expired_credentials"
    SCRAPING_FORBIDDEN = "scraping_forbidden"
    TIMEOUT = "timeout"
    SOURCE_ERROR = "source_error"
    SOURCE_UNAVAILABLE = "source_unavailable"


class ErrorInfo(BaseModel):
    """Failure annotation for one platform."""
    model_config = ConfigDict(frozen=True)

    code: ErrorCode
    message: str
    reauth_required: bool = False
    retry_after: Optional[float] = None


class HashtagEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["hashtag"] = "hashtag"
    tag: str = Field(..., min_length=1)
    volume: float = Field(default=0.0, ge=0)
    growth_rate: Optional[float] = None

    @field_validator("tag")
    @classmethod
    def strip_hash(cls, v: str) -> str:
        """Store tags without the leading '#'."""
        cleaned = v.strip().lstrip("#")
        if not cleaned:
            raise ValueError("Hashtag cannot be empty")
        return cleaned

    @property
    def identifier(self) -> str:
        return self.tag

    @property
    def metric(self) -> float:
        return self.volume


class KeywordEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["keyword"] = "keyword"
    keyword: str = Field(..., min_length=1)
    volume: float = Field(default=0.0, ge=0)
    related: List[str] = Field(default_factory=list)

    @property
    def identifier(self) -> str:
        return self.keyword

    @property
    def metric(self) -> float:
        return self.volume


class ViralEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["viral_content"] = "viral_content"
    content_id: str = Field(..., min_length=1)
    title: str = ""
    url: Optional[str] = None
    views: int = Field(default=0, ge=0)
    likes: int = Field(default=0, ge=0)
    comments: int = Field(default=0, ge=0)
    shares: int = Field(default=0, ge=0)
    engagement: float = Field(default=0.0, ge=0)

    @property
    def identifier(self) -> str:
        return self.content_id

    @property
    def metric(self) -> float:
        return self.engagement


TrendEntry = Annotated[
    Union[HashtagEntry, KeywordEntry, ViralEntry],
    Field(discriminator="kind"),
]


class TrendQuery(BaseModel):
    """Immutable per-request query."""
    model_config = ConfigDict(frozen=True)

    platforms: FrozenSet[Platform]
    data_types: FrozenSet[DataType] = frozenset(DataType)
    time_range: TimeRange = TimeRange.DAY

    @field_validator("platforms", "data_types")
    @classmethod
    def not_empty(cls, v):
        if not v:
            raise ValueError("At least one value is required")
        return v


class TrendData(BaseModel):
    """
    Normalized trend result for one (platform, query) pair.

    Created by a source adapter, owned by the cache until expiry. The
    aggregator only reads and merges instances.
    """
    model_config = ConfigDict(frozen=True)

    platform: Platform
    hashtags: List[HashtagEntry] = Field(default_factory=list)
    keywords: List[KeywordEntry] = Field(default_factory=list)
    viral_content: List[ViralEntry] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: TrendStatus = TrendStatus.OK
    error: Optional[ErrorInfo] = None
    source: Literal["api", "scrape", "mixed", "none"] = "api"
    # Data types that could not be produced; empty unless status is partial or failed
    failed_data_types: List[DataType] = Field(default_factory=list)

    @classmethod
    def failed(cls, platform: Platform, error: ErrorInfo, data_types=()) -> "TrendData":
        """Result for a platform that produced no data."""
        return cls(
            platform=platform,
            status=TrendStatus.FAILED,
            error=error,
            source="none",
            failed_data_types=sorted(data_types, key=lambda d: d.value),
        )

    def has(self, data_type: DataType) -> bool:
        """Whether this result carries a usable sequence for the data type."""
        return self.status != TrendStatus.FAILED and data_type not in self.failed_data_types

    def has_any(self) -> bool:
        return self.status != TrendStatus.FAILED

    def entries(self, data_type: DataType) -> List[Any]:
        """Entry sequence for a data type."""
        return getattr(self, DataType(data_type).value)

    @property
    def ok(self) -> bool:
        return self.status == TrendStatus.OK

    def only(self, data_type: DataType) -> "TrendData":
        """This result narrowed to one data type, as cached under that type's key."""
        data_type = DataType(data_type)
        if not self.has(data_type):
            return TrendData.failed(self.platform, self.error, [data_type])
        return TrendData(
            platform=self.platform,
            fetched_at=self.fetched_at,
            source=self.source,
            **{data_type.value: self.entries(data_type)},
        )


class RawTrendSnapshot(BaseModel):
    """
    Un-normalized output of an API call or a scrape.

    Rows are plain dicts in the canonical field names of the entry models;
    normalization validates, merges and ranks them.
    """
    platform: Platform
    origin: Literal["api", "scrape"] = "api"
    url: Optional[str] = None
    hashtags: List[Dict[str, Any]] = Field(default_factory=list)
    keywords: List[Dict[str, Any]] = Field(default_factory=list)
    viral_content: List[Dict[str, Any]] = Field(default_factory=list)
    captured_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    # Data types the source could not produce, with the reason
    failures: Dict[DataType, ErrorInfo] = Field(default_factory=dict)

    def entries(self, data_type: DataType) -> List[Dict[str, Any]]:
        return getattr(self, DataType(data_type).value)


class CacheKey(NamedTuple):
    platform: Platform
    data_type: DataType
    time_range: TimeRange = TimeRange.DAY

    def as_string(self) -> str:
        return f"trends:{self.platform.value}:{self.data_type.value}:{self.time_range.value}"


class CacheEntry(BaseModel):
    """Cached TrendData with its freshness window."""
    key: str
    value: TrendData
    created_at: float
    expires_at: float

    @classmethod
    def build(cls, key: CacheKey, value: TrendData, now: float, ttl: float) -> "CacheEntry":
        return cls(key=key.as_string(), value=value, created_at=now, expires_at=now + ttl)

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at
