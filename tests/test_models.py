"""Tests for core models and the error taxonomy."""

import pytest
from pydantic import TypeAdapter, ValidationError

from trendbot.core.errors import (
    ExpiredCredentialsError,
    NotSupportedError,
    QueryTimeoutError,
    TransientUpstreamError,
    UpstreamTimeoutError,
)
from trendbot.core.models import (
    CacheEntry,
    CacheKey,
    DataType,
    ErrorCode,
    HashtagEntry,
    KeywordEntry,
    Platform,
    TimeRange,
    TrendData,
    TrendEntry,
    TrendQuery,
    TrendStatus,
    ViralEntry,
)


class TestEntries:

    def test_hashtag_strips_leading_hash(self):
        assert HashtagEntry(tag="#Summer").tag == "Summer"

    def test_empty_hashtag_rejected(self):
        with pytest.raises(ValidationError):
            HashtagEntry(tag="#")

    def test_negative_volume_rejected(self):
        with pytest.raises(ValidationError):
            KeywordEntry(keyword="music", volume=-1)

    def test_identifier_and_metric(self):
        viral = ViralEntry(content_id="abc", engagement=42)
        assert viral.identifier == "abc"
        assert viral.metric == 42
        keyword = KeywordEntry(keyword="music", volume=7)
        assert (keyword.identifier, keyword.metric) == ("music", 7)

    def test_entry_union_discriminates_on_kind(self):
        adapter = TypeAdapter(TrendEntry)
        entry = adapter.validate_python({"kind": "viral_content", "content_id": "v1", "views": 10})
        assert isinstance(entry, ViralEntry)
        entry = adapter.validate_python({"kind": "hashtag", "tag": "#x1"})
        assert isinstance(entry, HashtagEntry)


class TestTrendQuery:

    def test_defaults(self):
        query = TrendQuery(platforms={Platform.YOUTUBE})
        assert query.data_types == frozenset(DataType)
        assert query.time_range == TimeRange.DAY

    def test_empty_platforms_rejected(self):
        with pytest.raises(ValidationError):
            TrendQuery(platforms=set())

    def test_query_is_immutable(self):
        query = TrendQuery(platforms={Platform.YOUTUBE})
        with pytest.raises(ValidationError):
            query.time_range = TimeRange.WEEK


class TestTrendData:

    def test_failed_result_has_no_usable_data(self):
        error = ExpiredCredentialsError("token revoked").to_error_info()
        data = TrendData.failed(Platform.TIKTOK, error, [DataType.VIRAL_CONTENT, DataType.HASHTAGS])

        assert data.status == TrendStatus.FAILED
        assert data.source == "none"
        assert data.failed_data_types == [DataType.HASHTAGS, DataType.VIRAL_CONTENT]
        assert not data.has_any()
        assert not data.has(DataType.HASHTAGS)
        assert data.error.reauth_required is True

    def test_partial_result_reports_failed_types(self):
        data = TrendData(
            platform=Platform.YOUTUBE,
            status=TrendStatus.PARTIAL,
            failed_data_types=[DataType.KEYWORDS],
        )
        assert data.has(DataType.HASHTAGS)
        assert not data.has(DataType.KEYWORDS)
        assert not data.ok


class TestErrors:

    @pytest.mark.parametrize("error, code, reauth", [
        (TransientUpstreamError("503"), ErrorCode.TRANSIENT_UPSTREAM_ERROR, False),
        (UpstreamTimeoutError("read timeout"), ErrorCode.TIMEOUT, False),
        (QueryTimeoutError("deadline"), ErrorCode.TIMEOUT, False),
        (ExpiredCredentialsError("expired"), ErrorCode.EXPIRED_CREDENTIALS, True),
        (NotSupportedError("no chart"), ErrorCode.SOURCE_UNAVAILABLE, False),
    ])
    def test_error_info(self, error, code, reauth):
        info = error.to_error_info()
        assert info.code == code
        assert info.reauth_required is reauth
        assert info.message == error.message

    def test_timeout_is_retryable_transient(self):
        assert isinstance(UpstreamTimeoutError("x"), TransientUpstreamError)
        assert UpstreamTimeoutError.retryable
        assert not ExpiredCredentialsError.retryable


class TestCacheTypes:

    def test_cache_key_string(self):
        key = CacheKey(Platform.YOUTUBE, DataType.HASHTAGS, TimeRange.WEEK)
        assert key.as_string() == "trends:youtube:hashtags:week"

    def test_cache_entry_expiry(self):
        key = CacheKey(Platform.YOUTUBE, DataType.HASHTAGS)
        entry = CacheEntry.build(key, TrendData(platform=Platform.YOUTUBE), now=100.0, ttl=600)
        assert entry.expires_at == 700.0
        assert entry.is_fresh(699.9)
        assert not entry.is_fresh(700.0)
