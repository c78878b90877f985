"""Error taxonomy for trend sources.

Every source-level failure is a TrendSourceError carrying a machine-readable
code. The aggregator turns them into ErrorInfo values; none of them abort a
multi-platform query.
"""
from typing import Optional

from .models import ErrorCode, ErrorInfo


class ConfigurationError(Exception):
    """Invalid or incomplete engine configuration, raised at startup."""


class TrendSourceError(Exception):
    """Base class for failures attributable to one trend source."""

    code: ErrorCode = ErrorCode.SOURCE_ERROR
    retryable: bool = False

    def __init__(self, message: str, *, status_code: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.retry_after = retry_after

    def to_error_info(self) -> ErrorInfo:
        return ErrorInfo(
            code=self.code,
            message=self.message,
            reauth_required=self.code == ErrorCode.EXPIRED_CREDENTIALS,
            retry_after=self.retry_after,
        )


class TransientUpstreamError(TrendSourceError):
    """5xx, 429 or network failure; retried under the backoff policy."""
    code = ErrorCode.TRANSIENT_UPSTREAM_ERROR
    retryable = True


class UpstreamTimeoutError(TransientUpstreamError):
    """Upstream did not answer within the client timeout."""
    code = ErrorCode.TIMEOUT


class RateLimitedError(TrendSourceError):
    """Request deferred past the local rate-limit ceiling."""
    code = ErrorCode.RATE_LIMITED


class ExpiredCredentialsError(TrendSourceError):
    """Provider rejected the credentials; the user must reconnect."""
    code = ErrorCode.EXPIRED_CREDENTIALS


class ScrapingForbiddenError(TrendSourceError):
    """robots.txt disallows the target; terminal."""
    code = ErrorCode.SCRAPING_FORBIDDEN


class QueryTimeoutError(TrendSourceError):
    """Source did not finish inside the query deadline."""
    code = ErrorCode.TIMEOUT


class SourceError(TrendSourceError):
    """Non-retryable upstream failure (4xx other than 429, bad payload)."""
    code = ErrorCode.SOURCE_ERROR


class SourceUnavailableError(TrendSourceError):
    """Circuit is open; no network call was attempted."""
    code = ErrorCode.SOURCE_UNAVAILABLE


class NotSupportedError(TrendSourceError):
    """Official API cannot serve this request; the scraper may."""
    code = ErrorCode.SOURCE_UNAVAILABLE
