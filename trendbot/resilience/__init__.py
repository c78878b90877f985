"""Per-source circuit breaker, rate limiter and retry policy."""

from .circuit import CircuitBreaker, CircuitStatus
from .ratelimit import RateLimiter
from .retry import RetryPolicy

__all__ = ["CircuitBreaker", "CircuitStatus", "RateLimiter", "RetryPolicy"]
