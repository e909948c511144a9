"""Adaptive per-tenant rate limiting."""

from .headers import (
    PipedriveHeaderParser,
    QuotaHeaderParser,
    QuotaReading,
    XeroHeaderParser,
    get_header_parser,
)
from .limiter import RateLimiter, RateLimitState
from .pacing import compute_delay


__all__ = [
    "RateLimiter",
    "RateLimitState",
    "QuotaHeaderParser",
    "QuotaReading",
    "XeroHeaderParser",
    "PipedriveHeaderParser",
    "get_header_parser",
    "compute_delay",
]
