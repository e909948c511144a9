"""Rate-limit header parsers.

Each provider reports quota differently; a parser turns a response's headers
into a ``QuotaReading`` holding only the values the provider actually sent.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC
from typing import Protocol

from dateutil import parser as dateutil_parser
from structlog import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class QuotaReading:
    """Quota values reported on one response. ``None`` means not reported."""

    minute_remaining: int | None = None
    minute_reset_in: float | None = None
    daily_remaining: int | None = None
    daily_reset_in: float | None = None
    retry_after: float | None = None
    problem: str | None = None

    @property
    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (
                self.minute_remaining,
                self.minute_reset_in,
                self.daily_remaining,
                self.daily_reset_in,
                self.retry_after,
            )
        )


class QuotaHeaderParser(Protocol):
    def parse(self, headers: Mapping[str, str], now: float) -> QuotaReading: ...


def _lower(headers: Mapping[str, str]) -> dict[str, str]:
    return {k.lower(): v for k, v in headers.items()}


def _int_header(headers: dict[str, str], name: str) -> int | None:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return max(int(float(value)), 0)
    except ValueError:
        logger.warning("rate_limit_header_invalid", header=name, value=value)
        return None


def _float_header(headers: dict[str, str], name: str) -> float | None:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        logger.warning("rate_limit_header_invalid", header=name, value=value)
        return None


def parse_retry_after(value: str | None, now: float) -> float | None:
    """Parse a Retry-After value (seconds or HTTP date) into seconds from ``now``."""
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass

    try:
        dt = dateutil_parser.parse(value)
    except (ValueError, OverflowError, dateutil_parser.ParserError):
        logger.warning("retry_after_unparseable", value=value)
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return max(dt.timestamp() - now, 0.0)


class XeroHeaderParser:
    """Xero: ``X-MinLimit-Remaining``, ``X-DayLimit-Remaining``, ``Retry-After``."""

    def parse(self, headers: Mapping[str, str], now: float) -> QuotaReading:
        lowered = _lower(headers)
        problem = lowered.get("x-rate-limit-problem")
        return QuotaReading(
            minute_remaining=_int_header(lowered, "x-minlimit-remaining"),
            daily_remaining=_int_header(lowered, "x-daylimit-remaining"),
            retry_after=parse_retry_after(lowered.get("retry-after"), now),
            problem=problem.lower() if problem else None,
        )


class PipedriveHeaderParser:
    """Pipedrive and similar: ``x-ratelimit-remaining`` / ``x-ratelimit-reset``."""

    def parse(self, headers: Mapping[str, str], now: float) -> QuotaReading:
        lowered = _lower(headers)
        return QuotaReading(
            minute_remaining=_int_header(lowered, "x-ratelimit-remaining"),
            minute_reset_in=_float_header(lowered, "x-ratelimit-reset"),
            daily_remaining=_int_header(lowered, "x-daily-requests-left"),
            retry_after=parse_retry_after(lowered.get("retry-after"), now),
        )


HEADER_PARSERS: dict[str, type[QuotaHeaderParser]] = {
    "xero": XeroHeaderParser,
    "pipedrive": PipedriveHeaderParser,
}


def get_header_parser(schema: str) -> QuotaHeaderParser:
    """Look up a parser preset by name."""
    try:
        return HEADER_PARSERS[schema]()
    except KeyError:
        raise ValueError(f"Unknown rate-limit header schema: {schema}") from None
