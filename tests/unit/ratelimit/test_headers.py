"""Tests for rate-limit header parsing."""

from datetime import UTC, datetime

import pytest

from xerolink.ratelimit.headers import (
    PipedriveHeaderParser,
    QuotaReading,
    XeroHeaderParser,
    get_header_parser,
    parse_retry_after,
)


NOW = 1_700_000_000.0


def test_xero_headers():
    reading = XeroHeaderParser().parse(
        {
            "X-MinLimit-Remaining": "42",
            "X-DayLimit-Remaining": "4800",
            "X-AppMinLimit-Remaining": "9000",
        },
        NOW,
    )

    assert reading.minute_remaining == 42
    assert reading.daily_remaining == 4800
    assert reading.retry_after is None
    assert reading.problem is None


def test_xero_retry_after_and_problem():
    reading = XeroHeaderParser().parse(
        {"retry-after": "7", "x-rate-limit-problem": "Minute"}, NOW
    )

    assert reading.retry_after == 7.0
    assert reading.problem == "minute"


def test_header_names_are_case_insensitive():
    reading = XeroHeaderParser().parse({"x-minlimit-remaining": "3"}, NOW)
    assert reading.minute_remaining == 3


def test_pipedrive_headers():
    reading = PipedriveHeaderParser().parse(
        {
            "x-ratelimit-remaining": "0",
            "x-ratelimit-reset": "30",
            "x-daily-requests-left": "1200",
        },
        NOW,
    )

    assert reading == QuotaReading(
        minute_remaining=0,
        minute_reset_in=30.0,
        daily_remaining=1200,
    )


def test_missing_headers_give_empty_reading():
    assert XeroHeaderParser().parse({"content-type": "application/json"}, NOW).is_empty
    assert PipedriveHeaderParser().parse({}, NOW).is_empty


def test_invalid_values_are_ignored():
    reading = XeroHeaderParser().parse(
        {"X-MinLimit-Remaining": "lots", "X-DayLimit-Remaining": "10"}, NOW
    )

    assert reading.minute_remaining is None
    assert reading.daily_remaining == 10


def test_negative_counts_clamp_to_zero():
    reading = XeroHeaderParser().parse({"X-MinLimit-Remaining": "-4"}, NOW)
    assert reading.minute_remaining == 0


def test_retry_after_seconds():
    assert parse_retry_after("12", NOW) == 12.0
    assert parse_retry_after("1.5", NOW) == 1.5
    assert parse_retry_after(None, NOW) is None


def test_retry_after_http_date():
    target = datetime.fromtimestamp(NOW + 90, tz=UTC)
    value = target.strftime("%a, %d %b %Y %H:%M:%S GMT")

    assert parse_retry_after(value, NOW) == pytest.approx(90.0)


def test_retry_after_date_in_past_is_zero():
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT", NOW) == 0.0


def test_retry_after_garbage():
    assert parse_retry_after("soon-ish", NOW) is None


def test_get_header_parser():
    assert isinstance(get_header_parser("xero"), XeroHeaderParser)
    assert isinstance(get_header_parser("pipedrive"), PipedriveHeaderParser)
    with pytest.raises(ValueError):
        get_header_parser("github")
