from __future__ import annotations

from datetime import UTC, datetime, timedelta

import httpx

from platform_sync.resilience.hints import RateLimitHints, hints_from_response

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


def test_reads_remaining_and_reset_headers() -> None:
    reset = NOW + timedelta(seconds=45)
    response = httpx.Response(
        200,
        headers={
            "X-RateLimit-Remaining": "17",
            "X-RateLimit-Reset": str(int(reset.timestamp())),
        },
    )

    hints = hints_from_response(response, now=NOW)

    assert hints.remaining == 17
    assert hints.reset_at == reset
    assert hints.retry_after_s is None


def test_retry_after_seconds_derives_reset() -> None:
    response = httpx.Response(429, headers={"Retry-After": "120"})

    hints = hints_from_response(response, now=NOW)

    assert hints.retry_after_s == 120.0
    assert hints.reset_at == NOW + timedelta(seconds=120)


def test_retry_after_http_date() -> None:
    response = httpx.Response(429, headers={"Retry-After": "Mon, 01 Jan 2024 12:01:30 GMT"})

    hints = hints_from_response(response, now=NOW)

    assert hints.retry_after_s == 90.0


def test_missing_or_invalid_headers_yield_empty_hints() -> None:
    response = httpx.Response(
        200,
        headers={"X-RateLimit-Remaining": "lots", "Retry-After": ""},
    )

    hints = hints_from_response(response, now=NOW)

    assert hints == RateLimitHints()
    assert hints.is_empty


def test_non_finite_or_huge_retry_after_is_ignored() -> None:
    for value in ("inf", "nan", "1e300"):
        response = httpx.Response(429, headers={"Retry-After": value})

        hints = hints_from_response(response, now=NOW)

        assert hints.retry_after_s is None
        assert hints.reset_at is None


def test_out_of_range_reset_epoch_is_ignored() -> None:
    response = httpx.Response(
        200,
        headers={"X-RateLimit-Remaining": "4", "X-RateLimit-Reset": "99999999999999"},
    )

    hints = hints_from_response(response, now=NOW)

    assert hints.remaining == 4
    assert hints.reset_at is None


def test_reset_beyond_horizon_is_ignored() -> None:
    far = NOW + timedelta(days=30)
    response = httpx.Response(200, headers={"X-RateLimit-Reset": str(int(far.timestamp()))})

    assert hints_from_response(response, now=NOW).reset_at is None
