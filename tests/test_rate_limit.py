"""Tests for request pacing and quota warnings."""

from __future__ import annotations

import asyncio
import time

import pytest

from showsync.services.rate_limit import QuotaMonitor, QuotaStatus, RateLimiter


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def quota_headers(limit: int, remaining: int, reset: int | None = None) -> dict[str, str]:
    headers = {
        "x-ratelimit-requests-limit": str(limit),
        "x-ratelimit-requests-remaining": str(remaining),
    }
    if reset is not None:
        headers["x-ratelimit-requests-reset"] = str(reset)
    return headers


@pytest.mark.anyio("asyncio")
async def test_first_admission_is_immediate_and_later_ones_wait() -> None:
    clock = FakeClock()
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)
        clock.now += delay

    limiter = RateLimiter(10, clock=clock, sleep=fake_sleep)

    await limiter.admission()
    assert sleeps == []

    clock.now += 0.04
    await limiter.admission()
    assert sleeps == [pytest.approx(0.06)]

    # Enough time has passed already, no wait needed.
    clock.now += 0.5
    await limiter.admission()
    assert len(sleeps) == 1


@pytest.mark.anyio("asyncio")
async def test_concurrent_admissions_are_spaced_by_interval() -> None:
    limiter = RateLimiter(20)
    admitted: list[float] = []

    async def call() -> None:
        await limiter.admission()
        admitted.append(time.monotonic())

    started = time.monotonic()
    await asyncio.gather(*(call() for _ in range(5)))
    elapsed = time.monotonic() - started

    assert len(admitted) == 5
    assert elapsed >= 4 * limiter.interval * 0.95
    gaps = [later - earlier for earlier, later in zip(admitted, admitted[1:])]
    assert all(gap >= limiter.interval * 0.9 for gap in gaps)


def test_rate_must_be_positive() -> None:
    with pytest.raises(ValueError):
        RateLimiter(0)


def test_quota_status_message_includes_reset_estimate() -> None:
    status = QuotaStatus.from_headers(quota_headers(100, 15, reset=7200))

    assert status is not None
    assert status.used == 85
    assert status.percent_used == pytest.approx(85.0)
    assert "85%" in status.message
    assert "Resets in 2 hours." in status.message


def test_quota_status_requires_limit_headers() -> None:
    assert QuotaStatus.from_headers({"content-type": "application/json"}) is None
    assert QuotaStatus.from_headers(quota_headers(100, 15) | {"x-ratelimit-requests-limit": "n/a"}) is None


def test_monitor_warns_once_per_window() -> None:
    monitor = QuotaMonitor(80)

    assert monitor.observe(quota_headers(100, 50)) is None
    assert monitor.observe(quota_headers(100, 20, reset=60)) is not None
    assert monitor.observe(quota_headers(100, 10)) is None

    # Usage dropped below the threshold: a new window re-arms the warning.
    assert monitor.observe(quota_headers(100, 95)) is None
    status = monitor.observe(quota_headers(100, 5))
    assert status is not None
    assert monitor.last_status == status


def test_monitor_disabled_with_zero_threshold() -> None:
    monitor = QuotaMonitor(0)

    assert monitor.observe(quota_headers(100, 0)) is None
    assert monitor.last_status is not None
    assert monitor.last_status.percent_used == pytest.approx(100.0)
