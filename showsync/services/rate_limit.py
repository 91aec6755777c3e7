"""Request pacing and quota tracking for the catalog API."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping

from ..utils import format_reset_estimate

logger = logging.getLogger(__name__)

LIMIT_HEADER = "x-ratelimit-requests-limit"
REMAINING_HEADER = "x-ratelimit-requests-remaining"
RESET_HEADER = "x-ratelimit-requests-reset"


class RateLimiter:
    """Admit calls no faster than ``max_requests_per_second``.

    All callers share one sequence; there is no per-endpoint partitioning.
    """

    def __init__(
        self,
        max_requests_per_second: float = 10.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        if max_requests_per_second <= 0:
            raise ValueError("max_requests_per_second must be positive")
        self._interval = 1.0 / max_requests_per_second
        self._clock = clock
        self._sleep = sleep
        self._previous_call: float | None = None
        self._lock = asyncio.Lock()

    @property
    def interval(self) -> float:
        return self._interval

    async def admission(self) -> None:
        """Wait until the minimum interval since the previous admission has passed."""

        async with self._lock:
            if self._previous_call is not None:
                delay = self._interval - (self._clock() - self._previous_call)
                if delay > 0:
                    await self._sleep(delay)
            self._previous_call = self._clock()


@dataclass(slots=True)
class QuotaStatus:
    """Quota figures reported by the API on a response."""

    limit: int
    remaining: int
    reset_seconds: int | None = None

    @property
    def used(self) -> int:
        return max(self.limit - self.remaining, 0)

    @property
    def percent_used(self) -> float:
        if self.limit <= 0:
            return 0.0
        return self.used / self.limit * 100

    @property
    def message(self) -> str:
        text = (
            f"Streaming API quota {self.percent_used:.0f}% used "
            f"({self.used}/{self.limit} requests)."
        )
        if self.reset_seconds is not None:
            text += f" Resets in {format_reset_estimate(self.reset_seconds)}."
        return text

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "QuotaStatus | None":
        lowered = {key.lower(): value for key, value in headers.items()}
        try:
            limit = int(lowered[LIMIT_HEADER])
            remaining = int(lowered[REMAINING_HEADER])
        except (KeyError, TypeError, ValueError):
            return None
        reset: int | None
        try:
            reset = int(lowered[RESET_HEADER])
        except (KeyError, TypeError, ValueError):
            reset = None
        return cls(limit=limit, remaining=remaining, reset_seconds=reset)


class QuotaMonitor:
    """Emit a single warning once quota usage crosses a threshold."""

    def __init__(self, threshold_percent: int = 80) -> None:
        self._threshold = threshold_percent
        self._warned = False
        self.last_status: QuotaStatus | None = None

    @property
    def enabled(self) -> bool:
        return self._threshold > 0

    def observe(self, headers: Mapping[str, str]) -> QuotaStatus | None:
        """Record quota headers; return the status only when a warning fires."""

        status = QuotaStatus.from_headers(headers)
        if status is None:
            return None
        self.last_status = status
        if not self.enabled:
            return None
        if status.percent_used < self._threshold:
            # Usage dropped, presumably a new quota window.
            self._warned = False
            return None
        if self._warned:
            return None
        self._warned = True
        logger.warning(status.message)
        return status
