"""In-memory TTL cache used by the API clients."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    """A cached value along with the clock reading at which it was stored."""

    value: T
    created_at: float


class CacheStore(Generic[T]):
    """Unbounded keyed cache whose entries expire after a fixed TTL.

    ``ttl_seconds=None`` keeps entries until :meth:`clear` is called.
    """

    def __init__(
        self,
        ttl_seconds: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds is not None and ttl_seconds < 0:
            raise ValueError("ttl_seconds must not be negative")
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}

    @property
    def ttl_seconds(self) -> float | None:
        return self._ttl

    def get(self, key: str) -> T | None:
        """Return the cached value, or ``None`` when missing or expired."""

        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._ttl is not None and self._clock() - entry.created_at > self._ttl:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: T, *, age: float = 0.0) -> None:
        """Store ``value``; ``age`` backdates entries loaded from elsewhere."""

        self._entries[key] = CacheEntry(value=value, created_at=self._clock() - max(age, 0.0))

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)
