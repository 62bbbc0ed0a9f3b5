# OpenAirMap: aggregate and normalise air quality data
# Copyright (C) 2025 OpenAirMap contributors

# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.

# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Metadata cache with request deduplication.

Station and sensor metadata change on the order of days but are needed by
almost every snapshot and historical call. A MetadataCache holds one value
for a fixed time-to-live and coalesces concurrent misses onto a single
in-flight fetch.

Each source that needs it receives its own cache instance through its
constructor, so tests can build isolated caches and control exactly when
the underlying fetch resolves.

Example:
    >>> cache = MetadataCache(ttl=1800)
    >>> sensors = await cache.get(fetch_sensors)
"""

import asyncio
import time
from logging import getLogger
from typing import Any, Awaitable, Callable, Generic, TypeVar

logger = getLogger(__name__)

T = TypeVar("T")

# Metadata changes over days, so half an hour is plenty
DEFAULT_TTL = 30 * 60


class MetadataCache(Generic[T]):
    """
    A single cached value with a time-to-live and an in-flight lock.

    At most one fetch is outstanding at any instant: callers arriving
    during a miss await the same pending operation. A failed fetch is
    propagated to every waiter and leaves the cache empty.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            ttl: Time-to-live in seconds
            clock: Monotonic clock returning seconds (injectable for tests)
        """
        self.ttl = ttl
        self.clock = clock
        self._value: T | None = None
        self._fetched_at: float | None = None
        self._pending: asyncio.Future | None = None
        self._keyed: KeyedMetadataCache | None = None
        self.hits = 0
        self.fetches = 0

    def is_valid(self) -> bool:
        """True if a value is cached and younger than the TTL."""
        if self._value is None or self._fetched_at is None:
            return False
        return self.clock() - self._fetched_at < self.ttl

    @property
    def pending(self) -> bool:
        """True while a fetch is in flight."""
        return self._pending is not None

    async def get(self, fetch: Callable[[], Awaitable[T]]) -> T:
        """
        Return the cached value, fetching it if missing or expired.

        Args:
            fetch: Coroutine function producing a fresh value

        Returns:
            The cached or freshly fetched value
        """
        if self.is_valid():
            self.hits += 1
            return self._value  # type: ignore[return-value]

        if self._pending is None:
            # Published before the first suspension so that concurrent
            # callers join this fetch instead of starting their own
            self._pending = asyncio.ensure_future(self._refresh(fetch))
        else:
            logger.debug("Joining in-flight metadata fetch")

        # Shielded so one cancelled waiter does not cancel the shared fetch
        return await asyncio.shield(self._pending)

    async def _refresh(self, fetch: Callable[[], Awaitable[T]]) -> T:
        self.fetches += 1
        try:
            value = await fetch()
            self._value = value
            self._fetched_at = self.clock()
            return value
        finally:
            self._pending = None

    @property
    def keyed(self) -> "KeyedMetadataCache":
        """Per-key caches living alongside this one, with the same TTL and clock."""
        if self._keyed is None:
            self._keyed = KeyedMetadataCache(ttl=self.ttl, clock=self.clock)
        return self._keyed

    def invalidate(self) -> None:
        """Drop the cached value and any keyed values; the next get() fetches again."""
        self._value = None
        self._fetched_at = None
        if self._keyed is not None:
            self._keyed.invalidate()

    def peek(self) -> Any:
        """Return the cached value without checking the TTL (or None)."""
        return self._value


class KeyedMetadataCache(Generic[T]):
    """
    One MetadataCache per key, all sharing the same TTL and clock.

    Used for metadata that providers serve per pollutant, such as a
    station list filtered on the measured variable.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.clock = clock
        self._caches: dict[str, MetadataCache[T]] = {}

    def cache_for(self, key: str) -> MetadataCache[T]:
        """Return the cache of a key, creating it on first use."""
        if key not in self._caches:
            self._caches[key] = MetadataCache(ttl=self.ttl, clock=self.clock)
        return self._caches[key]

    async def get(self, key: str, fetch: Callable[[], Awaitable[T]]) -> T:
        """Return the value cached under key, fetching it if needed."""
        return await self.cache_for(key).get(fetch)

    @property
    def fetches(self) -> int:
        return sum(cache.fetches for cache in self._caches.values())

    def invalidate(self) -> None:
        for cache in self._caches.values():
            cache.invalidate()
