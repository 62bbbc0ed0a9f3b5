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
Concurrent fan-out across stations, pollutants and sources.

`aggregate_historical` issues one historical request per (station,
pollutant) pair, concurrently, and assembles
`pollutant -> station id -> points`. A pair whose request fails is left
out of the result; only when every request fails is an AggregationError
raised.

Nothing here cancels in-flight requests. Instead, Aggregator and
SnapshotFeed stamp each result with a request-generation token, and
callers drop any result that is no longer current.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from logging import getLogger
from typing import Awaitable, Callable

import httpx

from .cache import MetadataCache
from .decorators import with_retry
from .exceptions import AggregationError, OpenAirMapError
from .registry import create_source, get_source
from .sources.base import BaseSource
from .timerange import expand_range
from .types import HistoricalPoint, NormalizedRecord, StationRef, TimeRange

logger = getLogger(__name__)

ComparisonData = dict[str, dict[str, list[HistoricalPoint]]]


# ============================================================================
# REQUEST GENERATIONS
# ============================================================================


class RequestGeneration:
    """
    Monotonically increasing request tokens.

    Each new request takes a token with next(); a result is worth keeping
    only while its token is still the latest one handed out.

    Example:
        >>> generation = RequestGeneration()
        >>> first = generation.next()
        >>> second = generation.next()
        >>> generation.is_current(first), generation.is_current(second)
        (False, True)
    """

    def __init__(self):
        self._latest = 0

    def next(self) -> int:
        self._latest += 1
        return self._latest

    @property
    def latest(self) -> int:
        return self._latest

    def is_current(self, token: int) -> bool:
        return token == self._latest


# ============================================================================
# ADAPTER POOL
# ============================================================================


class SourcePool:
    """
    Adapters built once per source tag and kept with their caches.

    Caches live in a store keyed by source tag. Pools that share a store
    share metadata, so a short-lived pool bound to one client still hits
    the metadata fetched through an earlier pool.

    Args:
        client: HTTP client shared by every adapter
        adapters: Pre-built adapters by source tag (mainly for tests)
        cache_factory: Builds the metadata cache of a source missing from the store
        caches: Cache store by lowercase source tag (default: private to this pool)
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        adapters: dict[str, BaseSource] | None = None,
        cache_factory: Callable[[], MetadataCache] = MetadataCache,
        caches: dict[str, MetadataCache] | None = None,
    ):
        self.client = client
        self._adapters: dict[str, BaseSource] = {
            tag.lower(): adapter for tag, adapter in (adapters or {}).items()
        }
        self._cache_factory = cache_factory
        self.caches = caches if caches is not None else {}

    def get(self, source: str) -> BaseSource:
        """
        Return the adapter of a source, building it on first use.

        Raises:
            ValueError: If the source is not registered
        """
        key = source.lower()
        if key not in self._adapters:
            cache = self.caches.get(key)
            if cache is None:
                cache = self._cache_factory()
            self._adapters[key] = create_source(source, self.client, cache)
            self.caches[key] = cache
        return self._adapters[key]

    def has(self, source: str) -> bool:
        """True if an adapter exists or can be built for a source."""
        return source.lower() in self._adapters or get_source(source) is not None


# ============================================================================
# HISTORICAL AGGREGATION
# ============================================================================


@dataclass(frozen=True)
class PairFailure:
    """A (station, pollutant) request that failed."""

    station_id: str
    source: str
    pollutant: str
    error: Exception


@dataclass
class AggregationResult:
    data: ComparisonData
    failures: list[PairFailure] = field(default_factory=list)
    token: int = 0


async def _fetch_pair(
    adapter: BaseSource,
    station: StationRef,
    pollutant: str,
    time_step: str,
    start: datetime,
    end: datetime,
    retries: int,
) -> list[HistoricalPoint]:
    fetch: Callable[..., Awaitable[list[HistoricalPoint]]] = adapter.fetch_historical
    if retries > 1:
        fetch = with_retry(max_attempts=retries)(fetch)
    return await fetch(station["id"], pollutant, time_step, start, end)


async def collect_historical(
    pool: SourcePool,
    stations: list[StationRef],
    pollutants: list[str],
    time_range: TimeRange,
    time_step: str,
    now: datetime | None = None,
    retries: int = 1,
) -> AggregationResult:
    """
    Fetch every (station, pollutant) series concurrently.

    Returns the data and the per-pair failures without raising.
    """
    start, end = expand_range(time_range, now=now)

    pairs: list[tuple[StationRef, str]] = []
    calls = []
    failures: list[PairFailure] = []

    # Grouped by source so each adapter is built once
    by_source: dict[str, list[StationRef]] = {}
    for station in stations:
        by_source.setdefault(station["source"], []).append(station)

    for source, group in by_source.items():
        if not pool.has(source):
            error = ValueError(f"Source '{source}' not found")
            failures += [
                PairFailure(str(station["id"]), source, pollutant, error)
                for station in group
                for pollutant in pollutants
            ]
            continue
        adapter = pool.get(source)
        for station in group:
            for pollutant in pollutants:
                pairs.append((station, pollutant))
                calls.append(_fetch_pair(adapter, station, pollutant, time_step, start, end, retries))

    results = await asyncio.gather(*calls, return_exceptions=True)

    data: ComparisonData = {pollutant: {} for pollutant in pollutants}
    # (pollutant, station id) -> source whose series is kept
    owners: dict[tuple[str, str], str] = {}
    for (station, pollutant), result in zip(pairs, results):
        station_id = str(station["id"])
        if isinstance(result, OpenAirMapError):
            logger.warning(f"No {pollutant} data for {station['source']}/{station_id}: {result}")
            failures.append(PairFailure(station_id, station["source"], pollutant, result))
        elif isinstance(result, BaseException):
            raise result
        else:
            owner = owners.setdefault((pollutant, station_id), station["source"])
            if owner != station["source"]:
                logger.warning(
                    f"Station id {station_id} is used by both {owner} and {station['source']}; "
                    f"keeping the {owner} {pollutant} series"
                )
                continue
            data[pollutant][station_id] = result

    succeeded = sum(len(by_station) for by_station in data.values())
    logger.debug(f"Aggregated {succeeded} series, {len(failures)} failed")
    return AggregationResult(data=data, failures=failures)


async def aggregate_historical(
    stations: list[StationRef],
    pollutants: list[str],
    time_range: TimeRange,
    time_step: str,
    client: httpx.AsyncClient | None = None,
    pool: SourcePool | None = None,
    now: datetime | None = None,
    retries: int = 1,
) -> ComparisonData:
    """
    Fetch historical series for several stations and pollutants.

    The time range must already fit the time-step's lookback limit (see
    validate_and_adjust_range).

    Args:
        stations: Stations as {"id": ..., "source": ...}
        pollutants: Canonical pollutant codes
        time_range: PresetRange or CustomRange
        time_step: Canonical time-step code
        client: HTTP client, used when no pool is given
        pool: Adapters to use
        now: Reference instant for presets
        retries: Attempts per pair (1 means no retry)

    Returns:
        dict: pollutant -> station id -> points. Pairs that failed are
              absent.

    Raises:
        AggregationError: If every request failed
    """
    if pool is None:
        if client is None:
            raise ValueError("Either client or pool is required")
        pool = SourcePool(client)

    result = await collect_historical(pool, stations, pollutants, time_range, time_step, now, retries)
    total = len(stations) * len(pollutants)
    if total and len(result.failures) == total:
        raise AggregationError(result.failures)
    return result.data


class Aggregator:
    """
    Historical aggregation with request-generation tokens.

    Example:
        >>> aggregator = Aggregator(SourcePool(client))
        >>> result = await aggregator.run(stations, ["pm10"], PresetRange("24h"), "heure")
        >>> if aggregator.is_current(result):
        ...     render(result.data)
    """

    def __init__(self, pool: SourcePool, retries: int = 1):
        self.pool = pool
        self.retries = retries
        self.generation = RequestGeneration()

    async def run(
        self,
        stations: list[StationRef],
        pollutants: list[str],
        time_range: TimeRange,
        time_step: str,
        now: datetime | None = None,
    ) -> AggregationResult:
        """
        Run an aggregation and stamp it with a fresh token.

        Raises:
            AggregationError: If every request failed
        """
        token = self.generation.next()
        result = await collect_historical(
            self.pool, stations, pollutants, time_range, time_step, now, self.retries
        )
        result.token = token
        total = len(stations) * len(pollutants)
        if total and len(result.failures) == total:
            raise AggregationError(result.failures)
        return result

    def is_current(self, result: AggregationResult) -> bool:
        return self.generation.is_current(result.token)


# ============================================================================
# SNAPSHOTS
# ============================================================================


@dataclass
class SnapshotResult:
    records: dict[str, list[NormalizedRecord]]
    failures: dict[str, Exception] = field(default_factory=dict)
    token: int = 0

    def combined(self) -> list[NormalizedRecord]:
        return [record for records in self.records.values() for record in records]


async def collect_snapshots(
    pool: SourcePool,
    sources: list[str],
    pollutant: str,
    time_step: str,
) -> SnapshotResult:
    """
    Fetch snapshots from several sources concurrently.

    A failing source contributes no records and is logged.

    Raises:
        ValueError: If a source is not registered
    """
    adapters = [pool.get(source) for source in sources]
    results = await asyncio.gather(
        *(adapter.fetch_snapshot(pollutant, time_step) for adapter in adapters),
        return_exceptions=True,
    )

    snapshot = SnapshotResult(records={})
    for source, result in zip(sources, results):
        if isinstance(result, OpenAirMapError):
            logger.warning(f"Failed to fetch {source} snapshot: {result}")
            snapshot.failures[source] = result
        elif isinstance(result, BaseException):
            raise result
        else:
            snapshot.records[source] = result
    return snapshot


class SnapshotFeed:
    """Snapshot fan-out with request-generation tokens."""

    def __init__(self, pool: SourcePool):
        self.pool = pool
        self.generation = RequestGeneration()

    async def fetch(self, sources: list[str], pollutant: str, time_step: str) -> SnapshotResult:
        token = self.generation.next()
        result = await collect_snapshots(self.pool, sources, pollutant, time_step)
        result.token = token
        return result

    def is_current(self, result: SnapshotResult) -> bool:
        return self.generation.is_current(result.token)
