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
Public API for OpenAirMap.

Simple functions over the registry, adapters and orchestrator. The
network-facing functions are coroutines; each accepts an optional
httpx.AsyncClient and creates (and closes) one when omitted.
Station and sensor metadata is cached per source for the whole process,
whichever client each call uses.

Basic usage:
    >>> import asyncio
    >>> import openairmap
    >>>
    >>> # See what's available
    >>> openairmap.list_sources()
    >>>
    >>> # Latest hourly PM10 from two networks
    >>> records = asyncio.run(
    ...     openairmap.get_snapshot(["atmoRef", "atmoMicro"], "pm10", "heure")
    ... )
    >>> df = openairmap.records_to_frame(records)
"""

from contextlib import asynccontextmanager
from logging import getLogger
from typing import Any, AsyncIterator

import httpx

# Import sources to trigger registration
from . import sources as _sources  # noqa: F401
from .aggregate import SourcePool, collect_snapshots
from .aggregate import aggregate_historical as _aggregate_historical
from .cache import MetadataCache
from .http_client import create_client
from .registry import get_source, source_exists
from .registry import list_sources as _list_sources
from .timerange import expand_range, validate_and_adjust_range
from .transforms import comparison_to_frame, historical_to_frame, records_to_frame
from .types import HistoricalPoint, NormalizedRecord, StationRef, TemporalFrame, TimeRange, VariableInfo

logger = getLogger(__name__)

# Metadata caches by source tag, shared by every call of this module
_CACHES: dict[str, MetadataCache] = {}

__all__ = [
    "list_sources",
    "get_source_info",
    "get_snapshot",
    "get_historical",
    "get_variables",
    "get_temporal",
    "get_routes",
    "clear_cache",
    "validate_and_adjust_range",
    "aggregate_historical",
    "records_to_frame",
    "historical_to_frame",
    "comparison_to_frame",
]


@asynccontextmanager
async def _client_scope(client: httpx.AsyncClient | None) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the given client, or a new one closed on exit."""
    if client is not None:
        yield client
        return
    async with create_client() as owned:
        yield owned


@asynccontextmanager
async def _pool_scope(
    client: httpx.AsyncClient | None, pool: SourcePool | None
) -> AsyncIterator[SourcePool]:
    """
    Yield the given pool, or one bound to the client over the shared caches.

    Adapters are cheap to build; their metadata caches are not, so they
    outlive the call and serve later calls until their TTL expires.
    """
    if pool is not None:
        yield pool
        return
    async with _client_scope(client) as http:
        yield SourcePool(http, caches=_CACHES)


def clear_cache() -> None:
    """Drop the metadata cached by earlier calls."""
    _CACHES.clear()


def _check_sources(sources: list[str]) -> None:
    for source in sources:
        if not source_exists(source):
            available = ", ".join(list_sources())
            raise ValueError(f"Source '{source}' not found. Available sources: {available}")


def list_sources() -> list[str]:
    """
    List all available data sources.

    Example:
        >>> openairmap.list_sources()
        ['atmoMicro', 'atmoRef', 'mobileair', 'nebuleair', 'purpleair', 'sensorCommunity', 'signalair']
    """
    return _list_sources()


def get_source_info(source: str) -> dict[str, Any]:
    """
    Get information about a data source.

    Returns:
        dict: name, kind and requires_api_key

    Raises:
        ValueError: If source is not registered
    """
    spec = get_source(source)
    if spec is None:
        _check_sources([source])
    return {
        "name": spec["name"],
        "kind": spec["kind"],
        "requires_api_key": spec["requires_api_key"],
    }


async def get_snapshot(
    sources: list[str] | str,
    pollutant: str,
    time_step: str,
    combine: bool = True,
    client: httpx.AsyncClient | None = None,
    pool: SourcePool | None = None,
) -> list[NormalizedRecord] | dict[str, list[NormalizedRecord]]:
    """
    Fetch the latest records of one or more sources.

    Sources are queried concurrently. A source that fails is logged and
    contributes nothing; unsupported pollutant/time-step combinations
    contribute nothing either. Metadata fetched here is cached across
    calls (see clear_cache).

    Args:
        sources: Source tag(s), e.g. "atmoRef" or ["atmoRef", "nebuleair"]
        pollutant: Canonical pollutant code
        time_step: Canonical time-step code
        combine: If True, return one list. If False, a dict keyed by source.
        client: Optional HTTP client
        pool: Optional adapter pool, used instead of the shared caches

    Returns:
        list[NormalizedRecord] | dict[str, list[NormalizedRecord]]

    Raises:
        ValueError: If any source is not registered

    Example:
        >>> by_source = await get_snapshot(
        ...     ["atmoRef", "atmoMicro"], "pm25", "heure", combine=False
        ... )
        >>> by_source.keys()
        dict_keys(['atmoRef', 'atmoMicro'])
    """
    if isinstance(sources, str):
        sources = [sources]
    _check_sources(sources)

    async with _pool_scope(client, pool) as adapters:
        result = await collect_snapshots(adapters, sources, pollutant, time_step)

    if combine:
        return result.combined()
    return result.records


async def get_historical(
    source: str,
    station_id: str,
    pollutant: str,
    time_step: str,
    time_range: TimeRange,
    client: httpx.AsyncClient | None = None,
    pool: SourcePool | None = None,
) -> list[HistoricalPoint]:
    """
    Fetch the series of one station.

    The range is first clamped to the time-step's lookback limit, then
    expanded to UTC instants.

    Raises:
        ValueError: If the source is not registered
        TransportError: On network failure or non-2xx status
        DecodeError: If the response is not JSON
    """
    _check_sources([source])
    start, end = _instants(time_range, time_step)

    async with _pool_scope(client, pool) as adapters:
        adapter = adapters.get(source)
        return await adapter.fetch_historical(station_id, pollutant, time_step, start, end)


async def get_variables(
    source: str,
    station_id: str,
    client: httpx.AsyncClient | None = None,
    pool: SourcePool | None = None,
) -> dict[str, VariableInfo]:
    """
    List the pollutants a station reports.

    Returns:
        dict: pollutant -> {label, isoCode, inService}
    """
    _check_sources([source])
    async with _pool_scope(client, pool) as adapters:
        return await adapters.get(source).fetch_variables(station_id)


async def get_temporal(
    pollutant: str,
    time_step: str,
    time_range: TimeRange,
    sensors: list[str] | None = None,
    client: httpx.AsyncClient | None = None,
    pool: SourcePool | None = None,
) -> list[TemporalFrame]:
    """
    Fetch every NebuleAir sensor over a range, grouped by timestamp.

    Each frame holds the sensors reporting at that instant with their
    count, mean value and number per quality band, for playback of a
    pollution episode.

    Args:
        pollutant: Canonical pollutant code
        time_step: Canonical time-step code
        time_range: PresetRange or CustomRange, clamped to the time-step's limit
        sensors: Restrict to these sensor ids
        client: Optional HTTP client
        pool: Optional adapter pool

    Returns:
        list[TemporalFrame]: Frames sorted ascending by timestamp

    Example:
        >>> frames = await get_temporal("pm25", "heure", PresetRange("24h"))
        >>> [(f["timestamp"], f["deviceCount"]) for f in frames]
    """
    start, end = _instants(time_range, time_step)
    async with _pool_scope(client, pool) as adapters:
        return await adapters.get("nebuleair").fetch_temporal(
            pollutant, time_step, start, end, sensors=sensors
        )


async def get_routes(
    sensor_id: str,
    pollutant: str,
    time_range: TimeRange | None = None,
    client: httpx.AsyncClient | None = None,
    pool: SourcePool | None = None,
) -> list[NormalizedRecord]:
    """
    Fetch the journeys of a MobileAir sensor as records.

    Each record is one measurement session placed at its starting point,
    valued with its mean, and carrying the full route under "route".

    Args:
        sensor_id: MobileAir sensor id
        pollutant: Canonical pollutant code
        time_range: Range of the journeys (default: the last 18 days)
        client: Optional HTTP client
        pool: Optional adapter pool
    """
    start = end = None
    if time_range is not None:
        start, end = expand_range(time_range)
    async with _pool_scope(client, pool) as adapters:
        return await adapters.get("mobileair").fetch_route_records(sensor_id, pollutant, start, end)


async def aggregate_historical(
    stations: list[StationRef],
    pollutants: list[str],
    time_range: TimeRange,
    time_step: str,
    client: httpx.AsyncClient | None = None,
    retries: int = 1,
    pool: SourcePool | None = None,
) -> dict[str, dict[str, list[HistoricalPoint]]]:
    """
    Fetch series for several stations and pollutants concurrently.

    The range is clamped to the time-step's lookback limit first.

    Returns:
        dict: pollutant -> station id -> points (failed pairs are absent)

    Raises:
        AggregationError: If every request failed

    Example:
        >>> data = await aggregate_historical(
        ...     [{"id": "FR24038", "source": "atmoRef"}, {"id": "1184", "source": "atmoMicro"}],
        ...     ["pm10", "pm25"],
        ...     PresetRange("7d"),
        ...     "heure",
        ... )
        >>> df = comparison_to_frame(data)
    """
    adjustment = validate_and_adjust_range(time_range, time_step)
    if adjustment.was_adjusted:
        logger.info(adjustment.notice)

    async with _pool_scope(client, pool) as adapters:
        return await _aggregate_historical(
            stations,
            pollutants,
            adjustment.adjusted_range,
            time_step,
            pool=adapters,
            retries=retries,
        )


def _instants(time_range: TimeRange, time_step: str):
    """Clamp a range to the time-step's limit and expand it to UTC instants."""
    adjustment = validate_and_adjust_range(time_range, time_step)
    if adjustment.was_adjusted:
        logger.info(adjustment.notice)
    return expand_range(adjustment.adjusted_range)
