"""
Tests for aggregate.py - concurrent fan-out, partial failures and
request-generation tokens.

Adapters are replaced with in-memory fakes injected through SourcePool.
"""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from openairmap.aggregate import (
    Aggregator,
    RequestGeneration,
    SnapshotFeed,
    SourcePool,
    aggregate_historical,
    collect_historical,
    collect_snapshots,
)
from openairmap.exceptions import AggregationError, DecodeError, TransportError
from openairmap.sources.base import BaseSource
from openairmap.types import PresetRange

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeSource(BaseSource):
    """Serves one point per request, failing for chosen station ids."""

    name = "fake"

    def __init__(self, failing=(), client=None, cache=None):
        super().__init__(client, cache)
        self.failing = set(failing)
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_snapshot(self, pollutant, time_step):
        if "snapshot" in self.failing:
            raise DecodeError("https://fake.test/latest", "text/html")
        return [{"id": "s1", "pollutant": pollutant, "value": 1.0}]

    async def fetch_historical(self, station_id, pollutant, time_step, start, end):
        self.calls.append((station_id, pollutant, time_step, start, end))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)
        self.in_flight -= 1
        if station_id in self.failing:
            raise TransportError(f"https://fake.test/{station_id}", "HTTP error 500", status_code=500)
        return [{"timestamp": "2025-03-10T11:00:00Z", "value": 1.0, "unit": "µg/m³"}]


def make_pool(**adapters):
    return SourcePool(httpx.AsyncClient(), adapters=adapters)


# ============================================================================
# RequestGeneration
# ============================================================================


def test_request_generation():
    generation = RequestGeneration()
    first = generation.next()
    second = generation.next()

    assert second > first
    assert generation.latest == second
    assert not generation.is_current(first)
    assert generation.is_current(second)


# ============================================================================
# Historical aggregation
# ============================================================================


def test_partial_failure_omits_failed_pair():
    """Test that one failing station leaves the others in the result."""
    fake = FakeSource(failing={"B"})
    pool = make_pool(fake=fake)
    stations = [{"id": "A", "source": "fake"}, {"id": "B", "source": "fake"}]

    data = asyncio.run(
        aggregate_historical(stations, ["pm10", "no2"], PresetRange("24h"), "heure", pool=pool, now=NOW)
    )

    assert set(data) == {"pm10", "no2"}
    assert set(data["pm10"]) == {"A"}
    assert set(data["no2"]) == {"A"}
    assert len(fake.calls) == 4


def test_requests_run_concurrently():
    fake = FakeSource()
    pool = make_pool(fake=fake)
    stations = [{"id": str(index), "source": "fake"} for index in range(4)]

    asyncio.run(aggregate_historical(stations, ["pm25"], PresetRange("24h"), "heure", pool=pool, now=NOW))

    assert fake.max_in_flight == 4


def test_expanded_range_reaches_adapters():
    fake = FakeSource()
    pool = make_pool(fake=fake)

    asyncio.run(
        aggregate_historical([{"id": "A", "source": "fake"}], ["pm25"], PresetRange("3h"), "instantane",
                             pool=pool, now=NOW)
    )

    (_, _, time_step, start, end) = fake.calls[0]
    assert time_step == "instantane"
    assert end == NOW
    assert (end - start).total_seconds() == 3 * 3600


def test_all_failed_raises():
    pool = make_pool(fake=FakeSource(failing={"A", "B"}))
    stations = [{"id": "A", "source": "fake"}, {"id": "B", "source": "fake"}]

    with pytest.raises(AggregationError) as exc_info:
        asyncio.run(aggregate_historical(stations, ["pm10"], PresetRange("24h"), "heure", pool=pool, now=NOW))

    assert len(exc_info.value.failures) == 2
    assert {failure.station_id for failure in exc_info.value.failures} == {"A", "B"}


def test_unknown_source_counts_as_failure():
    pool = make_pool(fake=FakeSource())
    stations = [{"id": "A", "source": "fake"}, {"id": "X", "source": "nowhere"}]

    result = asyncio.run(collect_historical(pool, stations, ["pm10"], PresetRange("24h"), "heure", now=NOW))

    assert set(result.data["pm10"]) == {"A"}
    (failure,) = result.failures
    assert failure.source == "nowhere"
    assert isinstance(failure.error, ValueError)


def test_retries_recover_transient_failures():
    class Flaky(FakeSource):
        async def fetch_historical(self, station_id, pollutant, time_step, start, end):
            self.calls.append(station_id)
            if len(self.calls) == 1:
                raise TransportError("https://fake.test", "Request timed out")
            return [{"timestamp": "2025-03-10T11:00:00Z", "value": 2.0, "unit": "µg/m³"}]

    flaky = Flaky()
    pool = make_pool(fake=flaky)

    result = asyncio.run(
        collect_historical(pool, [{"id": "A", "source": "fake"}], ["pm10"], PresetRange("24h"), "heure",
                           now=NOW, retries=2)
    )

    assert result.data["pm10"]["A"][0]["value"] == 2.0
    assert flaky.calls == ["A", "A"]


def test_requires_client_or_pool():
    with pytest.raises(ValueError):
        asyncio.run(aggregate_historical([], ["pm10"], PresetRange("24h"), "heure"))


def test_aggregator_tokens():
    """Test that only the latest run is current."""
    aggregator = Aggregator(make_pool(fake=FakeSource()))
    stations = [{"id": "A", "source": "fake"}]

    async def scenario():
        return await asyncio.gather(
            aggregator.run(stations, ["pm10"], PresetRange("24h"), "heure", now=NOW),
            aggregator.run(stations, ["no2"], PresetRange("24h"), "heure", now=NOW),
        )

    older, newer = asyncio.run(scenario())

    assert not aggregator.is_current(older)
    assert aggregator.is_current(newer)
    assert "no2" in newer.data


# ============================================================================
# Snapshots
# ============================================================================


def test_failing_source_is_skipped_in_snapshots():
    pool = make_pool(good=FakeSource(), bad=FakeSource(failing={"snapshot"}))

    result = asyncio.run(collect_snapshots(pool, ["good", "bad"], "pm25", "heure"))

    assert list(result.records) == ["good"]
    assert isinstance(result.failures["bad"], DecodeError)
    assert result.combined() == [{"id": "s1", "pollutant": "pm25", "value": 1.0}]


def test_snapshot_feed_tokens():
    feed = SnapshotFeed(make_pool(good=FakeSource()))

    async def scenario():
        first = await feed.fetch(["good"], "pm25", "heure")
        second = await feed.fetch(["good"], "pm10", "heure")
        return first, second

    first, second = asyncio.run(scenario())

    assert not feed.is_current(first)
    assert feed.is_current(second)


def test_pool_builds_registered_adapters_once():
    pool = SourcePool(httpx.AsyncClient())

    assert pool.get("atmoRef") is pool.get("ATMOREF")
    assert pool.has("nebuleair")
    assert not pool.has("nowhere")
    with pytest.raises(ValueError):
        pool.get("nowhere")


def test_pools_sharing_a_cache_store_share_metadata():
    store = {}
    first = SourcePool(httpx.AsyncClient(), caches=store)
    second = SourcePool(httpx.AsyncClient(), caches=store)

    assert first.get("nebuleair") is not second.get("nebuleair")
    assert first.get("nebuleair").cache is second.get("nebuleair").cache
    assert set(store) == {"nebuleair"}


# ============================================================================
# Malformed payloads and shared ids
# ============================================================================


def test_malformed_series_does_not_sink_the_others(fake_api):
    """Test that null entries in one provider's payload leave the other series intact."""
    fake_api.add("/observations/stations/mesures", {"mesures": [None, "oops"]})
    fake_api.add(
        "/observations/capteurs/mesures",
        [None, {"time": "2025-03-10T11:00:00Z", "valeur": 9.5, "unite": "µg/m³"}],
    )
    stations = [{"id": "FR24038", "source": "atmoRef"}, {"id": "1184", "source": "atmoMicro"}]

    async def scenario():
        async with fake_api.client() as client:
            return await collect_historical(
                SourcePool(client), stations, ["pm10"], PresetRange("24h"), "heure", now=NOW
            )

    result = asyncio.run(scenario())

    assert result.failures == []
    assert result.data["pm10"]["FR24038"] == []
    assert [point["value"] for point in result.data["pm10"]["1184"]] == [9.5]


def test_malformed_snapshot_entries_are_skipped(fake_api, atmo_ref_stations, atmo_ref_measures):
    fake_api.add("/observations/stations", atmo_ref_stations)
    fake_api.add("/observations/stations/mesures/derniere", {"mesures": [None, *atmo_ref_measures["mesures"]]})
    fake_api.add("/airrohr/v1/filter/country=FR", [None, 42, {"sensor": "broken", "location": None}])

    async def scenario():
        async with fake_api.client() as client:
            return await collect_snapshots(SourcePool(client), ["atmoRef", "sensorCommunity"], "pm25", "instantane")

    result = asyncio.run(scenario())

    assert result.failures == {}
    assert result.records["sensorCommunity"] == []
    assert len(fake_api.requests_to("/airrohr/v1/filter/country=FR")) == 1
    assert {record["id"]: record["status"] for record in result.records["atmoRef"]} == {
        "A": "active",
        "B": "inactive",
    }


def test_shared_station_id_keeps_first_source(caplog):
    """Test that a station id used by two sources is reported, not overwritten."""
    class Other(FakeSource):
        async def fetch_historical(self, station_id, pollutant, time_step, start, end):
            return [{"timestamp": "2025-03-10T11:00:00Z", "value": 99.0, "unit": "µg/m³"}]

    pool = make_pool(fake=FakeSource(), other=Other())
    stations = [{"id": "1", "source": "fake"}, {"id": "1", "source": "other"}]

    data = asyncio.run(aggregate_historical(stations, ["pm10"], PresetRange("24h"), "heure", pool=pool, now=NOW))

    assert data["pm10"]["1"][0]["value"] == 1.0
    assert "used by both fake and other" in caplog.text
