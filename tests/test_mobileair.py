"""
Tests for the MobileAir portable sensor source.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from openairmap.cache import MetadataCache
from openairmap.sources.mobileair import (
    MobileAirSource,
    build_routes,
    build_snapshot_records,
    parse_history,
    route_record,
)

METADATA = "/capteurs/metadata"
DATA = "/capteurs/dataMobileAir"


@pytest.fixture
def mobileair_sensors():
    return [
        {
            "sensorId": "m1",
            "sensorToken": "tok-1",
            "latitude": "43.71",
            "longitude": "7.26",
            "time": "2025-03-10T11:55:00Z",
            "connected": True,
            "PM25": "14.0",
        },
        {
            # Disconnected
            "sensorId": "m2",
            "sensorToken": "tok-2",
            "latitude": "43.30",
            "longitude": "5.40",
            "time": "2025-03-01T08:00:00Z",
            "connected": False,
            "PM25": "9.0",
        },
        {
            # No position
            "sensorId": "m3",
            "sensorToken": "tok-3",
            "latitude": None,
            "longitude": None,
            "connected": True,
            "PM25": "5.0",
        },
    ]


@pytest.fixture
def readings():
    """Two journeys of sensor m1, out of order."""
    return [
        {"sessionId": 2, "time": "2025-03-09T18:10:00Z", "lat": 43.70, "lon": 7.25, "PM25": 30.0},
        {"sessionId": 1, "time": "2025-03-09T08:20:00Z", "lat": 43.72, "lon": 7.27, "PM25": 12.0},
        {"sessionId": 1, "time": "2025-03-09T08:00:00Z", "lat": 43.71, "lon": 7.26, "PM25": 6.0},
        {"sessionId": 2, "time": "2025-03-09T18:00:00Z", "lat": 43.69, "lon": 7.24, "PM25": 10.0},
        {"sessionId": 1, "time": "2025-03-09T08:10:00Z", "lat": 43.715, "lon": 7.265, "PM25": None},
        # Session without any PM2.5 reading
        {"sessionId": 3, "time": "2025-03-09T20:00:00Z", "lat": 43.7, "lon": 7.2, "PM10": 8.0},
        None,
    ]


# ============================================================================
# Pure transforms
# ============================================================================


def test_snapshot_records(mobileair_sensors):
    records = build_snapshot_records(mobileair_sensors, "pm25")
    by_id = {record["id"]: record for record in records}

    assert set(by_id) == {"m1", "m2"}
    assert by_id["m1"]["status"] == "active"
    assert by_id["m1"]["value"] == 14.0
    assert by_id["m1"]["name"] == "MobileAir tok-1"
    assert by_id["m2"]["status"] == "inactive"
    assert by_id["m2"]["value"] == 0


def test_routes_group_sessions(readings):
    """Test that readings are grouped per session, sorted, and summarised."""
    routes = build_routes(readings, "m1", "pm25")

    assert [route["sessionId"] for route in routes] == [1, 2]
    morning, evening = routes
    assert [point["time"] for point in morning["points"]] == [
        "2025-03-09T08:00:00Z",
        "2025-03-09T08:10:00Z",
        "2025-03-09T08:20:00Z",
    ]
    assert morning["averageValue"] == 9.0
    assert morning["minValue"] == 6.0
    assert morning["maxValue"] == 12.0
    assert morning["duration"] == 20.0
    assert evening["startTime"] == "2025-03-09T18:00:00Z"
    assert evening["averageValue"] == 20.0


def test_route_record_starts_at_first_point(readings):
    (morning, _) = build_routes(readings, "m1", "pm25")

    record = route_record(morning)

    assert record["id"] == "m1-session-1"
    assert record["name"] == "Parcours m1 - Session 1"
    assert (record["latitude"], record["longitude"]) == (43.71, 7.26)
    assert record["value"] == 9.0
    assert record["route"] is morning


def test_route_record_without_position():
    (route,) = build_routes([{"sessionId": 1, "time": "2025-03-09T08:00:00Z", "PM25": 5.0}], "m1", "pm25")

    assert route_record(route) is None


def test_parse_history_sorted(readings):
    points = parse_history(readings, "PM25", "µg/m³")

    assert [point["value"] for point in points] == [6.0, 12.0, 10.0, 30.0]


# ============================================================================
# Adapter
# ============================================================================


def test_snapshot_uses_cached_metadata(fake_api, mobileair_sensors):
    fake_api.add(METADATA, mobileair_sensors)

    async def scenario():
        async with fake_api.client() as client:
            adapter = MobileAirSource(client, MetadataCache(ttl=600))
            await adapter.fetch_snapshot("pm25", "heure")
            return await adapter.fetch_snapshot("pm10", "instantane")

    asyncio.run(scenario())

    (request,) = fake_api.requests
    assert request.url.params["capteurType"] == "MobileAir"


def test_routes_request_uses_sensor_token(fake_api, mobileair_sensors, readings):
    fake_api.add(METADATA, mobileair_sensors)
    fake_api.add(DATA, readings)
    start = datetime(2025, 3, 9, tzinfo=timezone.utc)
    end = datetime(2025, 3, 10, tzinfo=timezone.utc)

    async def scenario():
        async with fake_api.client() as client:
            return await MobileAirSource(client).fetch_route_records("m1", "pm25", start, end)

    records = asyncio.run(scenario())

    assert [record["id"] for record in records] == ["m1-session-1", "m1-session-2"]
    (request,) = fake_api.requests_to(DATA)
    assert request.url.params["capteurID"] == "tok-1"
    assert request.url.params["start"] == "2025-03-09T00:00:00Z"
    assert request.url.params["end"] == "2025-03-10T00:00:00Z"
    assert request.url.params["GPSnull"] == "false"


def test_unknown_sensor_has_no_routes(fake_api, mobileair_sensors):
    fake_api.add(METADATA, mobileair_sensors)

    async def scenario():
        async with fake_api.client() as client:
            return await MobileAirSource(client).fetch_routes("nowhere", "pm25")

    assert asyncio.run(scenario()) == []
    assert fake_api.requests_to(DATA) == []


def test_unsupported_pollutant_has_no_routes(fake_api):
    async def scenario():
        async with fake_api.client() as client:
            return await MobileAirSource(client).fetch_routes("m1", "no2")

    assert asyncio.run(scenario()) == []
    assert fake_api.requests == []


def test_historical_series(fake_api, mobileair_sensors, readings, last_day):
    fake_api.add(METADATA, mobileair_sensors)
    fake_api.add(DATA, readings)
    start, end = last_day

    async def scenario():
        async with fake_api.client() as client:
            return await MobileAirSource(client).fetch_historical("m1", "pm25", "heure", start, end)

    points = asyncio.run(scenario())

    assert len(points) == 4
    assert points[0]["timestamp"] == "2025-03-09T08:00:00Z"
