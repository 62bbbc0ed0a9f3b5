"""
Tests for the Sensor.Community source.
"""

import asyncio

import pytest

from openairmap.sources.sensor_community import (
    SensorCommunitySource,
    build_snapshot_records,
    sensor_name,
)


def entry(sensor_id, location_id, values, lat="43.3", lon="5.4", timestamp="2025-03-10 11:58:31"):
    return {
        "sensor": {"id": sensor_id, "sensor_type": {"name": "SDS011", "manufacturer": "Nova Fitness"}},
        "location": {"id": location_id, "latitude": lat, "longitude": lon, "altitude": "42.0", "country": "FR"},
        "timestamp": timestamp,
        "sensordatavalues": [{"value_type": key, "value": value} for key, value in values.items()],
    }


@pytest.fixture
def feed():
    return [
        entry(1001, 501, {"P1": "22.5", "P2": "11.0"}),
        # Same sensor reporting again in the five minute window
        entry(1001, 501, {"P1": "99.0", "P2": "99.0"}, timestamp="2025-03-10 11:59:31"),
        entry(1002, 502, {"P1": "18.0"}),
        entry(1003, 503, {"P2": "not a number"}),
        entry(1004, 504, {"P2": "7.0"}, lat=None),
        entry(1005, 505, {"temperature": "12.0"}),
    ]


def test_first_reading_per_sensor_location_wins(feed):
    records = build_snapshot_records(feed, "pm25")

    (record,) = records
    assert record["id"] == "1001_501"
    assert record["value"] == 11.0
    assert record["status"] == "active"
    assert record["qualityLevel"] == "moyen"
    assert record["name"] == "Sensor Community - Nova Fitness SDS011"
    assert record["address"] == "Altitude: 42.0m"
    assert record["departmentId"] == "FR"


@pytest.mark.parametrize(
    "sensor_type,expected",
    [
        ({"manufacturer": "Nova Fitness", "name": "SDS011"}, "Sensor Community - Nova Fitness SDS011"),
        ({"name": "SDS011"}, "Sensor Community - SDS011"),
        ({"manufacturer": "", "name": "SPS30"}, "Sensor Community - SPS30"),
        ({}, "Sensor Community"),
    ],
)
def test_sensor_name_uses_present_parts(sensor_type, expected):
    assert sensor_name(sensor_type) == expected


def test_malformed_entries_are_skipped(feed):
    broken = {**entry(1006, 506, {"P2": "4.0"}), "sensordatavalues": [None, {"value_type": "P2", "value": "4.0"}]}

    records = build_snapshot_records([None, "text", {"sensor": None, "location": []}, broken, *feed], "pm25")

    assert [record["id"] for record in records] == ["1006_506", "1001_501"]


def test_pm10_uses_p1(feed):
    records = build_snapshot_records(feed, "pm10")

    assert [record["id"] for record in records] == ["1001_501", "1002_502"]
    assert records[0]["value"] == 22.5


def test_snapshot_reads_country_feed(fake_api, feed):
    fake_api.add("/airrohr/v1/filter/country=FR", feed)

    async def scenario():
        async with fake_api.client() as client:
            return await SensorCommunitySource(client).fetch_snapshot("pm10", "instantane")

    records = asyncio.run(scenario())

    assert len(records) == 2
    (request,) = fake_api.requests
    assert request.url.host == "data.sensor.community"


def test_history_is_always_empty(fake_api, last_day):
    start, end = last_day

    async def scenario():
        async with fake_api.client() as client:
            return await SensorCommunitySource(client).fetch_historical("1001_501", "pm10", "instantane", start, end)

    assert asyncio.run(scenario()) == []
    assert fake_api.requests == []
