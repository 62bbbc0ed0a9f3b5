"""
Tests for the AtmoSud reference station source.
"""

import asyncio

import pytest

from openairmap.cache import MetadataCache
from openairmap.exceptions import TransportError
from openairmap.sources.atmo_ref import (
    AtmoRefSource,
    build_snapshot_records,
    build_variables,
    parse_history,
)

STATIONS = "/observations/stations"
LATEST = "/observations/stations/mesures/derniere"
HISTORY = "/observations/stations/mesures"


# ============================================================================
# Pure transforms
# ============================================================================


def test_station_without_measure_is_inactive(atmo_ref_stations, atmo_ref_measures):
    """Test the A/B example: A has 12 µg/m³, B has no measure."""
    records = build_snapshot_records(
        atmo_ref_stations["stations"], atmo_ref_measures["mesures"], "pm25"
    )
    by_id = {record["id"]: record for record in records}

    assert len(records) == 2
    assert by_id["A"]["status"] == "active"
    assert by_id["A"]["value"] == 12
    assert by_id["A"]["qualityLevel"] == "moyen"
    assert by_id["A"]["address"] == "Boulevard Longchamp"
    assert by_id["A"]["departmentId"] == "13"

    assert by_id["B"]["status"] == "inactive"
    assert by_id["B"]["value"] == 0
    assert by_id["B"]["qualityLevel"] == "default"


def test_null_measure_is_inactive(atmo_ref_stations):
    measures = [{"id_station": "A", "valeur": None, "unite": "µg/m³", "date_debut": "2025-03-10T11:00:00Z"}]

    records = build_snapshot_records(atmo_ref_stations["stations"], measures, "pm25")

    assert all(record["status"] == "inactive" for record in records)


def test_join_is_on_string_ids():
    stations = [{"id_station": 24038, "nom_station": "Aix", "latitude": 43.5, "longitude": 5.4}]
    measures = [{"id_station": "24038", "valeur": 30, "unite": "µg/m³", "date_debut": "2025-03-10T11:00:00Z"}]

    (record,) = build_snapshot_records(stations, measures, "pm10")

    assert record["id"] == "24038"
    assert record["status"] == "active"


def test_parse_history_sorts_and_drops_gaps():
    measures = [
        {"date_debut": "2025-03-10T12:00:00Z", "valeur": 14.0, "unite": "µg/m³"},
        {"date_debut": "2025-03-10T10:00:00Z", "valeur": 10.0, "unite": "µg/m³"},
        {"date_debut": "2025-03-10T11:00:00Z", "valeur": -1, "unite": "µg/m³"},
        {"date_debut": "2025-03-10T09:00:00Z", "valeur": None, "unite": "µg/m³"},
        {"date_debut": "2025-03-10T08:00:00Z", "valeur": 8.0, "unite": "µg/m³"},
    ]

    points = parse_history(measures)

    assert [point["value"] for point in points] == [8.0, 10.0, 14.0]


def test_malformed_entries_are_skipped(atmo_ref_stations, atmo_ref_measures):
    stations = [None, *atmo_ref_stations["stations"], "station"]
    measures = [None, 12, *atmo_ref_measures["mesures"]]

    records = build_snapshot_records(stations, measures, "pm25")

    assert [record["id"] for record in records] == ["A", "B"]
    assert parse_history([None, {"date_debut": "2025-03-10T08:00:00Z", "valeur": 8.0}]) == [
        {"timestamp": "2025-03-10T08:00:00Z", "value": 8.0, "unit": ""}
    ]
    assert build_variables({"variables": {"24": None}})["24"]["inService"] is False


def test_build_variables_uses_canonical_keys(atmo_ref_stations):
    variables = build_variables(atmo_ref_stations["stations"][0])

    assert variables["pm25"] == {"label": "PM2.5", "isoCode": "39", "inService": True}
    assert variables["pm10"]["inService"] is False


# ============================================================================
# Adapter
# ============================================================================


@pytest.fixture
def atmo_ref_api(fake_api, atmo_ref_stations, atmo_ref_measures):
    fake_api.add(STATIONS, atmo_ref_stations)
    fake_api.add(LATEST, atmo_ref_measures)
    return fake_api


def test_snapshot_end_to_end(atmo_ref_api):
    async def scenario():
        async with atmo_ref_api.client() as client:
            return await AtmoRefSource(client).fetch_snapshot("pm25", "heure")

    records = asyncio.run(scenario())

    assert {record["id"]: record["status"] for record in records} == {"A": "active", "B": "inactive"}
    assert all(record["source"] == "atmoRef" for record in records)


def test_snapshot_sends_mapped_parameters(atmo_ref_api):
    """Test that canonical codes are translated to AtmoSud parameters."""
    async def scenario():
        async with atmo_ref_api.client() as client:
            await AtmoRefSource(client).fetch_snapshot("pm25", "heure")

    asyncio.run(scenario())

    (latest,) = atmo_ref_api.requests_to(LATEST)
    assert latest.url.params["nom_polluant"] == "pm2.5"
    assert latest.url.params["temporalite"] == "horaire"
    assert latest.url.params["delais"] == "64"
    (stations,) = atmo_ref_api.requests_to(STATIONS)
    assert stations.url.params["nom_polluant"] == "pm2.5"


def test_second_snapshot_reuses_station_list(atmo_ref_api):
    """Test that the station list is fetched once within the TTL."""
    async def scenario():
        async with atmo_ref_api.client() as client:
            adapter = AtmoRefSource(client, MetadataCache(ttl=600))
            first = await adapter.fetch_snapshot("pm25", "heure")
            second = await adapter.fetch_snapshot("pm25", "heure")
            return first, second

    first, second = asyncio.run(scenario())

    assert len(atmo_ref_api.requests_to(STATIONS)) == 1
    assert len(atmo_ref_api.requests_to(LATEST)) == 2
    assert [record["id"] for record in first] == [record["id"] for record in second]


def test_snapshot_propagates_server_errors(fake_api, atmo_ref_stations):
    fake_api.add(STATIONS, atmo_ref_stations)
    fake_api.add(LATEST, {"detail": "down"}, status=503)

    async def scenario():
        async with fake_api.client() as client:
            return await AtmoRefSource(client).fetch_snapshot("pm10", "heure")

    with pytest.raises(TransportError) as exc_info:
        asyncio.run(scenario())

    assert exc_info.value.status_code == 503


def test_historical_request_and_parsing(fake_api, last_day):
    fake_api.add(
        HISTORY,
        {
            "mesures": [
                {"date_debut": "2025-03-10T11:00:00Z", "valeur": 21.0, "unite": "µg/m³"},
                {"date_debut": "2025-03-10T10:00:00Z", "valeur": 19.0, "unite": "µg/m³"},
            ]
        },
    )
    start, end = last_day

    async def scenario():
        async with fake_api.client() as client:
            return await AtmoRefSource(client).fetch_historical("FR24038", "no2", "heure", start, end)

    points = asyncio.run(scenario())

    assert [point["value"] for point in points] == [19.0, 21.0]
    (request,) = fake_api.requests
    assert request.url.params["station_id"] == "FR24038"
    assert request.url.params["nom_polluant"] == "no2"
    assert request.url.params["date_debut"] == "2025-03-09T12:00:00Z"
    assert request.url.params["date_fin"] == "2025-03-10T12:00:00Z"


def test_historical_without_measures_is_empty(fake_api, last_day):
    fake_api.add(HISTORY, {"mesures": []})
    start, end = last_day

    async def scenario():
        async with fake_api.client() as client:
            return await AtmoRefSource(client).fetch_historical("FR24038", "no2", "jour", start, end)

    assert asyncio.run(scenario()) == []


def test_variables_from_cached_station_list(fake_api, atmo_ref_stations):
    fake_api.add(STATIONS, atmo_ref_stations)

    async def scenario():
        async with fake_api.client() as client:
            adapter = AtmoRefSource(client)
            found = await adapter.fetch_variables("A")
            missing = await adapter.fetch_variables("Z")
            return found, missing

    found, missing = asyncio.run(scenario())

    assert set(found) == {"pm25", "pm10"}
    assert missing == {}
    assert len(fake_api.requests) == 1
