"""
Pytest configuration and shared fixtures.

Network access is replaced by httpx.MockTransport: a FakeApi maps URL paths
to canned responses and records every request it receives, so tests can
assert both on the output and on the parameters that were sent.
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

import openairmap

# ============================================================================
# Fake HTTP API
# ============================================================================


class FakeApi:
    """Serve canned responses by URL path and record requests."""

    def __init__(self):
        self.routes: dict[str, httpx.Response | Exception] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, payload=None, status: int = 200, text: str | None = None,
            content_type: str | None = None):
        """Register the response served for an exact URL path."""
        headers = {"content-type": content_type} if content_type else None
        if text is not None:
            self.routes[path] = httpx.Response(status, text=text, headers=headers)
        else:
            self.routes[path] = httpx.Response(status, json=payload, headers=headers)

    def fail(self, path: str, error: Exception):
        """Raise a transport exception for a path."""
        self.routes[path] = error

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"detail": "not found"})
        if isinstance(route, Exception):
            raise route
        return httpx.Response(
            route.status_code,
            content=route.content,
            headers=route.headers,
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]


@pytest.fixture(autouse=True)
def fresh_caches():
    """Start every test without metadata cached by earlier API calls."""
    openairmap.clear_cache()
    yield
    openairmap.clear_cache()


@pytest.fixture
def fake_api():
    """Return an empty FakeApi."""
    return FakeApi()


# ============================================================================
# Time fixtures
# ============================================================================


@pytest.fixture
def now():
    """A fixed reference instant."""
    return datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def last_day(now):
    """(start, end) of the 24 hours before the reference instant."""
    return now - timedelta(days=1), now


# ============================================================================
# Provider payloads
# ============================================================================


@pytest.fixture
def atmo_ref_stations():
    """Two reference stations, A and B."""
    return {
        "stations": [
            {
                "id_station": "A",
                "nom_station": "Marseille Longchamp",
                "latitude": 43.30,
                "longitude": 5.39,
                "adresse": "Boulevard Longchamp",
                "departement_id": "13",
                "variables": {
                    "24": {"label": "PM2.5", "code_iso": "39", "en_service": True},
                    "5": {"label": "PM10", "code_iso": "24", "en_service": False},
                },
            },
            {
                "id_station": "B",
                "nom_station": "Nice Arson",
                "latitude": 43.70,
                "longitude": 7.29,
                "adresse": "Place Arson",
                "departement_id": "06",
                "variables": {},
            },
        ]
    }


@pytest.fixture
def atmo_ref_measures():
    """A latest measure for station A only."""
    return {
        "mesures": [
            {"id_station": "A", "valeur": 12, "unite": "µg/m³", "date_debut": "2025-03-10T11:00:00Z"},
        ]
    }


@pytest.fixture
def nebuleair_sensors():
    """NebuleAir metadata covering the skip and fallback rules."""
    return [
        {
            "sensorId": "nebuleair-1",
            "timeUTC": "2025-03-10 11:58:00",
            "latitude": "43.29",
            "longitude": "5.37",
            "displayMap": True,
            "PM1": "3.1",
            "PM25": "12.4",
            "PM10": "20.0",
            "PM25_h": "14.0",
            "NO2": "-1",
            "NOISE": "48.5",
            "NOISE_h": None,
        },
        {
            # Stale reading
            "sensorId": "nebuleair-2",
            "timeUTC": "2025-03-10 06:00:00",
            "latitude": "43.50",
            "longitude": "5.45",
            "displayMap": True,
            "PM25": "30.0",
            "PM25_h": "31.0",
            "NOISE": "-1",
        },
        {
            # Hidden from the map
            "sensorId": "nebuleair-3",
            "timeUTC": "2025-03-10 11:59:00",
            "latitude": "43.60",
            "longitude": "5.50",
            "displayMap": False,
            "PM25": "8.0",
        },
        {
            # No position
            "sensorId": "nebuleair-4",
            "timeUTC": "2025-03-10 11:59:00",
            "latitude": "0",
            "longitude": "0",
            "displayMap": True,
            "PM25": "8.0",
        },
        {
            # Does not measure PM2.5
            "sensorId": "nebuleair-5",
            "timeUTC": "2025-03-10 11:59:00",
            "latitude": "43.70",
            "longitude": "7.25",
            "displayMap": True,
            "PM25": "-1",
        },
    ]
