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
MobileAir portable sensors (AirCarto).

MobileAir sensors are carried on journeys. The metadata call lists each
sensor with its last position and latest values; the data call returns
the GPS-tagged readings of one sensor, each tagged with the measurement
session (journey) it belongs to.

Snapshots place every sensor at its last position. Journeys are grouped
per session into routes with their mean, min and max, and each route can
be shown as one record at its starting point.

Configuration:
    AIRCARTO_API_BASE: Override the API base URL (shared with NebuleAir)
"""

from datetime import datetime
from logging import getLogger
from typing import Any, TypedDict

from ..pollutants import get_unit
from ..quality import parse_timestamp
from ..registry import register_source
from ..types import HistoricalPoint, NormalizedRecord
from .base import (
    BaseSource,
    active_record,
    format_instant,
    inactive_record,
    mappings,
    sort_points,
    to_float,
)
from .nebuleair import get_base_url

logger = getLogger(__name__)

SOURCE_NAME = "mobileair"

# Canonical pollutant -> MobileAir field
POLLUTANT_MAP: dict[str, str | None] = {
    "pm1": "PM1",
    "pm25": "PM25",
    "pm10": "PM10",
    "no2": None,
    "o3": None,
    "so2": None,
    "bruit": None,
}

# Journeys are not aggregated: every time-step reads the raw readings of
# the default window
DEFAULT_WINDOW = "-18d"

TIME_STEP_MAP: dict[str, str | None] = {
    "instantane": DEFAULT_WINDOW,
    "deuxMin": DEFAULT_WINDOW,
    "quartHeure": DEFAULT_WINDOW,
    "heure": DEFAULT_WINDOW,
    "jour": DEFAULT_WINDOW,
}


class MobileAirSensor(TypedDict, total=False):
    sensorId: str
    sensorToken: str
    latitude: str
    longitude: str
    time: str
    connected: bool
    PM1: str
    PM25: str
    PM10: str


class MobileAirRoute(TypedDict):
    """One measurement session of a sensor, sorted by time."""
    sessionId: Any
    sensorId: str
    pollutant: str
    points: list[dict]
    averageValue: float
    minValue: float
    maxValue: float
    startTime: str
    endTime: str
    duration: float  # minutes


# ============================================================================
# TRANSFORMS
# ============================================================================


def build_snapshot_records(sensors: list[MobileAirSensor], pollutant: str) -> list[NormalizedRecord]:
    """
    Place every sensor at its last known position.

    Connected sensors with a value are active; the others are inactive.
    Sensors without a usable position are skipped.
    """
    field = POLLUTANT_MAP[pollutant]
    records = []
    for sensor in mappings(sensors, SOURCE_NAME):
        lat = to_float(sensor.get("latitude"))
        lon = to_float(sensor.get("longitude"))
        if lat is None or lon is None or (lat == 0 and lon == 0):
            continue

        common = {
            "id": str(sensor.get("sensorId")),
            "name": f"MobileAir {sensor.get('sensorToken') or sensor.get('sensorId')}",
            "latitude": lat,
            "longitude": lon,
            "source": SOURCE_NAME,
            "pollutant": pollutant,
        }
        value = to_float(sensor.get(field))
        if not sensor.get("connected") or value is None or value == -1:
            records.append(inactive_record(**common, timestamp=sensor.get("time")))
        else:
            records.append(
                active_record(**common, value=value, unit=get_unit(pollutant), timestamp=sensor.get("time"))
            )
    return records


def _minutes_between(start: Any, end: Any) -> float:
    first, last = parse_timestamp(start), parse_timestamp(end)
    if first is None or last is None:
        return 0.0
    return (last - first).total_seconds() / 60


def build_routes(points: list[dict], sensor_id: str, pollutant: str) -> list[MobileAirRoute]:
    """
    Group readings into one route per session.

    Readings are sorted by time within a session. Sessions without a
    single value for the pollutant are dropped. Routes are ordered by
    their start.

    Args:
        points: Readings from the data call
        sensor_id: Sensor the readings belong to
        pollutant: Canonical pollutant code (must be mapped)

    Returns:
        list[MobileAirRoute]: One route per session
    """
    field = POLLUTANT_MAP[pollutant]

    sessions: dict[Any, list[dict]] = {}
    for point in mappings(points, SOURCE_NAME):
        if parse_timestamp(point.get("time")) is None:
            continue
        sessions.setdefault(point.get("sessionId"), []).append(point)

    routes: list[MobileAirRoute] = []
    for session_id, session in sessions.items():
        session.sort(key=lambda point: parse_timestamp(point["time"]))
        values = [value for value in (to_float(point.get(field)) for point in session) if value is not None]
        if not values:
            continue
        start, end = session[0]["time"], session[-1]["time"]
        routes.append(
            {
                "sessionId": session_id,
                "sensorId": sensor_id,
                "pollutant": pollutant,
                "points": session,
                "averageValue": sum(values) / len(values),
                "minValue": min(values),
                "maxValue": max(values),
                "startTime": start,
                "endTime": end,
                "duration": _minutes_between(start, end),
            }
        )
    routes.sort(key=lambda route: parse_timestamp(route["startTime"]))
    return routes


def route_record(route: MobileAirRoute) -> NormalizedRecord | None:
    """
    Show a route as one record at its first positioned reading.

    The value is the route mean. Returns None when no reading has a
    position.
    """
    for point in route["points"]:
        lat, lon = to_float(point.get("lat")), to_float(point.get("lon"))
        if lat is not None and lon is not None:
            break
    else:
        return None

    return active_record(
        id=f"{route['sensorId']}-session-{route['sessionId']}",
        name=f"Parcours {route['sensorId']} - Session {route['sessionId']}",
        latitude=lat,
        longitude=lon,
        source=SOURCE_NAME,
        pollutant=route["pollutant"],
        value=route["averageValue"],
        unit=get_unit(route["pollutant"]),
        timestamp=route["startTime"],
        route=route,
    )


def parse_history(points: list[dict], field: str, unit: str) -> list[HistoricalPoint]:
    """Build a sorted series from every reading of a sensor."""
    series: list[HistoricalPoint] = []
    for point in mappings(points, SOURCE_NAME):
        value = to_float(point.get(field))
        if value is None or value == -1 or not point.get("time"):
            continue
        series.append({"timestamp": point["time"], "value": value, "unit": unit})
    return sort_points(series)


# ============================================================================
# ADAPTER
# ============================================================================


class MobileAirSource(BaseSource):
    """Adapter for MobileAir sensors and their journeys."""

    name = SOURCE_NAME
    POLLUTANT_MAP = POLLUTANT_MAP
    TIME_STEP_MAP = TIME_STEP_MAP

    def __init__(self, client, cache=None, base_url: str | None = None):
        super().__init__(client, cache)
        self.base_url = (base_url or get_base_url()).rstrip("/")

    async def _fetch_sensors(self) -> list[MobileAirSensor]:
        params = {"capteurType": "MobileAir", "format": "JSON"}
        data = await self._get(f"{self.base_url}/capteurs/metadata", params=params)
        if not isinstance(data, list):
            logger.warning(f"{SOURCE_NAME}: unrecognised metadata response")
            return []
        return data

    async def get_sensors(self) -> list[MobileAirSensor]:
        """Return sensor metadata through the cache."""
        return await self.cache.get(self._fetch_sensors)

    async def _fetch_points(
        self,
        sensor_id: str,
        start: datetime | None,
        end: datetime | None,
    ) -> list[dict] | None:
        """Return the readings of a sensor, None if the sensor is unknown."""
        sensors = await self.get_sensors()
        sensor = next((s for s in mappings(sensors, SOURCE_NAME) if str(s.get("sensorId")) == str(sensor_id)), None)
        if sensor is None:
            logger.warning(f"{SOURCE_NAME}: sensor {sensor_id} not found")
            return None

        params = {
            "capteurID": sensor.get("sensorToken") or sensor_id,
            "start": format_instant(start) if start else DEFAULT_WINDOW,
            "end": format_instant(end) if end else "now",
            "GPSnull": "false",
            "format": "JSON",
        }
        data = await self._get(f"{self.base_url}/capteurs/dataMobileAir", params=params)
        if not isinstance(data, list):
            logger.warning(f"{SOURCE_NAME}: unrecognised data response for {sensor_id}")
            return []
        return data

    async def fetch_snapshot(self, pollutant: str, time_step: str) -> list[NormalizedRecord]:
        if self.resolve(pollutant, time_step) is None:
            return []
        sensors = await self.get_sensors()
        return build_snapshot_records(sensors, pollutant)

    async def fetch_historical(
        self,
        station_id: str,
        pollutant: str,
        time_step: str,
        start: datetime,
        end: datetime,
    ) -> list[HistoricalPoint]:
        resolved = self.resolve(pollutant, time_step)
        if resolved is None:
            return []
        field, _ = resolved
        points = await self._fetch_points(station_id, start, end)
        return parse_history(points or [], field, get_unit(pollutant))

    async def fetch_routes(
        self,
        sensor_id: str,
        pollutant: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[MobileAirRoute]:
        """
        Return the journeys of a sensor, one route per session.

        Without start and end, the last 18 days are read.
        """
        if self.POLLUTANT_MAP.get(pollutant) is None:
            logger.warning(f"Pollutant {pollutant} not supported by {self.name}")
            return []
        points = await self._fetch_points(sensor_id, start, end)
        return build_routes(points or [], str(sensor_id), pollutant)

    async def fetch_route_records(
        self,
        sensor_id: str,
        pollutant: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[NormalizedRecord]:
        """Return one record per journey of a sensor (see route_record)."""
        routes = await self.fetch_routes(sensor_id, pollutant, start, end)
        records = [route_record(route) for route in routes]
        return [record for record in records if record is not None]


register_source(
    SOURCE_NAME,
    {
        "name": SOURCE_NAME,
        "factory": MobileAirSource,
        "kind": "mobile",
        "requires_api_key": False,
    },
)
