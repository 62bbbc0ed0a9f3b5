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
PurpleAir Data Source.

PurpleAir is a global network of low-cost dual-laser particulate sensors.
Only outdoor sensors inside a bounding box around mainland France are
requested. Responses are column oriented: a `fields` list naming the
columns and a `data` list of rows.

Requires an API key in the PURPLEAIR_API_KEY environment variable. Without
one, requests log a warning and return nothing.

API Documentation: https://api.purpleair.com/
Developer Portal: https://develop.purpleair.com/
"""

import os
import time
from datetime import datetime
from logging import getLogger, warning
from typing import Any

from ..registry import register_source
from ..types import HistoricalPoint, NormalizedRecord, Status
from .base import (
    BaseSource,
    active_record,
    inactive_record,
    iso_timestamp,
    mapping,
    mappings,
    sort_points,
    to_float,
)

logger = getLogger(__name__)

SOURCE_NAME = "purpleair"

BASE_URL = "https://api.purpleair.com/v1"

# Canonical pollutant -> PurpleAir field
POLLUTANT_MAP: dict[str, str | None] = {
    "pm1": "pm1.0_atm",
    "pm25": "pm2.5_atm",
    "pm10": "pm10.0_atm",
    "no2": None,
    "o3": None,
    "so2": None,
    "bruit": None,
}

# Canonical time-step -> history `average` in minutes (0 is real time).
# PurpleAir has no 15 minute average.
TIME_STEP_MAP: dict[str, int | None] = {
    "instantane": 0,
    "deuxMin": 0,
    "quartHeure": None,
    "heure": 60,
    "jour": 1440,
}

# Snapshots only exist for the latest readings
SNAPSHOT_TIME_STEPS = {"instantane", "deuxMin"}

SNAPSHOT_FIELDS = [
    "sensor_index",
    "name",
    "latitude",
    "longitude",
    "location_type",
    "pm1.0_atm",
    "pm2.5_atm",
    "pm10.0_atm",
    "last_seen",
    "rssi",
    "uptime",
    "humidity",
    "temperature",
    "confidence",
]

# Bounding box around mainland France
BBOX = {"nwlng": -5.5, "nwlat": 51.5, "selng": 9.5, "selat": 41.0}

# ============================================================================
# STATUS THRESHOLDS
# ============================================================================

MAX_AGE_SECONDS = 3600  # requested from the API
INACTIVE_AFTER_SECONDS = 2 * 3600
MIN_RSSI = -100  # dBm


def get_api_key() -> str:
    """
    Read the PurpleAir API key.

    Raises:
        ValueError: If PURPLEAIR_API_KEY is not set
    """
    api_key = os.getenv("PURPLEAIR_API_KEY")
    if not api_key:
        raise ValueError(
            "PurpleAir API key required. Set PURPLEAIR_API_KEY in your environment. "
            "Get your free key at: https://develop.purpleair.com/"
        )
    return api_key


def rows_to_dicts(response: Any) -> list[dict[str, Any]]:
    """
    Zip each row of a column-oriented response with its field names.

    Rows that are not lists are skipped.
    """
    response = mapping(response)
    fields = response.get("fields")
    rows = response.get("data")
    if not isinstance(fields, list) or not isinstance(rows, list):
        return []
    return [dict(zip(fields, row)) for row in rows if isinstance(row, list)]



def in_mainland_france(lat: float, lon: float) -> bool:
    """Refine the bounding box, excluding its sea and neighbour corners."""
    if not (BBOX["selat"] <= lat <= BBOX["nwlat"] and BBOX["nwlng"] <= lon <= BBOX["selng"]):
        return False
    return not (lat < 45.0 and lon < -4.0) and not (lat > 50.0 and lon > 8.0)


def sensor_status(sensor: dict[str, Any], now: float | None = None) -> Status:
    """
    Derive a sensor's status from its last contact and signal strength.

    Not seen for two hours is inactive; a signal below -100 dBm is an error.
    """
    now = time.time() if now is None else now
    last_seen = to_float(sensor.get("last_seen"))
    if last_seen is None or now - last_seen > INACTIVE_AFTER_SECONDS:
        return "inactive"
    rssi = to_float(sensor.get("rssi"))
    if rssi is not None and rssi < MIN_RSSI:
        return "error"
    return "active"


def build_snapshot_records(
    sensors: list[dict[str, Any]],
    pollutant: str,
    now: float | None = None,
) -> list[NormalizedRecord]:
    """Build records for outdoor sensors in France holding a value."""
    field = POLLUTANT_MAP[pollutant]
    records = []
    for sensor in mappings(sensors, SOURCE_NAME):
        lat = to_float(sensor.get("latitude"))
        lon = to_float(sensor.get("longitude"))
        value = to_float(sensor.get(field))
        if lat is None or lon is None or value is None or not in_mainland_france(lat, lon):
            continue

        common = {
            "id": str(sensor.get("sensor_index")),
            "name": sensor.get("name") or f"PurpleAir {sensor.get('sensor_index')}",
            "latitude": lat,
            "longitude": lon,
            "source": SOURCE_NAME,
            "pollutant": pollutant,
        }
        status = sensor_status(sensor, now=now)
        if status == "inactive":
            records.append(inactive_record(**common, timestamp=sensor.get("last_seen")))
            continue

        record = active_record(**common, value=value, unit="µg/m³", timestamp=sensor.get("last_seen"))
        record["status"] = status
        records.append(record)
    return records


def parse_history(response: dict, field: str) -> list[HistoricalPoint]:
    """Build a sorted series from a history response."""
    points: list[HistoricalPoint] = []
    for row in rows_to_dicts(response):
        value = to_float(row.get(field))
        timestamp = row.get("time_stamp")
        if value is None or value == -1 or timestamp is None:
            continue
        # time_stamp is in Unix seconds
        points.append({"timestamp": iso_timestamp(to_float(timestamp)), "value": value, "unit": "µg/m³"})
    return sort_points(points)


class PurpleAirSource(BaseSource):
    """Adapter for PurpleAir outdoor sensors."""

    name = SOURCE_NAME
    POLLUTANT_MAP = POLLUTANT_MAP
    TIME_STEP_MAP = TIME_STEP_MAP

    def __init__(self, client, cache=None, base_url: str = BASE_URL):
        super().__init__(client, cache)
        self.base_url = base_url

    async def fetch_snapshot(self, pollutant: str, time_step: str) -> list[NormalizedRecord]:
        if self.resolve(pollutant, time_step) is None:
            return []
        if time_step not in SNAPSHOT_TIME_STEPS:
            logger.warning(f"Time-step {time_step} not supported by {SOURCE_NAME} snapshots")
            return []
        try:
            api_key = get_api_key()
        except ValueError as e:
            warning(str(e))
            return []

        params = {
            "fields": ",".join(SNAPSHOT_FIELDS),
            "location_type": 0,
            "max_age": MAX_AGE_SECONDS,
            **BBOX,
        }
        data = await self._get(f"{self.base_url}/sensors", params=params, headers={"X-API-Key": api_key})
        if not isinstance(data, dict):
            logger.warning(f"{SOURCE_NAME}: unexpected sensors response")
            return []
        return build_snapshot_records(rows_to_dicts(data), pollutant)

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
        field, average = resolved
        try:
            api_key = get_api_key()
        except ValueError as e:
            warning(str(e))
            return []

        params = {
            "fields": field,
            "start_timestamp": int(start.timestamp()),
            "end_timestamp": int(end.timestamp()),
            "average": average,
        }
        data = await self._get(
            f"{self.base_url}/sensors/{station_id}/history",
            params=params,
            headers={"X-API-Key": api_key},
        )
        if not isinstance(data, dict):
            logger.warning(f"{SOURCE_NAME}: unexpected history response for {station_id}")
            return []
        return parse_history(data, field)


register_source(
    SOURCE_NAME,
    {
        "name": SOURCE_NAME,
        "factory": PurpleAirSource,
        "kind": "community",
        "requires_api_key": True,
    },
)
