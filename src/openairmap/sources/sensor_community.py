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
Sensor.Community Data Source.

Sensor.Community (formerly Luftdaten) is a citizen science network of
low-cost particulate sensors. Its filtered feed returns the readings of
the last five minutes for a country, so only the finest time-steps are
supported and every entry in the feed is a live reading.

The feed repeats sensors that report several times in the window; the
first occurrence of each sensor/location pair wins.

The network has no per-sensor history endpoint usable here, so
historical requests always return an empty series.

API Documentation: https://github.com/opendata-stuttgart/meta/wiki/EN-APIs
Data License: Open Database License (ODbL)
"""

from datetime import datetime
from logging import getLogger
from typing import TypedDict

from ..registry import register_source
from ..types import HistoricalPoint, NormalizedRecord
from .base import BaseSource, active_record, mapping, mappings, to_float

logger = getLogger(__name__)

SOURCE_NAME = "sensorCommunity"

FEED_URL = "https://data.sensor.community/airrohr/v1/filter/country=FR"

# Canonical pollutant -> Sensor.Community value_type
POLLUTANT_MAP: dict[str, str | None] = {
    "pm1": "P0",
    "pm25": "P2",
    "pm10": "P1",
    "no2": None,
    "o3": None,
    "so2": None,
    "bruit": None,
}

# The feed only holds the latest readings
TIME_STEP_MAP: dict[str, str | None] = {
    "instantane": "latest",
    "deuxMin": "latest",
    "quartHeure": None,
    "heure": None,
    "jour": None,
}


class SensorType(TypedDict):
    name: str
    manufacturer: str


class Sensor(TypedDict):
    id: int
    sensor_type: SensorType


class Location(TypedDict, total=False):
    id: int
    latitude: str
    longitude: str
    altitude: str
    country: str


class SensorDataValue(TypedDict):
    value_type: str
    value: str


class SensorCommunityEntry(TypedDict):
    sensor: Sensor
    location: Location
    timestamp: str
    sensordatavalues: list[SensorDataValue]


def sensor_name(sensor_type: dict) -> str:
    """Return "Sensor Community - <manufacturer> <model>" from the parts present."""
    parts = [str(sensor_type.get(key)).strip() for key in ("manufacturer", "name") if sensor_type.get(key)]
    model = " ".join(part for part in parts if part)
    return f"Sensor Community - {model}" if model else "Sensor Community"


def build_snapshot_records(
    entries: list[SensorCommunityEntry], pollutant: str
) -> list[NormalizedRecord]:
    """
    Turn feed entries into records.

    Entries without the pollutant, with a non-numeric value or without a
    position are skipped. Ids are "<sensor id>_<location id>".
    """
    value_type = POLLUTANT_MAP[pollutant]
    seen: set[str] = set()
    records = []

    for entry in mappings(entries, SOURCE_NAME):
        sensor = mapping(entry.get("sensor"))
        location = mapping(entry.get("location"))
        record_id = f"{sensor.get('id')}_{location.get('id')}"
        if record_id in seen:
            continue

        raw = next(
            (
                item.get("value")
                for item in mappings(entry.get("sensordatavalues"), SOURCE_NAME)
                if item.get("value_type") == value_type
            ),
            None,
        )
        value = to_float(raw)
        lat = to_float(location.get("latitude"))
        lon = to_float(location.get("longitude"))
        if value is None or lat is None or lon is None:
            continue

        records.append(
            active_record(
                id=record_id,
                name=sensor_name(mapping(sensor.get("sensor_type"))),
                latitude=lat,
                longitude=lon,
                source=SOURCE_NAME,
                pollutant=pollutant,
                value=value,
                unit="µg/m³",
                timestamp=entry.get("timestamp"),
                address=f"Altitude: {location.get('altitude')}m",
                departmentId=location.get("country", ""),
            )
        )
        seen.add(record_id)

    return records


class SensorCommunitySource(BaseSource):
    """Adapter for the Sensor.Community country feed."""

    name = SOURCE_NAME
    POLLUTANT_MAP = POLLUTANT_MAP
    TIME_STEP_MAP = TIME_STEP_MAP

    def __init__(self, client, cache=None, feed_url: str = FEED_URL):
        super().__init__(client, cache)
        self.feed_url = feed_url

    async def fetch_snapshot(self, pollutant: str, time_step: str) -> list[NormalizedRecord]:
        if self.resolve(pollutant, time_step) is None:
            return []
        data = await self._get(self.feed_url)
        if not isinstance(data, list):
            logger.warning(f"{SOURCE_NAME}: unexpected feed response")
            return []
        records = build_snapshot_records(data, pollutant)
        logger.debug(f"{SOURCE_NAME}: {len(records)} sensors from {len(data)} entries")
        return records

    async def fetch_historical(
        self,
        station_id: str,
        pollutant: str,
        time_step: str,
        start: datetime,
        end: datetime,
    ) -> list[HistoricalPoint]:
        logger.warning(f"{SOURCE_NAME}: historical data is not available")
        return []


register_source(
    SOURCE_NAME,
    {
        "name": SOURCE_NAME,
        "factory": SensorCommunitySource,
        "kind": "community",
        "requires_api_key": False,
    },
)
