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
NebuleAir community sensors (AirCarto).

A single metadata call returns every sensor with its position and its
latest values, one field per pollutant and aggregation: `PM25` holds the
latest scan, `PM25_qh` the quarter-hour mean, `PM25_h` the hourly mean and
`PM25_d` the daily mean. Snapshots are therefore built entirely from
cached metadata, which is why this source relies on the MetadataCache.

A value of "-1" (or null) means the sensor does not measure the
pollutant at all; such sensors are left out of the snapshot.

A range query (`/capteurs/dataNebuleAirAll`) returns the readings of
every sensor at once; fetch_temporal groups them by timestamp to replay
an episode across the whole network.

Configuration:
    AIRCARTO_API_BASE: Override the API base URL
"""

import asyncio
import os
from collections import Counter
from datetime import datetime, timedelta, timezone
from logging import getLogger
from typing import Any, TypedDict

from ..pollutants import get_unit
from ..quality import is_fresh, parse_timestamp
from ..registry import register_source
from ..types import HistoricalPoint, NormalizedRecord, TemporalFrame, VariableInfo
from .base import (
    BaseSource,
    active_record,
    format_instant,
    inactive_record,
    mapping,
    mappings,
    sort_points,
    to_float,
)

logger = getLogger(__name__)

SOURCE_NAME = "nebuleair"

DEFAULT_BASE_URL = "https://api.aircarto.fr"

# Canonical pollutant -> NebuleAir field prefix
POLLUTANT_MAP: dict[str, str | None] = {
    "pm1": "PM1",
    "pm25": "PM25",
    "pm10": "PM10",
    "no2": "NO2",
    "o3": None,
    "so2": None,
    "bruit": "NOISE",
}

# Canonical time-step -> (metadata field suffix, history `freq`)
TIME_STEP_MAP: dict[str, tuple[str, str] | None] = {
    "instantane": ("", "2m"),
    "deuxMin": ("", "2m"),
    "quartHeure": ("_qh", "15m"),
    "heure": ("_h", "1h"),
    "jour": ("_d", "1d"),
}

# Display labels and ISO codes per NebuleAir field
LABELS = {
    "PM1": "Particules PM₁",
    "PM25": "Particules PM₂.₅",
    "PM10": "Particules PM₁₀",
    "NO2": "Dioxyde d'azote NO₂",
    "NOISE": "Bruit",
}

ISO_CODES = {
    "PM1": "PM1",
    "PM25": "PM2.5",
    "PM10": "PM10",
    "NO2": "NO2",
    "NOISE": "dB(A)",
}

ALWAYS_MEASURED = ["PM1", "PM25", "PM10"]
OPTIONALLY_MEASURED = ["NOISE", "NO2"]

# A requested end closer than this to the present is sent as "now"
NOW_TOLERANCE = timedelta(minutes=5)

NO_DATA = "-1"


class NebuleAirSensor(TypedDict, total=False):
    sensorId: str
    time: str
    timeUTC: str
    latitude: str
    longitude: str
    displayMap: bool
    last_seen_sec: int
    # plus one field per pollutant and suffix, e.g. PM25, PM25_qh, NOISE


def get_base_url() -> str:
    """Return the API base URL, honouring AIRCARTO_API_BASE."""
    return os.getenv("AIRCARTO_API_BASE", DEFAULT_BASE_URL).rstrip("/")


def read_value(raw: Any) -> float | None:
    """Parse a NebuleAir field, None for null, blank or the -1 marker."""
    if raw is None or str(raw).strip() in ("", NO_DATA):
        return None
    value = to_float(raw)
    return None if value == -1 else value


def extract_value(sensor: NebuleAirSensor, field: str, suffix: str) -> float | None:
    """
    Read a pollutant field for a time-step.

    Noise is only published as an instantaneous value, so aggregated noise
    requests fall back to the NOISE field.
    """
    value = read_value(sensor.get(f"{field}{suffix}"))
    if value is None and field == "NOISE" and suffix:
        value = read_value(sensor.get("NOISE"))
    return value


def parse_position(sensor: NebuleAirSensor) -> tuple[float, float] | None:
    """Return (lat, lon), or None when missing, invalid or zero."""
    lat = to_float(sensor.get("latitude"))
    lon = to_float(sensor.get("longitude"))
    if lat is None or lon is None or lat == 0 or lon == 0:
        return None
    return lat, lon


def sensor_timestamp(sensor: NebuleAirSensor) -> str | None:
    return sensor.get("timeUTC") or sensor.get("time")


def build_snapshot_records(
    sensors: list[NebuleAirSensor],
    pollutant: str,
    time_step: str,
    now: datetime | None = None,
) -> list[NormalizedRecord]:
    """
    Build snapshot records from sensor metadata.

    Sensors hidden from the map, without a usable position, or not
    measuring the pollutant are skipped. Sensors whose latest value is
    older than the time-step's freshness window are inactive.

    Args:
        sensors: Sensor metadata
        pollutant: Canonical pollutant code (must be mapped)
        time_step: Canonical time-step code (must be mapped)
        now: Reference instant for freshness

    Returns:
        list[NormalizedRecord]: Records of the sensors measuring the pollutant
    """
    field = POLLUTANT_MAP[pollutant]
    suffix, _ = TIME_STEP_MAP[time_step]

    records = []
    for sensor in mappings(sensors, SOURCE_NAME):
        if not sensor.get("displayMap"):
            continue
        position = parse_position(sensor)
        if position is None:
            continue
        value = extract_value(sensor, field, suffix)
        if value is None:
            continue

        sensor_id = str(sensor.get("sensorId"))
        timestamp = sensor_timestamp(sensor)
        common = {
            "id": sensor_id,
            "name": f"NebuleAir {sensor_id}",
            "latitude": position[0],
            "longitude": position[1],
            "source": SOURCE_NAME,
            "pollutant": pollutant,
        }
        if is_fresh(timestamp, time_step, now=now):
            records.append(
                active_record(**common, value=value, unit=get_unit(pollutant), timestamp=timestamp)
            )
        else:
            records.append(inactive_record(**common, timestamp=timestamp))
    return records


def format_stop(end: datetime, now: datetime | None = None) -> str:
    """Return "now" when end is within five minutes of now, else its instant."""
    now = now or datetime.now(timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    if abs(now - end) <= NOW_TOLERANCE:
        return "now"
    return format_instant(end)


def parse_history(rows: list[dict], field: str, unit: str) -> list[HistoricalPoint]:
    """Build a sorted series from history rows, dropping -1 and null values."""
    points: list[HistoricalPoint] = []
    for row in mappings(rows, SOURCE_NAME):
        value = read_value(row.get(field))
        timestamp = row.get("timestamp") or row.get("time") or row.get("date")
        if value is None or not timestamp:
            continue
        points.append({"timestamp": timestamp, "value": value, "unit": unit})
    return sort_points(points)


def build_temporal_frames(
    data: Any,
    sensors: list[NebuleAirSensor],
    pollutant: str,
    selected: list[str] | None = None,
) -> list[TemporalFrame]:
    """
    Group the readings of every sensor by timestamp.

    The same skip rules as snapshots apply: sensors unknown to the
    metadata, hidden from the map or without a usable position are left
    out, as are null and -1 readings. Selected sensors, when given,
    restrict the result further.

    Args:
        data: Range response, {sensor id: [row, ...]}
        sensors: Sensor metadata, for positions and visibility
        pollutant: Canonical pollutant code (must be mapped)
        selected: Sensor ids to keep (default: all)

    Returns:
        list[TemporalFrame]: Frames sorted ascending by timestamp
    """
    field = POLLUTANT_MAP[pollutant]
    by_id = {str(sensor.get("sensorId")): sensor for sensor in mappings(sensors, SOURCE_NAME)}
    wanted = {str(sensor_id) for sensor_id in selected} if selected else None

    by_timestamp: dict[str, list[NormalizedRecord]] = {}
    for sensor_id, rows in mapping(data).items():
        if wanted is not None and sensor_id not in wanted:
            continue
        sensor = by_id.get(sensor_id)
        if sensor is None or not sensor.get("displayMap"):
            continue
        position = parse_position(sensor)
        if position is None:
            continue

        for row in mappings(rows, SOURCE_NAME):
            timestamp = row.get("time") or row.get("timestamp")
            value = read_value(row.get(field))
            if not timestamp or value is None:
                continue
            record = active_record(
                id=sensor_id,
                name=f"NebuleAir {sensor_id}",
                latitude=position[0],
                longitude=position[1],
                source=SOURCE_NAME,
                pollutant=pollutant,
                value=value,
                unit=get_unit(pollutant),
                timestamp=timestamp,
            )
            by_timestamp.setdefault(record["timestamp"], []).append(record)

    frames: list[TemporalFrame] = []
    for timestamp, devices in by_timestamp.items():
        values = [device["value"] for device in devices]
        frames.append(
            {
                "timestamp": timestamp,
                "devices": devices,
                "deviceCount": len(devices),
                "averageValue": sum(values) / len(values),
                "qualityLevels": dict(Counter(device["qualityLevel"] for device in devices)),
            }
        )
    frames.sort(key=lambda frame: parse_timestamp(frame["timestamp"]) or datetime.min.replace(tzinfo=timezone.utc))
    return frames


def build_variables(
sensor: NebuleAirSensor | None) -> dict[str, VariableInfo]:
    """
    List the pollutants a sensor reports.

    Particulate matter is always listed; noise and NO2 only when the
    sensor's live field holds a valid value.
    """
    canonical = {field: code for code, field in POLLUTANT_MAP.items() if field}

    fields = list(ALWAYS_MEASURED)
    if sensor is not None:
        fields += [field for field in OPTIONALLY_MEASURED if read_value(sensor.get(field)) is not None]

    return {
        canonical[field]: {"label": LABELS[field], "isoCode": ISO_CODES[field], "inService": True}
        for field in fields
    }


def unwrap_sensors(data: Any) -> list[NebuleAirSensor]:
    """Accept a bare list or a {"sensors": [...]} / {"data": [...]} wrapper."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("sensors", "data"):
            if isinstance(data.get(key), list):
                return data[key]
    logger.warning(f"{SOURCE_NAME}: unrecognised metadata response")
    return []


class NebuleAirSource(BaseSource):
    """Adapter for NebuleAir sensors."""

    name = SOURCE_NAME
    POLLUTANT_MAP = POLLUTANT_MAP
    TIME_STEP_MAP = TIME_STEP_MAP

    def __init__(self, client, cache=None, base_url: str | None = None):
        super().__init__(client, cache)
        self.base_url = (base_url or get_base_url()).rstrip("/")

    async def _fetch_metadata(self) -> list[NebuleAirSensor]:
        params = {"capteurType": "NebuleAir", "format": "JSON", "gas": "true"}
        data = await self._get(f"{self.base_url}/capteurs/metadata", params=params)
        sensors = unwrap_sensors(data)
        logger.debug(f"{SOURCE_NAME}: {len(sensors)} sensors in metadata")
        return sensors

    async def get_sensors(self) -> list[NebuleAirSensor]:
        """Return sensor metadata through the cache."""
        return await self.cache.get(self._fetch_metadata)

    async def fetch_snapshot(self, pollutant: str, time_step: str) -> list[NormalizedRecord]:
        if self.resolve(pollutant, time_step) is None:
            return []
        sensors = await self.get_sensors()
        return build_snapshot_records(sensors, pollutant, time_step)

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
        field, (_, freq) = resolved

        params = {
            "capteurID": station_id,
            "start": format_instant(start),
            "stop": format_stop(end),
            "freq": freq,
            "gas": "true",
        }
        data = await self._get(f"{self.base_url}/capteurs/dataNebuleAir", params=params)
        if not isinstance(data, list):
            logger.warning(f"{SOURCE_NAME}: unrecognised history response for {station_id}")
            return []
        return parse_history(data, field, get_unit(pollutant))

    async def fetch_variables(self, station_id: str) -> dict[str, VariableInfo]:
        sensors = await self.get_sensors()
        sensor = next(
            (s for s in mappings(sensors, SOURCE_NAME) if str(s.get("sensorId")) == str(station_id)),
            None,
        )
        return build_variables(sensor)

    async def fetch_temporal(
        self,
        pollutant: str,
        time_step: str,
        start: datetime,
        end: datetime,
        sensors: list[str] | None = None,
    ) -> list[TemporalFrame]:
        """
        Fetch every sensor over a range and group the readings by timestamp.

        One range request covers all sensors; positions come from the
        cached metadata, fetched concurrently.

        Args:
            pollutant: Canonical pollutant code
            time_step: Canonical time-step code
            start: Range start (UTC)
            end: Range end (UTC)
            sensors: Sensor ids to keep (default: all)

        Returns:
            list[TemporalFrame]: Frames sorted ascending by timestamp
        """
        resolved = self.resolve(pollutant, time_step)
        if resolved is None:
            return []
        _, (_, freq) = resolved

        params = {
            "start": format_instant(start),
            "end": format_instant(end),
            "freq": freq,
            "format": "JSON",
            "gas": "true",
        }
        data, metadata = await asyncio.gather(
            self._get(f"{self.base_url}/capteurs/dataNebuleAirAll", params=params),
            self.get_sensors(),
        )
        if not isinstance(data, dict):
            logger.warning(f"{SOURCE_NAME}: unrecognised range response")
            return []
        frames = build_temporal_frames(data, metadata, pollutant, selected=sensors)
        logger.debug(f"{SOURCE_NAME}: {len(frames)} frames from {len(data)} sensors")
        return frames



register_source(
    SOURCE_NAME,
    {
        "name": SOURCE_NAME,
        "factory": NebuleAirSource,
        "kind": "community",
        "requires_api_key": False,
    },
)
