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
Common adapter contract and record builders.

Every provider module defines two total mapping tables (canonical
pollutant -> native parameter and canonical time-step -> native
aggregation parameters, with None meaning unsupported), pure functions
turning raw responses into canonical records, and a BaseSource subclass
wiring those functions to the network.
"""

import math
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from logging import getLogger
from typing import Any

import httpx

from ..cache import MetadataCache
from ..http_client import request_json
from ..pollutants import DEFAULT_LEVEL, get_unit
from ..quality import classify_quality, parse_timestamp
from ..types import HistoricalPoint, NormalizedRecord, VariableInfo

logger = getLogger(__name__)


# ============================================================================
# VALUE HELPERS
# ============================================================================


def to_float(value: Any) -> float | None:
    """Parse a provider value as a float, None if missing or not numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def iso_timestamp(timestamp: Any) -> str:
    """Return a timestamp as an ISO-8601 UTC string, unchanged if unparseable."""
    parsed = parse_timestamp(timestamp)
    if parsed is None:
        return str(timestamp) if timestamp is not None else now_iso()
    return parsed.astimezone(timezone.utc).isoformat()


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def mappings(items: Any, source: str = "") -> list[dict]:
    """
    Keep the JSON objects of a payload list.

    Null, scalar and list elements are dropped with a warning, so one
    malformed entry cannot break the parsing of its neighbours. Anything
    other than a list yields no entries.
    """
    if not isinstance(items, list):
        return []
    kept = [item for item in items if isinstance(item, dict)]
    if len(kept) < len(items):
        logger.warning(f"{source}: skipped {len(items) - len(kept)} malformed entries")
    return kept


def mapping(item: Any) -> dict:
    """Return item if it is a JSON object, else an empty one."""
    return item if isinstance(item, dict) else {}


def format_instant(instant: datetime) -> str:
    """Format an instant as 2024-01-31T12:00:00Z (UTC, no fractional seconds)."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def active_record(
    *,
    id: str,
    name: str,
    latitude: float,
    longitude: float,
    source: str,
    pollutant: str,
    value: float,
    unit: str,
    timestamp: Any,
    **extra,
) -> NormalizedRecord:
    """
    Build a record carrying a real reading.

    The quality band is computed from the value here and nowhere else.
    """
    record: NormalizedRecord = {
        "id": str(id),
        "name": name,
        "latitude": latitude,
        "longitude": longitude,
        "source": source,
        "pollutant": pollutant,
        "value": value,
        "unit": unit or get_unit(pollutant),
        "timestamp": iso_timestamp(timestamp),
        "status": "active",
        "qualityLevel": classify_quality(value, pollutant),
    }
    record.update(extra)  # type: ignore[typeddict-item]
    return record


def inactive_record(
    *,
    id: str,
    name: str,
    latitude: float,
    longitude: float,
    source: str,
    pollutant: str,
    timestamp: Any = None,
    **extra,
) -> NormalizedRecord:
    """
    Build a record for a station without a fresh reading.

    value is the 0 sentinel and qualityLevel is always "default".
    """
    record: NormalizedRecord = {
        "id": str(id),
        "name": name,
        "latitude": latitude,
        "longitude": longitude,
        "source": source,
        "pollutant": pollutant,
        "value": 0,
        "unit": get_unit(pollutant),
        "timestamp": iso_timestamp(timestamp) if timestamp else now_iso(),
        "status": "inactive",
        "qualityLevel": DEFAULT_LEVEL,
    }
    record.update(extra)  # type: ignore[typeddict-item]
    return record


def sort_points(points: list[HistoricalPoint]) -> list[HistoricalPoint]:
    """
    Sort a series ascending by instant.

    Points whose timestamp cannot be parsed are dropped.
    """
    keyed = []
    for point in points:
        instant = parse_timestamp(point["timestamp"])
        if instant is None:
            logger.debug(f"Dropping point with unparseable timestamp {point['timestamp']!r}")
            continue
        keyed.append((instant, point))
    keyed.sort(key=lambda item: item[0])
    return [point for _, point in keyed]


# ============================================================================
# ADAPTER CONTRACT
# ============================================================================


class BaseSource(ABC):
    """
    Base class of all source adapters.

    Adapters hold a shared AsyncClient and, for providers with heavy
    metadata, a MetadataCache injected at construction. Network and decode
    failures propagate as TransportError or DecodeError; adapters never
    retry.
    """

    name: str = ""

    # canonical code -> native parameter(s), None when unsupported
    POLLUTANT_MAP: dict[str, Any] = {}
    TIME_STEP_MAP: dict[str, Any] = {}

    def __init__(self, client: httpx.AsyncClient, cache: MetadataCache | None = None):
        self.client = client
        self.cache = cache if cache is not None else MetadataCache()

    def resolve(self, pollutant: str, time_step: str) -> tuple[Any, Any] | None:
        """
        Translate a canonical pair to native parameters.

        Returns None, after logging a warning, when either side is
        unsupported by this provider.
        """
        native_pollutant = self.POLLUTANT_MAP.get(pollutant)
        if native_pollutant is None:
            logger.warning(f"Pollutant {pollutant} not supported by {self.name}")
            return None
        native_step = self.TIME_STEP_MAP.get(time_step)
        if native_step is None:
            logger.warning(f"Time-step {time_step} not supported by {self.name}")
            return None
        return native_pollutant, native_step

    async def _get(self, url: str, params: dict | None = None, headers: dict | None = None) -> Any:
        return await request_json(self.client, url, params=params, headers=headers)

    @abstractmethod
    async def fetch_snapshot(self, pollutant: str, time_step: str) -> list[NormalizedRecord]:
        """Return one record per known station for a pollutant and time-step."""

    @abstractmethod
    async def fetch_historical(
        self,
        station_id: str,
        pollutant: str,
        time_step: str,
        start: datetime,
        end: datetime,
    ) -> list[HistoricalPoint]:
        """Return the series of one station, sorted ascending by timestamp."""

    async def fetch_variables(self, station_id: str) -> dict[str, VariableInfo]:
        """Return the pollutants a station reports. Empty when unknown."""
        return {}
