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
SignalAir nuisance reports.

SignalAir collects reports of odours, noise, burning, visible pollution
and pollen filed by residents. Reports are not measurements: each one
becomes a record whose `pollutant` and `qualityLevel` are the report type
and whose value is 1 (one report). The selected pollutant and time-step
do not change the query; only the report period does.

Configuration:
    SIGNALAIR_API_URL: Override the report feed URL
"""

import os
from datetime import date, datetime, timedelta
from logging import getLogger
from typing import TypedDict

from ..registry import register_source
from ..types import HistoricalPoint, NormalizedRecord
from .base import BaseSource, mappings, to_float

logger = getLogger(__name__)

SOURCE_NAME = "signalair"

DEFAULT_API_URL = "https://www.signalair.eu/api/signalements"

REPORT_TYPES = ["odeur", "bruit", "brulage", "visuel", "pollen"]

DEFAULT_PERIOD_DAYS = 7

# Every pollutant and time-step reads the same report feed
POLLUTANT_MAP: dict[str, str | None] = {
    "pm1": "reports",
    "pm25": "reports",
    "pm10": "reports",
    "no2": "reports",
    "o3": "reports",
    "so2": "reports",
    "bruit": "reports",
}

TIME_STEP_MAP: dict[str, str | None] = {
    "instantane": "period",
    "deuxMin": "period",
    "quartHeure": "period",
    "heure": "period",
    "jour": "period",
}


class SignalAirReport(TypedDict, total=False):
    id: str
    signalType: str
    signalDate: str
    latitude: float
    longitude: float
    city: str
    postalCode: str
    remarks: str


def get_api_url() -> str:
    return os.getenv("SIGNALAIR_API_URL", DEFAULT_API_URL)


def default_period(today: date | None = None) -> tuple[date, date]:
    """Return the last seven days, ending today."""
    today = today or date.today()
    return today - timedelta(days=DEFAULT_PERIOD_DAYS), today


def build_report_records(
    reports: list[SignalAirReport],
    report_types: list[str] | None = None,
) -> list[NormalizedRecord]:
    """
    Turn reports into records.

    Reports of an unknown type, of a type not selected, or without a
    position are skipped.
    """
    selected = set(report_types or REPORT_TYPES)
    records: list[NormalizedRecord] = []
    for report in mappings(reports, SOURCE_NAME):
        report_type = str(report.get("signalType", "")).lower()
        lat = to_float(report.get("latitude"))
        lon = to_float(report.get("longitude"))
        if report_type not in selected or lat is None or lon is None:
            continue

        city = report.get("city") or ""
        postal_code = report.get("postalCode") or ""
        records.append(
            {
                "id": str(report.get("id")),
                "name": f"SignalAir - {report_type}" + (f" ({city})" if city else ""),
                "latitude": lat,
                "longitude": lon,
                "source": SOURCE_NAME,
                "pollutant": report_type,
                "value": 1,
                "unit": "signalement",
                "timestamp": report.get("signalDate", ""),
                "status": "active",
                "qualityLevel": report_type,
                "address": f"{city} {postal_code}".strip(),
            }
        )
    return records


class SignalAirSource(BaseSource):
    """
    Adapter for SignalAir reports.

    Args:
        client: HTTP client
        cache: Unused, accepted for a uniform factory signature
        period: (start, end) dates of the reports, last 7 days by default
        report_types: Report types to keep, all by default
    """

    name = SOURCE_NAME
    POLLUTANT_MAP = POLLUTANT_MAP
    TIME_STEP_MAP = TIME_STEP_MAP

    def __init__(
        self,
        client,
        cache=None,
        period: tuple[date, date] | None = None,
        report_types: list[str] | None = None,
        api_url: str | None = None,
    ):
        super().__init__(client, cache)
        self.period = period
        self.report_types = report_types
        self.api_url = api_url or get_api_url()

    async def fetch_snapshot(self, pollutant: str, time_step: str) -> list[NormalizedRecord]:
        if self.resolve(pollutant, time_step) is None:
            return []
        start, end = self.period or default_period()
        params = {"startDate": start.isoformat(), "endDate": end.isoformat()}
        data = await self._get(self.api_url, params=params)
        if not isinstance(data, list):
            logger.warning(f"{SOURCE_NAME}: unexpected report feed response")
            return []
        return build_report_records(data, self.report_types)

    async def fetch_historical(
        self,
        station_id: str,
        pollutant: str,
        time_step: str,
        start: datetime,
        end: datetime,
    ) -> list[HistoricalPoint]:
        logger.warning(f"{SOURCE_NAME}: reports have no historical series")
        return []


register_source(
    SOURCE_NAME,
    {
        "name": SOURCE_NAME,
        "factory": SignalAirSource,
        "kind": "reports",
        "requires_api_key": False,
    },
)
