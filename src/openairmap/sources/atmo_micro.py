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
AtmoSud qualified micro-sensors (atmoMicro).

Micro-sensor sites run by AtmoSud. Each measure carries a raw reading
(`valeur_brute`) and, once AtmoSud has fitted a correction, a corrected
reading (`valeur`). The corrected reading is displayed when present.

There is no daily aggregation for micro-sensors.
"""

import asyncio
from datetime import datetime
from logging import getLogger
from typing import TypedDict

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

logger = getLogger(__name__)

SOURCE_NAME = "atmoMicro"

BASE_URL = "https://api.atmosud.org/observations/capteurs"

# Canonical pollutant -> AtmoSud `variable`
POLLUTANT_MAP: dict[str, str | None] = {
    "pm1": "pm1",
    "pm25": "pm2.5",
    "pm10": "pm10",
    "no2": "no2",
    "o3": "o3",
    "so2": "so2",
    "bruit": None,
}

# Canonical time-step -> (`aggregation`, `delais` in minutes)
TIME_STEP_MAP: dict[str, tuple[str, int] | None] = {
    "instantane": ("brute", 181),
    "deuxMin": ("brute", 181),
    "quartHeure": ("quart-horaire", 19),
    "heure": ("horaire", 64),
    "jour": None,
}

# Sites active within the last two days
ACTIVE_WITHIN_MINUTES = 2880


class AtmoMicroSite(TypedDict, total=False):
    id_site: int
    nom_site: str
    lat: float
    lon: float
    influence: str
    code_station_commun: str | None


class AtmoMicroMeasure(TypedDict, total=False):
    id_site: int
    valeur: float | None
    valeur_brute: float | None
    unite: str
    time: str


def pick_value(measure: AtmoMicroMeasure) -> tuple[float | None, float | None, float | None, bool]:
    """
    Choose the displayed value of a measure.

    Returns:
        tuple: (value, corrected_value, raw_value, has_correction)
    """
    corrected = to_float(measure.get("valeur"))
    raw = to_float(measure.get("valeur_brute"))
    if corrected is not None:
        return corrected, corrected, raw, True
    return raw, None, raw, False


def build_snapshot_records(
    sites: list[AtmoMicroSite],
    measures: list[AtmoMicroMeasure],
    pollutant: str,
) -> list[NormalizedRecord]:
    """Join sites with their latest measure; sites without one are inactive."""
    by_site = {str(measure.get("id_site")): measure for measure in mappings(measures, SOURCE_NAME)}

    records = []
    for site in mappings(sites, SOURCE_NAME):
        site_id = str(site.get("id_site"))
        name = site.get("nom_site", site_id)
        influence = site.get("influence")
        common = {
            "id": site_id,
            "name": name,
            "latitude": site.get("lat"),
            "longitude": site.get("lon"),
            "source": SOURCE_NAME,
            "pollutant": pollutant,
            "address": f"{name}, {influence}" if influence else name,
            "departmentId": site.get("code_station_commun") or "",
        }
        measure = by_site.get(site_id)
        if measure is None:
            records.append(inactive_record(**common))
            continue

        value, corrected, raw, has_correction = pick_value(measure)
        if value is None:
            records.append(inactive_record(**common))
            continue

        records.append(
            active_record(
                **common,
                value=value,
                unit=measure.get("unite", ""),
                timestamp=measure.get("time"),
                corrected_value=corrected,
                raw_value=raw,
                has_correction=has_correction,
            )
        )
    return records


def parse_history(measures: list[AtmoMicroMeasure]) -> list[HistoricalPoint]:
    """Build a sorted series, preferring corrected values and dropping gaps."""
    points: list[HistoricalPoint] = []
    for measure in mappings(measures, SOURCE_NAME):
        value, *_ = pick_value(measure)
        if value is None or value == -1 or not measure.get("time"):
            continue
        points.append({"timestamp": measure["time"], "value": value, "unit": measure.get("unite", "")})
    return sort_points(points)


class AtmoMicroSource(BaseSource):
    """Adapter for AtmoSud micro-sensor sites."""

    name = SOURCE_NAME
    POLLUTANT_MAP = POLLUTANT_MAP
    TIME_STEP_MAP = TIME_STEP_MAP

    def __init__(self, client, cache=None, base_url: str = BASE_URL):
        super().__init__(client, cache)
        self.base_url = base_url

    async def _fetch_sites(self, variable: str) -> list[AtmoMicroSite]:
        params = {"format": "json", "variable": variable, "actifs": ACTIVE_WITHIN_MINUTES}
        data = await self._get(f"{self.base_url}/sites", params=params)
        return data if isinstance(data, list) else []

    async def _fetch_latest(self, variable: str, aggregation: str, delais: int) -> list[AtmoMicroMeasure]:
        params = {
            "format": "json",
            "download": "false",
            "valeur_brute": "true",
            "type_capteur": "true",
            "variable": variable,
            "aggregation": aggregation,
            "delais": delais,
        }
        data = await self._get(f"{self.base_url}/mesures/dernieres", params=params)
        return data if isinstance(data, list) else []

    async def fetch_snapshot(self, pollutant: str, time_step: str) -> list[NormalizedRecord]:
        resolved = self.resolve(pollutant, time_step)
        if resolved is None:
            return []
        variable, (aggregation, delais) = resolved

        sites, measures = await asyncio.gather(
            self.cache.keyed.get(variable, lambda: self._fetch_sites(variable)),
            self._fetch_latest(variable, aggregation, delais),
        )
        logger.debug(f"{SOURCE_NAME}: {len(sites)} sites, {len(measures)} measures")
        return build_snapshot_records(sites, measures, pollutant)

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
        variable, (aggregation, _) = resolved

        params = {
            "format": "json",
            "download": "false",
            "id_site": station_id,
            "variable": variable,
            "aggregation": aggregation,
            "date_debut": format_instant(start),
            "date_fin": format_instant(end),
            "valeur_brute": "true",
        }
        data = await self._get(f"{self.base_url}/mesures", params=params)
        if not isinstance(data, list):
            logger.warning(f"{SOURCE_NAME}: unexpected history response for site {station_id}")
            return []
        return parse_history(data)


register_source(
    SOURCE_NAME,
    {
        "name": SOURCE_NAME,
        "factory": AtmoMicroSource,
        "kind": "micro",
        "requires_api_key": False,
    },
)
