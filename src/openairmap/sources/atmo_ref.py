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
AtmoSud reference stations (atmoRef).

Regulatory monitoring stations operated by AtmoSud. A snapshot joins two
calls made in parallel: the list of stations measuring a pollutant and
the latest measure of each station. Freshness is enforced by the API
through the `delais` parameter (maximum age in minutes), so every measure
returned is current.

API Documentation: https://api.atmosud.org/observations/docs
"""

import asyncio
from datetime import datetime
from logging import getLogger
from typing import TypedDict

from ..registry import register_source
from ..types import HistoricalPoint, NormalizedRecord, VariableInfo
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

SOURCE_NAME = "atmoRef"

BASE_URL = "https://api.atmosud.org/observations"

# Canonical pollutant -> AtmoSud `nom_polluant`
POLLUTANT_MAP: dict[str, str | None] = {
    "pm1": "pm1",
    "pm25": "pm2.5",
    "pm10": "pm10",
    "no2": "no2",
    "o3": "o3",
    "so2": "so2",
    "bruit": None,
}

# Canonical time-step -> (`temporalite`, `delais` in minutes)
TIME_STEP_MAP: dict[str, tuple[str, int] | None] = {
    "instantane": ("quart-horaire", 181),
    "deuxMin": None,
    "quartHeure": ("quart-horaire", 19),
    "heure": ("horaire", 64),
    "jour": ("journalière", 1444),
}


# ============================================================================
# RAW RESPONSE SHAPES
# ============================================================================


class AtmoRefStation(TypedDict, total=False):
    id_station: str
    nom_station: str
    latitude: float
    longitude: float
    adresse: str
    departement_id: str
    variables: dict[str, dict]


class AtmoRefMeasure(TypedDict, total=False):
    id_station: str
    valeur: float | None
    unite: str
    date_debut: str


# ============================================================================
# TRANSFORMS
# ============================================================================


def build_snapshot_records(
    stations: list[AtmoRefStation],
    measures: list[AtmoRefMeasure],
    pollutant: str,
) -> list[NormalizedRecord]:
    """
    Join stations with their latest measure.

    Every station yields a record; stations without a measure (or with a
    null value) are inactive.

    Args:
        stations: Station list from /stations
        measures: Latest measures from /stations/mesures/derniere
        pollutant: Canonical pollutant code

    Returns:
        list[NormalizedRecord]: One record per station
    """
    by_station = {str(measure.get("id_station")): measure for measure in mappings(measures, SOURCE_NAME)}

    records = []
    for station in mappings(stations, SOURCE_NAME):
        station_id = str(station.get("id_station"))
        common = {
            "id": station_id,
            "name": station.get("nom_station", station_id),
            "latitude": station.get("latitude"),
            "longitude": station.get("longitude"),
            "source": SOURCE_NAME,
            "pollutant": pollutant,
            "address": station.get("adresse", ""),
            "departmentId": station.get("departement_id", ""),
        }
        measure = by_station.get(station_id)
        value = to_float(measure.get("valeur")) if measure else None

        if value is None:
            records.append(inactive_record(**common))
        else:
            records.append(
                active_record(
                    **common,
                    value=value,
                    unit=measure.get("unite", ""),
                    timestamp=measure.get("date_debut"),
                )
            )
    return records


def parse_history(measures: list[AtmoRefMeasure]) -> list[HistoricalPoint]:
    """Turn historical measures into a sorted series, dropping null and -1."""
    points: list[HistoricalPoint] = []
    for measure in mappings(measures, SOURCE_NAME):
        value = to_float(measure.get("valeur"))
        if value is None or value == -1 or not measure.get("date_debut"):
            continue
        points.append(
            {"timestamp": measure["date_debut"], "value": value, "unit": measure.get("unite", "")}
        )
    return sort_points(points)


def build_variables(station: AtmoRefStation) -> dict[str, VariableInfo]:
    """
    Convert a station's `variables` block to canonical keys.

    Variables whose label or ISO code matches a mapped pollutant are keyed
    by the canonical code; others keep the provider's key.
    """
    native_to_canonical = {
        native.lower(): canonical for canonical, native in POLLUTANT_MAP.items() if native
    }
    variables: dict[str, VariableInfo] = {}
    for key, info in mapping(station.get("variables")).items():
        info = mapping(info)
        label = str(info.get("label", key))
        iso_code = str(info.get("code_iso", ""))
        canonical = (
            native_to_canonical.get(label.lower())
            or native_to_canonical.get(iso_code.lower())
            or key
        )
        variables[canonical] = {
            "label": label,
            "isoCode": iso_code,
            "inService": bool(info.get("en_service", False)),
        }
    return variables


# ============================================================================
# ADAPTER
# ============================================================================


class AtmoRefSource(BaseSource):
    """Adapter for AtmoSud reference stations."""

    name = SOURCE_NAME
    POLLUTANT_MAP = POLLUTANT_MAP
    TIME_STEP_MAP = TIME_STEP_MAP

    def __init__(self, client, cache=None, base_url: str = BASE_URL):
        super().__init__(client, cache)
        self.base_url = base_url

    async def _fetch_stations(self, nom_polluant: str | None = None) -> list[AtmoRefStation]:
        params = {"format": "json", "station_en_service": "true", "download": "false", "metadata": "true"}
        if nom_polluant:
            params["nom_polluant"] = nom_polluant
        data = await self._get(f"{self.base_url}/stations", params=params)
        return (data.get("stations") or []) if isinstance(data, dict) else []

    async def _fetch_latest(self, nom_polluant: str, temporalite: str, delais: int) -> list[AtmoRefMeasure]:
        params = {
            "format": "json",
            "nom_polluant": nom_polluant,
            "temporalite": temporalite,
            "delais": delais,
            "download": "false",
        }
        data = await self._get(f"{self.base_url}/stations/mesures/derniere", params=params)
        return (data.get("mesures") or []) if isinstance(data, dict) else []

    async def fetch_snapshot(self, pollutant: str, time_step: str) -> list[NormalizedRecord]:
        resolved = self.resolve(pollutant, time_step)
        if resolved is None:
            return []
        nom_polluant, (temporalite, delais) = resolved

        stations, measures = await asyncio.gather(
            # Station lists are cached per pollutant
            self.cache.keyed.get(nom_polluant, lambda: self._fetch_stations(nom_polluant)),
            self._fetch_latest(nom_polluant, temporalite, delais),
        )
        records = build_snapshot_records(stations, measures, pollutant)
        logger.debug(f"{SOURCE_NAME}: {len(records)} stations, {len(measures)} measures")
        return records

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
        nom_polluant, (temporalite, _) = resolved

        params = {
            "format": "json",
            "station_id": station_id,
            "nom_polluant": nom_polluant,
            "temporalite": temporalite,
            "download": "false",
            "metadata": "true",
            "date_debut": format_instant(start),
            "date_fin": format_instant(end),
        }
        data = await self._get(f"{self.base_url}/stations/mesures", params=params)
        if not isinstance(data, dict) or not data.get("mesures"):
            logger.warning(f"{SOURCE_NAME}: no history for station {station_id}")
            return []
        return parse_history(data["mesures"])

    async def fetch_variables(self, station_id: str) -> dict[str, VariableInfo]:
        stations = await self.cache.get(self._fetch_stations)
        for station in mappings(stations, SOURCE_NAME):
            if str(station.get("id_station")) == str(station_id):
                return build_variables(station)
        logger.warning(f"{SOURCE_NAME}: station {station_id} not found")
        return {}


register_source(
    SOURCE_NAME,
    {
        "name": SOURCE_NAME,
        "factory": AtmoRefSource,
        "kind": "reference",
        "requires_api_key": False,
    },
)
