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
Core type definitions for OpenAirMap.

This module defines the canonical record schemas shared by every data
source, the time range union consumed by the consistency engine, and the
specification used to register a source.
"""

from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Callable, Literal, TypeAlias, TypedDict

import pandas as pd

if TYPE_CHECKING:
    from .sources.base import BaseSource


Status: TypeAlias = Literal["active", "inactive", "error"]

SourceKind: TypeAlias = Literal["reference", "micro", "community", "mobile", "reports"]

Preset: TypeAlias = Literal["3h", "24h", "7d", "30d", "1y"]


# Canonical record schemas
class NormalizedRecord(TypedDict, total=False):
    """
    Canonical schema for one station or sensor in a snapshot.

    Required fields:
        id: Provider-scoped unique identifier
        name: Display name
        latitude: Latitude in decimal degrees
        longitude: Longitude in decimal degrees
        source: Source tag (e.g. "atmoRef", "nebuleair")
        pollutant: Canonical pollutant code, or report type for SignalAir
        value: Measured value in canonical units (0 when inactive)
        unit: Unit of measurement
        timestamp: ISO-8601 instant of the measurement
        status: "active", "inactive" or "error"
        qualityLevel: Quality band, "default", or report type

    Optional fields:
        corrected_value: Bias-corrected reading (micro-sensors)
        raw_value: Uncorrected reading (micro-sensors)
        has_correction: True when corrected_value is the displayed value
        address: Free-text location description
        departmentId: Administrative area code
    """
    # Required fields
    id: str
    name: str
    latitude: float
    longitude: float
    source: str
    pollutant: str
    value: float
    unit: str
    timestamp: str
    status: Status
    qualityLevel: str

    # Optional fields
    corrected_value: float | None
    raw_value: float | None
    has_correction: bool
    address: str
    departmentId: str


class HistoricalPoint(TypedDict):
    """One value of a historical series."""
    timestamp: str
    value: float
    unit: str


class TemporalFrame(TypedDict):
    """
    The sensors reporting at one instant of a range.

    Fields:
        timestamp: ISO-8601 instant shared by the devices
        devices: One active record per sensor
        deviceCount: len(devices)
        averageValue: Mean of the device values
        qualityLevels: Number of devices per quality band
    """
    timestamp: str
    devices: list[NormalizedRecord]
    deviceCount: int
    averageValue: float
    qualityLevels: dict[str, int]


class VariableInfo(TypedDict):
    """Description of a pollutant reported by a station."""
    label: str
    isoCode: str
    inService: bool


class StationRef(TypedDict):
    """A station or sensor selected for comparison."""
    id: str
    source: str


# Time ranges
@dataclass(frozen=True)
class PresetRange:
    """A lookback window ending now (e.g. the last 24 hours)."""
    preset: Preset
    type: Literal["preset"] = "preset"


@dataclass(frozen=True)
class CustomRange:
    """An explicit range of calendar days, both ends inclusive."""
    start_date: date
    end_date: date
    type: Literal["custom"] = "custom"


TimeRange: TypeAlias = PresetRange | CustomRange


# Pipeline functions
Transformer: TypeAlias = Callable[[pd.DataFrame], pd.DataFrame]
"""A function that takes a DataFrame and returns a transformed DataFrame."""


# Source registration
SourceFactory: TypeAlias = Callable[..., "BaseSource"]
"""
A callable building a source adapter.

Args:
    client: httpx.AsyncClient used for every request
    cache: Optional MetadataCache shared by metadata-heavy sources

Returns:
    BaseSource: The adapter instance
"""


class SourceSpec(TypedDict):
    """
    Specification for a data source.

    A SourceSpec bundles everything needed to build and describe a source
    adapter without importing its module directly.
    """
    name: str
    factory: SourceFactory
    kind: SourceKind
    requires_api_key: bool


# Standard column names - for reference and validation
RECORD_COLUMNS = [
    "id",
    "name",
    "latitude",
    "longitude",
    "source",
    "pollutant",
    "value",
    "unit",
    "timestamp",
    "status",
    "qualityLevel",
]

HISTORICAL_COLUMNS = [
    "timestamp",
    "value",
    "unit",
]
