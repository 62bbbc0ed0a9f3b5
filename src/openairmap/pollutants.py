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
Canonical pollutant and time-step vocabulary.

Every source module translates from this vocabulary to its provider's
native parameters. Threshold tables follow the French ATMO index bands;
all concentrations are in µg/m³ with inclusive upper bounds.
"""

from typing import TypedDict


class Band(TypedDict):
    """A single quality band."""

    code: str  # Band code (e.g. "bon", "degrade")
    max: float  # Inclusive upper bound


class PollutantInfo(TypedDict):
    """Metadata about a canonical pollutant."""

    name: str  # Display name
    code: str  # Canonical code
    unit: str  # Canonical unit
    thresholds: list[Band] | None  # Ascending bands, None if unclassified


class TimeStepInfo(TypedDict):
    """Metadata about a canonical time-step."""

    name: str  # Display name
    code: str  # Short code
    minutes: int  # Nominal aggregation period


# =============================================================================
# Quality bands
# =============================================================================

QUALITY_LEVELS = [
    "bon",
    "moyen",
    "degrade",
    "mauvais",
    "tresMauvais",
    "extrMauvais",
]

DEFAULT_LEVEL = "default"


def _bands(*upper_bounds: float) -> list[Band]:
    """Build a band table from the upper bounds of all but the worst band."""
    bands: list[Band] = [
        {"code": code, "max": bound}
        for code, bound in zip(QUALITY_LEVELS, upper_bounds)
    ]
    bands.append({"code": QUALITY_LEVELS[-1], "max": float("inf")})
    return bands


THRESHOLDS_PM1_PM25 = _bands(5, 15, 50, 90, 140)
THRESHOLDS_PM10 = _bands(15, 45, 120, 195, 270)
THRESHOLDS_NO2 = _bands(10, 25, 60, 100, 150)
THRESHOLDS_O3 = _bands(60, 100, 120, 160, 180)
THRESHOLDS_SO2 = _bands(20, 40, 125, 190, 275)


# =============================================================================
# Pollutants
# =============================================================================

POLLUTANTS: dict[str, PollutantInfo] = {
    "pm1": {"name": "PM1", "code": "pm1", "unit": "µg/m³", "thresholds": THRESHOLDS_PM1_PM25},
    "pm25": {"name": "PM2.5", "code": "pm25", "unit": "µg/m³", "thresholds": THRESHOLDS_PM1_PM25},
    "pm10": {"name": "PM10", "code": "pm10", "unit": "µg/m³", "thresholds": THRESHOLDS_PM10},
    "no2": {"name": "NO2", "code": "no2", "unit": "µg/m³", "thresholds": THRESHOLDS_NO2},
    "o3": {"name": "O3", "code": "o3", "unit": "µg/m³", "thresholds": THRESHOLDS_O3},
    "so2": {"name": "SO2", "code": "so2", "unit": "µg/m³", "thresholds": THRESHOLDS_SO2},
    # Noise is dimensionless for classification purposes
    "bruit": {"name": "Bruit", "code": "bruit", "unit": "dB(A)", "thresholds": None},
}

DEFAULT_UNIT = "µg/m³"


# =============================================================================
# Time-steps
# =============================================================================

TIME_STEPS: dict[str, TimeStepInfo] = {
    "instantane": {"name": "Scan", "code": "instantane", "minutes": 0},
    "deuxMin": {"name": "≤ 2 min", "code": "2min", "minutes": 2},
    "quartHeure": {"name": "15 min", "code": "qh", "minutes": 15},
    "heure": {"name": "Heure", "code": "h", "minutes": 60},
    "jour": {"name": "Jour", "code": "d", "minutes": 1440},
}


def list_pollutants() -> list[str]:
    """Return the canonical pollutant codes."""
    return list(POLLUTANTS)


def list_time_steps() -> list[str]:
    """Return the canonical time-step codes, finest first."""
    return list(TIME_STEPS)


def get_unit(pollutant: str) -> str:
    """Return the canonical unit of a pollutant, µg/m³ if unknown."""
    info = POLLUTANTS.get(pollutant)
    return info["unit"] if info else DEFAULT_UNIT
