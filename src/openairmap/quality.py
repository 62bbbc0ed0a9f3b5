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
Freshness and quality classification.

Both functions here are pure: quality is derived from a value and the
pollutant's band table, freshness from a timestamp, the selected
time-step and the current instant. Neither raises on unexpected input;
the worst case is "default" or "not fresh".
"""

import math
from datetime import datetime, timezone
from logging import getLogger

import pandas as pd

from .pollutants import DEFAULT_LEVEL, POLLUTANTS, Band

logger = getLogger(__name__)

# Maximum age, in minutes, of a reading still considered live. Scans are
# published with a lag, so the instantaneous window is wider than 2 minutes
FRESHNESS_MINUTES = {
    "instantane": 3 * 60,
    "deuxMin": 3,
    "quartHeure": 16,
    "heure": 61,
    "jour": 24 * 60,
}


def band_index(value: float, thresholds: list[Band]) -> int:
    """
    Return the index of the first band whose upper bound is not exceeded.

    Values above the last bound fall into the worst band.

    Args:
        value: Concentration to classify
        thresholds: Bands in ascending order

    Returns:
        int: Index into thresholds
    """
    for index, band in enumerate(thresholds):
        if value <= band["max"]:
            return index
    return len(thresholds) - 1


def classify_quality(value: float | None, pollutant: str) -> str:
    """
    Classify a value into a quality band for a pollutant.

    Args:
        value: Measured value in canonical units
        pollutant: Canonical pollutant code

    Returns:
        str: Band code, or "default" when the value is missing or the
             pollutant has no threshold table

    Example:
        >>> classify_quality(12, "pm25")
        'moyen'
        >>> classify_quality(None, "pm25")
        'default'
    """
    if value is None or isinstance(value, bool):
        return DEFAULT_LEVEL
    try:
        value = float(value)
    except (TypeError, ValueError):
        return DEFAULT_LEVEL
    if math.isnan(value):
        return DEFAULT_LEVEL

    info = POLLUTANTS.get(pollutant)
    if info is None or not info["thresholds"]:
        return DEFAULT_LEVEL

    thresholds = info["thresholds"]
    return thresholds[band_index(value, thresholds)]["code"]


def parse_timestamp(timestamp: str | int | float | datetime | None) -> datetime | None:
    """
    Parse a provider timestamp into an aware UTC datetime.

    Naive strings are taken as UTC. Numbers are Unix seconds.
    Returns None when the timestamp cannot be parsed.
    """
    if timestamp is None or timestamp == "":
        return None
    try:
        if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
            parsed = pd.to_datetime(timestamp, unit="s", utc=True)
        else:
            parsed = pd.to_datetime(timestamp, utc=True)
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime()


def is_fresh(
    timestamp: str | int | float | datetime | None,
    time_step: str,
    now: datetime | None = None,
) -> bool:
    """
    Check whether a measurement is recent enough for a time-step.

    Args:
        timestamp: Measurement instant (ISO string, Unix seconds or datetime)
        time_step: Canonical time-step code
        now: Reference instant (defaults to the current UTC time)

    Returns:
        bool: True if the age does not exceed the time-step's freshness
              window. Unknown time-steps are considered fresh; unparseable
              timestamps are not.
    """
    threshold = FRESHNESS_MINUTES.get(time_step)
    if threshold is None:
        logger.warning(f"No freshness window for time-step {time_step}")
        return True

    measured_at = parse_timestamp(timestamp)
    if measured_at is None:
        return False

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    age_minutes = (now - measured_at).total_seconds() / 60
    return age_minutes <= threshold
