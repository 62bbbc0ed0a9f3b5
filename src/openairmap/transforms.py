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
Tabular views of normalised records.

Adapters produce plain lists of dicts. The functions here turn them into
pandas DataFrames for analysis, using small composable transformers:

    >>> frame = pipe(
    ...     pd.DataFrame(points),
    ...     convert_timestamps("timestamp", utc=True),
    ...     sort_values("timestamp"),
    ... )
"""

from functools import reduce
from typing import Any, Callable, Mapping

import pandas as pd

from .types import HISTORICAL_COLUMNS, RECORD_COLUMNS, HistoricalPoint, NormalizedRecord, Transformer


def pipe(df: pd.DataFrame, *functions: Transformer) -> pd.DataFrame:
    """Apply transformer functions to a DataFrame in order."""
    return reduce(lambda data, func: func(data), functions, df)


def compose(*functions: Transformer) -> Transformer:
    """
    Compose transformer functions into a single transformer.

    Example:
        >>> tidy = compose(add_column("source", "atmoRef"), sort_values("id"))
        >>> df = tidy(raw)
    """

    def composed(df: pd.DataFrame) -> pd.DataFrame:
        return pipe(df, *functions)

    return composed


def add_column(name: str, value: Any | Callable[[pd.DataFrame], Any]) -> Transformer:
    """
    Return a transformer adding a column.

    The value is either a constant applied to every row or a callable
    receiving the DataFrame.
    """

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        if callable(value):
            return df.assign(**{name: value(df)})
        return df.assign(**{name: value})

    return transform


def convert_timestamps(column: str, **kwargs) -> Transformer:
    """Return a transformer converting a column with pd.to_datetime()."""

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        if column not in df.columns:
            return df
        return df.assign(**{column: pd.to_datetime(df[column], **kwargs)})

    return transform


def sort_values(by: str | list[str], ascending: bool = True) -> Transformer:
    """Return a transformer sorting by one or more columns."""

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        return df.sort_values(by=by, ascending=ascending)

    return transform


def reset_index(drop: bool = True) -> Transformer:
    """Return a transformer resetting the index."""

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        return df.reset_index(drop=drop)

    return transform


def ensure_columns(*columns: str) -> Transformer:
    """
    Return a transformer guaranteeing that columns exist.

    Missing columns are added empty, and the given columns come first.
    """

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        missing = {col: pd.Series(dtype="object") for col in columns if col not in df.columns}
        if missing:
            df = df.assign(**missing)
        extra = [col for col in df.columns if col not in columns]
        return df[list(columns) + extra]

    return transform


# ============================================================================
# RECORD FRAMES
# ============================================================================


def records_to_frame(records: list[NormalizedRecord]) -> pd.DataFrame:
    """
    Convert snapshot records to a DataFrame.

    The standard record columns always come first; optional fields such as
    raw_value or address follow when any record carries them.

    Args:
        records: Records from fetch_snapshot

    Returns:
        pd.DataFrame: One row per record, timestamp parsed as UTC
    """
    return pipe(
        pd.DataFrame(records),
        ensure_columns(*RECORD_COLUMNS),
        convert_timestamps("timestamp", utc=True, errors="coerce", format="ISO8601"),
    )


def historical_to_frame(
    points: list[HistoricalPoint],
    station_id: str | None = None,
    pollutant: str | None = None,
) -> pd.DataFrame:
    """
    Convert a historical series to a DataFrame sorted by timestamp.

    Args:
        points: Series from fetch_historical
        station_id: Optional station id added as a column
        pollutant: Optional pollutant code added as a column

    Returns:
        pd.DataFrame: Columns timestamp, value, unit (+ station_id, pollutant)
    """
    transformers: list[Transformer] = [
        ensure_columns(*HISTORICAL_COLUMNS),
        convert_timestamps("timestamp", utc=True, errors="coerce", format="ISO8601"),
    ]
    if station_id is not None:
        transformers.append(add_column("station_id", station_id))
    if pollutant is not None:
        transformers.append(add_column("pollutant", pollutant))
    transformers += [sort_values("timestamp"), reset_index()]

    return pipe(pd.DataFrame(points), *transformers)


def comparison_to_frame(
    result: Mapping[str, Mapping[str, list[HistoricalPoint]]],
) -> pd.DataFrame:
    """
    Flatten an aggregation result into a long DataFrame.

    Args:
        result: pollutant -> station id -> points, as returned by
                aggregate_historical

    Returns:
        pd.DataFrame: Columns pollutant, station_id, timestamp, value, unit
    """
    frames = [
        historical_to_frame(points, station_id=station_id, pollutant=pollutant)
        for pollutant, by_station in result.items()
        for station_id, points in by_station.items()
        if points
    ]
    columns = ["pollutant", "station_id", *HISTORICAL_COLUMNS]
    if not frames:
        return pd.DataFrame(columns=columns)
    return pd.concat(frames, ignore_index=True)[columns]
