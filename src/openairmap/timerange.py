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
Time range and time-step consistency rules.

Each time-step allows a maximum historical lookback. This module is the
single place where a selected time range is checked against that limit
and clamped when it exceeds it, and where a range is expanded to concrete
UTC instants before an adapter is queried.

Durations are measured as the difference between the two calendar dates
of a custom range, so a range from the 1st to the 8th lasts 7 days.

Example:
    >>> result = validate_and_adjust_range(PresetRange("1y"), "quartHeure")
    >>> result.was_adjusted
    True
    >>> result.adjusted_range
    CustomRange(start_date=..., end_date=<today>, type='custom')
"""

import os
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from logging import getLogger
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .types import CustomRange, PresetRange, TimeRange

logger = getLogger(__name__)

# ============================================================================
# CONSTANTS
# ============================================================================

# Maximum lookback in days per time-step
MAX_HISTORY_DAYS: dict[str, float] = {
    "instantane": 3,
    "deuxMin": 7,
    "quartHeure": 7,
    "heure": 180,
    "jour": 365,
}

# Approximate duration of each preset, only used to decide on clamping
PRESET_DAYS: dict[str, float] = {
    "3h": 0.125,
    "24h": 1,
    "7d": 7,
    "30d": 30,
    "1y": 365,
}

# Exact lookback of each preset when expanded to instants
PRESET_DELTAS: dict[str, timedelta] = {
    "3h": timedelta(hours=3),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "1y": timedelta(days=365),
}

TIMEZONE_ENV = "OPENAIRMAP_TIMEZONE"


@dataclass(frozen=True)
class RangeAdjustment:
    """Outcome of validating a range against a time-step."""

    adjusted_range: TimeRange
    was_adjusted: bool
    notice: str | None = None


# ============================================================================
# HELPERS
# ============================================================================


def get_timezone() -> tzinfo:
    """
    Return the zone used to expand calendar dates.

    Read from OPENAIRMAP_TIMEZONE (an IANA name such as "Europe/Paris"),
    falling back to the system local zone.
    """
    name = os.getenv(TIMEZONE_ENV)
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown time zone {name!r} in {TIMEZONE_ENV}, using local time")
    return datetime.now().astimezone().tzinfo or timezone.utc


def local_today(tz: tzinfo | None = None) -> date:
    """Return today's date in the configured zone."""
    return datetime.now(tz or get_timezone()).date()


def max_lookback(time_step: str) -> float | None:
    """Return the maximum lookback in days for a time-step, None if unlimited."""
    return MAX_HISTORY_DAYS.get(time_step)


def duration_in_days(time_range: TimeRange) -> float:
    """
    Return the nominal duration of a range in days.

    Presets use the fixed PRESET_DAYS table. Unknown presets count as 0.
    """
    if isinstance(time_range, PresetRange):
        return PRESET_DAYS.get(time_range.preset, 0)
    return (time_range.end_date - time_range.start_date).days


def _clamp(end_date: date, max_days: float) -> CustomRange:
    return CustomRange(start_date=end_date - timedelta(days=max_days), end_date=end_date)


def _describe(time_range: TimeRange) -> str:
    if isinstance(time_range, PresetRange):
        return f"preset {time_range.preset}"
    return f"{time_range.start_date.isoformat()} to {time_range.end_date.isoformat()}"


# ============================================================================
# VALIDATION
# ============================================================================


def validate_and_adjust_range(
    time_range: TimeRange,
    time_step: str,
    today: date | None = None,
) -> RangeAdjustment:
    """
    Clamp a time range to the maximum lookback of a time-step.

    A range that exceeds the limit is replaced by a custom range that ends
    where the original ended (today for a preset) and starts exactly
    max_lookback days earlier. A range that fits, or a time-step without
    a limit, leaves the range untouched.

    Args:
        time_range: PresetRange or CustomRange selected by the user
        time_step: Canonical time-step code
        today: Reference date for presets (defaults to the local date)

    Returns:
        RangeAdjustment: The (possibly new) range, whether it changed and
                         a human readable notice when it did

    Example:
        >>> validate_and_adjust_range(PresetRange("24h"), "heure").was_adjusted
        False
    """
    max_days = max_lookback(time_step)
    if max_days is None:
        return RangeAdjustment(time_range, False)

    if duration_in_days(time_range) <= max_days:
        return RangeAdjustment(time_range, False)

    if isinstance(time_range, PresetRange):
        end_date = today or local_today()
    else:
        end_date = time_range.end_date

    adjusted = _clamp(end_date, max_days)
    notice = (
        f"Range {_describe(time_range)} exceeds the {max_days:g}-day limit "
        f"for time-step {time_step}; limited to {_describe(adjusted)}"
    )
    return RangeAdjustment(adjusted, True, notice)


def expand_range(
    time_range: TimeRange,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> tuple[datetime, datetime]:
    """
    Expand a range to a pair of aware UTC instants.

    Presets run from now minus their lookback to now. Custom ranges run
    from local midnight of the first day to the local end of the last day.
    Reversed custom ranges are put back in order.

    Args:
        time_range: Range to expand
        now: Reference instant for presets (defaults to the current time)
        tz: Zone of the calendar dates (defaults to get_timezone())

    Returns:
        tuple[datetime, datetime]: (start, end) in UTC
    """
    if isinstance(time_range, PresetRange):
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        delta = PRESET_DELTAS.get(time_range.preset, timedelta(days=1))
        return (now - delta).astimezone(timezone.utc), now.astimezone(timezone.utc)

    tz = tz or get_timezone()
    first, last = sorted((time_range.start_date, time_range.end_date))
    start = datetime.combine(first, time.min, tzinfo=tz)
    end = datetime.combine(last, time.max, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


# ============================================================================
# SELECTION STATE
# ============================================================================


class RangeSelection:
    """
    The (time range, time-step) pair selected by a consumer.

    Every mutation goes through validate_and_adjust_range, so after any
    call the range fits the time-step's lookback limit.

    Example:
        >>> selection = RangeSelection(PresetRange("1y"), "jour")
        >>> selection.set_time_step("heure").was_adjusted
        True
    """

    def __init__(
        self,
        time_range: TimeRange,
        time_step: str,
        today: date | None = None,
    ):
        self._today = today
        self.time_step = time_step
        self.time_range = time_range
        self.notice: str | None = None
        self._apply(time_range)

    def _apply(self, time_range: TimeRange) -> RangeAdjustment:
        result = validate_and_adjust_range(time_range, self.time_step, self._today)
        self.time_range = result.adjusted_range
        self.notice = result.notice
        if result.notice:
            logger.info(result.notice)
        return result

    def set_time_step(self, time_step: str) -> RangeAdjustment:
        """Change the time-step and clamp the current range if needed."""
        self.time_step = time_step
        return self._apply(self.time_range)

    def set_time_range(self, time_range: TimeRange) -> RangeAdjustment:
        """Change the range and clamp it against the current time-step."""
        return self._apply(time_range)

    def expand(self, now: datetime | None = None) -> tuple[datetime, datetime]:
        """Expand the current range to UTC instants."""
        return expand_range(self.time_range, now=now)
