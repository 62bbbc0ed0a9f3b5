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

"""Multi-source air quality aggregation and normalisation"""

from .aggregate import Aggregator, RequestGeneration, SnapshotFeed, SourcePool
from .api import (
    aggregate_historical,
    clear_cache,
    comparison_to_frame,
    get_historical,
    get_routes,
    get_snapshot,
    get_source_info,
    get_temporal,
    get_variables,
    historical_to_frame,
    list_sources,
    records_to_frame,
    validate_and_adjust_range,
)
from .cache import MetadataCache
from .exceptions import AggregationError, DecodeError, OpenAirMapError, TransportError
from .http_client import create_client
from .quality import classify_quality, is_fresh
from .timerange import RangeSelection, expand_range
from .types import CustomRange, PresetRange, TemporalFrame

__version__ = "0.1.0"
