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

"""Exception types raised by I/O-touching operations."""


class OpenAirMapError(Exception):
    """Base exception for OpenAirMap."""


class TransportError(OpenAirMapError):
    """Raised when a request fails or returns a non-2xx status."""

    def __init__(self, url: str, message: str, status_code: int | None = None):
        self.url = url
        self.status_code = status_code
        super().__init__(f"{message} ({url})")


class DecodeError(OpenAirMapError):
    """Raised when a response body cannot be decoded as JSON."""

    def __init__(self, url: str, content_type: str = ""):
        self.url = url
        self.content_type = content_type
        super().__init__(
            f"Response from {url} is not valid JSON (content-type: {content_type or 'unknown'})"
        )


class AggregationError(OpenAirMapError):
    """Raised when every call of a historical aggregation failed."""

    def __init__(self, failures: list):
        self.failures = failures
        super().__init__(f"All {len(failures)} historical requests failed")
