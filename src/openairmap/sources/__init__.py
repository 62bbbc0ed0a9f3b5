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
Data sources for OpenAirMap.

Each module adapts one provider and registers itself with the registry
when imported.
"""

# Import source modules to trigger their registration
from . import (
    atmo_micro,  # noqa: F401
    atmo_ref,  # noqa: F401
    mobileair,  # noqa: F401
    nebuleair,  # noqa: F401
    purpleair,  # noqa: F401
    sensor_community,  # noqa: F401
    signalair,  # noqa: F401
)

__all__ = ["atmo_ref", "atmo_micro", "nebuleair", "mobileair", "sensor_community", "purpleair", "signalair"]
