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
Source registry for OpenAirMap.

Each provider module registers a SourceSpec under its source tag when it is
imported. Lookups are case-insensitive; the tag stored in the spec's
"name" is the canonical spelling used in records.

Example:
    >>> from openairmap.registry import create_source
    >>>
    >>> async with create_client() as client:
    ...     adapter = create_source("atmoRef", client)
    ...     records = await adapter.fetch_snapshot("pm25", "heure")
"""

import warnings

import httpx

from .cache import MetadataCache
from .types import SourceSpec

# name (lowercase) -> SourceSpec
_SOURCES: dict[str, SourceSpec] = {}


def register_source(name: str, spec: SourceSpec) -> None:
    """
    Register a data source.

    If a source with the same tag already exists it is replaced with a
    warning.

    Args:
        name: Source tag (e.g. "atmoRef")
        spec: SourceSpec describing the source
    """
    key = name.lower()

    if key in _SOURCES:
        warnings.warn(
            f"Source '{name}' is already registered and will be replaced",
            UserWarning,
            stacklevel=2,
        )

    _SOURCES[key] = spec


def unregister_source(name: str) -> bool:
    """Remove a source. Returns False if it was not registered."""
    return _SOURCES.pop(name.lower(), None) is not None


def get_source(name: str) -> SourceSpec | None:
    """Return the SourceSpec registered under a tag, or None."""
    return _SOURCES.get(name.lower())


def list_sources() -> list[str]:
    """
    Return the canonical tags of all registered sources, sorted.

    Example:
        >>> list_sources()
        ['atmoMicro', 'atmoRef', 'mobileair', 'nebuleair', 'purpleair', 'sensorCommunity', 'signalair']
    """
    return sorted(spec["name"] for spec in _SOURCES.values())


def source_exists(name: str) -> bool:
    """Check whether a tag is registered."""
    return name.lower() in _SOURCES


def get_source_info(name: str) -> dict[str, str | bool] | None:
    """
    Return the name, kind and API key requirement of a source.

    Returns:
        dict | None: Source information, or None if not registered
    """
    source = get_source(name)
    if source is None:
        return None

    return {
        "name": source["name"],
        "kind": source["kind"],
        "requires_api_key": source["requires_api_key"],
    }


def create_source(
    name: str,
    client: httpx.AsyncClient,
    cache: MetadataCache | None = None,
):
    """
    Build the adapter registered under a tag.

    Args:
        name: Source tag (case-insensitive)
        client: HTTP client shared by adapters
        cache: Metadata cache to inject; a fresh one is built when omitted

    Returns:
        BaseSource: The adapter

    Raises:
        ValueError: If the tag is not registered
    """
    spec = get_source(name)
    if spec is None:
        available = ", ".join(list_sources())
        raise ValueError(f"Source '{name}' not found. Available sources: {available}")
    return spec["factory"](client=client, cache=cache)


def clear_registry() -> None:
    """
    Remove every registered source.

    Only useful in tests: this also removes the built-in sources.
    """
    _SOURCES.clear()
