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
Shared HTTP helper used by every source adapter.

A single coroutine performs the request, checks the status, sniffs the
content type and decodes JSON. Some providers label JSON bodies as
text/html or text/plain, so non-JSON content types are still decoded on a
best-effort basis before giving up.
"""

import json
from logging import getLogger
from typing import Any

import httpx

from .exceptions import DecodeError, TransportError

logger = getLogger(__name__)

# User-Agent sent with every request
USER_AGENT = "openairmap/0.1.0 (air quality aggregation)"

DEFAULT_TIMEOUT = 30.0


def create_client(timeout: float = DEFAULT_TIMEOUT, **kwargs) -> httpx.AsyncClient:
    """
    Create an AsyncClient with the default headers and timeout.

    Args:
        timeout: Request timeout in seconds
        **kwargs: Passed through to httpx.AsyncClient (e.g. transport)

    Returns:
        httpx.AsyncClient: Client to share between adapters
    """
    headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
    headers.update(kwargs.pop("headers", {}))
    return httpx.AsyncClient(timeout=timeout, headers=headers, **kwargs)


def decode_body(response: httpx.Response) -> Any:
    """
    Decode a response body as JSON.

    Raises:
        DecodeError: If the body is not valid JSON
    """
    url = str(response.request.url)
    content_type = response.headers.get("content-type", "")

    if "json" in content_type.lower():
        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(url, content_type) from e

    # Content-type mismatch: try the raw body before failing
    text = response.text.strip()
    if not text or text.lstrip().lower().startswith(("<!doctype", "<html")):
        raise DecodeError(url, content_type)
    try:
        data = json.loads(text)
    except ValueError as e:
        raise DecodeError(url, content_type) from e

    logger.debug(f"Decoded JSON from {url} despite content-type {content_type!r}")
    return data


async def request_json(
    client: httpx.AsyncClient,
    url: str,
    params: dict | None = None,
    method: str = "GET",
    headers: dict | None = None,
    json_body: Any = None,
) -> Any:
    """
    Perform a request and return the decoded JSON body.

    Args:
        client: AsyncClient to send the request with
        url: Absolute URL
        params: Query parameters
        method: HTTP method ("GET" or "POST")
        headers: Extra headers for this request
        json_body: JSON payload for POST requests

    Returns:
        Any: Decoded JSON (list or dict)

    Raises:
        TransportError: On network failure or non-2xx status
        DecodeError: If the body cannot be decoded as JSON
    """
    try:
        response = await client.request(
            method, url, params=params, headers=headers, json=json_body
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise TransportError(
            url,
            f"HTTP error {e.response.status_code}",
            status_code=e.response.status_code,
        ) from e
    except httpx.TimeoutException as e:
        raise TransportError(url, "Request timed out") from e
    except httpx.HTTPError as e:
        raise TransportError(url, f"Request failed: {e}") from e

    return decode_body(response)
