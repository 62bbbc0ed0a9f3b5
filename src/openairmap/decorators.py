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
Retry decorators for callers of source adapters.

Adapters never retry on their own: a failed request surfaces immediately
as a TransportError or DecodeError. Callers that want retries wrap their
own coroutine with `with_retry`.

Example:
    >>> @with_retry(max_attempts=3)
    ... async def load(adapter):
    ...     return await adapter.fetch_snapshot("pm10", "heure")
"""

import logging
from functools import wraps
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    after_log,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .exceptions import TransportError

F = TypeVar("F", bound=Callable[..., Awaitable])

logger = logging.getLogger(__name__)


def is_retryable(exception: BaseException) -> bool:
    """
    Decide whether a failure is worth retrying.

    Network failures (no status code) and 5xx responses are retried;
    4xx responses and decode failures are not.
    """
    if not isinstance(exception, TransportError):
        return False
    if exception.status_code is None:
        return True
    return 500 <= exception.status_code < 600


def with_retry(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 10.0,
    multiplier: float = 2.0,
) -> Callable[[F], F]:
    """
    Add exponential backoff retries to a coroutine function.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        min_wait: Minimum wait between attempts in seconds (default: 1.0)
        max_wait: Maximum wait between attempts in seconds (default: 10.0)
        multiplier: Multiplier for exponential backoff (default: 2.0)

    Returns:
        Callable: Decorated coroutine function; the last exception is
                  re-raised once attempts are exhausted
    """

    def decorator(func: F) -> F:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            retrying = AsyncRetrying(
                retry=retry_if_exception(is_retryable),
                stop=stop_after_attempt(max_attempts),
                wait=wait_exponential(multiplier=multiplier, min=min_wait, max=max_wait),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                after=after_log(logger, logging.DEBUG),
                reraise=True,
            )
            async for attempt in retrying:
                with attempt:
                    return await func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator

