"""Bounded external calls. A timed-out call's result is discarded and reported as a failure."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from contactsaver.domain import ExternalServiceError

T = TypeVar("T")

DEFAULT_TIMEOUT = 30.0


async def bounded(
    awaitable: Awaitable[T],
    *,
    service: str,
    timeout: float | None = DEFAULT_TIMEOUT,
    account: str | None = None,
) -> T:
    """Await with a timeout. Timeouts and unexpected errors become ExternalServiceError."""
    try:
        if timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout)
    except ExternalServiceError:
        raise
    except asyncio.TimeoutError as e:
        raise ExternalServiceError(
            service, f"timed out after {timeout:g}s", account=account
        ) from e
    except asyncio.CancelledError:
        raise
    except Exception as e:
        raise ExternalServiceError(service, str(e) or type(e).__name__, account=account) from e
