from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points, in km."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def _error_details(err: BaseException) -> dict:
    code: Optional[Any] = getattr(err, "code", None)
    body: Optional[str] = None
    response = getattr(err, "response", None) if isinstance(err, httpx.HTTPStatusError) else None
    if response is not None:
        code = response.status_code
        body = response.text
    return {"message": str(err) or type(err).__name__, "code": code, "response": body}


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    retries: int = 3,
    delay: float = 2.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Await ``fn()`` up to ``retries + 1`` times.

    Waits ``delay * 2**i`` seconds after failed attempt ``i`` (no jitter).
    Every failure is logged; the last one is re-raised as is.
    """
    for attempt in range(retries + 1):
        try:
            return await fn()
        except Exception as e:
            logger.error("Attempt %d/%d failed: %s", attempt + 1, retries + 1, _error_details(e))
            if attempt == retries:
                raise
            await sleep(delay * (2 ** attempt))
    raise RuntimeError("unreachable")  # pragma: no cover
