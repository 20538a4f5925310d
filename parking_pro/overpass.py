from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .models import Coordinate
from .utils import retry_with_backoff

logger = logging.getLogger(__name__)

INTERPRETER_URL = "https://overpass-api.de/api/interpreter"

SEARCH_RADIUS_M = 2000


def build_parking_query(coords: Coordinate, radius_m: int = SEARCH_RADIUS_M) -> str:
    """Overpass QL for parking nodes and ways around a point. Ways come back with a ``center``."""
    around = f"around:{radius_m},{coords.lat},{coords.lng}"
    return (
        "[out:json];\n"
        "(\n"
        f'  node["amenity"="parking"]({around});\n'
        f'  way["amenity"="parking"]({around});\n'
        ");\n"
        "out center;"
    )


class OverpassClient:
    def __init__(
        self,
        url: str = INTERPRETER_URL,
        timeout: float = 30,
        retries: int = 5,
        retry_delay: float = 3.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.url = url
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self.transport = transport
        self.sleep = sleep

    async def _post(self, query: str) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.post(self.url, data={"data": query})
            resp.raise_for_status()
            return resp.json()

    async def fetch_parking_elements(self, coords: Coordinate, radius_m: int = SEARCH_RADIUS_M) -> List[Dict[str, Any]]:
        """
        Raw ``amenity=parking`` elements near ``coords``.

        Raises ``httpx.HTTPError`` once retries are exhausted and ``ValueError``
        when the payload has no ``elements`` list.
        """
        query = build_parking_query(coords, radius_m)
        logger.info("Searching parking near (%.4f, %.4f)", coords.lat, coords.lng)
        payload = await retry_with_backoff(
            lambda: self._post(query),
            retries=self.retries,
            delay=self.retry_delay,
            sleep=self.sleep,
        )
        elements = payload.get("elements") if isinstance(payload, dict) else None
        if not isinstance(elements, list):
            raise ValueError("Overpass response has no 'elements' list")
        logger.info("Overpass returned %d elements", len(elements))
        return elements


def build_client_from_env() -> OverpassClient:
    return OverpassClient(url=os.getenv("OVERPASS_URL", INTERPRETER_URL))
