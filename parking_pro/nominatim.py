from __future__ import annotations

import asyncio
import logging
import os
import re
from typing import Any, Awaitable, Callable, Optional

import httpx

from .cache import JsonFileCache
from .models import (
    FALLBACK_COORDINATE,
    SOURCE_CACHE,
    SOURCE_FALLBACK,
    SOURCE_UPSTREAM,
    UNKNOWN_STREET,
    Coordinate,
    GeocodeResult,
    StreetResult,
)
from .utils import retry_with_backoff

logger = logging.getLogger(__name__)

SEARCH_URL = "https://nominatim.openstreetmap.org/search"
REVERSE_URL = "https://nominatim.openstreetmap.org/reverse"
USER_AGENT = "parking-pro/1.0"

_WS = re.compile(r"\s+")


def normalize_query(location: str, city: str) -> str:
    return _WS.sub(" ", f"{location.strip()}, {city}".lower())


def reverse_key(lat: float, lng: float) -> str:
    return f"{lat:.4f},{lng:.4f}"


def _safe_float(x: Any) -> Optional[float]:
    try:
        return float(x)
    except (TypeError, ValueError):
        return None


def _street_from_payload(payload: Any) -> str:
    address = payload.get("address") if isinstance(payload, dict) else None
    if not isinstance(address, dict):
        return UNKNOWN_STREET
    return address.get("road") or address.get("suburb") or address.get("city") or UNKNOWN_STREET


class NominatimClient:
    def __init__(
        self,
        location_cache: JsonFileCache,
        reverse_cache: JsonFileCache,
        search_url: str = SEARCH_URL,
        reverse_url: str = REVERSE_URL,
        user_agent: str = USER_AGENT,
        timeout: float = 15,
        retries: int = 3,
        retry_delay: float = 2.0,
        reverse_interval: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.location_cache = location_cache
        self.reverse_cache = reverse_cache
        self.search_url = search_url
        self.reverse_url = reverse_url
        self.user_agent = user_agent
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self.reverse_interval = reverse_interval
        self.transport = transport
        self.sleep = sleep
        # Nominatim usage policy: one request per second at most.
        self._reverse_lock = asyncio.Lock()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers={"User-Agent": self.user_agent},
            transport=self.transport,
        )

    async def _search(self, query: str) -> Any:
        async with self._client() as client:
            resp = await client.get(self.search_url, params={"q": query, "format": "json", "limit": 1})
            resp.raise_for_status()
            return resp.json()

    async def geocode(self, location: str, city: str) -> GeocodeResult:
        query = normalize_query(location, city)
        logger.info("Geocoding: %s", query)

        cached = Coordinate.from_dict(self.location_cache.get(query))
        if cached is not None:
            logger.info("Using cached coords for %s: %s", query, cached)
            return GeocodeResult(coords=cached, source=SOURCE_CACHE)

        try:
            data = await retry_with_backoff(
                lambda: self._search(query),
                retries=self.retries,
                delay=self.retry_delay,
                sleep=self.sleep,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error("Geocoding failed for %s: %s", query, e)
            data = None
        except ValueError as e:
            logger.error("Geocoding returned invalid JSON for %s: %s", query, e)
            data = None

        if isinstance(data, list) and data and isinstance(data[0], dict):
            coords = Coordinate(lat=_safe_float(data[0].get("lat")), lng=_safe_float(data[0].get("lon")))
            if coords.is_valid():
                self.location_cache.put(query, coords.to_dict())
                logger.info("Geocoded %s: %s", query, coords)
                return GeocodeResult(coords=coords, source=SOURCE_UPSTREAM)
            logger.warning("No valid coords from Nominatim for %s", query)

        logger.warning("Using fallback coords for %s: %s", query, FALLBACK_COORDINATE)
        return GeocodeResult(coords=FALLBACK_COORDINATE, source=SOURCE_FALLBACK)

    async def reverse_geocode(self, lat: float, lng: float) -> StreetResult:
        key = reverse_key(lat, lng)
        cached = self.reverse_cache.get(key)
        if isinstance(cached, str) and cached:
            logger.debug("Using cached reverse geocode for %s: %s", key, cached)
            return StreetResult(street=cached, source=SOURCE_CACHE)

        try:
            async with self._reverse_lock:
                await self.sleep(self.reverse_interval)
                async with self._client() as client:
                    resp = await client.get(self.reverse_url, params={"lat": lat, "lon": lng, "format": "json"})
                    resp.raise_for_status()
                    payload = resp.json()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.error("Reverse geocode failed for %s: %s", key, e)
            return StreetResult(street=UNKNOWN_STREET, source=SOURCE_FALLBACK)

        street = _street_from_payload(payload)
        self.reverse_cache.put(key, street)
        return StreetResult(street=street, source=SOURCE_UPSTREAM)


def build_client_from_env(
    location_cache: Optional[JsonFileCache] = None,
    reverse_cache: Optional[JsonFileCache] = None,
) -> NominatimClient:
    if location_cache is None:
        location_cache = JsonFileCache(os.getenv("LOCATION_CACHE_PATH", "location-cache.json"))
    if reverse_cache is None:
        reverse_cache = JsonFileCache(os.getenv("REVERSE_CACHE_PATH", "reverse-cache.json"))
    return NominatimClient(
        location_cache=location_cache,
        reverse_cache=reverse_cache,
        search_url=os.getenv("NOMINATIM_URL", SEARCH_URL),
        reverse_url=os.getenv("NOMINATIM_REVERSE_URL", REVERSE_URL),
        user_agent=os.getenv("NOMINATIM_USER_AGENT", USER_AGENT),
        reverse_interval=float(os.getenv("REVERSE_GEOCODE_INTERVAL_SECONDS", "1.0")),
    )
