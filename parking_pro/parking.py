"""
Parking spot selection.

Takes raw Overpass elements around a point and turns them into a ranked list
of spots: one per street, nearest first, filtered by free/paid preference.
When nothing matches a "free" request the closest paid options are returned
instead, and when Overpass is down a single placeholder spot is returned.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .models import (
    TIER_PAID_FALLBACK,
    TIER_PRIMARY,
    TIER_UNAVAILABLE,
    UNKNOWN_STREET,
    Coordinate,
    ParkingSpot,
    SearchResult,
)
from .nominatim import NominatimClient
from .overpass import OverpassClient
from .utils import haversine_km

logger = logging.getLogger(__name__)

MAX_DISTANCE_KM = 2.0
MAX_ELEMENTS = 10
MAX_FALLBACK_ELEMENTS = 3

RULES_FREE = "Free parking"
RULES_FREE_UNVERIFIED = "Free parking - verify locally"
RULES_PAID = "Paid parking - check signs"
RULES_PAID_NO_FREE = "Paid parking - check signs (no free spots nearby)"
RULES_PLACEHOLDER = "Free parking (fallback)"


@dataclass
class Candidate:
    """An element after enrichment; distance is kept as a float for ranking."""

    name: str
    street: str
    lat: float
    lng: float
    distance: float
    free: bool
    explicitly_free: bool

    def to_spot(self, free: Optional[bool] = None, rules: Optional[str] = None) -> ParkingSpot:
        is_free = self.free if free is None else free
        if rules is None:
            if not is_free:
                rules = RULES_PAID
            elif self.explicitly_free:
                rules = RULES_FREE
            else:
                rules = RULES_FREE_UNVERIFIED
        return ParkingSpot(
            address=self.name,
            street=self.street,
            latitude=self.lat,
            longitude=self.lng,
            free=is_free,
            rules=rules,
            distance_km=f"{self.distance:.2f}",
        )


def element_position(element: Dict[str, Any]) -> Optional[Coordinate]:
    """Flat lat/lon of a node, or the ``center`` of a way."""
    lat, lng = element.get("lat"), element.get("lon")
    if lat is None or lng is None:
        center = element.get("center")
        if not isinstance(center, dict):
            return None
        lat, lng = center.get("lat"), center.get("lon")
    pos = Coordinate(lat=lat, lng=lng)
    return pos if pos.is_valid() else None


def classify_free(tags: Dict[str, Any]) -> bool:
    return tags.get("access") == "public" or tags.get("fee") == "no" or not tags.get("fee")


def type_matches(parking_type: str, free: bool) -> bool:
    if parking_type == "any":
        return True
    return free if parking_type == "free" else not free


def display_name(tags: Dict[str, Any], street: str) -> str:
    if tags.get("name"):
        return tags["name"]
    if street != UNKNOWN_STREET:
        return f"{street} Parking"
    return "Unnamed Parking"


def dedupe_by_street(candidates: List[Candidate]) -> List[Candidate]:
    """One candidate per street (the nearest), sorted by distance."""
    best: Dict[str, Candidate] = {}
    for c in candidates:
        current = best.get(c.street)
        if current is None or c.distance < current.distance:
            best[c.street] = c
    return sorted(best.values(), key=lambda c: c.distance)


def placeholder_spot(coords: Coordinate) -> ParkingSpot:
    return ParkingSpot(
        address="Fallback Parking",
        street=UNKNOWN_STREET,
        latitude=coords.lat,
        longitude=coords.lng,
        free=True,
        rules=RULES_PLACEHOLDER,
        distance_km="0.00",
    )


class ParkingSearch:
    def __init__(self, overpass: OverpassClient, nominatim: NominatimClient, max_concurrency: int = MAX_ELEMENTS):
        self.overpass = overpass
        self.nominatim = nominatim
        self.max_concurrency = max_concurrency

    async def _resolve_street(self, tags: Dict[str, Any], pos: Coordinate) -> str:
        street = tags.get("addr:street") or tags.get("highway")
        if street:
            return street
        result = await self.nominatim.reverse_geocode(pos.lat, pos.lng)
        return result.street

    async def enrich(self, element: Any, origin: Coordinate) -> Optional[Candidate]:
        if not isinstance(element, dict):
            logger.warning("Skipping malformed element: %r", element)
            return None
        pos = element_position(element)
        if pos is None:
            logger.warning("Skipping element %s without coordinates", element.get("id"))
            return None
        tags = element.get("tags")
        if not isinstance(tags, dict):
            tags = {}
        street = await self._resolve_street(tags, pos)
        return Candidate(
            name=display_name(tags, street),
            street=street,
            lat=pos.lat,
            lng=pos.lng,
            distance=haversine_km(origin.lat, origin.lng, pos.lat, pos.lng),
            free=classify_free(tags),
            explicitly_free=tags.get("access") == "public" or tags.get("fee") == "no",
        )

    async def _enrich_all(self, elements: List[Dict[str, Any]], origin: Coordinate) -> List[Candidate]:
        sem = asyncio.Semaphore(self.max_concurrency)

        async def run(element: Dict[str, Any]) -> Optional[Candidate]:
            async with sem:
                return await self.enrich(element, origin)

        results = await asyncio.gather(*(run(e) for e in elements))
        return [c for c in results if c is not None]

    async def search(self, coords: Coordinate, parking_type: str) -> SearchResult:
        try:
            elements = await self.overpass.fetch_parking_elements(coords)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.error("Overpass failed, using placeholder spot: %s", e)
            return SearchResult(spots=[placeholder_spot(coords)], tier=TIER_UNAVAILABLE)

        candidates = await self._enrich_all(elements[:MAX_ELEMENTS], coords)
        matching = [
            c for c in candidates
            if c.distance <= MAX_DISTANCE_KM and type_matches(parking_type, c.free)
        ]
        spots = [c.to_spot() for c in dedupe_by_street(matching)]

        if not spots and parking_type == "free":
            logger.info("No free spots found, returning closest paid options")
            nearest = await self._enrich_all(elements[:MAX_FALLBACK_ELEMENTS], coords)
            nearest.sort(key=lambda c: c.distance)
            spots = [c.to_spot(free=False, rules=RULES_PAID_NO_FREE) for c in nearest]
            return SearchResult(spots=spots, tier=TIER_PAID_FALLBACK)

        logger.info("Found %d spots", len(spots))
        return SearchResult(spots=spots, tier=TIER_PRIMARY)
