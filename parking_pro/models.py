from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

# Where a resolved value came from.
SOURCE_CACHE = "cache"
SOURCE_UPSTREAM = "upstream"
SOURCE_FALLBACK = "fallback"

# Which branch of the parking search produced the spots.
TIER_PRIMARY = "primary"
TIER_PAID_FALLBACK = "paid_fallback"
TIER_UNAVAILABLE = "unavailable"

PARKING_TYPES = ("free", "paid", "any")

UNKNOWN_STREET = "Unknown Street"


def _is_finite_number(x: Any) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool) and math.isfinite(x)


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    def is_valid(self) -> bool:
        return _is_finite_number(self.lat) and _is_finite_number(self.lng)

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Coordinate"]:
        """Build from a cached ``{"lat", "lng"}`` object; None when unusable."""
        if not isinstance(data, dict):
            return None
        coord = cls(lat=data.get("lat"), lng=data.get("lng"))
        return coord if coord.is_valid() else None


FALLBACK_COORDINATE = Coordinate(lat=-33.8688, lng=151.2093)


@dataclass
class ParkingSpot:
    address: str
    street: str
    latitude: float
    longitude: float
    free: bool
    rules: str
    distance_km: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class GeocodeResult:
    coords: Coordinate
    source: str

    @property
    def is_fallback(self) -> bool:
        return self.source == SOURCE_FALLBACK


@dataclass
class StreetResult:
    street: str
    source: str

    @property
    def is_fallback(self) -> bool:
        return self.source == SOURCE_FALLBACK


@dataclass
class SearchResult:
    spots: List[ParkingSpot] = field(default_factory=list)
    tier: str = TIER_PRIMARY

    @property
    def is_fallback(self) -> bool:
        return self.tier != TIER_PRIMARY

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [s.to_dict() for s in self.spots]
