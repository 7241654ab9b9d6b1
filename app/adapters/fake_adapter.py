from __future__ import annotations

from decimal import Decimal
from hashlib import md5

from app.adapters.base import MileageQuote


def route_key(origin: str, destination: str, avoid_tolls: bool) -> str:
    return f"{origin}-{destination}-{'no-tolls' if avoid_tolls else 'with-tolls'}"


class FakeMileageAdapter:
    """Deterministic stand-in for a routing service.

    The same route always yields the same whole-mile distance between 20 and
    60 miles; the toll preference is part of the route key.
    """

    name = "fake"

    def __init__(self, min_miles: int = 20, spread: int = 41) -> None:
        self._min_miles = min_miles
        self._spread = spread

    def quote(self, origin: str, destination: str, *, avoid_tolls: bool = False) -> MileageQuote:
        digest = md5(route_key(origin, destination, avoid_tolls).encode(), usedforsecurity=False).hexdigest()
        miles = self._min_miles + int(digest[:8], 16) % self._spread
        return MileageQuote(miles=Decimal(miles), provider=self.name, avoided_tolls=avoid_tolls)
