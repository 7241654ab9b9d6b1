from __future__ import annotations

import logging
import os
from decimal import ROUND_HALF_UP, Decimal
from functools import lru_cache
from typing import Any

import httpx

from app.adapters.base import MileageAdapter, MileageLookupError, MileageQuote
from app.adapters.fake_adapter import FakeMileageAdapter

logger = logging.getLogger("app.adapters.mileage")

MILEAGE_LOOKUP_URL = os.getenv(
    "MILEAGE_LOOKUP_URL",
    "https://maps.googleapis.com/maps/api/distancematrix/json",
)
MILEAGE_LOOKUP_API_KEY = os.getenv("MILEAGE_LOOKUP_API_KEY", "")
MILES_PER_METER = Decimal("0.000621371")


class HttpMileageAdapter:
    """Distance-matrix style lookup over HTTP."""

    name = "http"

    def __init__(
        self,
        *,
        base_url: str = MILEAGE_LOOKUP_URL,
        api_key: str = MILEAGE_LOOKUP_API_KEY,
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._base_url = base_url
        self._api_key = api_key
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def _params(self, origin: str, destination: str, avoid_tolls: bool) -> dict[str, str]:
        params = {
            "origins": origin,
            "destinations": destination,
            "units": "imperial",
            "key": self._api_key,
        }
        if avoid_tolls:
            params["avoid"] = "tolls"
        return params

    def quote(self, origin: str, destination: str, *, avoid_tolls: bool = False) -> MileageQuote:
        try:
            response = self._client.get(self._base_url, params=self._params(origin, destination, avoid_tolls))
            response.raise_for_status()
            body: dict[str, Any] = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise MileageLookupError(f"mileage lookup request failed: {exc}") from exc

        try:
            element = body["rows"][0]["elements"][0]
        except (KeyError, IndexError, TypeError) as exc:
            raise MileageLookupError("mileage lookup returned no route") from exc
        if body.get("status") != "OK" or element.get("status") != "OK":
            message = body.get("error_message") or f"status {body.get('status')}/{element.get('status')}"
            raise MileageLookupError(f"mileage lookup failed: {message}")

        meters = Decimal(str(element["distance"]["value"]))
        miles = (meters * MILES_PER_METER).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
        return MileageQuote(miles=miles, provider=self.name, avoided_tolls=avoid_tolls)


class FallbackMileageAdapter:
    """Tries the primary adapter and falls back to a deterministic estimate."""

    def __init__(self, primary: MileageAdapter, fallback: MileageAdapter | None = None) -> None:
        self._primary = primary
        self._fallback = fallback or FakeMileageAdapter()
        self.name = primary.name

    def quote(self, origin: str, destination: str, *, avoid_tolls: bool = False) -> MileageQuote:
        try:
            return self._primary.quote(origin, destination, avoid_tolls=avoid_tolls)
        except MileageLookupError:
            logger.warning(
                "mileage_lookup_fallback",
                exc_info=True,
                extra={"origin": origin, "destination": destination, "avoid_tolls": avoid_tolls},
            )
            return self._fallback.quote(origin, destination, avoid_tolls=avoid_tolls)


@lru_cache(maxsize=1)
def _shared_adapter(api_key: str) -> MileageAdapter:
    if not api_key:
        return FakeMileageAdapter()
    return FallbackMileageAdapter(HttpMileageAdapter(api_key=api_key))


def get_mileage_adapter() -> MileageAdapter:
    """One adapter per process, so the HTTP connection pool is reused across requests."""
    return _shared_adapter(MILEAGE_LOOKUP_API_KEY)
