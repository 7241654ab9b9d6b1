from __future__ import annotations

from decimal import Decimal

import httpx
import pytest

from app.adapters import http_adapter
from app.adapters.base import MileageLookupError, MileageQuote
from app.adapters.fake_adapter import FakeMileageAdapter
from app.adapters.http_adapter import FallbackMileageAdapter, HttpMileageAdapter, get_mileage_adapter


def _client(handler) -> httpx.Client:  # type: ignore[no-untyped-def]
    return httpx.Client(transport=httpx.MockTransport(handler))


def _matrix(meters: float, status: str = "OK") -> dict[str, object]:
    return {
        "status": "OK",
        "rows": [{"elements": [{"status": status, "distance": {"value": meters}}]}],
    }


class DownAdapter:
    name = "down"

    def quote(self, origin: str, destination: str, *, avoid_tolls: bool = False) -> MileageQuote:
        raise MileageLookupError("no route")


def test_fake_adapter_is_deterministic() -> None:
    adapter = FakeMileageAdapter()
    first = adapter.quote("Depot", "Mill 7")
    again = adapter.quote("Depot", "Mill 7")

    assert first == again
    assert Decimal("20") <= first.miles <= Decimal("60")
    assert first.provider == "fake"
    assert adapter.quote("Depot", "Mill 7", avoid_tolls=True).avoided_tolls is True


def test_http_adapter_converts_meters_to_miles() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_matrix(16093.44))

    adapter = HttpMileageAdapter(base_url="https://routes.test/matrix", api_key="k", client=_client(handler))
    quote = adapter.quote("Depot", "Mill 7", avoid_tolls=True)

    assert quote.miles == Decimal("10.0")
    assert quote.provider == "http"
    assert seen[0].url.params["origins"] == "Depot"
    assert seen[0].url.params["avoid"] == "tolls"


def test_http_adapter_errors_raise_lookup_error() -> None:
    failing = HttpMileageAdapter(
        base_url="https://routes.test/matrix",
        client=_client(lambda request: httpx.Response(500, json={"error": "boom"})),
    )
    with pytest.raises(MileageLookupError):
        failing.quote("Depot", "Mill 7")

    no_route = HttpMileageAdapter(
        base_url="https://routes.test/matrix",
        client=_client(lambda request: httpx.Response(200, json=_matrix(0, status="ZERO_RESULTS"))),
    )
    with pytest.raises(MileageLookupError):
        no_route.quote("Depot", "Atlantis")

    empty = HttpMileageAdapter(
        base_url="https://routes.test/matrix",
        client=_client(lambda request: httpx.Response(200, json={"status": "OK", "rows": []})),
    )
    with pytest.raises(MileageLookupError):
        empty.quote("Depot", "Mill 7")


def test_fallback_adapter_uses_estimate_on_failure() -> None:
    adapter = FallbackMileageAdapter(DownAdapter())
    quote = adapter.quote("Depot", "Mill 7")

    assert quote == FakeMileageAdapter().quote("Depot", "Mill 7")
    assert adapter.name == "down"


def test_adapter_selection_follows_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(http_adapter, "MILEAGE_LOOKUP_API_KEY", "")
    assert isinstance(get_mileage_adapter(), FakeMileageAdapter)

    monkeypatch.setattr(http_adapter, "MILEAGE_LOOKUP_API_KEY", "secret-key")
    assert isinstance(get_mileage_adapter(), FallbackMileageAdapter)


def test_http_adapter_is_shared_across_requests(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(http_adapter, "MILEAGE_LOOKUP_API_KEY", "secret-key")
    first = get_mileage_adapter()
    second = get_mileage_adapter()

    assert first is second
    assert isinstance(first, FallbackMileageAdapter)
    primary = first._primary
    assert isinstance(primary, HttpMileageAdapter)
    assert primary._client.is_closed is False

    http_adapter._shared_adapter.cache_clear()
