from datetime import datetime, timezone
from http import HTTPStatus

import httpx
import pytest

from fleetsync.core.config import VendorModel
from fleetsync.core.exceptions import CredentialError, ProviderAuthError, TransientProviderError
from fleetsync.providers.samsara import SamsaraProvider


class FakeResponse:
    def __init__(self, status_code: int, payload=None, text: str | None = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self._text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload

    @property
    def is_error(self) -> bool:
        return self.status_code >= HTTPStatus.BAD_REQUEST

    @property
    def text(self) -> str:
        return self._text or ""


def _stub_async_client(response, recorder, error: Exception | None = None):
    class _DummyAsyncClient:
        def __init__(self, *args, **kwargs) -> None:
            recorder["timeout"] = kwargs.get("timeout")

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def get(self, url, headers=None):
            recorder["url"] = url
            recorder["headers"] = headers
            if error is not None:
                raise error
            return response

    return _DummyAsyncClient


@pytest.fixture
def vendor_model() -> VendorModel:
    return VendorModel(type="samsara", name="Samsara", base_url="https://api.samsara.com", timeout=20)


@pytest.fixture
def provider_logs(monkeypatch):
    entries: list = []

    def fake_record(provider_id, *, request_body, response_body, request_id=None):
        entries.append({"provider_id": provider_id, "request": request_body, "response": response_body})

    monkeypatch.setattr("fleetsync.providers.utils.record_provider_log", fake_record)
    return entries


def _vehicle(vehicle_id, name, latitude=32.78, longitude=-96.8, **extra):
    vehicle = {
        "id": vehicle_id,
        "name": name,
        "location": {
            "latitude": latitude,
            "longitude": longitude,
            "time": "2024-05-01T12:00:00Z",
            "reverseGeo": {"formattedLocation": "Dallas, TX"},
        },
    }
    vehicle.update(extra)
    return vehicle


@pytest.mark.asyncio
async def test_samsara_adapter_keeps_located_trailers(monkeypatch, vendor_model, provider_logs):
    payload = {
        "data": [
            _vehicle("281474", "TRAILER 1042", vin="1UYVS2538AU123456"),
            _vehicle("281475", "Reefer 7", vehicleType="trailer"),
            _vehicle("281476", "Truck 12"),
            _vehicle("281477", "Trailer 9", latitude=0, longitude=0),
        ]
    }
    recorder: dict = {}
    monkeypatch.setattr(
        "fleetsync.providers.utils.httpx.AsyncClient",
        _stub_async_client(FakeResponse(HTTPStatus.OK, payload), recorder),
    )

    records = await SamsaraProvider(vendor_model).fetch_data({"apiToken": "tok"}, "p1")

    assert [record.id for record in records] == ["samsara_281474", "samsara_281475"]
    first = records[0]
    assert first.unit_number == "1042"
    assert first.original_id == "TRAILER 1042"
    assert first.vin == "1UYVS2538AU123456"
    assert first.address == "Dallas, TX"
    assert first.last_update == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    assert recorder["url"] == "https://api.samsara.com/v1/fleet/vehicles"
    assert recorder["headers"]["Authorization"] == "Bearer tok"
    assert recorder["timeout"] == 20
    assert provider_logs[0]["provider_id"] == "p1"
    assert provider_logs[0]["response"] == payload


@pytest.mark.asyncio
async def test_samsara_adapter_honours_custom_api_url(monkeypatch, vendor_model, provider_logs):
    recorder: dict = {}
    monkeypatch.setattr(
        "fleetsync.providers.utils.httpx.AsyncClient",
        _stub_async_client(FakeResponse(HTTPStatus.OK, {"data": []}), recorder),
    )

    records = await SamsaraProvider(vendor_model).fetch_data(
        {"apiToken": "tok", "apiUrl": "https://api.eu.samsara.com/"}
    )

    assert records == []
    assert recorder["url"] == "https://api.eu.samsara.com/v1/fleet/vehicles"


@pytest.mark.asyncio
async def test_samsara_adapter_requires_token(vendor_model, provider_logs):
    with pytest.raises(CredentialError) as exc_info:
        await SamsaraProvider(vendor_model).fetch_data({}, "p1")

    assert exc_info.value.message == "Missing Samsara credentials: API token required"
    assert provider_logs == []


@pytest.mark.asyncio
async def test_samsara_adapter_maps_unauthorized(monkeypatch, vendor_model, provider_logs):
    monkeypatch.setattr(
        "fleetsync.providers.utils.httpx.AsyncClient",
        _stub_async_client(FakeResponse(HTTPStatus.UNAUTHORIZED, {"message": "bad token"}), {}),
    )

    with pytest.raises(ProviderAuthError) as exc_info:
        await SamsaraProvider(vendor_model).fetch_data({"apiToken": "tok"}, "p1")

    assert exc_info.value.message == "Invalid API token"
    assert exc_info.value.status_code == HTTPStatus.UNAUTHORIZED
    assert provider_logs[0]["response"]["error"]["type"] == "unauthorized"
    assert provider_logs[0]["response"]["response"] == {"message": "bad token"}


@pytest.mark.asyncio
async def test_samsara_adapter_server_error_is_transient(monkeypatch, vendor_model, provider_logs):
    monkeypatch.setattr(
        "fleetsync.providers.utils.httpx.AsyncClient",
        _stub_async_client(FakeResponse(HTTPStatus.SERVICE_UNAVAILABLE, text="maintenance"), {}),
    )

    with pytest.raises(TransientProviderError) as exc_info:
        await SamsaraProvider(vendor_model).fetch_data({"apiToken": "tok"}, "p1")

    assert exc_info.value.message == "HTTP 503"
    assert provider_logs[0]["response"]["response"] == "maintenance"


@pytest.mark.asyncio
async def test_samsara_adapter_timeout_is_transient(monkeypatch, vendor_model, provider_logs):
    monkeypatch.setattr(
        "fleetsync.providers.utils.httpx.AsyncClient",
        _stub_async_client(None, {}, error=httpx.ReadTimeout("slow")),
    )

    with pytest.raises(TransientProviderError) as exc_info:
        await SamsaraProvider(vendor_model).fetch_data({"apiToken": "tok"}, "p1")

    assert exc_info.value.message == "Connection timeout - the API took too long to respond"
    assert provider_logs[0]["response"]["error"]["type"] == "timeout"


@pytest.mark.asyncio
async def test_samsara_adapter_skips_vehicle_with_malformed_location(monkeypatch, vendor_model, provider_logs):
    payload = {"data": [{"id": 1, "name": "Trailer 7", "location": "unknown"}, _vehicle("2", "Trailer 8")]}
    monkeypatch.setattr(
        "fleetsync.providers.utils.httpx.AsyncClient",
        _stub_async_client(FakeResponse(HTTPStatus.OK, payload), {}),
    )

    records = await SamsaraProvider(vendor_model).fetch_data({"apiToken": "tok"}, "p1")

    assert [record.id for record in records] == ["samsara_2"]
