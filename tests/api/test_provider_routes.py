import json
from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from fleetsync.api import providers
from fleetsync.core.exceptions import (
    ProviderAuthError,
    ProviderNotFoundError,
    TransientProviderError,
)
from fleetsync.providers.base import ConnectionTestResult
from fleetsync.sync.orchestrator import SyncResult


class StubOrchestrator:
    def __init__(self, *, sync_error: Exception | None = None, test_error: Exception | None = None) -> None:
        self.sync_error = sync_error
        self.test_error = test_error

    async def test_provider(self, provider_id):
        if self.test_error is not None:
            raise self.test_error
        return ConnectionTestResult(success=True, trailer_count=5, message="Successfully connected! Found 5 trailers.")

    async def sync_provider(self, provider_id):
        if self.sync_error is not None:
            raise self.sync_error
        return SyncResult(provider_id=provider_id, created=2, updated=3, total_fetched=5)


@pytest.mark.asyncio
async def test_test_endpoint_returns_result(monkeypatch):
    monkeypatch.setattr(providers, "orchestrator", StubOrchestrator())

    payload = await providers.test_provider("p1")

    assert payload["success"] is True
    assert payload["trailer_count"] == 5


@pytest.mark.asyncio
async def test_test_endpoint_unknown_provider(monkeypatch):
    monkeypatch.setattr(providers, "orchestrator", StubOrchestrator(test_error=ProviderNotFoundError("nope")))

    with pytest.raises(HTTPException) as excinfo:
        await providers.test_provider("nope")

    assert excinfo.value.status_code == 404
    assert excinfo.value.detail == "GPS provider not found"


@pytest.mark.asyncio
async def test_sync_endpoint_returns_counts(monkeypatch):
    monkeypatch.setattr(providers, "orchestrator", StubOrchestrator())

    payload = await providers.sync_provider("p1")

    assert payload["created"] == 2
    assert payload["updated"] == 3
    assert payload["success"] is True


@pytest.mark.asyncio
async def test_sync_endpoint_maps_auth_failure(monkeypatch):
    monkeypatch.setattr(
        providers,
        "orchestrator",
        StubOrchestrator(sync_error=ProviderAuthError("p1", "Invalid API token", status_code=401)),
    )

    response = await providers.sync_provider("p1")

    assert response.status_code == 401
    body = json.loads(response.body)
    assert body["error"]["code"] == "provider_auth_failed"
    assert body["error"]["message"] == "Invalid API token"


@pytest.mark.asyncio
async def test_sync_endpoint_maps_vendor_failure(monkeypatch):
    monkeypatch.setattr(
        providers,
        "orchestrator",
        StubOrchestrator(sync_error=TransientProviderError("p1", "HTTP 503")),
    )

    response = await providers.sync_provider("p1")

    assert response.status_code == 502
    assert json.loads(response.body)["error"]["message"] == "Provider 'p1' sync failed: HTTP 503"


def test_logs_endpoint_requires_known_provider(monkeypatch):
    monkeypatch.setattr(providers, "repository", SimpleNamespace(get_provider=lambda provider_id: None))

    with pytest.raises(HTTPException) as excinfo:
        providers.provider_logs("p1")

    assert excinfo.value.status_code == 404


def test_logs_endpoint_clamps_limit(monkeypatch):
    requested: dict = {}

    def fake_list(provider_id, limit):
        requested.update(provider_id=provider_id, limit=limit)
        return [{"id": 1}]

    monkeypatch.setattr(providers, "repository", SimpleNamespace(get_provider=lambda provider_id: object()))
    monkeypatch.setattr(providers, "list_provider_logs", fake_list)

    assert providers.provider_logs("p1", limit=1000) == {"logs": [{"id": 1}]}
    assert requested == {"provider_id": "p1", "limit": 200}
