import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from fleetsync.api import admin
from fleetsync.core.exceptions import LimiterClearedError
from fleetsync.sync.rate_limiter import RateLimiter


def test_list_providers_hides_credentials(monkeypatch):
    record = SimpleNamespace(
        id="p1",
        name="Samsara main",
        type="samsara",
        tenant_id="t1",
        company_id="c1",
        status="connected",
        trailer_count=12,
        last_sync=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        error_message=None,
        credentials_encrypted="ciphertext",
    )
    monkeypatch.setattr(admin, "repository", SimpleNamespace(list_providers=lambda: [record]))

    result = admin.list_providers()

    entry = result["providers"][0]
    assert entry["has_credentials"] is True
    assert "credentials_encrypted" not in entry
    assert entry["last_sync"] == "2024-05-01T12:00:00+00:00"


def test_list_events_clamps_limit(monkeypatch):
    captured: dict = {}

    def fake_list(limit, kind=None, provider_id=None):
        captured.update(limit=limit, kind=kind, provider_id=provider_id)
        return []

    monkeypatch.setattr(admin, "list_recent_events", fake_list)

    assert admin.list_events(limit=500, kind="provider_sync") == {"events": []}
    assert captured == {"limit": 100, "kind": "provider_sync", "provider_id": None}


def test_rate_limit_stats(monkeypatch):
    limiter = SimpleNamespace(
        get_stats=lambda: {"active_limits": 1, "limits": {"t1": {"location_update": 3}}},
    )
    monkeypatch.setattr(admin, "limiter", limiter)
    monkeypatch.setattr(admin, "scheduler", SimpleNamespace(running=True))
    monkeypatch.setattr(admin, "notifications", SimpleNamespace(connection_count=lambda: 2))

    stats = admin.rate_limit_stats()

    assert stats["rate_limits"]["limits"] == {"t1": {"location_update": 3}}
    assert stats["scheduler_running"] is True
    assert stats["sse_connections"] == 2


@pytest.mark.asyncio
async def test_clear_rate_limits_fails_pending_operations_on_the_loop(monkeypatch):
    limiter = RateLimiter(operation_delay=0.0, poll_interval=0.01)
    monkeypatch.setattr(admin, "limiter", limiter)
    assert limiter.is_allowed("t1", "location_update", max_operations=1, window=60.0)
    pending = limiter.queue_operation(
        "t1", "location_update", lambda: "ran", max_operations=1, window=60.0, max_wait=30.0
    )
    await asyncio.sleep(0)

    assert await admin.clear_rate_limits("t1") == {"status": "ok"}

    with pytest.raises(LimiterClearedError):
        await asyncio.wait_for(pending, timeout=1.0)
    assert limiter.get_stats()["limits"] == {}
