from __future__ import annotations

import pytest

from safechat.settings import settings


@pytest.mark.asyncio
async def test_health_live(api_client) -> None:
    resp = await api_client.get("/health/live")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "service": settings.service_name}


@pytest.mark.asyncio
async def test_health_ready_with_memory_storage(api_client, monkeypatch) -> None:
    monkeypatch.setattr(settings, "storage_backend", "memory")
    resp = await api_client.get("/health/ready")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "checks": {"redis": "ok"}}


@pytest.mark.asyncio
async def test_request_id_is_echoed(api_client) -> None:
    resp = await api_client.get("/health/live", headers={"X-Request-Id": "req-123"})
    assert resp.headers["X-Request-Id"] == "req-123"


@pytest.mark.asyncio
async def test_metrics_expose_chat_counters(api_client) -> None:
    await api_client.post(
        "/chat/rooms", json={"recipient_id": "bob", "context_type": "general"}, headers={"X-User-Id": "alice"}
    )
    resp = await api_client.get("/metrics")
    assert resp.status_code == 200
    assert "safechat_chat_rooms_created_total" in resp.text
    assert "safechat_http_requests_total" in resp.text
