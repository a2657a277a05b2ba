"""API smoke tests against an injected service on an in-memory database."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from signal_trader.api import deps, websocket
from signal_trader.config import Settings
from signal_trader.main import app
from signal_trader.schemas.signal import RawSignal
from signal_trader.service import TradingService


@pytest.fixture
def service(engine, notifier):
    return TradingService(engine=engine, config=Settings(_env_file=None), exchanges={}, notifier=notifier)


@pytest.fixture
def client(service):
    app.state.service = service
    yield TestClient(app)
    del app.state.service


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setattr(deps.settings, "api_key", "s3cret")
    return "s3cret"


# ---------------------------------------------------------------------------
# 1. System
# ---------------------------------------------------------------------------

def test_health(client):
    assert client.get("/api/system/health").json() == {"status": "ok"}


def test_status(client):
    body = client.get("/api/system/status").json()
    assert body["paused"] is False
    assert body["simulation_mode"] is True
    assert "scheduler" in body


def test_pause_resume(client, service):
    assert client.post("/api/system/pause").json() == {"paused": True}
    assert service.processor.is_paused
    assert client.post("/api/system/resume").json() == {"paused": False}
    assert not service.processor.is_paused


def test_confidence_threshold(client, service):
    resp = client.put("/api/system/confidence-threshold", json={"threshold": 0.8})
    assert resp.json() == {"confidence_threshold": 0.8}
    assert service.executor.config.confidence_threshold == 0.8
    assert client.put("/api/system/confidence-threshold", json={"threshold": 1.5}).status_code == 422


def test_queue_and_retry(client):
    body = client.get("/api/system/queue").json()
    assert body["name"] == "trading-signals"
    assert body["stats"]["waiting"] == 0
    assert client.post("/api/system/queue/unknown/retry").status_code == 409
    assert client.get("/api/system/queue/unknown").status_code == 404


# ---------------------------------------------------------------------------
# 2. Signals
# ---------------------------------------------------------------------------

def test_webhook_queues_then_dedups(client):
    payload = {"content": "LONG BTC 45000 SL:44000 TP:47000", "message_id": "42", "channel_id": "c"}

    first = client.post("/api/signals/webhook", json=payload).json()
    second = client.post("/api/signals/webhook", json=payload).json()

    assert first["queued"] is True
    assert first["duplicate"] is False
    assert second == {"queued": False, "duplicate": True, "hash": first["hash"]}
    assert client.get(f"/api/system/queue/{first['hash']}").json()["data"]["source"] == "webhook"


def test_webhook_requires_content_or_image(client):
    assert client.post("/api/signals/webhook", json={"message_id": "1"}).status_code == 422
    assert client.post("/api/signals/webhook", json={"content": "LONG BTC 1"}).status_code == 422


def test_signal_listing(client, service):
    raw = RawSignal.build(content="LONG BTC 45000", message_id="1")
    signal = asyncio.run(service.signals.create(raw))

    listing = client.get("/api/signals").json()
    assert [s["id"] for s in listing] == [signal.id]
    assert client.get("/api/signals", params={"status": "failed"}).json() == []
    assert client.get(f"/api/signals/{signal.id}").json()["hash"] == raw.hash
    assert client.get("/api/signals/missing").status_code == 404

    stats = client.get("/api/signals/stats").json()
    assert stats["total"] == 1
    assert stats["by_status"]["pending"] == 1


# ---------------------------------------------------------------------------
# 3. Trades and positions
# ---------------------------------------------------------------------------

def test_trades_empty(client):
    assert client.get("/api/trades").json() == []
    assert client.get("/api/trades/missing").status_code == 404


def test_positions(client):
    assert client.get("/api/positions").json() == []
    history = client.get("/api/positions/history").json()
    assert history["items"] == []
    assert history["total"] == 0


def test_close_missing_position(client):
    resp = client.post("/api/positions/BTCUSDT/close", json={"side": "LONG"})
    assert resp.status_code == 404
    assert client.post("/api/positions/BTCUSDT/close", json={"side": "FLAT"}).status_code == 422


# ---------------------------------------------------------------------------
# 4. Auth and WebSocket
# ---------------------------------------------------------------------------

def test_api_key_required_when_configured(client, api_key):
    assert client.get("/api/signals").status_code == 401
    assert client.get("/api/signals", headers={"X-API-Key": "wrong"}).status_code == 401
    assert client.get("/api/signals", headers={"X-API-Key": api_key}).status_code == 200
    assert client.get("/api/system/health").status_code == 200


def test_missing_service_is_503():
    assert TestClient(app).get("/api/trades").status_code == 503


def test_websocket_accepts_with_key(client, api_key):
    with client.websocket_connect(f"/ws?api_key={api_key}") as ws:
        ws.send_text("ping")


def test_websocket_rejects_bad_key(client, api_key):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws?api_key=wrong") as ws:
            ws.receive_text()


class TestConnectionManager:
    @pytest.mark.asyncio
    async def test_broadcast_envelope_and_dead_clients(self):
        manager = websocket.ConnectionManager()
        alive = AsyncMock()
        dead = AsyncMock()
        dead.send_json.side_effect = RuntimeError("closed")
        await manager.connect(alive)
        await manager.connect(dead)

        await manager.forward_event("signal.status", {"signal_id": "s1", "status": "parsed"})

        alive.send_json.assert_awaited_once_with(
            {"type": "signal.status", "data": {"signal_id": "s1", "status": "parsed"}}
        )
        assert manager.client_count == 1

        manager.disconnect(alive)
        assert manager.client_count == 0
