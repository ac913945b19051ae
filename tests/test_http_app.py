# tests/test_http_app.py
"""Tests for the HTTP surface: inbound webhook and admin endpoints"""
import pytest
from datetime import datetime, timezone
from fastapi.testclient import TestClient

from botrouter.config import Settings
from botrouter.core.errors import DirectoryUnavailable
from botrouter.infra.memory_stores import InMemoryUserDirectory
from botrouter.transport.http_app import create_app

from conftest import MockGateway, MockWatermarkStore

ADMIN_TOKEN = "a" * 40


class DownUserDirectory(InMemoryUserDirectory):
    async def ping(self) -> bool:
        return False


def _payload(message_id="wamid.1", text="hola", **overrides):
    body = {
        "id": message_id,
        "conversation_id": "34600111222@c.us",
        "sender_id": "34600111222@c.us",
        "text": text,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    body.update(overrides)
    return body


def _client(admin_token=ADMIN_TOKEN, users=None):
    s = Settings(_env_file=None, admin_token=admin_token, watermark_snapshot_every=100)
    gateway = MockGateway()
    app = create_app(
        s,
        users=users if users is not None else InMemoryUserDirectory(),
        gateway=gateway,
        watermark_store=MockWatermarkStore(),
        start_scheduler=False,
    )
    return app, gateway


class TestInbound:
    def test_health(self):
        app, _ = _client()
        with TestClient(app) as client:
            assert client.get("/health").json() == {"status": "healthy"}

    def test_message_processed_and_reply_sent(self):
        app, gateway = _client()
        with TestClient(app) as client:
            resp = client.post("/gateway/messages", json=_payload())
        assert resp.status_code == 200
        data = resp.json()
        assert data["should_reply"] is True
        assert data["category"] == "greeting"
        assert data["sent"] is True
        assert gateway.sent[0][0] == "34600111222@c.us"

    def test_redelivery_is_skipped(self):
        app, gateway = _client()
        with TestClient(app) as client:
            client.post("/gateway/messages", json=_payload(message_id="dup"))
            resp = client.post("/gateway/messages", json=_payload(message_id="dup"))
        assert resp.json()["should_reply"] is False
        assert resp.json()["reason"] == "duplicate"
        assert len(gateway.sent) == 1

    def test_naive_timestamp_treated_as_utc(self):
        app, _ = _client()
        naive = datetime.now(timezone.utc).replace(tzinfo=None).isoformat()
        with TestClient(app) as client:
            resp = client.post("/gateway/messages", json=_payload(timestamp=naive))
        assert resp.status_code == 200
        assert resp.json()["should_reply"] is True

    def test_invalid_payload_rejected(self):
        app, _ = _client()
        with TestClient(app) as client:
            resp = client.post("/gateway/messages", json={"id": "x"})
        assert resp.status_code == 422

    def test_startup_aborts_when_directory_down(self):
        app, _ = _client(users=DownUserDirectory())
        with pytest.raises(DirectoryUnavailable):
            with TestClient(app):
                pass


class TestAdmin:
    def test_stats_requires_token(self):
        app, _ = _client()
        with TestClient(app) as client:
            resp = client.get("/admin/stats")
        assert resp.status_code == 401

    def test_wrong_token(self):
        app, _ = _client()
        with TestClient(app) as client:
            resp = client.get("/admin/stats", headers={"Authorization": "Bearer wrong"})
        assert resp.status_code == 401

    def test_admin_disabled_without_token(self):
        app, _ = _client(admin_token=None)
        with TestClient(app) as client:
            resp = client.get("/admin/stats", headers={"Authorization": f"Bearer {ADMIN_TOKEN}"})
        assert resp.status_code == 503

    def test_stats(self):
        app, _ = _client()
        auth = {"Authorization": f"Bearer {ADMIN_TOKEN}"}
        with TestClient(app) as client:
            client.post("/gateway/messages", json=_payload())
            resp = client.get("/admin/stats", headers=auth)
        assert resp.status_code == 200
        data = resp.json()
        assert data["processor"]["received"] == 1
        assert "help" in data["commands"]
        assert "counters" in data["metrics"]

    def test_cleanup(self):
        app, _ = _client()
        auth = {"Authorization": f"Bearer {ADMIN_TOKEN}"}
        with TestClient(app) as client:
            resp = client.post("/admin/contexts/cleanup", headers=auth)
        assert resp.status_code == 200
        assert resp.json() == {"expired": 0}

    def test_classify_requires_token(self):
        app, _ = _client()
        with TestClient(app) as client:
            resp = client.get("/admin/classify", params={"text": "hola"})
        assert resp.status_code == 401

    def test_classify(self):
        app, gateway = _client()
        auth = {"Authorization": f"Bearer {ADMIN_TOKEN}"}
        with TestClient(app) as client:
            resp = client.get("/admin/classify", params={"text": "hola, ¿qué hora es?"}, headers=auth)
            stats = client.get("/admin/stats", headers=auth).json()
        assert resp.status_code == 200
        data = resp.json()
        assert data["category"] == "greeting"
        assert data["confidence"] == 0.85
        assert data["sentiment"] == "neutral"
        assert "question" in data["secondary_categories"]
        assert "greeting" in data["matched_categories"]
        # Diagnostics only: nothing is routed or sent
        assert stats["processor"]["received"] == 0
        assert gateway.sent == []

    def test_classify_requires_text(self):
        app, _ = _client()
        auth = {"Authorization": f"Bearer {ADMIN_TOKEN}"}
        with TestClient(app) as client:
            resp = client.get("/admin/classify", headers=auth)
        assert resp.status_code == 422
