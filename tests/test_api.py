"""
REST control surface and the /ws/host, /ws/panel sockets through FastAPI's TestClient.
"""

import base64
import dataclasses
import json

import pytest
from fastapi.testclient import TestClient

from splice_alt.config import MemorySettingsStore
from splice_alt.engine import CorrelationEngine
from splice_alt.host import HostRelay
from splice_alt.main import create_app

from conftest import KICK_ITEM, ORIGIN_URL, SINGLE_URL


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.fixture
def app_parts(fast_settings):
    relay = HostRelay()
    engine = CorrelationEngine(fast_settings, relay, settings_store=MemorySettingsStore())
    return create_app(fast_settings, engine, relay), engine, relay


@pytest.fixture
def client(app_parts):
    with TestClient(app_parts[0]) as client:
        yield client


class TestRestSurface:

    def test_root_and_health(self, client):
        status = client.get("/").json()
        assert status["status"] == "running"
        assert status["connections"] == {"extension": 0, "panels": 0}

        assert client.get("/health").json()["status"] == "healthy"

    def test_config_partial_update(self, client):
        assert client.get("/config").json() == {"enabled": True, "autoCapture": True}

        response = client.post("/config", json={"enabled": False})
        assert response.status_code == 200
        assert response.json()["config"] == {"enabled": False, "autoCapture": True}
        assert client.get("/config").json() == {"enabled": False, "autoCapture": True}

    def test_ingest_records_stats_and_clear(self, client):
        response = client.post("/ingest", json={"url": SINGLE_URL, "body": json.dumps(KICK_ITEM)})
        assert response.json() == {"status": "ok", "records": 1, "filenames": ["kick_808.wav"]}

        records = client.get("/records").json()
        assert records["count"] == 1
        assert records["records"][0]["category"] == "Kick"
        assert records["records"][0]["pack_name"] == "808 Essentials"

        stats = client.get("/stats").json()
        assert stats["recordCount"] == 4
        assert stats["distinctRecords"] == 1

        assert client.delete("/cache").json() == {"success": True, "keys_removed": 4}
        assert client.get("/stats").json()["recordCount"] == 0

    def test_ingest_ignored_when_disabled_or_unlisted(self, client):
        body = json.dumps(KICK_ITEM)
        unlisted = client.post("/ingest", json={"url": "https://example.com/v2/premium/samples/s1", "body": body})
        assert unlisted.json()["status"] == "ignored"

        client.post("/config", json={"autoCapture": False})
        disabled = client.post("/ingest", json={"url": SINGLE_URL, "body": body})
        assert disabled.json()["status"] == "ignored"

    def test_unknown_blob(self, client):
        assert client.get("/blobs/does-not-exist").status_code == 404

    def test_session_context(self, client, app_parts):
        response = client.post("/session/context", json={
            "baseUrl": "https://api.splice.com",
            "cookies": {"sid": "abc"},
            "headers": {},
        })

        assert response.json()["valid"] is True
        assert app_parts[1].session.cookies == {"sid": "abc"}


class TestHostSocket:

    def test_capture_correlate_and_write(self, client):
        with client.websocket_connect("/ws/panel") as panel, client.websocket_connect("/ws/host") as host:
            subscribe = host.receive_json()
            assert subscribe["type"] == "SUBSCRIBE"
            assert "*://api.splice.com/*" in subscribe["urlPatterns"]

            body = json.dumps(KICK_ITEM).encode("utf-8")
            host.send_json({"type": "RESPONSE_STARTED", "requestId": "r1", "url": SINGLE_URL})
            for part in (body[:17], body[17:]):
                host.send_json({"type": "RESPONSE_CHUNK", "requestId": "r1", "data": b64(part)})
                forwarded = host.receive_json()
                assert forwarded["type"] == "FORWARD_CHUNK"
                assert base64.b64decode(forwarded["data"]) == part
            host.send_json({"type": "RESPONSE_STOPPED", "requestId": "r1"})
            assert host.receive_json() == {"type": "RELEASE", "requestId": "r1"}

            captured = panel.receive_json()
            assert captured["type"] == "METADATA_CAPTURED"
            assert captured["filename"] == "kick_808.wav"

            host.send_json({"type": "FILE_SAVED", "fullPath": "/home/u/Splice/kick_808.wav", "originUrl": ORIGIN_URL})
            write = host.receive_json()
            assert write["type"] == "WRITE_FILE"
            assert write["filename"] == "kick_808.json"
            assert write["directory"] == "/home/u/Splice"
            assert write["conflictAction"] == "overwrite"
            assert write["saveAs"] is False

            blob = client.get(write["url"].replace("http://testserver", ""))
            assert blob.status_code == 200
            assert blob.json() == KICK_ITEM
            assert 'filename="kick_808.json"' in blob.headers["content-disposition"]

            host.send_json({"type": "WRITE_RESULT", "writeRequestId": write["writeRequestId"], "ok": True, "writeId": 7})
            created = panel.receive_json()
            assert created["type"] == "JSON_CREATED"
            assert created["jsonFilename"] == "kick_808.json"

            host.send_json({"type": "GET_STATS", "messageId": "m1"})
            stats = host.receive_json()
            assert stats["type"] == "STATS"
            assert stats["replyTo"] == "m1"
            assert stats["processedCount"] == 1

    def test_bad_messages_keep_socket_open(self, client):
        with client.websocket_connect("/ws/host") as host:
            host.receive_json()

            host.send_text("this is not json")
            host.send_json({"type": "SOMETHING_NEW"})
            assert host.receive_json() == {"type": "ERROR", "error": "Unknown message type"}

            host.send_json({"type": "GET_CONFIG"})
            assert host.receive_json() == {"type": "CONFIG", "enabled": True, "autoCapture": True}

    def test_config_and_clear_over_socket(self, client, app_parts):
        engine = app_parts[1]
        client.post("/ingest", json={"url": SINGLE_URL, "body": json.dumps(KICK_ITEM)})

        with client.websocket_connect("/ws/host") as host:
            host.receive_json()

            host.send_json({"type": "UPDATE_CONFIG", "config": {"enabled": False}})
            reply = host.receive_json()
            assert reply["type"] == "UPDATE_CONFIG_RESULT"
            assert reply["config"] == {"enabled": False, "autoCapture": True}

            host.send_json({"type": "CLEAR_METADATA"})
            assert host.receive_json() == {"type": "CLEAR_METADATA_RESULT", "success": True}

            host.send_json({"type": "METADATA_INTERCEPTED", "url": SINGLE_URL, "data": {}})
            assert host.receive_json() == {"type": "ACK", "success": True}

        assert len(engine.cache) == 0
        assert engine.get_config().enabled is False

    def test_uncaptured_response_is_released_at_once(self, client):
        with client.websocket_connect("/ws/host") as host:
            host.receive_json()

            host.send_json({"type": "RESPONSE_STARTED", "requestId": "p1", "url": "https://api.splice.com/v2/packs/p1"})
            assert host.receive_json() == {"type": "RELEASE", "requestId": "p1"}

            host.send_json({"type": "UPDATE_CONFIG", "config": {"autoCapture": False}})
            host.receive_json()
            host.send_json({"type": "RESPONSE_STARTED", "requestId": "s1", "url": SINGLE_URL})
            assert host.receive_json() == {"type": "RELEASE", "requestId": "s1"}

    def test_panel_stats_request(self, client):
        with client.websocket_connect("/ws/panel") as panel:
            panel.send_json({"type": "GET_STATS"})
            stats = panel.receive_json()

        assert stats["type"] == "STATS"
        assert stats["recordCount"] == 0


def test_local_write_mode(fast_settings, tmp_path):
    settings = dataclasses.replace(fast_settings, write_mode="local")
    app = create_app(settings)
    target_dir = tmp_path / "Splice"
    target_dir.mkdir()

    with TestClient(app) as client:
        client.post("/ingest", json={"url": SINGLE_URL, "body": json.dumps(KICK_ITEM)})
        with client.websocket_connect("/ws/panel") as panel, client.websocket_connect("/ws/host") as host:
            host.receive_json()
            host.send_json({"type": "FILE_SAVED", "fullPath": str(target_dir / "kick_808.wav"), "originUrl": ORIGIN_URL})
            created = panel.receive_json()

    assert created["type"] == "JSON_CREATED"
    assert json.loads((target_dir / "kick_808.json").read_text(encoding="utf-8")) == KICK_ITEM
