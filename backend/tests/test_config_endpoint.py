from __future__ import annotations

from fastapi.testclient import TestClient

from app.config import get_settings


def test_webrtc_config_hides_turn_secret_from_turn_block(client: TestClient) -> None:
    settings = get_settings()
    original_servers = settings.webrtc_turn_servers
    original_username = settings.webrtc_turn_username
    original_credential = settings.webrtc_turn_credential
    settings.webrtc_turn_servers = ["turn:voice.example:3478"]
    settings.webrtc_turn_username = "voice-user"
    settings.webrtc_turn_credential = "temporary-secret"
    try:
        response = client.get("/api/config/webrtc")
    finally:
        settings.webrtc_turn_servers = original_servers
        settings.webrtc_turn_username = original_username
        settings.webrtc_turn_credential = original_credential

    assert response.status_code == 200, response.text
    payload = response.json()

    turn_block = payload["turn"]
    assert turn_block == {"urls": ["turn:voice.example:3478"], "username": "voice-user"}

    ice_servers = payload["iceServers"]
    assert any(
        isinstance(entry, dict)
        and entry.get("credential") == "temporary-secret"
        for entry in ice_servers
    ), "ICE servers should still receive the TURN credential"


def test_webrtc_config_falls_back_to_public_stun(client: TestClient) -> None:
    settings = get_settings()
    original = (settings.webrtc_ice_servers, settings.webrtc_stun_servers, settings.webrtc_turn_servers)
    settings.webrtc_ice_servers = []
    settings.webrtc_stun_servers = []
    settings.webrtc_turn_servers = []
    try:
        response = client.get("/api/config/webrtc")
    finally:
        (
            settings.webrtc_ice_servers,
            settings.webrtc_stun_servers,
            settings.webrtc_turn_servers,
        ) = original

    assert response.status_code == 200, response.text
    assert response.json()["iceServers"] == [
        {"urls": ["stun:stun.l.google.com:19302"], "username": None, "credential": None}
    ]


def test_health_and_metrics(client: TestClient) -> None:
    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert metrics.headers["cache-control"] == "no-store"
    assert metrics.headers["content-type"].startswith("text/plain")
    assert "# TYPE realtime_events_total counter" in metrics.text
    assert "# TYPE realtime_online_identities gauge" in metrics.text
