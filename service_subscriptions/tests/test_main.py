"""
Tests for the Subscriptions service application.
"""

import json
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from fastapi.testclient import TestClient

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_subscriptions.app.main import SubscriptionsService
from service_subscriptions.app.auth.signature import SIGNATURE_HEADER, TIMESTAMP_HEADER
from service_subscriptions.app.interactions import responses
from shared.config import SubscriptionsConfig

GUILD_ID = 508392876359680000
TOKEN = {"access_token": "access", "refresh_token": "refresh", "expires_in": 2678400}
MEMBERS_PAGE = {
    "data": [{
        "attributes": {"email": "a@example.com", "patron_status": "active_patron", "last_charge_status": "Paid"},
        "relationships": {
            "user": {"data": {"id": "1", "type": "user"}},
            "currently_entitled_tiers": {"data": [{"id": "4071609", "type": "tier"}]},
        },
    }],
    "included": [{"id": "1", "type": "user", "attributes": {"social_connections": {"discord": {"user_id": "42"}}}}],
    "links": None,
}


def patreon_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("/token"):
        return httpx.Response(200, json=TOKEN)
    return httpx.Response(200, json=MEMBERS_PAGE)


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


@pytest.fixture
def private_key():
    """Interaction signing key."""
    return Ed25519PrivateKey.generate()


@pytest.fixture
def config(private_key, tmp_path):
    """Service configuration pointing at temporary storage."""
    public_key = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return SubscriptionsConfig(
        server_addr="127.0.0.1:8080",
        discord_public_key=public_key.hex(),
        discord_allowed_guilds=[GUILD_ID],
        patreon_client_id="client-id",
        patreon_client_secret="client-secret",
        patreon_campaign_id=42,
        patreon_tokens_file_path=str(tmp_path / "tokens.json"),
        patreon_requests_per_minute=6000,
    )


@pytest.fixture
def service(config):
    """Service wired to a mocked Patreon API."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(patreon_handler))
    return SubscriptionsService(config, http_client=http_client, halt=MagicMock())


@pytest.fixture
def client(service):
    """Test client without background tasks."""
    return TestClient(service.app)


def signed_post(client, private_key, payload):
    body = json.dumps(payload).encode()
    timestamp = str(int(time.time()))
    signature = private_key.sign(timestamp.encode() + body).hex()
    return client.post(
        "/interaction",
        content=body,
        headers={SIGNATURE_HEADER: signature, TIMESTAMP_HEADER: timestamp, "Content-Type": "application/json"},
    )


def lookup_payload(email="a@example.com"):
    return {
        "type": 2,
        "id": "1",
        "guild_id": str(GUILD_ID),
        "member": {"user": {"id": "80351110224678912", "username": "nelly"}},
        "data": {"name": "lookup", "options": [{"name": "email", "type": 3, "value": email}]},
    }


def test_root_endpoint(client):
    """Test root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "subscriptions"
    assert data["version"] == "1.0.0"


def test_health_check(client):
    """Test health check endpoint before any snapshot."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "subscriptions"
    assert data["status"] == "ok"
    assert data["dependencies"]["snapshot"] == "not_ready"
    assert data["dependencies"]["credentials"] == "missing"


def test_metrics_endpoint(client):
    """Test metrics endpoint."""
    client.get("/")
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "http_requests_total" in response.text


def test_signed_ping(client, private_key):
    """Test that a signed ping is answered with a pong."""
    response = signed_post(client, private_key, {"type": 1})
    assert response.status_code == 200
    assert response.json() == {"type": 1}
    assert "X-Request-ID" in response.headers


def test_missing_signature_headers(client):
    """Test that unsigned requests are unauthorized."""
    response = client.post("/interaction", content=b'{"type":1}')
    assert response.status_code == 401
    assert response.json()["code"] == "AUTHENTICATION_ERROR"


def test_bad_signature(client, private_key):
    """Test that a signature over a different body is unauthorized."""
    timestamp = str(int(time.time()))
    signature = private_key.sign(timestamp.encode() + b'{"type":2}').hex()
    response = client.post(
        "/interaction",
        content=b'{"type":1}',
        headers={SIGNATURE_HEADER: signature, TIMESTAMP_HEADER: timestamp},
    )
    assert response.status_code == 401


def test_non_ascii_timestamp_header(client, private_key):
    """Test that the timestamp header is verified as the raw bytes sent."""
    timestamp = b"1700000000\xe9"
    body = b'{"type":1}'
    response = client.post(
        "/interaction",
        content=body,
        headers={SIGNATURE_HEADER: private_key.sign(timestamp + body).hex(), TIMESTAMP_HEADER: timestamp},
    )
    assert response.status_code == 200
    assert response.json() == {"type": 1}


def test_undecodable_signature(client):
    """Test that a non-hex signature is a bad request."""
    response = client.post(
        "/interaction",
        content=b'{"type":1}',
        headers={SIGNATURE_HEADER: "zz", TIMESTAMP_HEADER: "1"},
    )
    assert response.status_code == 400


def test_signed_malformed_body(client, private_key):
    """Test that a verified but unparseable body is a bad request."""
    timestamp = "1700000000"
    body = b"not json"
    response = client.post(
        "/interaction",
        content=body,
        headers={
            SIGNATURE_HEADER: private_key.sign(timestamp.encode() + body).hex(),
            TIMESTAMP_HEADER: timestamp,
        },
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Failed to parse body"


def test_lookup_before_snapshot(client, private_key):
    """Test that a lookup before the first snapshot gets the not-ready notice."""
    response = signed_post(client, private_key, lookup_payload())
    assert response.status_code == 200
    assert response.json()["data"]["content"] == responses.NOT_READY_MESSAGE


def test_lookup_after_background_sync(service, private_key, config):
    """Test the cold start grant, first fetch and a lookup against it."""
    with TestClient(service.app) as client:
        assert wait_until(lambda: service.cache.is_ready)

        response = signed_post(client, private_key, lookup_payload())
        embed = response.json()["data"]["embeds"][0]
        assert embed["title"] == "Account Found"
        assert {"name": "Discord Account", "value": "<@42> (42)", "inline": True} in embed["fields"]

        missing = signed_post(client, private_key, lookup_payload("b@example.com"))
        assert missing.json()["data"]["embeds"][0]["title"] == "Account Not Found"

        health = client.get("/health").json()
        assert health["dependencies"]["snapshot"] == "ready"
        assert health["dependencies"]["credentials"] == "ok"

    stored = json.loads(open(config.patreon_tokens_file_path).read())
    assert stored["refresh_token"] == "refresh"
    service._halt.assert_not_called()


def test_expired_credentials_halt_service(service, config):
    """Test that expired stored credentials stop the process without fetching."""
    expired = datetime.now(timezone.utc) - timedelta(hours=1)
    with open(config.patreon_tokens_file_path, "w") as f:
        json.dump({"access_token": "a", "refresh_token": "r", "expires_at": expired.isoformat()}, f)

    with TestClient(service.app):
        assert wait_until(lambda: service._halt.called)

    assert service.cache.is_ready is False
    assert service.exit_code == 1


def test_consumer_crash_halts_service(service):
    """Test that a dead snapshot consumer stops the process with a failure status."""
    service.cache.swap = MagicMock(side_effect=RuntimeError("cache unavailable"))

    with TestClient(service.app):
        assert wait_until(lambda: service._halt.called)

    assert service.exit_code == 1
