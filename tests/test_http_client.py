"""Tests for the HTTP client (HTTPClient) against the mock authorization server.

Covers JSON POST/GET, request headers, bearer auth, transport errors
surfacing as exceptions (no retry), timeouts, and secret redaction.
"""

import pytest
import requests

from auth_sanity.http_client import HTTPClient, redact_auth
from tests.mock_auth_server import MockAuthServer


@pytest.fixture
def server():
    with MockAuthServer() as s:
        yield s


@pytest.fixture
def client():
    with HTTPClient(timeout=5) as c:
        yield c


def test_get_smart_configuration(server, client):
    resp = client.get(f"{server.fhir_url}/.well-known/smart-configuration")
    assert resp.status_code == 200
    data = resp.json()
    assert data["registration_endpoint"] == server.register_url


def test_post_json_registration(server, client):
    resp = client.post_json(server.register_url, {
        "client_name": "auth-sanity",
        "redirect_uris": ["http://localhost/redirect"],
        "scope": "launch",
        "token_endpoint_auth_method": "none",
    })
    assert resp.status_code == 201
    assert "client_id" in resp.json()
    assert "client_secret" not in resp.json()


def test_json_headers_sent(server, client):
    client.post_json(server.register_url, {"client_name": "x"})
    headers = {k.lower(): v for k, v in server.requests[0]["headers"].items()}
    assert headers["content-type"] == "application/json"
    assert headers["accept"] == "application/json"


def test_bearer_auth(server):
    with HTTPClient(token="test-token", timeout=5) as client:
        client.post_json(server.register_url, {"client_name": "x"})
    headers = {k.lower(): v for k, v in server.requests[0]["headers"].items()}
    assert headers["authorization"] == "Bearer test-token"


def test_header_lookup_is_case_insensitive(server, client):
    resp = client.get(f"{server.fhir_url}/.well-known/smart-configuration")
    assert resp.header("content-type") == "application/json"
    assert resp.header("X-Not-There") is None


def test_non_json_body_raises_value_error():
    with MockAuthServer(non_conformances={"non_json_registration": True}) as server:
        with HTTPClient(timeout=5) as client:
            resp = client.post_json(server.register_url, {"client_name": "x"})
            with pytest.raises(ValueError):
                resp.json()


def test_connection_refused_raises_without_retry(server, client):
    url = f"http://127.0.0.1:{server.port}/register"
    server.stop()
    with pytest.raises(requests.RequestException):
        client.post_json(url, {"client_name": "x"})


def test_timeout_raises():
    with MockAuthServer(non_conformances={"delay": 2}) as server:
        with HTTPClient(timeout=0.2) as client:
            with pytest.raises(requests.Timeout):
                client.post_json(server.register_url, {"client_name": "x"})
        # A single request reached the server: timeouts are not retried
        assert len(server.requests) == 1


def test_redact_auth():
    headers = {
        "Authorization": "Bearer secret-token-123",
        "Content-Type": "application/json",
    }
    redacted = redact_auth(headers)
    assert redacted["Authorization"] == "***REDACTED***"
    assert redacted["Content-Type"] == "application/json"
    # Input headers are left untouched
    assert headers["Authorization"] == "Bearer secret-token-123"
