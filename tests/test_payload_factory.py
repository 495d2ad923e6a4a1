"""Tests for the registration request factory."""

import pytest

from auth_sanity.payload_factory import auth_method, make_registration_request


def test_public_client_request():
    payload = make_registration_request(
        client_name="Test App",
        initiate_login_uri="http://localhost/launch",
        redirect_uris=["http://localhost/redirect"],
        scope="launch openid",
    )
    assert payload == {
        "client_name": "Test App",
        "initiate_login_uri": "http://localhost/launch",
        "redirect_uris": ["http://localhost/redirect"],
        "grant_types": ["authorization_code"],
        "scope": "launch openid",
        "token_endpoint_auth_method": "none",
    }


def test_single_redirect_uri_wrapped():
    payload = make_registration_request("App", "http://l/launch", "http://l/redirect", "launch")
    assert payload["redirect_uris"] == ["http://l/redirect"]


def test_confidential_client_uses_basic_auth():
    payload = make_registration_request("App", "http://l/launch", [], "launch", confidential_client=True)
    assert payload["token_endpoint_auth_method"] == "client_secret_basic"


@pytest.mark.parametrize("confidential, method", [(True, "client_secret_basic"), (False, "none")])
def test_auth_method(confidential, method):
    assert auth_method(confidential) == method


def test_payloads_do_not_share_lists():
    uris = ["http://l/redirect"]
    a = make_registration_request("App", "http://l/launch", uris, "launch")
    a["redirect_uris"].append("http://evil")
    a["grant_types"].append("implicit")
    b = make_registration_request("App", "http://l/launch", uris, "launch")
    assert b["redirect_uris"] == ["http://l/redirect"]
    assert b["grant_types"] == ["authorization_code"]
