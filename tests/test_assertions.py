"""Tests for the assertion helpers.  Each returns a Verdict and never raises."""

import ssl

import pytest

from auth_sanity.assertions import (
    assert_keys_present,
    assert_no_oauth_error,
    assert_previous_versions_denied,
    assert_status,
    assert_that,
    assert_tls_at_least,
)
from auth_sanity.engine.verdict import FAIL, PASS, SKIP
from auth_sanity.tls_tester import TLSTester


def tester_accepting(*versions):
    def connect(host, port, path, context, timeout):
        if context.maximum_version.name not in versions:
            raise ssl.SSLError("handshake failure")
    return TLSTester(host="auth.example.com", port=443, connector=connect)


def test_assert_that():
    assert assert_that(True, "nope").status == PASS
    verdict = assert_that(False, "nope")
    assert verdict.status == FAIL
    assert verdict.message == "nope"


def test_assert_status():
    assert assert_status(201, 201).ok
    verdict = assert_status(400, 201, "registration endpoint")
    assert verdict.message == "Expected HTTP 201 response from registration endpoint but received 400"


def test_assert_keys_present_lists_missing():
    verdict = assert_keys_present({"client_id": "abc"}, ["client_id", "scope"], "Registration response")
    assert verdict.status == FAIL
    assert "scope" in verdict.message
    assert "client_id" not in verdict.message


def test_assert_keys_present_non_object():
    assert assert_keys_present(["a"], ["a"], "Body").status == FAIL


@pytest.mark.parametrize("body", [
    {"error": "invalid_client_metadata"},
    {"error_description": "bad redirect_uri"},
])
def test_assert_no_oauth_error_fails_on_error_keys(body):
    verdict = assert_no_oauth_error(body)
    assert verdict.status == FAIL
    assert "Error returned." in verdict.message


def test_assert_no_oauth_error_message_has_code():
    verdict = assert_no_oauth_error({"error": "invalid_client_metadata", "error_description": "no uris"})
    assert "invalid_client_metadata" in verdict.message
    assert "no uris" in verdict.message


def test_assert_no_oauth_error_passes_clean_body():
    assert assert_no_oauth_error({"client_id": "abc"}).ok


def test_tls_at_least_passes():
    assert assert_tls_at_least(tester_accepting("TLSv1_2")).ok


def test_tls_at_least_fails_with_error_text():
    verdict = assert_tls_at_least(tester_accepting())
    assert verdict.status == FAIL
    assert "handshake failure" in verdict.message


def test_tls_at_least_skips_without_pinning(monkeypatch):
    monkeypatch.setattr(TLSTester, "supports_version_pinning", classmethod(lambda cls, version=None: False))
    assert assert_tls_at_least(tester_accepting("TLSv1_2")).status == SKIP


def test_previous_versions_denied_passes():
    verdict = assert_previous_versions_denied(tester_accepting("TLSv1_2", "TLSv1_3"))
    # Platforms without any legacy protocol support skip the whole check
    assert verdict.status in (PASS, SKIP)


@pytest.mark.skipif(not TLSTester.supports_version_pinning("TLSv1_1"),
                    reason="OpenSSL built without TLS 1.1")
def test_previous_versions_denied_names_accepted_version():
    verdict = assert_previous_versions_denied(tester_accepting("TLSv1_1", "TLSv1_2"))
    assert verdict.status == FAIL
    assert "Should not allow connections with TLSv1.1" in verdict.message
