"""Tests for the pinned-version TLS tester.

Handshake outcomes are simulated with an injected connector acting as a
deterministic "server accepts version v" oracle.  Real-socket tests cover a
plain-HTTP server and a closed port (every handshake fails) and a local
HTTPS server with a self-signed certificate (full handshake and GET).
"""

import ssl

import pytest

from auth_sanity.errors import ConfigurationError
from auth_sanity.tls_tester import (
    PROTOCOL_VERSIONS,
    TLSTester,
    human_label,
    versions_below,
)
from tests.mock_auth_server import MockAuthServer, make_self_signed_cert, server_tls_context


def oracle(accepted, calls=None):
    """Connector that completes only for versions in ``accepted``."""
    def connect(host, port, path, context, timeout):
        if calls is not None:
            calls.append((host, port, path, context.minimum_version, context.maximum_version))
        if context.maximum_version.name not in accepted:
            raise ssl.SSLError(f"unsupported protocol {context.maximum_version.name}")
    return connect


class TestConstruction:

    def test_uri_sets_host_port_and_path(self):
        tester = TLSTester(uri="https://auth.example.com:8443/oauth/register?x=1")
        assert tester.host == "auth.example.com"
        assert tester.port == 8443
        assert tester.path == "/oauth/register?x=1"

    def test_uri_without_port_defaults_to_443(self):
        tester = TLSTester(uri="https://auth.example.com/register")
        assert tester.port == 443

    def test_host_and_port(self):
        tester = TLSTester(host="auth.example.com", port=443)
        assert (tester.host, tester.port, tester.path) == ("auth.example.com", 443, "/")

    def test_missing_target_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            TLSTester()

    def test_host_without_port_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            TLSTester(host="auth.example.com")


class TestVersionHelpers:

    def test_at_least_four_versions_known(self):
        assert len(PROTOCOL_VERSIONS) >= 4

    def test_human_label(self):
        assert human_label("TLSv1_1") == "TLSv1.1"
        assert human_label("SSLv3") == "SSLv3.0"

    def test_unknown_version(self):
        with pytest.raises(ConfigurationError):
            human_label("TLSv9")

    def test_versions_below(self):
        assert versions_below("TLSv1_2") == ("SSLv3", "TLSv1", "TLSv1_1")
        assert versions_below("SSLv3") == ()

    def test_supports_version_pinning_is_boolean(self):
        assert isinstance(TLSTester.supports_version_pinning(), bool)
        assert TLSTester.supports_version_pinning("TLSv1_2") is True


class TestSimulatedHandshake:

    def test_context_is_pinned_to_one_version(self):
        calls = []
        tester = TLSTester(uri="https://auth.example.com/register", connector=oracle({"TLSv1_2"}, calls))
        tester.probe_must_allow("TLSv1_2")
        host, port, path, minimum, maximum = calls[0]
        assert (host, port, path) == ("auth.example.com", 443, "/register")
        assert minimum == maximum == ssl.TLSVersion.TLSv1_2

    def test_context_verifies_peer(self):
        tester = TLSTester(uri="https://auth.example.com/")
        ctx = tester.build_context("TLSv1_2")
        assert ctx.verify_mode == ssl.CERT_REQUIRED
        assert ctx.check_hostname is True

    def test_allow_success(self):
        tester = TLSTester(host="h", port=443, connector=oracle({"TLSv1_2"}))
        outcome = tester.probe_must_allow("TLSv1_2")
        assert outcome.allowed is True
        assert "TLSv1.2" in outcome.detail

    def test_allow_failure_keeps_error_text(self):
        tester = TLSTester(host="h", port=443, connector=oracle(set()))
        outcome = tester.probe_must_allow("TLSv1_2")
        assert outcome.allowed is False
        assert "unsupported protocol TLSv1_2" in outcome.detail

    def test_deny_reports_violation_when_accepted(self):
        tester = TLSTester(host="h", port=443, connector=oracle({"TLSv1_1"}))
        outcome = tester.probe_must_deny("TLSv1_1", "TLSv1.1")
        assert outcome.allowed is False
        assert outcome.detail == "Should not allow connections with TLSv1.1"

    def test_deny_success(self):
        tester = TLSTester(host="h", port=443, connector=oracle({"TLSv1_2"}))
        outcome = tester.probe_must_deny("TLSv1_1", "TLSv1.1")
        assert outcome.allowed is True
        assert "Correctly denied" in outcome.detail

    @pytest.mark.parametrize("accepted", [set(), {"TLSv1_2"}, {"TLSv1_2", "TLSv1_3"}])
    @pytest.mark.parametrize("version", ["TLSv1_2", "TLSv1_3"])
    def test_allow_and_deny_are_complements(self, accepted, version):
        tester = TLSTester(host="h", port=443, connector=oracle(accepted))
        allow = tester.probe_must_allow(version)
        deny = tester.probe_must_deny(version, human_label(version))
        assert allow.allowed != deny.allowed
        assert allow.allowed == (version in accepted)

    def test_timeout_counts_as_denial(self):
        def timeout_connector(host, port, path, context, timeout):
            raise TimeoutError("timed out")

        tester = TLSTester(host="h", port=443, connector=timeout_connector)
        assert tester.probe_must_deny("TLSv1_1", "TLSv1.1").allowed is True
        assert tester.probe_must_allow("TLSv1_2").allowed is False

    def test_no_retry(self):
        calls = []
        tester = TLSTester(host="h", port=443, connector=oracle(set(), calls))
        tester.probe_must_allow("TLSv1_2")
        assert len(calls) == 1

    def test_convenience_probes(self):
        tester = TLSTester(host="h", port=443, connector=oracle({"TLSv1_2"}))
        assert tester.verify_ensure_tls_1_2().allowed
        assert tester.verify_deny_tls_1_1().allowed
        assert tester.verify_deny_tls_1_0().detail.startswith("Correctly denied")


class TestRealSocket:

    def test_plain_http_server_fails_tls_handshake(self):
        with MockAuthServer() as server:
            tester = TLSTester(host="127.0.0.1", port=server.port, timeout=5)
            allow = tester.probe_must_allow("TLSv1_2")
            deny = tester.probe_must_deny("TLSv1_2", "TLSv1.2")
        assert allow.allowed is False
        assert allow.detail.startswith("Caught TLS error")
        assert deny.allowed is True

    def test_closed_port_is_transport_error(self):
        with MockAuthServer() as server:
            port = server.port
        tester = TLSTester(host="127.0.0.1", port=port, timeout=2)
        assert tester.probe_must_allow("TLSv1_2").allowed is False


@pytest.fixture
def tls_server(tmp_path):
    """HTTPS mock server accepting TLS 1.2 and newer, plus its CA bundle."""
    cert_path, key_path = make_self_signed_cert(tmp_path)
    with MockAuthServer(ssl_context=server_tls_context(cert_path, key_path)) as server:
        yield server, cert_path


class TestRealHandshake:

    def test_tls_1_2_allowed(self, tls_server):
        server, ca_bundle = tls_server
        tester = TLSTester(uri=f"{server.fhir_url}/.well-known/smart-configuration", timeout=5, ca_bundle=ca_bundle)
        outcome = tester.probe_must_allow("TLSv1_2")
        assert outcome.allowed is True, outcome.detail
        assert outcome.detail == "Allowed connection with TLSv1.2"

    @pytest.mark.skipif(not TLSTester.supports_version_pinning("TLSv1_3"),
                        reason="OpenSSL built without TLS 1.3")
    def test_tls_1_3_allowed(self, tls_server):
        server, ca_bundle = tls_server
        tester = TLSTester(uri=server.fhir_url, timeout=5, ca_bundle=ca_bundle)
        assert tester.probe_must_allow("TLSv1_3").allowed is True

    @pytest.mark.skipif(not TLSTester.supports_version_pinning("TLSv1_1"),
                        reason="OpenSSL built without TLS 1.1")
    def test_tls_1_1_denied(self, tls_server):
        server, ca_bundle = tls_server
        tester = TLSTester(uri=server.fhir_url, timeout=5, ca_bundle=ca_bundle)
        outcome = tester.verify_deny_tls_1_1()
        assert outcome.allowed is True
        assert outcome.detail.startswith("Correctly denied")

    def test_untrusted_certificate_fails(self, tls_server):
        server, _ = tls_server
        tester = TLSTester(uri=server.fhir_url, timeout=5)
        outcome = tester.probe_must_allow("TLSv1_2")
        assert outcome.allowed is False
        assert "certificate" in outcome.detail.lower()

    def test_serves_requests_after_failed_handshake(self, tls_server):
        server, ca_bundle = tls_server
        TLSTester(uri=server.fhir_url, timeout=5).probe_must_allow("TLSv1_2")
        tester = TLSTester(uri=server.fhir_url, timeout=5, ca_bundle=ca_bundle)
        assert tester.probe_must_allow("TLSv1_2").allowed is True
