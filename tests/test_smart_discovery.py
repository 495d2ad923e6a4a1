"""SMART discovery, alone and chained into dynamic registration."""

from auth_sanity.config import RunConfig
from auth_sanity.engine.runner import RunCoordinator, Target
from auth_sanity.engine.state import InstanceState
from auth_sanity.engine.verdict import FAIL, PASS, SKIP
from auth_sanity.http_client import HTTPClient
from auth_sanity.sequences import SMART_DISCOVERY, build_registry
from auth_sanity.sequences.smart_discovery import well_known_url
from tests.mock_auth_server import MockAuthServer


def target():
    return Target(HTTPClient(timeout=5), RunConfig(disable_tls_tests=True))


def test_well_known_url():
    assert well_known_url("https://fhir.example.com/r4/") == "https://fhir.example.com/r4/.well-known/smart-configuration"


def test_endpoints_discovered():
    with MockAuthServer() as server:
        state = InstanceState({"url": server.fhir_url})
        report = RunCoordinator().run(SMART_DISCOVERY, state, target())

    assert [r.status for r in report.results] == [SKIP, PASS, PASS]
    assert state["oauth_authorize_endpoint"] == f"{server.base_url}/authorize"
    assert state["oauth_token_endpoint"] == f"{server.base_url}/token"
    assert state["oauth_register_endpoint"] == server.register_url


def test_registration_endpoint_not_advertised():
    with MockAuthServer(non_conformances={"no_registration_endpoint": True}) as server:
        state = InstanceState({"url": server.fhir_url})
        report = RunCoordinator().run(SMART_DISCOVERY, state, target())

    assert report.results[-1].status == PASS
    assert "oauth_token_endpoint" in state
    assert "oauth_register_endpoint" not in state


def test_configuration_missing():
    with MockAuthServer(non_conformances={"no_smart_configuration": True}) as server:
        state = InstanceState({"url": server.fhir_url})
        report = RunCoordinator().run(SMART_DISCOVERY, state, target())

    assert [r.status for r in report.results] == [SKIP, FAIL, SKIP]
    assert "404" in report.results[1].verdict.message
    assert report.required_failures()


def test_full_plan_registers_discovered_endpoint():
    seed = {
        "url": None,
        "client_name": "Conformance Test App",
        "initiate_login_uri": "http://localhost:4567/launch",
        "redirect_uris": ["http://localhost:4567/redirect"],
        "scopes": "launch patient/*.read",
        "confidential_client": False,
    }
    with MockAuthServer(non_conformances={"client_id": "abc"}) as server:
        seed["url"] = server.fhir_url
        registry = build_registry()
        plan = registry.plan(preseeded=seed.keys())
        state = InstanceState(seed)
        report = RunCoordinator().run_plan(plan, state, target())
        registered = len(server.requests)

    assert [r.name for r in report] == ["SmartDiscovery", "DynamicRegistration"]
    assert report.passed
    assert registered == 1
    assert state["client_id"] == "abc"
    assert report.counts()["failed"] == 0


def test_full_plan_without_registration_endpoint():
    seed = {
        "client_name": "Conformance Test App",
        "initiate_login_uri": "http://localhost:4567/launch",
        "redirect_uris": ["http://localhost:4567/redirect"],
        "scopes": "launch",
        "confidential_client": False,
    }
    with MockAuthServer(non_conformances={"no_registration_endpoint": True}) as server:
        seed["url"] = server.fhir_url
        plan = build_registry().plan(preseeded=seed.keys())
        report = RunCoordinator().run_plan(plan, InstanceState(seed), target())
        registered = len(server.requests)

    registration = report.get("DynamicRegistration")
    assert registration.halted
    assert "oauth_register_endpoint" in registration.results[0].verdict.message
    assert registered == 0
    # Registration is optional, so the run still passes
    assert report.passed
