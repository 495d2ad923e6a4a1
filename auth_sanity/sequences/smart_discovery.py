"""SMART on FHIR discovery sequence.

Reads ``[url]/.well-known/smart-configuration`` and publishes the OAuth
endpoints it advertises into the instance state, so that registration and
launch sequences can run without the user typing endpoints in by hand.
"""

from ..assertions import assert_keys_present, assert_status, assert_that
from ..engine.sequence import Sequence, Step
from ..engine.verdict import Verdict
from .common import check_endpoint_tls

WELL_KNOWN_PATH = "/.well-known/smart-configuration"
SMART_CONFORMANCE_LINK = "http://hl7.org/fhir/smart-app-launch/conformance/index.html"


def well_known_url(base_url: str) -> str:
    return base_url.rstrip("/") + WELL_KNOWN_PATH


def _server_tls(ctx):
    return check_endpoint_tls(ctx, ctx.require("url"))


def _configuration_available(ctx):
    resp = ctx.client.get(well_known_url(ctx.require("url")))
    verdict = assert_status(resp.status_code, 200, "the SMART configuration endpoint")
    if not verdict.ok:
        return verdict
    body = resp.json()
    ctx.scratch["smart_configuration"] = body
    return assert_that(isinstance(body, dict), "SMART configuration is not a JSON object")


def _configuration_endpoints(ctx):
    config = ctx.scratch["smart_configuration"]
    verdict = assert_keys_present(
        config, ["authorization_endpoint", "token_endpoint"], "SMART configuration",
    )
    if not verdict.ok:
        return verdict

    ctx.define("oauth_authorize_endpoint", config["authorization_endpoint"])
    ctx.define("oauth_token_endpoint", config["token_endpoint"])
    if config.get("registration_endpoint"):
        ctx.define("oauth_register_endpoint", config["registration_endpoint"])
        return Verdict.passed("Authorization, token and registration endpoints discovered")
    return Verdict.passed("Authorization and token endpoints discovered; no registration endpoint advertised")


SMART_DISCOVERY = Sequence(
    name="SmartDiscovery",
    title="SMART Configuration Discovery",
    description="Retrieve the server's OAuth 2.0 endpoints from its SMART configuration.",
    test_id_prefix="SD",
    requires={"url"},
    defines={"oauth_authorize_endpoint", "oauth_token_endpoint", "oauth_register_endpoint"},
    steps=(
        Step(
            id="01",
            name="FHIR server secured by transport layer security",
            link="https://www.hl7.org/fhir/security.html",
            description="All exchanges with the FHIR server MUST be secured using TLS 1.2 or later.",
            optional=True,
            body=_server_tls,
        ),
        Step(
            id="02",
            name="SMART configuration is available",
            link=SMART_CONFORMANCE_LINK,
            ref="Using .well-known",
            description=(
                "The server MUST respond to GET [base]/.well-known/smart-configuration "
                "with HTTP 200 and a JSON document."
            ),
            precondition=True,
            body=_configuration_available,
        ),
        Step(
            id="03",
            name="SMART configuration contains required OAuth endpoints",
            link=SMART_CONFORMANCE_LINK,
            ref="Metadata",
            description=(
                "The configuration MUST include authorization_endpoint and token_endpoint; "
                "registration_endpoint is included when dynamic registration is supported."
            ),
            body=_configuration_endpoints,
        ),
    ),
)
