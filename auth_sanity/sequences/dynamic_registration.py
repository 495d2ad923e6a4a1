"""OAuth 2.0 Dynamic Client Registration sequence (RFC 7591).

Registers one client instance with the authorization server.  The request
is built from the instance state (client name, launch/redirect URIs,
scopes, public vs confidential), and on success the issued ``client_id``,
granted ``scopes`` and, for confidential clients, ``client_secret`` are
stored for the launch sequences that run later.

Registration is optional in the SMART App Launch framework, so the whole
sequence is optional.  Run it once as a public and once as a confidential
client to cover both modes.

Steps:

- DR-01: registration endpoint secured by TLS (optional)
- DR-02: endpoint accepts a JSON POST (precondition)
- DR-03: response is not an OAuth error (precondition)
- DR-04: HTTP 201 with ``client_id`` and ``scope``; defines state
"""

from ..assertions import (
    assert_keys_present,
    assert_no_oauth_error,
    assert_status,
    assert_that,
)
from ..engine.sequence import Sequence, Step
from ..engine.verdict import Verdict
from ..payload_factory import make_registration_request
from .common import check_endpoint_tls

RFC7591_LINK = "https://tools.ietf.org/html/rfc7591"


def _registration_endpoint_tls(ctx):
    return check_endpoint_tls(ctx, ctx.require("oauth_register_endpoint"))


def _accepts_post(ctx):
    payload = make_registration_request(
        client_name=ctx.require("client_name"),
        initiate_login_uri=ctx.require("initiate_login_uri"),
        redirect_uris=ctx.require("redirect_uris"),
        scope=ctx.require("scopes"),
        confidential_client=bool(ctx.require("confidential_client")),
    )
    resp = ctx.client.post_json(ctx.require("oauth_register_endpoint"), payload)
    body = resp.json()
    ctx.scratch["registration_response"] = resp
    ctx.scratch["registration_body"] = body
    return assert_that(
        isinstance(body, dict),
        f"Registration endpoint did not respond with a JSON object (HTTP {resp.status_code})",
    )


def _no_error(ctx):
    return assert_no_oauth_error(ctx.scratch["registration_body"])


def _created_with_required_fields(ctx):
    resp = ctx.scratch["registration_response"]
    body = ctx.scratch["registration_body"]

    verdict = assert_status(resp.status_code, 201, "registration endpoint")
    if not verdict.ok:
        return verdict
    verdict = assert_keys_present(body, ["client_id", "scope"], "Registration response")
    if not verdict.ok:
        return verdict

    ctx.define("client_id", body["client_id"])
    ctx.define("scopes", body["scope"])
    ctx.define("dynamically_registered", True)

    if ctx.require("confidential_client"):
        if body.get("client_secret"):
            ctx.define("client_secret", body["client_secret"])
        else:
            ctx.warning(Verdict.fail("Registration response did not include client_secret for a confidential client"))

    return Verdict.passed(f"Registered client_id {body['client_id']}")


DYNAMIC_REGISTRATION = Sequence(
    name="DynamicRegistration",
    title="Dynamic Registration",
    description="Verify that the server supports the OAuth 2.0 Dynamic Client Registration Protocol.",
    details=(
        "An app requesting patient data on behalf of a user must first be registered "
        "with the EHR's authorization service, either manually or programmatically "
        "using the OAuth 2.0 Dynamic Client Registration Protocol.  This sequence "
        "registers a single public or confidential client with the configured scopes "
        "and stores the issued client id, scopes and (if confidential) secret for the "
        "app launch sequences."
    ),
    test_id_prefix="DR",
    optional=True,
    requires={
        "oauth_register_endpoint",
        "client_name",
        "initiate_login_uri",
        "redirect_uris",
        "scopes",
        "confidential_client",
    },
    defines={"client_id", "client_secret", "scopes", "dynamically_registered"},
    steps=(
        Step(
            id="01",
            name="Client registration endpoint secured by transport layer security",
            link="https://www.hl7.org/fhir/security.html",
            description="The client registration endpoint MUST be protected by a transport layer security.",
            optional=True,
            body=_registration_endpoint_tls,
        ),
        Step(
            id="02",
            name="Client registration endpoint accepts POST messages",
            link=RFC7591_LINK,
            ref="Section 3.1",
            description=(
                "The client registration endpoint MUST accept HTTP POST messages with request "
                'parameters encoded in the entity body using the "application/json" format.'
            ),
            precondition=True,
            body=_accepts_post,
        ),
        Step(
            id="03",
            name="Registration endpoint does not respond with an error",
            link=RFC7591_LINK,
            ref="Section 3.2.2",
            description=(
                "When an OAuth 2.0 error condition occurs, such as the client presenting an "
                "invalid initial access token, the authorization server returns an error "
                "response appropriate to the OAuth 2.0 token type."
            ),
            precondition=True,
            body=_no_error,
        ),
        Step(
            id="04",
            name="Registration endpoint responds with HTTP 201 and body contains JSON with required fields",
            link=RFC7591_LINK,
            ref="Section 3.2.1",
            description=(
                'The server responds with an HTTP 201 Created status code and a body of type '
                '"application/json" with content as described in Section 3.2.1.'
            ),
            body=_created_with_required_fields,
        ),
    ),
)
