"""Step helpers shared by several sequences."""

from urllib.parse import urlparse

from ..assertions import assert_previous_versions_denied, assert_tls_at_least
from ..engine.verdict import Verdict

TLS_DISABLED = "TLS tests have been disabled by configuration."


def endpoint_problem(uri: str):
    """Why ``uri`` cannot be probed over TLS, or ``None`` if it can."""
    parsed = urlparse(uri)
    if parsed.scheme != "https":
        return f"{uri} is not protected by transport layer security (https)"
    if not parsed.hostname:
        return f"{uri} does not name a host"
    try:
        parsed.port
    except ValueError:
        return f"{uri} has an invalid port"
    return None


def check_endpoint_tls(ctx, uri: str) -> Verdict:
    """TLS 1.2 must be accepted; accepting anything older is only a warning.

    ``uri`` may come from the server (discovery documents), so a malformed
    one is a failed check rather than a configuration error.
    """
    if ctx.config.disable_tls_tests:
        return Verdict.skip(TLS_DISABLED)
    problem = endpoint_problem(uri)
    if problem:
        return Verdict.fail(problem)
    tester = ctx.tls_tester(uri)
    verdict = assert_tls_at_least(tester, "TLSv1_2")
    if verdict.ok:
        ctx.warning(assert_previous_versions_denied(tester, "TLSv1_2"))
    return verdict
