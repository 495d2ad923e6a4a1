"""Assertion helpers that turn conditions and probe outcomes into verdicts.

Every helper returns a ``Verdict`` and never raises for a conformance
problem; the run coordinator alone decides what is recorded and what
propagates.  Typical step body::

    verdict = assert_tls_at_least(tester)
    if not verdict.ok:
        return verdict
    ctx.warning(assert_previous_versions_denied(tester))
"""

from typing import Any, Iterable, Mapping, Optional

from .engine.verdict import Verdict
from .tls_tester import TLSTester, human_label, versions_below


def assert_that(condition: Any, message: str) -> Verdict:
    """Pass if ``condition`` is truthy, otherwise fail with ``message``."""
    return Verdict.passed() if condition else Verdict.fail(message)


def assert_status(actual: int, expected: int, what: str = "server") -> Verdict:
    return assert_that(
        actual == expected,
        f"Expected HTTP {expected} response from {what} but received {actual}",
    )


def assert_keys_present(body: Optional[Mapping[str, Any]], keys: Iterable[str], what: str) -> Verdict:
    """Fail listing every key from ``keys`` missing in ``body``."""
    keys = list(keys)
    if not isinstance(body, Mapping):
        return Verdict.fail(f"{what} is not a JSON object")
    missing = [k for k in keys if k not in body]
    return assert_that(
        not missing,
        f"{what} did not include {', '.join(missing)} field(s) in JSON body",
    )


def assert_no_oauth_error(body: Optional[Mapping[str, Any]]) -> Verdict:
    """Fail when an OAuth error response (``error``/``error_description``) is present."""
    if not isinstance(body, Mapping):
        return Verdict.passed()
    has_error = "error" in body or "error_description" in body
    return assert_that(
        not has_error,
        f"Error returned.  Error: {body.get('error')}, "
        f"Description: {body.get('error_description')}",
    )


def assert_tls_at_least(tester: TLSTester, version: str = "TLSv1_2") -> Verdict:
    """Pass if the endpoint accepts a connection pinned to ``version``.

    Skips instead of failing when this interpreter cannot pin the version.
    """
    if not TLSTester.supports_version_pinning(version):
        return Verdict.skip(f"{human_label(version)} pinning is not supported on this platform")
    outcome = tester.probe_must_allow(version)
    return Verdict.passed(outcome.detail) if outcome.allowed else Verdict.fail(outcome.detail)


def assert_previous_versions_denied(tester: TLSTester, minimum: str = "TLSv1_2") -> Verdict:
    """Pass if every version older than ``minimum`` is refused.

    Versions the local OpenSSL cannot speak are left out of the check; a
    client that cannot offer a version cannot prove the server refuses it.
    """
    accepted = []
    probed = []
    for version in versions_below(minimum):
        if not TLSTester.supports_version_pinning(version):
            continue
        probed.append(human_label(version))
        outcome = tester.probe_must_deny(version, human_label(version))
        if not outcome.allowed:
            accepted.append(outcome.detail)
    if not probed:
        return Verdict.skip(f"No protocol versions below {human_label(minimum)} can be tested on this platform")
    if accepted:
        return Verdict.fail("; ".join(accepted))
    return Verdict.passed(f"Denied {', '.join(probed)}")
