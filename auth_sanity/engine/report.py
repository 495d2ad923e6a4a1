"""Run reports and their terminal / JSON renderings.

Two output modes are supported:

- **Terminal** — ANSI-colored output grouped by sequence, with a summary
  line showing pass/fail/warn/skip/error counts, followed by a prioritised
  fix summary when required checks fail.
- **JSON** — Machine-readable output with ``summary``, ``issues`` and
  ``sequences`` keys, suitable for CI/CD pipelines.

Optional steps and steps of optional sequences are reported like any other
but never counted as required failures.
"""

import json
import sys
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .verdict import ERROR, FAIL, PASS, SKIP, WARN, StepResult

# State keys whose values never appear in rendered output
SECRET_KEYS = frozenset({"client_secret", "access_token", "refresh_token", "id_token"})


class SequenceRunReport:
    """Ordered step results of one sequence run.

    Attributes:
        sequence:  The ``Sequence`` definition that ran.
        results:   One ``StepResult`` per step reached.
        state:     Snapshot of the sequence's requires/defines keys at completion.
        cancelled: The run was cancelled before every step started.
        halted:    A state error stopped the sequence early.
    """

    def __init__(self, sequence, results: List[StepResult], state: Dict[str, Any],
                 cancelled: bool = False, halted: bool = False):
        self.sequence = sequence
        self.results = results
        self.state = state
        self.cancelled = cancelled
        self.halted = halted

    @property
    def name(self) -> str:
        return self.sequence.name

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if r.verdict.is_failure)

    def required_failures(self) -> List[StepResult]:
        """Failed or errored steps that count toward certification."""
        if self.sequence.optional:
            return []
        return [r for r in self.results if r.verdict.is_failure and not r.optional]

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.sequence.name,
            "title": self.sequence.title,
            "optional": self.sequence.optional,
            "results": [r.to_dict() for r in self.results],
            "state": redact_state(self.state),
        }
        if self.cancelled:
            d["cancelled"] = True
        if self.halted:
            d["halted"] = True
        return d


class RunReport:
    """Sequence reports for a whole plan, in plan order."""

    def __init__(self, sequences: List[SequenceRunReport], cancelled: bool = False):
        self.sequences = sequences
        self.cancelled = cancelled

    def __iter__(self):
        return iter(self.sequences)

    def __len__(self):
        return len(self.sequences)

    def get(self, name: str) -> Optional[SequenceRunReport]:
        for report in self.sequences:
            if report.name == name:
                return report
        return None

    def results(self) -> List[StepResult]:
        return [r for report in self.sequences for r in report.results]

    def required_failures(self) -> List[StepResult]:
        return [r for report in self.sequences for r in report.required_failures()]

    @property
    def passed(self) -> bool:
        """True when no required step failed or errored."""
        return not self.required_failures()

    def counts(self) -> Dict[str, int]:
        """Totals across primary verdicts; warnings include attached warnings."""
        results = self.results()
        return {
            "total": len(results),
            "passed": sum(1 for r in results if r.status == PASS),
            "failed": sum(1 for r in results if r.status == FAIL),
            "warnings": sum(1 for r in results if r.status == WARN) + sum(len(r.warnings) for r in results),
            "skipped": sum(1 for r in results if r.status == SKIP),
            "errors": sum(1 for r in results if r.status == ERROR),
            "required_failures": len(self.required_failures()),
        }


def redact_state(state: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of ``state`` with secret values replaced by ``***REDACTED***``."""
    return {
        k: ("***REDACTED***" if k in SECRET_KEYS and v is not None else v)
        for k, v in state.items()
    }


# ---------------------------------------------------------------------------
# Known issue patterns
# Each entry: (priority, title, message_substring_or_None, id_prefix_or_None,
#              rationale, fix)
#
# message_substring: matched against the verdict message (None = use id_prefix)
# id_prefix:         matched against StepResult.test_id (None = use message_substring)
# ---------------------------------------------------------------------------
_KNOWN_ISSUES: List[Tuple[str, str, Any, Any, str, str]] = [
    (
        "P1",
        "Endpoint does not accept TLS 1.2",
        "Caught TLS error",
        None,
        "Clients that pin TLS 1.2 or later cannot connect at all, so no other "
        "authorization flow can even start.",
        "Enable TLS 1.2 (or later) with a certificate chaining to a public root",
    ),
    (
        "P2",
        "SMART configuration not published",
        None,
        "SD-",
        "Apps discover the authorize, token and registration endpoints from "
        ".well-known/smart-configuration; without it every launch needs manual setup.",
        "Serve GET [base]/.well-known/smart-configuration as application/json",
    ),
    (
        "P3",
        "Dynamic registration rejected the client metadata",
        "Error returned.",
        None,
        "RFC 7591 clients treat an error object as a failed registration and "
        "cannot obtain a client_id for later launch sequences.",
        "Accept the registration request fields (client_name, redirect_uris, "
        "grant_types, scope, token_endpoint_auth_method)",
    ),
    (
        "P4",
        "Registration response is not 201 with client_id and scope",
        None,
        "DR-04",
        "Without client_id and the granted scope the app cannot build an "
        "authorization request.",
        "Return HTTP 201 Created with client_id and scope (and client_secret "
        "for confidential clients)",
    ),
]


def _colorize(text: str, color: str) -> str:
    """Apply ANSI color codes.  Returns plain text when stdout is not a TTY."""
    colors = {
        "red": "\033[91m",
        "green": "\033[92m",
        "yellow": "\033[93m",
        "bold": "\033[1m",
        "dim": "\033[2m",
        "reset": "\033[0m",
    }
    if not sys.stdout.isatty():
        return text
    return f"{colors.get(color, '')}{text}{colors['reset']}"


# Maps verdict status to (display label, ANSI color)
_STATUS_SYMBOLS = {
    PASS: ("PASS", "bold"),
    FAIL: ("FAIL", "red"),
    WARN: ("WARN", "dim"),
    SKIP: ("SKIP", "dim"),
    ERROR: ("ERR ", "red"),
}


def build_fix_summary(report: RunReport) -> List[Dict[str, Any]]:
    """Derive a prioritised list of distinct issues from required failures."""
    failures = report.required_failures()
    issues = []
    matched_ids: set = set()
    for priority, title, msg_substr, id_prefix, rationale, fix in _KNOWN_ISSUES:
        if msg_substr is not None:
            affected = [r for r in failures if msg_substr.lower() in r.verdict.message.lower()]
        else:
            affected = [r for r in failures if r.test_id.startswith(id_prefix)]
        if affected:
            matched_ids.update(id(r) for r in affected)
            issues.append({
                "priority": priority,
                "title": title,
                "rationale": rationale,
                "fix": fix,
                "affected_tests": len(affected),
            })

    unmatched = [r for r in failures if id(r) not in matched_ids]
    if unmatched:
        issues.append({
            "priority": "?",
            "title": f"{len(unmatched)} failure(s) not matched to a known root cause",
            "rationale": "These failures did not match any known issue pattern and require individual investigation.",
            "fix": "Review the individual test output above for specific error messages.",
            "affected_tests": len(unmatched),
        })
    return issues


def print_results(report: RunReport, json_output: bool = False, version: str = "",
                  timestamp: str = ""):
    """Print the full run report in terminal or JSON format."""
    if json_output:
        print(json.dumps(report_to_dict(report, version=version, timestamp=timestamp), indent=2))
    else:
        _print_terminal(report, version=version, timestamp=timestamp)


def report_to_dict(report: RunReport, version: str = "", timestamp: str = "") -> Dict[str, Any]:
    return {
        "auth_sanity_version": version,
        "timestamp": timestamp,
        "cancelled": report.cancelled,
        "summary": report.counts(),
        "issues": build_fix_summary(report),
        "sequences": [s.to_dict() for s in report.sequences],
    }


def _print_terminal(report: RunReport, version: str = "", timestamp: str = ""):
    """Render results as ANSI-colored terminal output, grouped by sequence."""
    counts = report.counts()

    print()
    print(_colorize("Authorization Server Conformance Run", "bold"))
    print(_colorize("=" * 50, "dim"))
    meta_parts = []
    if version:
        meta_parts.append(f"auth-sanity {version}")
    if timestamp:
        meta_parts.append(timestamp)
    if meta_parts:
        print(_colorize("  " + "  |  ".join(meta_parts), "dim"))

    for seq_report in report.sequences:
        header = seq_report.sequence.title
        if seq_report.sequence.optional:
            header += " (optional)"
        print()
        print(_colorize(f"  {header}", "bold"))
        print(_colorize("  " + "-" * 40, "dim"))
        for result in seq_report.results:
            symbol, color = _STATUS_SYMBOLS.get(result.status, ("??? ", "dim"))
            print(f"  [{_colorize(symbol, color)}] {result.test_id} {result.name}")
            if result.verdict.message:
                print(f"         {_colorize(result.verdict.message, 'dim')}")
            for warning in result.warnings:
                print(f"         {_colorize('warning: ' + warning.message, 'yellow')}")
        if seq_report.halted:
            print(_colorize("         sequence halted", "red"))
        if seq_report.cancelled:
            print(_colorize("         sequence cancelled", "dim"))

    print()
    print(_colorize("=" * 50, "dim"))
    summary_parts = []
    if counts["passed"]:
        summary_parts.append(_colorize(f"{counts['passed']} passed", "bold"))
    if counts["failed"]:
        summary_parts.append(_colorize(f"{counts['failed']} failed", "red"))
    if counts["errors"]:
        summary_parts.append(_colorize(f"{counts['errors']} errors", "red"))
    if counts["warnings"]:
        summary_parts.append(_colorize(f"{counts['warnings']} warnings", "dim"))
    if counts["skipped"]:
        summary_parts.append(_colorize(f"{counts['skipped']} skipped", "dim"))
    summary_parts.append(f"{counts['total']} total")
    print("  " + ", ".join(summary_parts))

    issues = build_fix_summary(report)
    if issues:
        print()
        print(_colorize("  Fix Summary", "bold"))
        print(_colorize("  " + "-" * 40, "dim"))
        for issue in issues:
            n = issue["affected_tests"]
            tests_label = "test" if n == 1 else "tests"
            print(
                f"  [{_colorize(issue['priority'], 'red')}] "
                f"Trouble: {issue['title']} "
                f"{_colorize(f'({n} {tests_label} affected)', 'dim')}"
            )
            print(f"       Fix: {_colorize(issue['fix'], 'dim')}")
            print(f"       Rationale: {_colorize(issue['rationale'], 'dim')}")

    print()
    if report.cancelled:
        print(_colorize("  Result: run cancelled; report is partial.", "dim"))
    elif report.passed:
        print(_colorize("  Result: All required tests passed.", "bold"))
    else:
        print(_colorize(
            f"  Result: {counts['required_failures']} required failure(s).",
            "red",
        ))
    print()
