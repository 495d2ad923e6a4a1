"""Verdicts: the outcome of a single conformance step.

A ``Verdict`` is created fresh for each step execution and never mutated.
Assertion helpers build verdicts instead of raising, which leaves the run
coordinator as the only place that decides whether a problem is recorded or
propagated.

Note: step results are named ``StepResult`` rather than ``TestResult`` to
keep them out of pytest's ``Test*`` collection pattern.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple


PASS = "pass"
FAIL = "fail"
WARN = "warn"
SKIP = "skip"
ERROR = "error"

STATUSES = (PASS, FAIL, WARN, SKIP, ERROR)


@dataclass(frozen=True)
class Verdict:
    """Outcome classification of one step.

    Attributes:
        status:  One of PASS, FAIL, WARN, SKIP, ERROR.
        message: Failure message, skip reason, warning text or error cause.
    """

    status: str
    message: str = ""

    def __post_init__(self):
        if self.status not in STATUSES:
            raise ValueError(f"Unknown verdict status: {self.status!r}")

    @classmethod
    def passed(cls, message: str = "") -> "Verdict":
        return cls(PASS, message)

    @classmethod
    def fail(cls, message: str) -> "Verdict":
        return cls(FAIL, message)

    @classmethod
    def skip(cls, reason: str) -> "Verdict":
        return cls(SKIP, reason)

    @classmethod
    def warning(cls, message: str) -> "Verdict":
        return cls(WARN, message)

    @classmethod
    def error(cls, cause: str) -> "Verdict":
        return cls(ERROR, cause)

    @property
    def ok(self) -> bool:
        return self.status == PASS

    @property
    def is_failure(self) -> bool:
        """True for FAIL and ERROR, the statuses that cause a non-zero exit."""
        return self.status in (FAIL, ERROR)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict for JSON output.  Omits an empty message."""
        d: Dict[str, Any] = {"status": self.status}
        if self.message:
            d["message"] = self.message
        return d


@dataclass(frozen=True)
class StepResult:
    """Primary verdict of a step plus any secondary warnings attached to it.

    Attributes:
        test_id:  Full step id, e.g. ``DR-02``.
        name:     Step name.
        verdict:  The primary verdict.
        warnings: Non-blocking warnings recorded alongside the primary verdict.
        optional: Whether the step (or its sequence) is optional.
    """

    test_id: str
    name: str
    verdict: Verdict
    warnings: Tuple[Verdict, ...] = field(default_factory=tuple)
    optional: bool = False

    @property
    def status(self) -> str:
        return self.verdict.status

    def verdicts(self) -> List[Verdict]:
        """Primary verdict followed by its warnings, in recording order."""
        return [self.verdict, *self.warnings]

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.test_id,
            "name": self.name,
            **self.verdict.to_dict(),
        }
        if self.warnings:
            d["warnings"] = [w.message for w in self.warnings]
        if self.optional:
            d["optional"] = True
        return d
