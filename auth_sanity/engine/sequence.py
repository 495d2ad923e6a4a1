"""Immutable sequence and step definitions.

A ``Sequence`` is an ordered group of ``Step`` objects that share a title,
description and test id prefix, plus the two dependency sets the orderer
works with:

- ``requires``: instance state keys the sequence reads
- ``defines``: instance state keys the sequence may write

Definitions are plain configuration; they are validated once, when handed
to ``SequenceRegistry.register()``, and never at first use.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional, Tuple
from urllib.parse import urlparse


@dataclass(frozen=True)
class Step:
    """One atomic conformance check.

    Attributes:
        id:           Numeric suffix, unique within the sequence (e.g. ``"01"``).
        name:         Human-readable step name.
        link:         URL of the governing specification.
        description:  What the step verifies.
        body:         Callable taking a ``StepContext`` and returning a
                      ``Verdict`` (``None`` means pass).
        ref:          Clause reference within the linked specification.
        optional:     Failure does not count against certification.
        precondition: If this step does not pass, every later step in the
                      sequence is skipped.
    """

    id: str
    name: str
    link: str
    description: str
    body: Optional[Callable[..., Any]] = field(default=None, compare=False, repr=False)
    ref: str = ""
    optional: bool = False
    precondition: bool = False

    def to_dict(self, prefix: str = "") -> Dict[str, Any]:
        return {
            "id": full_test_id(prefix, self.id) if prefix else self.id,
            "name": self.name,
            "description": self.description,
            "link": self.link,
            "ref": self.ref,
            "optional": self.optional,
        }


@dataclass(frozen=True)
class Sequence:
    """An ordered, named group of steps with declared state dependencies."""

    name: str
    title: str
    description: str
    test_id_prefix: str
    steps: Tuple[Step, ...] = ()
    requires: FrozenSet[str] = frozenset()
    defines: FrozenSet[str] = frozenset()
    optional: bool = False
    inactive: bool = False
    details: str = ""

    def __post_init__(self):
        # Accept any iterable from sequence authors but store immutable forms
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "requires", frozenset(self.requires))
        object.__setattr__(self, "defines", frozenset(self.defines))

    def test_id(self, step: Step) -> str:
        return full_test_id(self.test_id_prefix, step.id)

    def to_dict(self, with_steps: bool = False) -> Dict[str, Any]:
        """Metadata contract consumed by report renderers and front ends."""
        d: Dict[str, Any] = {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "test_id_prefix": self.test_id_prefix,
            "requires": sorted(self.requires),
            "defines": sorted(self.defines),
            "optional": self.optional,
            "inactive": self.inactive,
        }
        if with_steps:
            d["steps"] = [s.to_dict(self.test_id_prefix) for s in self.steps]
        return d


def full_test_id(prefix: str, step_id: str) -> str:
    """Join a sequence prefix and step suffix: ``("DR", "01") -> "DR-01"``."""
    return f"{prefix}-{step_id}"


def is_valid_uri(value: Any) -> bool:
    """Return True for an absolute http(s) URI with a host."""
    if not isinstance(value, str) or not value.strip() or " " in value:
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def step_metadata_problems(step: Step) -> Iterable[str]:
    """Yield a description of each missing or malformed metadata field."""
    if not step.name or not str(step.name).strip():
        yield "missing name"
    if not step.description or not str(step.description).strip():
        yield "missing description"
    if not is_valid_uri(step.link):
        yield f"invalid link {step.link!r}"
    if step.id is None or not str(step.id).strip():
        yield "missing id"
