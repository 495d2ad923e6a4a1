"""Sequence registry and orderer.

Holds every known ``Sequence`` definition, validates metadata at
registration time, and produces the single total order in which active
sequences run.  Registration order is significant: it breaks ties between
sequences that have no dependency on each other, so the plan (and
therefore the report layout) is identical from one run to the next.

All violations raise at startup:

- ``MetadataValidationError`` from ``register()``
- ``OrderingError`` from ``validate_ordering()``, ``validate_dependencies()``
  and ``plan()``
"""

import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set

from ..errors import MetadataValidationError, OrderingError
from .sequence import Sequence, step_metadata_problems

logger = logging.getLogger(__name__)


class SequenceRegistry:
    """Registry of sequence definitions.

    Args:
        exempt_steps: Names of steps excused from metadata validation.  The
                      exemption policy belongs to the caller; the registry
                      only applies it and exposes it for inspection.
    """

    def __init__(self, exempt_steps: Iterable[str] = ()):
        self.exempt_steps: FrozenSet[str] = frozenset(exempt_steps)
        self._sequences: Dict[str, Sequence] = {}

    # -- Registration --------------------------------------------------------

    def register(self, sequence: Sequence) -> Sequence:
        """Validate and add a sequence.  Returns the sequence for chaining."""
        problems = list(self._metadata_problems(sequence))
        if problems:
            raise MetadataValidationError(
                f"Sequence '{sequence.name}' has incomplete metadata: "
                + "; ".join(problems)
            )
        self._sequences[sequence.name] = sequence
        logger.debug(
            "Registered sequence %s (%d steps, prefix %s)",
            sequence.name, len(sequence.steps), sequence.test_id_prefix,
        )
        return sequence

    def _metadata_problems(self, sequence: Sequence) -> Iterable[str]:
        if not sequence.name:
            yield "missing sequence name"
        if sequence.name in self._sequences:
            yield f"sequence name '{sequence.name}' already registered"
        if not sequence.test_id_prefix or not sequence.test_id_prefix.strip():
            yield "missing test_id_prefix"
        for other in self._sequences.values():
            if other.test_id_prefix == sequence.test_id_prefix:
                yield (
                    f"test_id_prefix '{sequence.test_id_prefix}' already used "
                    f"by '{other.name}'"
                )

        seen_ids: Set[str] = set()
        for index, step in enumerate(sequence.steps):
            label = step.name or f"step #{index + 1}"
            if step.name not in self.exempt_steps:
                for problem in step_metadata_problems(step):
                    yield f"{label}: {problem}"
            if step.id in seen_ids:
                yield f"{label}: duplicate step id '{step.id}'"
            seen_ids.add(step.id)
            if step.body is None:
                yield f"{label}: no executable body"

    # -- Lookup --------------------------------------------------------------

    def get(self, name: str) -> Sequence:
        try:
            return self._sequences[name]
        except KeyError:
            raise OrderingError(f"Unknown sequence '{name}'") from None

    def all(self) -> List[Sequence]:
        """All registered sequences, in registration order."""
        return list(self._sequences.values())

    def active(self) -> List[Sequence]:
        """Registered sequences not flagged ``inactive``, in registration order."""
        return [s for s in self._sequences.values() if not s.inactive]

    def __contains__(self, name: object) -> bool:
        return name in self._sequences

    def __len__(self) -> int:
        return len(self._sequences)

    def metadata(self) -> List[Dict[str, Any]]:
        """Sequence and step metadata for front ends and report renderers."""
        return [s.to_dict(with_steps=True) for s in self._sequences.values()]

    def external_keys(self) -> FrozenSet[str]:
        """Keys some active sequence requires but none defines; the seed must supply them."""
        active = self.active()
        required = set().union(*(s.requires for s in active))
        defined = set().union(*(s.defines for s in active))
        return frozenset(required - defined)

    # -- Ordering ------------------------------------------------------------

    def validate_ordering(self, ordered: List[Sequence]) -> None:
        """Check that ``ordered`` lists every active sequence exactly once.

        This is a structural check only; ``validate_dependencies()`` proves
        that the order satisfies each sequence's ``requires``.
        """
        names = [s.name for s in ordered]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise OrderingError(f"Duplicate sequences in ordering: {', '.join(duplicates)}")

        unknown = [n for n in names if n not in self._sequences]
        if unknown:
            raise OrderingError(f"Unregistered sequences in ordering: {', '.join(unknown)}")

        inactive = [s.name for s in ordered if self._sequences[s.name].inactive]
        if inactive:
            raise OrderingError(f"Inactive sequences in ordering: {', '.join(inactive)}")

        missing = [s.name for s in self.active() if s.name not in names]
        if missing:
            raise OrderingError(f"Ordering omits active sequences: {', '.join(missing)}")

    def validate_dependencies(
        self,
        ordered: List[Sequence],
        preseeded: Iterable[str] = (),
    ) -> None:
        """Check each sequence only requires keys defined strictly before it."""
        available: Set[str] = set(preseeded)
        for sequence in ordered:
            unmet = sorted(sequence.requires - available)
            if unmet:
                raise OrderingError(
                    f"Sequence '{sequence.name}' requires {', '.join(unmet)} "
                    f"which no earlier sequence defines"
                )
            available |= sequence.defines

    def plan(
        self,
        preseeded: Iterable[str] = (),
        only: Optional[Iterable[str]] = None,
    ) -> List[Sequence]:
        """Produce a validated execution order over active sequences.

        A sequence that requires a key which is not pre-seeded runs after
        every other active sequence defining that key.  Among sequences that
        are ready at the same time, registration order wins.

        Args:
            preseeded: Keys supplied by configuration before the run starts.
            only:      Restrict the plan to these sequence names.  Sequences
                       they depend on are not added implicitly, so their
                       requirements must then be pre-seeded.
        """
        preseeded = frozenset(preseeded)
        active = self.active()
        if only is not None:
            wanted = set(only)
            unknown = sorted(wanted - set(self._sequences))
            if unknown:
                raise OrderingError(f"Unknown sequences requested: {', '.join(unknown)}")
            active = [s for s in active if s.name in wanted]
        edges = dependency_edges(active, preseeded)

        for sequence in active:
            for key in sorted(sequence.requires - preseeded):
                if not any(key in other.defines for other in active if other is not sequence):
                    raise OrderingError(
                        f"Sequence '{sequence.name}' requires '{key}' but it is "
                        f"neither pre-seeded nor defined by any planned sequence"
                    )

        remaining = list(active)
        ordered: List[Sequence] = []
        while remaining:
            done = {s.name for s in ordered}
            ready = next(
                (s for s in remaining if edges[s.name] <= done),
                None,
            )
            if ready is None:
                cycle = ", ".join(s.name for s in remaining)
                raise OrderingError(f"Dependency cycle between sequences: {cycle}")
            ordered.append(ready)
            remaining.remove(ready)

        if only is None:
            self.validate_ordering(ordered)
        self.validate_dependencies(ordered, preseeded)

        logger.info("Sequence plan: %s", " -> ".join(s.name for s in ordered) or "(empty)")
        return ordered


def dependency_edges(
    sequences: List[Sequence],
    preseeded: FrozenSet[str] = frozenset(),
) -> Dict[str, Set[str]]:
    """Map each sequence name to the names of sequences it must wait for.

    ``B`` waits for ``A`` when ``A`` defines a key ``B`` requires and that key
    is not pre-seeded.
    """
    edges: Dict[str, Set[str]] = {s.name: set() for s in sequences}
    for sequence in sequences:
        needed = sequence.requires - preseeded
        for other in sequences:
            if other is not sequence and needed & other.defines:
                edges[sequence.name].add(other.name)
    return edges
