"""Built-in conformance sequences.

Every sequence is registered explicitly, here, in declaration order.  That
order breaks ties in the execution plan, so append new sequences rather
than inserting them.
"""

from typing import Iterable, Optional

from ..engine.registry import SequenceRegistry
from .dynamic_registration import DYNAMIC_REGISTRATION
from .smart_discovery import SMART_DISCOVERY

SEQUENCES = (
    SMART_DISCOVERY,
    DYNAMIC_REGISTRATION,
)

# Step names excused from metadata validation.  Empty today; kept as an
# explicit set so any exemption is visible in one place.
EXEMPT_STEPS: frozenset = frozenset()


def build_registry(sequences: Optional[Iterable] = None,
                   exempt_steps: Iterable[str] = EXEMPT_STEPS) -> SequenceRegistry:
    """Create a registry holding ``sequences`` (default: all built-ins)."""
    registry = SequenceRegistry(exempt_steps=exempt_steps)
    for sequence in SEQUENCES if sequences is None else sequences:
        registry.register(sequence)
    return registry
