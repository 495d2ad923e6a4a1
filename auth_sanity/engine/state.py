"""The instance state bag shared by all sequences in one run.

Keys are strings, values are scalars or lists.  Steps never mutate the bag
directly: they declare key/value pairs through their ``StepContext`` and the
run coordinator merges them here under a lock.  The lock is held only for
the merge (and for snapshot reads), never across network I/O.
"""

import copy
import threading
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional

from ..errors import StateTypeError


class InstanceState(Mapping):
    """Thread-safe, type-stable key/value store.

    Once a key holds a non-``None`` value its type is fixed for the run: a
    string key is never overwritten with a list, a bool never with an int,
    and a defined value is never cleared back to ``None``.

    Args:
        seed: Pre-seeded keys (from configuration) available before any
              sequence runs.
    """

    def __init__(self, seed: Optional[Mapping[str, Any]] = None):
        self._data: Dict[str, Any] = {}
        self._lock = threading.Lock()
        if seed:
            self.merge(seed)

    # -- Mapping protocol ----------------------------------------------------

    def __getitem__(self, key: str) -> Any:
        with self._lock:
            return self._data[key]

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._data))

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    # -- Mutation ------------------------------------------------------------

    def merge(self, updates: Mapping[str, Any]) -> None:
        """Merge ``updates`` into the bag atomically.

        All type checks run before any key is written, so a rejected merge
        leaves the bag unchanged.

        Raises:
            StateTypeError: if an update would change the type of a defined key.
        """
        with self._lock:
            for key, value in updates.items():
                if not isinstance(key, str):
                    raise StateTypeError(f"State keys must be strings, got {key!r}")
                current = self._data.get(key)
                if current is None:
                    continue
                if value is None:
                    raise StateTypeError(f"State key '{key}' is already defined; refusing to clear it")
                if type(current) is not type(value):
                    raise StateTypeError(
                        f"State key '{key}' is {type(current).__name__}; "
                        f"refusing to overwrite with {type(value).__name__}"
                    )
            for key, value in updates.items():
                self._data[key] = copy.deepcopy(value)

    def snapshot(self, keys: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """Return a deep copy of the bag, optionally restricted to ``keys``."""
        with self._lock:
            if keys is None:
                selected = dict(self._data)
            else:
                selected = {k: self._data[k] for k in keys if k in self._data}
            return copy.deepcopy(selected)

    def __repr__(self):
        return f"InstanceState({sorted(self.snapshot())!r})"
