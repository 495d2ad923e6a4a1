"""Run configuration and instance seed loading.

``RunConfig`` collects the knobs the CLI exposes.  The instance seed is a
JSON object whose keys are pre-seeded into the state bag before the first
sequence runs (``url``, ``client_name``, ``redirect_uris``, ...); the
orderer treats those keys as already defined.
"""

import json
from typing import Any, Dict, Iterable, Optional, Tuple

from .errors import ConfigurationError

DEFAULT_TIMEOUT = 30
DEFAULT_TLS_TIMEOUT = 10
# Hard cap on parallel sequences; each one may hold open network calls
MAX_WORKERS = 8


class RunConfig:
    """Settings for one conformance run.

    Attributes:
        timeout:           Per-request HTTP timeout in seconds.
        tls_timeout:       Per-probe socket timeout for pinned TLS probes.
        tls_no_verify:     Skip certificate verification on HTTP requests.
                           Pinned TLS probes always verify the peer.
        ca_bundle:         CA bundle for both HTTP requests and TLS probes.
        proxy:             HTTP/HTTPS proxy URL.
        token:             Bearer token sent with HTTP requests.
        disable_tls_tests: Skip every pinned-version TLS check.
        max_workers:       Sequences allowed to run at the same time (capped).
        sequences:         Restrict the plan to these sequence names.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        tls_timeout: float = DEFAULT_TLS_TIMEOUT,
        tls_no_verify: bool = False,
        ca_bundle: Optional[str] = None,
        proxy: Optional[str] = None,
        token: Optional[str] = None,
        disable_tls_tests: bool = False,
        max_workers: int = 1,
        sequences: Optional[Iterable[str]] = None,
    ):
        if timeout <= 0 or tls_timeout <= 0:
            raise ConfigurationError("Timeouts must be positive")
        if max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")
        self.timeout = timeout
        self.tls_timeout = tls_timeout
        self.tls_no_verify = tls_no_verify
        self.ca_bundle = ca_bundle
        self.proxy = proxy
        self.token = token
        self.disable_tls_tests = disable_tls_tests
        self.max_workers = min(max_workers, MAX_WORKERS)
        self.sequences: Optional[Tuple[str, ...]] = tuple(sequences) if sequences else None

    def __repr__(self):
        return (
            f"RunConfig(timeout={self.timeout}, tls_timeout={self.tls_timeout}, "
            f"disable_tls_tests={self.disable_tls_tests}, max_workers={self.max_workers}, "
            f"sequences={self.sequences})"
        )


def load_instance_seed(path: str) -> Dict[str, Any]:
    """Read the pre-seeded instance state from a JSON object file.

    Raises:
        ConfigurationError: if the file cannot be read, is not JSON, or is
            not a JSON object.
    """
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Instance file not found: {path}") from None
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in instance file {path}: {e}") from None
    except OSError as e:
        raise ConfigurationError(f"Cannot read instance file {path}: {e}") from None
    return parse_instance_seed(data, source=path)


def parse_instance_seed(data: Any, source: str = "instance seed") -> Dict[str, Any]:
    """Validate an already-parsed seed: a JSON object of scalars and lists."""
    if not isinstance(data, dict):
        raise ConfigurationError(f"{source} must be a JSON object")
    for key, value in data.items():
        if isinstance(value, dict):
            raise ConfigurationError(
                f"{source}: key '{key}' holds an object; state values must be scalars or lists"
            )
    return dict(data)
