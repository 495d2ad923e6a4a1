"""Exception hierarchy for auth-sanity.

Configuration, metadata and ordering errors are fatal: they mean the engine
cannot produce trustworthy verdicts and are raised out of startup.  The
state errors are raised from inside a step and converted to an ``error``
verdict by the run coordinator.
"""


class AuthSanityError(Exception):
    """Base class for all auth-sanity errors."""


class ConfigurationError(AuthSanityError):
    """Invalid construction-time input (missing host/port, bad seed file)."""


class MetadataValidationError(AuthSanityError):
    """A sequence or one of its steps has incomplete or duplicate metadata."""


class OrderingError(AuthSanityError):
    """The sequence plan is structurally invalid or leaves a requirement unmet."""


class MissingStateError(AuthSanityError):
    """A step read a required state key that no earlier sequence defined."""

    def __init__(self, key: str, sequence: str = ""):
        self.key = key
        self.sequence = sequence
        where = f" (sequence {sequence})" if sequence else ""
        super().__init__(f"Missing required state '{key}'{where}")


class StateContractError(AuthSanityError):
    """A step touched state outside its sequence's declared requires/defines."""


class StateTypeError(StateContractError):
    """A merge tried to change the type of an already-defined state key."""
