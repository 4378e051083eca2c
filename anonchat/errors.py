"""
Exception types raised by the relay core.

- ConnectivityError: store unreachable at startup (fatal)
- ValidationError: send payload missing required fields
- PersistenceError: insert/query failed after startup
- EmptyResultWarning: insert reported success but returned no record
"""


class RelayError(Exception):
    """Base class for all relay errors."""


class ConnectivityError(RelayError):
    """The message store could not be reached when the process started."""


class ValidationError(RelayError):
    """A send_message payload is missing one of its required fields."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"missing required fields: {', '.join(missing)}")


class PersistenceError(RelayError):
    """A store operation failed after startup."""


class EmptyResultWarning(RelayError):
    """The store accepted an insert but handed back no record."""
