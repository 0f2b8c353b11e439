"""
Error taxonomy for the signing gatekeeper.

Faults raise one of the classes below. A policy rejection is not a fault and
is returned as a verdict instead (see ``signgate.policy.PolicyRejection``).
"""
from __future__ import annotations


class GatekeeperError(Exception):
    """Base class for every fault surfaced by signgate."""


class MalformedSetupError(GatekeeperError, ValueError):
    """Cosigner setup text (or a stored descriptor) is missing fields or holds an invalid key."""


class UnknownCosignerError(GatekeeperError, LookupError):
    """Substitution target fingerprint is not part of the setup."""

    def __init__(self, fingerprint: str) -> None:
        super().__init__(f"no cosigner with fingerprint {fingerprint}")
        self.fingerprint = fingerprint


class StorageError(GatekeeperError):
    """Read or write against the blob or configuration store failed.

    The message is generic on purpose; the backend cause is logged and chained.
    """


class ConfigurationError(GatekeeperError, ValueError):
    """Settings or a stored policy record hold a value of the wrong shape."""


class MalformedTransactionError(GatekeeperError, ValueError):
    """Candidate transaction could not be decoded."""


class KeyExistsError(GatekeeperError):
    """A seed record already exists under the requested key name."""


class SigningError(GatekeeperError):
    """The signing capability produced no signature."""
