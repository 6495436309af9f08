"""
Exception types used inside the verifier.

None of these escape the public operations (``matches``, ``load``,
``verify``, ``is_verified_bot``); they are caught at those boundaries and
turned into a definite boolean or the previous range snapshot.
"""


class VerifierError(Exception):
    """Base class for verifier errors."""


class ConfigError(VerifierError):
    """Invalid configuration value that cannot be repaired."""


class RangeSourceError(VerifierError):
    """Range document could not be fetched or parsed."""


class ResolverError(VerifierError):
    """DNS query failed (timeout, transport error, SERVFAIL, bad payload)."""

    def __init__(self, name: str, record_type: str, reason: str):
        super().__init__(f"{record_type} lookup for {name} failed: {reason}")
        self.name = name
        self.record_type = record_type
        self.reason = reason
