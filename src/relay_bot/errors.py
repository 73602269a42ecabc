from __future__ import annotations


class RelayError(Exception):
    """Base class for failures raised by the relay core."""


class CredentialInvalidError(RelayError):
    """The backend rejected the API key (invalid, revoked, or not permitted)."""


class ProbeFailedError(RelayError):
    """A credential probe could not be completed (network or parse failure)."""


class QuotaExceededError(RelayError):
    """The active key ran out of quota or hit a rate limit."""


class BackendTimeoutError(RelayError):
    """A backend call did not finish inside the per-attempt timeout."""


class SafetyBlockedError(RelayError):
    """The backend refused to answer on safety grounds."""


class BackendError(RelayError):
    """Any other backend failure."""


class AllKeysExhaustedError(RelayError):
    """Every key in the pool was tried for one request and none succeeded."""


class NoValidCredentialError(RelayError):
    """No key in the pool passed its probe. Fatal at startup."""


# Failures that move the pool to the next key instead of failing the attempt.
ROTATING_ERRORS = (QuotaExceededError, CredentialInvalidError)
