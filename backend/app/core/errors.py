"""
Error taxonomy for the attestation graph service.

Only InvalidInput and NoAttestationFound are ever shown to API callers.
Everything else degrades the graph or the assessment instead of failing
the request.
"""


class AttestationGraphError(Exception):
    """Base class for all service errors."""


class InvalidInput(AttestationGraphError):
    """Malformed image/platform/predicate parameters, rejected before any external call."""

    def __init__(self, message, details=None):
        super().__init__(message)
        self.details = details or []


class NoAttestationFound(AttestationGraphError):
    """No subject digest could be derived from any fetched predicate."""


class DecodeFailure(AttestationGraphError):
    """An envelope or its payload could not be decoded."""


class AttestationFetchError(AttestationGraphError):
    """The external attestation tool failed, timed out or produced too much output."""


class ProviderUnavailable(AttestationGraphError):
    """The vulnerability provider could not produce a summary."""


class GraphConstructionError(AttestationGraphError):
    """A built graph violates its own structural invariants."""
