"""
Artifact retrieval error classes.

Construction-time problems raise ConfigurationError. Everything that can go
wrong while serving a single fetch derives from ArtifactError; the provider
catches those, cleans up, and reports them through a FetchResult.
"""
from __future__ import annotations


class ConfigurationError(ValueError):
    """
    Invalid provider configuration.

    Raised when:
    - registry URL is unparsable or does not use the oci:// scheme
    - file store base path is empty
    - CA bundle or client key material cannot be loaded
    """
    pass


class ArtifactError(Exception):
    """Base class for all per-request retrieval errors."""
    pass


class TransientFetchError(ArtifactError):
    """
    Network or registry-side failure.

    Content addressing makes a re-fetch safe, so callers may retry.
    """
    pass


class FetchTimeoutError(TransientFetchError):
    """The fetch did not complete within its bounded duration."""
    pass


class RateLimitedError(TransientFetchError):
    """HTTP 429 Too Many Requests."""
    pass


class DigestMismatchError(TransientFetchError):
    """
    Content did not match its descriptor.

    Raised when downloaded bytes hash to a different digest or have a
    different size than the descriptor announced.
    """

    def __init__(self, message: str, expected: str | None = None, actual: str | None = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class RegistryAuthError(ArtifactError):
    """
    Authentication or authorization error.

    Raised when:
    - HTTP 401 Unauthorized survives the challenge flow
    - HTTP 403 Forbidden
    - the token endpoint rejects the configured credential
    """
    pass


class ArtifactNotFoundError(ArtifactError):
    """Repository, tag or payload layer does not exist."""
    pass


class InvalidArtifactNameError(ArtifactError):
    """Artifact name does not produce a valid repository name."""
    pass


class CleanupError(OSError):
    """A temporary file store could not be removed. Logged, never raised to callers."""
    pass


__all__ = [
    "ConfigurationError",
    "ArtifactError",
    "TransientFetchError",
    "FetchTimeoutError",
    "RateLimitedError",
    "DigestMismatchError",
    "RegistryAuthError",
    "ArtifactNotFoundError",
    "InvalidArtifactNameError",
    "CleanupError",
]
