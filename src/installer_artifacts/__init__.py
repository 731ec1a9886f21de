"""
Installer artifact retrieval from OCI registries.

ArtifactProvider fetches an artifact's content graph into a temporary file
store and hands back a StreamingHandle that removes the store when closed.
"""
from .errors import (
    ArtifactError,
    ArtifactNotFoundError,
    CleanupError,
    ConfigurationError,
    FetchTimeoutError,
    InvalidArtifactNameError,
    RegistryAuthError,
    TransientFetchError,
)
from .handle import StreamingHandle
from .provider import ArtifactProvider, FetchResult, FetchStatus, Provider
from .settings import Settings, create_settings_from_env

__all__ = [
    "ArtifactProvider",
    "Provider",
    "FetchResult",
    "FetchStatus",
    "StreamingHandle",
    "Settings",
    "create_settings_from_env",
    "ArtifactError",
    "ArtifactNotFoundError",
    "CleanupError",
    "ConfigurationError",
    "FetchTimeoutError",
    "InvalidArtifactNameError",
    "RegistryAuthError",
    "TransientFetchError",
]
