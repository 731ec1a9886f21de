"""
Artifact provider.

Fetches installer artifacts from an OCI registry. Each fetch copies the
artifact's content graph into its own temporary file store, selects the
payload layer and returns a StreamingHandle that owns the store. Every
per-request failure is logged, the store is removed, and the failure is
reported as a FetchResult (get() collapses that to None).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, runtime_checkable

import httpx

from .auth import AuthClient
from .credentials import Credential, TokenCache, static_credential
from .deadline import Deadline
from .errors import (
    ArtifactError,
    ArtifactNotFoundError,
    InvalidArtifactNameError,
    RegistryAuthError,
    TransientFetchError,
)
from .graph import copy_graph
from .handle import StreamingHandle
from .registry import Registry, parse_registry_url
from .selector import select_payload
from .settings import Settings
from .store import TemporaryFileStore
from .transport import build_http_client

__all__ = ["ArtifactProvider", "Provider", "FetchResult", "FetchStatus"]

logger = logging.getLogger(__name__)


class FetchStatus(str, Enum):
    """Outcome of a single fetch."""
    OK = "ok"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    PERMISSION_DENIED = "permission_denied"
    INVALID_NAME = "invalid_name"


def _status_for(error: Exception) -> FetchStatus:
    if isinstance(error, ArtifactNotFoundError):
        return FetchStatus.NOT_FOUND
    if isinstance(error, RegistryAuthError):
        return FetchStatus.PERMISSION_DENIED
    if isinstance(error, InvalidArtifactNameError):
        return FetchStatus.INVALID_NAME
    return FetchStatus.TRANSIENT


@dataclass(frozen=True)
class FetchResult:
    """
    Typed outcome of ArtifactProvider.fetch().

    handle is set only when status is OK; error is set for every other status.
    Whatever the status, no temporary file store is left behind except the
    one owned by handle.
    """
    status: FetchStatus
    handle: Optional[StreamingHandle] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.status is FetchStatus.OK

    @classmethod
    def failed(cls, error: Exception) -> "FetchResult":
        return cls(status=_status_for(error), error=error)


@runtime_checkable
class Provider(Protocol):
    """Anything that can hand out artifact streams by name."""

    def get(self, artifact: str) -> Optional[StreamingHandle]:
        ...


class ArtifactProvider:
    """
    Provider backed by an OCI registry.

    Safe for concurrent use: fetches share only the HTTP client and the
    token cache, and each owns a uniquely named temporary file store.
    """

    def __init__(self, settings: Settings, *, transport: Optional[httpx.BaseTransport] = None):
        """
        Initialize the provider.

        Args:
            settings: Provider configuration
            transport: Inner HTTP transport override (tests)

        Raises:
            ConfigurationError: If the registry URL, base path or TLS material is invalid
        """
        self._settings = settings
        self.reference = parse_registry_url(settings.registry_url)

        credential = Credential(
            username=settings.username or "",
            password=settings.password or "",
            access_token=settings.access_token or "",
            refresh_token=settings.refresh_token or "",
        )
        self.token_cache = TokenCache()
        self._client = build_http_client(settings, transport=transport)
        auth = AuthClient(
            self.reference.host,
            self._client,
            static_credential(self.reference.host, credential),
            self.token_cache,
        )
        self.registry = Registry(self.reference, auth, plain_http=settings.registry_plain_http)

        logger.debug(
            f"Artifact provider for {self.reference.host}{self.reference.path_prefix}, "
            f"store base {settings.file_store_base_path}, tag {settings.artifact_tag}"
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    def get(self, artifact: str) -> Optional[StreamingHandle]:
        """
        Fetch an artifact.

        Returns:
            StreamingHandle over the payload, or None on any failure. The
            caller must close the handle to release its local storage.
        """
        return self.fetch(artifact).handle

    def fetch(self, artifact: str, *, tag: Optional[str] = None) -> FetchResult:
        """
        Fetch an artifact and report how it went.

        Args:
            artifact: Artifact name, joined onto the registry URL path
            tag: Tag override; defaults to settings.artifact_tag

        Returns:
            FetchResult; on OK the handle owns the temporary file store
        """
        tag = tag or self._settings.artifact_tag
        deadline = Deadline(self._settings.fetch_timeout_s)

        try:
            repo_name = self.reference.repository_name(artifact)
            repository = self.registry.repository(repo_name)
        except ArtifactError as e:
            logger.error(f"Getting repository reference for {artifact!r} failed: {e}")
            return FetchResult.failed(e)

        try:
            store = TemporaryFileStore.create(self._settings.file_store_base_path)
        except OSError as e:
            logger.error(f"Failed to create temporary file store for {repo_name}: {e}")
            return FetchResult.failed(TransientFetchError(f"creating file store: {e}"))

        handle = None
        try:
            try:
                root = copy_graph(repository, tag, store.content, deadline=deadline)
            except (ArtifactError, OSError) as e:
                logger.error(f"Copying {repo_name}:{tag} into {store.path} failed: {e}")
                return FetchResult.failed(_as_artifact_error(e))

            try:
                payload = select_payload(root, store.content)
            except (ArtifactError, OSError, ValueError) as e:
                logger.error(f"Reading content graph of {repo_name}:{tag} failed: {e}")
                return FetchResult.failed(_as_artifact_error(e))

            if payload is None:
                logger.error(f"No image layers in artifact {repo_name}:{tag}")
                return FetchResult.failed(ArtifactNotFoundError(f"{repo_name}:{tag} has no payload layer"))

            try:
                stream = store.content.fetch(payload)
            except (ArtifactError, OSError) as e:
                logger.error(f"Opening layer {payload.digest} of {repo_name}:{tag} failed: {e}")
                return FetchResult.failed(_as_artifact_error(e))

            handle = StreamingHandle(stream, store, payload)
            logger.debug(f"Fetched {repo_name}:{tag} layer {payload.digest} ({payload.size} bytes)")
            return FetchResult(status=FetchStatus.OK, handle=handle)
        finally:
            if handle is None:
                store.release()

    def close(self) -> None:
        """Close the shared HTTP client."""
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _as_artifact_error(error: Exception) -> Exception:
    if isinstance(error, ArtifactError):
        return error
    return TransientFetchError(str(error))
