"""
Registry and repository handles for the OCI distribution API.

parse_registry_url() turns the configured oci:// URL into a RegistryReference.
A Registry is bound to that host; Registry.repository() hands out Repository
handles that resolve tags, fetch manifests and stream blobs.
"""
from __future__ import annotations

import contextlib
import hashlib
import logging
import posixpath
import re
from dataclasses import dataclass
from typing import Iterator, Tuple
from urllib.parse import urlsplit

import httpx

from .auth import AuthClient
from .deadline import Deadline
from .errors import (
    ArtifactNotFoundError,
    ConfigurationError,
    DigestMismatchError,
    FetchTimeoutError,
    InvalidArtifactNameError,
    RateLimitedError,
    RegistryAuthError,
    TransientFetchError,
)
from .media_types import ACCEPTED_MANIFEST_TYPES
from .models import Descriptor, compute_digest, parse_digest

__all__ = ["OCI_SCHEME", "RegistryReference", "parse_registry_url", "Registry", "Repository"]

logger = logging.getLogger(__name__)

OCI_SCHEME = "oci"
CHUNK_SIZE = 1024 * 1024  # 1 MiB
MAX_MANIFEST_BYTES = 4 * 1024 * 1024

# OCI distribution spec repository name grammar
_REPO_COMPONENT = r"[a-z0-9]+(?:(?:\.|_|__|-+)[a-z0-9]+)*"
_REPO_RE = re.compile(rf"^{_REPO_COMPONENT}(?:/{_REPO_COMPONENT})*$")
_REF_RE = re.compile(r"^([A-Za-z0-9_][A-Za-z0-9_.-]{0,127}|[a-z0-9]+:[a-f0-9]+)$")


@dataclass(frozen=True)
class RegistryReference:
    """
    Parsed registry URL.

    Attributes:
        host: Registry host, including the port if one was given
        path_prefix: URL path, prepended to every artifact name
    """
    host: str
    path_prefix: str = ""

    def repository_name(self, artifact: str) -> str:
        """
        Build the repository name for an artifact.

        Joins path_prefix and artifact, normalizes the result and strips
        leading slashes; "/foo" and "foo" give the same name.

        Raises:
            InvalidArtifactNameError: If the result is not a valid repository name
        """
        parts = [p for p in (self.path_prefix, artifact) if p]
        joined = posixpath.normpath("/" + "/".join(parts))
        name = joined.lstrip("/")
        if not name or not _REPO_RE.match(name):
            raise InvalidArtifactNameError(
                f"artifact {artifact!r} does not yield a valid repository name (got {name!r})"
            )
        return name


def parse_registry_url(registry_url: str) -> RegistryReference:
    """
    Parse and validate an oci:// registry URL.

    Examples:
        >>> parse_registry_url("oci://registry.local:5000/githedgehog")
        RegistryReference(host='registry.local:5000', path_prefix='/githedgehog')

    Raises:
        ConfigurationError: If the URL is unparsable or not an oci:// URL with a host
    """
    try:
        parts = urlsplit(registry_url)
        # accessing port validates it
        parts.port
    except ValueError as e:
        raise ConfigurationError(f"parsing registry URL: {e}") from e

    if parts.scheme != OCI_SCHEME:
        raise ConfigurationError(f"registry URL must have OCI scheme, got '{parts.scheme}'")
    if not parts.netloc:
        raise ConfigurationError(f"registry URL has no host: {registry_url}")
    if "@" in parts.netloc:
        raise ConfigurationError("registry URL must not contain credentials")

    return RegistryReference(host=parts.netloc, path_prefix=parts.path)


def _raise_for_status(response: httpx.Response, what: str) -> None:
    """Map registry status codes onto the error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    if status == 404:
        raise ArtifactNotFoundError(f"{what}: not found")
    if status in (401, 403):
        raise RegistryAuthError(f"{what}: authentication failed ({status})")
    if status == 429:
        raise RateLimitedError(f"{what}: rate limited")
    raise TransientFetchError(f"{what}: registry error {status}")


@contextlib.contextmanager
def _mapped_errors(what: str):
    """Translate httpx transport errors into fetch errors."""
    try:
        yield
    except httpx.TimeoutException as e:
        raise FetchTimeoutError(f"{what}: timed out: {e}") from e
    except httpx.RequestError as e:
        raise TransientFetchError(f"{what}: network error: {e}") from e
    except httpx.StreamError as e:
        raise TransientFetchError(f"{what}: stream error: {e}") from e


class Registry:
    """Handle to one remote OCI registry."""

    def __init__(self, reference: RegistryReference, auth: AuthClient, *, plain_http: bool = False):
        self.reference = reference
        self.auth = auth
        self.base_url = f"{'http' if plain_http else 'https'}://{reference.host}"

    @property
    def host(self) -> str:
        return self.reference.host

    def repository(self, name: str) -> "Repository":
        """
        Return a handle to repository `name`.

        Raises:
            InvalidArtifactNameError: If name is not a valid repository name
        """
        if not _REPO_RE.match(name or ""):
            raise InvalidArtifactNameError(f"invalid repository name: {name!r}")
        return Repository(self, name)


class Repository:
    """Read-only access to one repository of a Registry."""

    def __init__(self, registry: Registry, name: str):
        self.registry = registry
        self.name = name
        self.scope = f"repository:{name}:pull"

    def __repr__(self) -> str:
        return f"Repository({self.registry.host}/{self.name})"

    def _url(self, kind: str, ref: str) -> str:
        return f"{self.registry.base_url}/v2/{self.name}/{kind}/{ref}"

    def resolve(self, ref: str, *, deadline: Deadline) -> Tuple[Descriptor, bytes]:
        """
        Resolve a tag (or digest) to its root descriptor and manifest bytes.

        Raises:
            ArtifactNotFoundError: If the reference does not exist
            RegistryAuthError: If access is denied
            DigestMismatchError: If the registry's digest header does not match the body
            TransientFetchError: For other registry or network errors
        """
        if not _REF_RE.match(ref):
            raise InvalidArtifactNameError(f"invalid reference: {ref!r}")

        what = f"resolving {self.name}:{ref}"
        deadline.check(what)
        response = self._get_manifest(ref, deadline, what)

        content = response.content
        media_type = response.headers.get("Content-Type", "").split(";", 1)[0].strip()
        if not media_type:
            raise TransientFetchError(f"{what}: registry returned no Content-Type")

        computed = compute_digest(content)
        declared = response.headers.get("Docker-Content-Digest")
        if declared:
            try:
                algorithm, _ = parse_digest(declared)
            except ValueError as e:
                raise TransientFetchError(f"{what}: {e}") from e
            computed = compute_digest(content, algorithm)
            if declared != computed:
                raise DigestMismatchError(f"{what}: digest mismatch", expected=declared, actual=computed)

        return Descriptor(media_type=media_type, digest=computed, size=len(content)), content

    def fetch_manifest(self, desc: Descriptor, *, deadline: Deadline) -> bytes:
        """
        Fetch a manifest by digest and verify it.

        Raises:
            DigestMismatchError: If content does not match desc
            (plus the errors documented on resolve)
        """
        what = f"fetching manifest {self.name}@{desc.digest}"
        deadline.check(what)
        if desc.size > MAX_MANIFEST_BYTES:
            raise TransientFetchError(f"{what}: manifest too large ({desc.size} bytes)")

        response = self._get_manifest(desc.digest, deadline, what, accept=desc.media_type)
        content = response.content
        _verify(desc, content, what)
        return content

    def _get_manifest(self, ref: str, deadline: Deadline, what: str, accept: str = "") -> httpx.Response:
        accept_types = [accept] if accept else []
        accept_types += [t for t in ACCEPTED_MANIFEST_TYPES if t != accept]
        with _mapped_errors(what):
            response = self.registry.auth.send(
                "GET",
                self._url("manifests", ref),
                scope=self.scope,
                headers={"Accept": ", ".join(accept_types)},
                timeout=deadline.clip(self.registry.auth.client.timeout),
            )
        _raise_for_status(response, what)
        return response

    @contextlib.contextmanager
    def open_blob(self, desc: Descriptor, *, deadline: Deadline) -> Iterator[Iterator[bytes]]:
        """
        Stream a blob.

        Yields an iterator of chunks. The response is closed when the
        context exits. Verification is left to the consumer, which sees
        every byte anyway.
        """
        what = f"fetching blob {self.name}@{desc.digest}"
        deadline.check(what)
        with _mapped_errors(what):
            response = self.registry.auth.send(
                "GET",
                self._url("blobs", desc.digest),
                scope=self.scope,
                timeout=deadline.clip(self.registry.auth.client.timeout),
                stream=True,
            )
        try:
            _raise_for_status(response, what)

            def chunks() -> Iterator[bytes]:
                with _mapped_errors(what):
                    for chunk in response.iter_bytes(CHUNK_SIZE):
                        deadline.check(what)
                        yield chunk

            yield chunks()
        finally:
            response.close()


def _verify(desc: Descriptor, content: bytes, what: str) -> None:
    if len(content) != desc.size:
        raise DigestMismatchError(f"{what}: size mismatch, expected {desc.size} got {len(content)}",
                                  expected=desc.digest)
    algorithm, expected_hex = parse_digest(desc.digest)
    actual_hex = hashlib.new(algorithm, content).hexdigest()
    if actual_hex != expected_hex:
        raise DigestMismatchError(f"{what}: digest mismatch", expected=desc.digest,
                                  actual=f"{algorithm}:{actual_hex}")
