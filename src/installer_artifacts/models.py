"""
Content graph models.

Pydantic models for OCI descriptors and manifests, plus the successor rules
that turn a manifest into the ordered list of nodes it points to.
"""
from __future__ import annotations

import hashlib
import re
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .media_types import (
    DOCKER_MANIFEST,
    DOCKER_MANIFEST_LIST,
    OCI_ARTIFACT_MANIFEST,
    OCI_IMAGE_INDEX,
    OCI_IMAGE_MANIFEST,
    OCI_TITLE_ANNOTATION,
)

__all__ = ["Descriptor", "Manifest", "successors", "descriptor_for", "compute_digest", "parse_digest"]

_DIGEST_RE = re.compile(r"^(sha256:[a-f0-9]{64}|sha512:[a-f0-9]{128})$")


def parse_digest(digest: str) -> tuple[str, str]:
    """
    Split a digest into (algorithm, hex).

    Raises:
        ValueError: If the digest is not a supported sha256/sha512 digest
    """
    if not _DIGEST_RE.match(digest):
        raise ValueError(f"Invalid digest format: {digest}")
    algorithm, hex_part = digest.split(":", 1)
    return algorithm, hex_part


def compute_digest(data: bytes, algorithm: str = "sha256") -> str:
    """Digest of data in algorithm:hex form."""
    return f"{algorithm}:{hashlib.new(algorithm, data).hexdigest()}"


class Descriptor(BaseModel):
    """
    One node of a content graph.

    ref: https://github.com/opencontainers/image-spec/blob/main/descriptor.md
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    media_type: str = Field(..., alias="mediaType")
    digest: str
    size: int = Field(..., ge=0)
    annotations: Optional[Dict[str, str]] = None
    urls: Optional[List[str]] = None
    artifact_type: Optional[str] = Field(default=None, alias="artifactType")

    @field_validator("digest")
    @classmethod
    def validate_digest(cls, v):
        parse_digest(v)
        return v

    @property
    def title(self) -> Optional[str]:
        """Value of the org.opencontainers.image.title annotation, if any."""
        if not self.annotations:
            return None
        return self.annotations.get(OCI_TITLE_ANNOTATION)


class Manifest(BaseModel):
    """
    Union of the manifest shapes that carry successors.

    Image manifests use config + layers, indexes use manifests and artifact
    manifests use blobs. Unknown fields are ignored.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    schema_version: Optional[int] = Field(default=None, alias="schemaVersion")
    media_type: Optional[str] = Field(default=None, alias="mediaType")
    config: Optional[Descriptor] = None
    layers: List[Descriptor] = Field(default_factory=list)
    manifests: List[Descriptor] = Field(default_factory=list)
    blobs: List[Descriptor] = Field(default_factory=list)
    subject: Optional[Descriptor] = None


def descriptor_for(media_type: str, data: bytes) -> Descriptor:
    """Build a descriptor for in-memory content."""
    return Descriptor(media_type=media_type, digest=compute_digest(data), size=len(data))


def successors(desc: Descriptor, content: bytes) -> List[Descriptor]:
    """
    Nodes directly referenced by desc, in manifest order.

    - image manifest: subject (if any), config, layers
    - docker v2 manifest: config, layers
    - image index / docker manifest list: subject (if any), manifests
    - artifact manifest: subject (if any), blobs
    - anything else: no successors

    Raises:
        ValueError: If content is not a valid manifest of the declared type
    """
    if desc.media_type not in (OCI_IMAGE_MANIFEST, DOCKER_MANIFEST, OCI_IMAGE_INDEX,
                               DOCKER_MANIFEST_LIST, OCI_ARTIFACT_MANIFEST):
        return []

    try:
        manifest = Manifest.model_validate_json(content)
    except ValidationError as e:
        raise ValueError(f"Invalid manifest {desc.digest}: {e}") from e

    nodes: List[Descriptor] = []
    if desc.media_type == DOCKER_MANIFEST:
        if manifest.config is not None:
            nodes.append(manifest.config)
        nodes.extend(manifest.layers)
        return nodes

    if manifest.subject is not None and desc.media_type != DOCKER_MANIFEST_LIST:
        nodes.append(manifest.subject)

    if desc.media_type == OCI_IMAGE_MANIFEST:
        if manifest.config is not None:
            nodes.append(manifest.config)
        nodes.extend(manifest.layers)
    elif desc.media_type in (OCI_IMAGE_INDEX, DOCKER_MANIFEST_LIST):
        nodes.extend(manifest.manifests)
    else:
        nodes.extend(manifest.blobs)
    return nodes
