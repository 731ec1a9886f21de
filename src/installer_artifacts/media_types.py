"""
OCI media types and constants.

Single source of truth for all OCI-related media types and constants.
"""
from __future__ import annotations

# Manifest types
OCI_IMAGE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_IMAGE_INDEX = "application/vnd.oci.image.index.v1+json"
OCI_ARTIFACT_MANIFEST = "application/vnd.oci.artifact.manifest.v1+json"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"

# The plain layer type is what installer artifacts are pushed as
OCI_IMAGE_LAYER = "application/vnd.oci.image.layer.v1.tar"
OCI_IMAGE_LAYER_GZIP = "application/vnd.oci.image.layer.v1.tar+gzip"
OCI_IMAGE_CONFIG = "application/vnd.oci.image.config.v1+json"
OCI_EMPTY_CONFIG = "application/vnd.oci.empty.v1+json"

OCI_TITLE_ANNOTATION = "org.opencontainers.image.title"

# Manifest types in order of preference, sent as the Accept header when resolving tags
ACCEPTED_MANIFEST_TYPES = [
    OCI_IMAGE_MANIFEST,
    OCI_IMAGE_INDEX,
    OCI_ARTIFACT_MANIFEST,
    DOCKER_MANIFEST,
    DOCKER_MANIFEST_LIST,
]

MANIFEST_TYPES = frozenset(ACCEPTED_MANIFEST_TYPES)


def is_manifest(media_type: str) -> bool:
    """Return True if media_type denotes a manifest or index rather than a blob."""
    return media_type in MANIFEST_TYPES


__all__ = [
    "OCI_IMAGE_MANIFEST",
    "OCI_IMAGE_INDEX",
    "OCI_ARTIFACT_MANIFEST",
    "DOCKER_MANIFEST",
    "DOCKER_MANIFEST_LIST",
    "OCI_IMAGE_LAYER",
    "OCI_IMAGE_LAYER_GZIP",
    "OCI_IMAGE_CONFIG",
    "OCI_EMPTY_CONFIG",
    "OCI_TITLE_ANNOTATION",
    "ACCEPTED_MANIFEST_TYPES",
    "MANIFEST_TYPES",
    "is_manifest",
]
