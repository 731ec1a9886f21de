"""
In-memory OCI distribution registry for testing.

Serves /v2/<repo>/manifests/<ref> and /v2/<repo>/blobs/<digest> through
httpx.MockTransport, optionally behind a Bearer or Basic auth challenge.
This is a test double; not for production use.
"""
from __future__ import annotations

import base64
import json
import re
import threading
import time
from typing import Dict, List, Optional, Tuple

import httpx

from installer_artifacts.media_types import OCI_EMPTY_CONFIG, OCI_IMAGE_MANIFEST
from installer_artifacts.models import Descriptor, descriptor_for

__all__ = ["FakeRegistry", "REGISTRY_HOST", "AUTH_HOST"]

REGISTRY_HOST = "registry.test"
AUTH_HOST = "auth.test"
TOKEN_REALM = f"https://{AUTH_HOST}/token"

_PATH_RE = re.compile(r"^/v2/(?P<repo>.+)/(?P<kind>manifests|blobs)/(?P<ref>[^/]+)$")


class FakeRegistry:
    """
    In-memory registry.

    Auth modes:
        None: anonymous access
        "bearer": token server at AUTH_HOST issuing TOKEN for basic credentials
        "basic": registry itself accepts basic credentials

    With anonymous_tokens the token server also issues TOKEN to requests
    carrying no credentials, as public registries do.
    """

    TOKEN = "fake-token"

    def __init__(self, *, auth: Optional[str] = None, username: str = "user", password: str = "pass",
                 token_expires_in: Optional[int] = 300, anonymous_tokens: bool = False):
        self.auth = auth
        self.username = username
        self.password = password
        self.token_expires_in = token_expires_in
        self.anonymous_tokens = anonymous_tokens

        self._lock = threading.Lock()
        self._manifests: Dict[Tuple[str, str], Tuple[str, bytes]] = {}
        self._blobs: Dict[Tuple[str, str], bytes] = {}
        self._tags: Dict[Tuple[str, str], str] = {}

        self.requests: List[httpx.Request] = []
        self.token_requests: List[httpx.Request] = []

        # failure injection
        self.blob_status: Optional[int] = None
        self.blob_delay_s: float = 0.0
        self.corrupt_blobs = False

    # --- seeding helpers ---

    def push_blob(self, repo: str, data: bytes, media_type: str,
                  annotations: Optional[Dict[str, str]] = None) -> Descriptor:
        desc = descriptor_for(media_type, data)
        if annotations:
            desc = desc.model_copy(update={"annotations": annotations})
        with self._lock:
            self._blobs[(repo, desc.digest)] = data
        return desc

    def push_manifest(self, repo: str, media_type: str, manifest: dict,
                      tag: Optional[str] = None) -> Descriptor:
        payload = json.dumps(manifest, sort_keys=True, separators=(",", ":")).encode()
        desc = descriptor_for(media_type, payload)
        with self._lock:
            self._manifests[(repo, desc.digest)] = (media_type, payload)
            if tag:
                self._tags[(repo, tag)] = desc.digest
        return desc

    def push_image(self, repo: str, layers: List[Tuple[str, bytes]], *, tag: str = "latest",
                   annotations: Optional[List[Optional[Dict[str, str]]]] = None) -> Descriptor:
        """Push an OCI image manifest with an empty config and the given layers."""
        config = self.push_blob(repo, b"{}", OCI_EMPTY_CONFIG)
        layer_descs = []
        for i, (media_type, data) in enumerate(layers):
            layer_annotations = annotations[i] if annotations else None
            layer_descs.append(self.push_blob(repo, data, media_type, layer_annotations))
        manifest = {
            "schemaVersion": 2,
            "mediaType": OCI_IMAGE_MANIFEST,
            "config": _dump(config),
            "layers": [_dump(d) for d in layer_descs],
        }
        return self.push_manifest(repo, OCI_IMAGE_MANIFEST, manifest, tag=tag)

    def delete_tag(self, repo: str, tag: str) -> None:
        with self._lock:
            self._tags.pop((repo, tag), None)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # --- request handling ---

    def handle(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == AUTH_HOST:
            return self._handle_token(request)

        with self._lock:
            self.requests.append(request)

        match = _PATH_RE.match(request.url.path)
        if request.url.host != REGISTRY_HOST or not match:
            return httpx.Response(404)

        repo, kind, ref = match.group("repo"), match.group("kind"), match.group("ref")

        challenge = self._check_auth(request, repo)
        if challenge is not None:
            return challenge

        if kind == "manifests":
            return self._get_manifest(repo, ref)
        return self._get_blob(repo, ref)

    def _check_auth(self, request: httpx.Request, repo: str) -> Optional[httpx.Response]:
        header = request.headers.get("Authorization", "")
        if self.auth == "bearer":
            if header == f"Bearer {self.TOKEN}":
                return None
            return httpx.Response(401, headers={
                "WWW-Authenticate": (
                    f'Bearer realm="{TOKEN_REALM}",service="{REGISTRY_HOST}",'
                    f'scope="repository:{repo}:pull"'
                ),
            })
        if self.auth == "basic":
            if header == self._basic_header():
                return None
            return httpx.Response(401, headers={"WWW-Authenticate": 'Basic realm="fake"'})
        return None

    def _basic_header(self) -> str:
        raw = f"{self.username}:{self.password}".encode()
        return "Basic " + base64.b64encode(raw).decode()

    def _handle_token(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.token_requests.append(request)
        header = request.headers.get("Authorization")
        anonymous_ok = self.anonymous_tokens and header is None
        if header != self._basic_header() and not anonymous_ok:
            return httpx.Response(401)
        body = {"token": self.TOKEN}
        if self.token_expires_in is not None:
            body["expires_in"] = self.token_expires_in
        return httpx.Response(200, json=body)

    def _get_manifest(self, repo: str, ref: str) -> httpx.Response:
        with self._lock:
            digest = ref if ref.startswith("sha256:") else self._tags.get((repo, ref))
            entry = self._manifests.get((repo, digest)) if digest else None
        if entry is None:
            return httpx.Response(404, json={"errors": [{"code": "MANIFEST_UNKNOWN"}]})
        media_type, payload = entry
        return httpx.Response(200, content=payload, headers={
            "Content-Type": media_type,
            "Docker-Content-Digest": digest,
        })

    def _get_blob(self, repo: str, digest: str) -> httpx.Response:
        if self.blob_delay_s:
            time.sleep(self.blob_delay_s)
        if self.blob_status is not None:
            return httpx.Response(self.blob_status)
        with self._lock:
            data = self._blobs.get((repo, digest))
        if data is None:
            return httpx.Response(404, json={"errors": [{"code": "BLOB_UNKNOWN"}]})
        if self.corrupt_blobs:
            data = bytes(reversed(data)) if len(data) > 1 else b"\x00"
        return httpx.Response(200, content=data, headers={"Content-Type": "application/octet-stream"})


def _dump(desc: Descriptor) -> dict:
    return desc.model_dump(by_alias=True, exclude_none=True)
