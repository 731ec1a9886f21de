"""
Settings and configuration for installer artifact retrieval.

Centralizes configuration values and provides validation with fail-fast behavior.
Loads settings from environment variables at provider construction time.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Optional

from .errors import ConfigurationError

__all__ = ["Settings", "create_settings_from_env", "DEFAULT_TAG", "DEFAULT_FETCH_TIMEOUT_S"]

DEFAULT_TAG = "latest"
DEFAULT_FETCH_TIMEOUT_S = 60.0

_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")


@dataclass(frozen=True)
class Settings:
    """
    Configuration bundle for an ArtifactProvider.

    Registry:
        registry_url: oci://host[:port][/path-prefix] (required)
        registry_plain_http: Talk plain HTTP to the registry (local/dev only)
        artifact_tag: Tag fetched for every artifact
        fetch_timeout_s: Upper bound for one complete fetch

    Local storage:
        file_store_base_path: Directory under which temporary file stores are created (required)

    TLS:
        server_ca_path: CA bundle used to verify the registry (system roots if unset)
        client_cert_path: Client certificate, only used together with client_key_path
        client_key_path: Client key, only used together with client_cert_path

    Credentials (sent to the registry host only):
        username, password, access_token, refresh_token
    """
    registry_url: str
    file_store_base_path: str
    registry_plain_http: bool = False
    artifact_tag: str = DEFAULT_TAG
    fetch_timeout_s: float = DEFAULT_FETCH_TIMEOUT_S

    server_ca_path: Optional[str] = None
    client_cert_path: Optional[str] = None
    client_key_path: Optional[str] = None

    username: Optional[str] = None
    password: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None

    def __post_init__(self):
        """Validate settings on construction."""
        if not self.registry_url:
            raise ConfigurationError("registry_url is required")

        if not self.file_store_base_path:
            raise ConfigurationError("file_store_base_path must not be empty")

        if self.fetch_timeout_s <= 0:
            raise ConfigurationError(f"fetch_timeout_s must be positive, got {self.fetch_timeout_s}")

        if not _TAG_RE.match(self.artifact_tag or ""):
            raise ConfigurationError(f"Invalid artifact_tag: {self.artifact_tag!r}")


def create_settings_from_env() -> Settings:
    """
    Load settings from environment variables.

    Environment Variables:
        - INSTALLER_ARTIFACTS_REGISTRY_URL (required)
        - INSTALLER_ARTIFACTS_FILE_STORE_PATH (required)
        - INSTALLER_ARTIFACTS_PLAIN_HTTP (default: false)
        - INSTALLER_ARTIFACTS_TAG (default: latest)
        - INSTALLER_ARTIFACTS_FETCH_TIMEOUT (default: 60.0)
        - INSTALLER_ARTIFACTS_SERVER_CA (optional)
        - INSTALLER_ARTIFACTS_CLIENT_CERT (optional)
        - INSTALLER_ARTIFACTS_CLIENT_KEY (optional)
        - INSTALLER_ARTIFACTS_USERNAME (optional)
        - INSTALLER_ARTIFACTS_PASSWORD (optional)
        - INSTALLER_ARTIFACTS_ACCESS_TOKEN (optional)
        - INSTALLER_ARTIFACTS_REFRESH_TOKEN (optional)

    Returns:
        Settings object with validated configuration

    Raises:
        ConfigurationError: If configuration is invalid or required values missing

    Note:
        Creates a fresh Settings instance every time (no caching).
    """
    def str_to_bool(value: str) -> bool:
        return value.lower() in ('true', '1', 'yes', 'on')

    registry_url = os.getenv("INSTALLER_ARTIFACTS_REGISTRY_URL")
    file_store_base_path = os.getenv("INSTALLER_ARTIFACTS_FILE_STORE_PATH")

    if not registry_url:
        raise ConfigurationError("INSTALLER_ARTIFACTS_REGISTRY_URL environment variable is required")
    if not file_store_base_path:
        raise ConfigurationError("INSTALLER_ARTIFACTS_FILE_STORE_PATH environment variable is required")

    timeout = os.getenv("INSTALLER_ARTIFACTS_FETCH_TIMEOUT")
    try:
        fetch_timeout_s = float(timeout) if timeout else DEFAULT_FETCH_TIMEOUT_S
    except ValueError as e:
        raise ConfigurationError(f"INSTALLER_ARTIFACTS_FETCH_TIMEOUT is not a number: {timeout!r}") from e

    return Settings(
        registry_url=registry_url,
        file_store_base_path=file_store_base_path,
        registry_plain_http=str_to_bool(os.getenv("INSTALLER_ARTIFACTS_PLAIN_HTTP", "false")),
        artifact_tag=os.getenv("INSTALLER_ARTIFACTS_TAG") or DEFAULT_TAG,
        fetch_timeout_s=fetch_timeout_s,
        server_ca_path=os.getenv("INSTALLER_ARTIFACTS_SERVER_CA"),
        client_cert_path=os.getenv("INSTALLER_ARTIFACTS_CLIENT_CERT"),
        client_key_path=os.getenv("INSTALLER_ARTIFACTS_CLIENT_KEY"),
        username=os.getenv("INSTALLER_ARTIFACTS_USERNAME"),
        password=os.getenv("INSTALLER_ARTIFACTS_PASSWORD"),
        access_token=os.getenv("INSTALLER_ARTIFACTS_ACCESS_TOKEN"),
        refresh_token=os.getenv("INSTALLER_ARTIFACTS_REFRESH_TOKEN"),
    )
