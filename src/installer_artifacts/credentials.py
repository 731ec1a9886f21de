"""
Registry credentials and token cache.

Credentials are only ever handed out for the registry host they were
configured for. Tokens negotiated with a registry's auth server are kept
in a TokenCache owned by the provider instance.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

__all__ = ["Credential", "EMPTY_CREDENTIAL", "CredentialFunc", "static_credential", "TokenCache"]


@dataclass(frozen=True)
class Credential:
    """
    Credential tuple for one registry.

    access_token is used directly as a bearer token; refresh_token is
    exchanged with the auth server; username/password are used for basic
    auth or the distribution token flow.
    """
    username: str = ""
    password: str = ""
    access_token: str = ""
    refresh_token: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.username or self.password or self.access_token or self.refresh_token)

    def __repr__(self) -> str:
        # never leak secrets into logs
        return f"Credential(username={self.username!r}, empty={self.is_empty})"


EMPTY_CREDENTIAL = Credential()

CredentialFunc = Callable[[str], Credential]


def static_credential(host: str, credential: Credential) -> CredentialFunc:
    """
    Build a credential resolver bound to one registry host.

    Args:
        host: Registry host (including port) the credential belongs to
        credential: Configured credential

    Returns:
        Function of a target host returning the credential for `host` and
        EMPTY_CREDENTIAL for every other target
    """
    def resolve(target: str) -> Credential:
        if not credential.is_empty and target == host:
            return credential
        return EMPTY_CREDENTIAL

    return resolve


class TokenCache:
    """
    Thread-safe cache of authorization header values.

    Keys are (host, scheme, scope) tuples. Entries expire `margin_s` seconds
    before the lifetime the auth server announced.
    """

    def __init__(self, margin_s: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, str, str], Tuple[str, Optional[float]]] = {}
        self._margin_s = margin_s
        self._clock = clock

    def get(self, host: str, scheme: str, scope: str = "") -> Optional[str]:
        """Return the cached header value, or None if missing or expired."""
        key = (host, scheme, scope)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expiry = entry
            if expiry is not None and self._clock() >= expiry:
                del self._entries[key]
                return None
            return value

    def set(self, host: str, scheme: str, scope: str, value: str,
            expires_in: Optional[float] = None) -> None:
        """Store a header value; expires_in=None means it never expires."""
        expiry = None
        if expires_in is not None:
            expiry = self._clock() + max(expires_in - self._margin_s, 0.0)
        with self._lock:
            self._entries[(host, scheme, scope)] = (value, expiry)

    def invalidate(self, host: str, scheme: str, scope: str = "") -> None:
        with self._lock:
            self._entries.pop((host, scheme, scope), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
