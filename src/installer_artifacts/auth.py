"""
Registry authentication flow.

Wraps the shared httpx.Client and transparently answers 401 challenges the
way the Docker Registry v2 / OCI distribution auth spec describes.
"""
from __future__ import annotations

import base64
import logging
import re
from typing import Dict, Optional, Tuple

import httpx

from .credentials import Credential, CredentialFunc, TokenCache
from .errors import RegistryAuthError

__all__ = ["AuthClient", "parse_challenge"]

logger = logging.getLogger(__name__)

# Used when the token server does not announce expires_in
DEFAULT_TOKEN_LIFETIME_S = 60.0

_CLIENT_ID = "installer-artifacts"

_PARAM_RE = re.compile(r'(\w+)=(?:"([^"]*)"|([^",\s]+))')


def parse_challenge(header: str) -> Tuple[str, Dict[str, str]]:
    """
    Parse a WWW-Authenticate header.

    Returns:
        (scheme, params) with the scheme lowercased, e.g.
        ("bearer", {"realm": "...", "service": "...", "scope": "..."})
    """
    scheme, _, rest = header.strip().partition(" ")
    params = {}
    # values may be quoted strings or bare tokens
    for match in _PARAM_RE.finditer(rest):
        quoted, token = match.group(2), match.group(3)
        params[match.group(1).lower()] = quoted if quoted is not None else token
    return scheme.lower(), params


def _basic(credential: Credential) -> str:
    raw = f"{credential.username}:{credential.password}".encode()
    return "Basic " + base64.b64encode(raw).decode()


class AuthClient:
    """
    Sends requests to one registry host, handling authentication.

    Authorization already negotiated for the request's scope is attached up
    front. On 401 the challenge is answered once and the request resent.
    """

    def __init__(self, host: str, client: httpx.Client, credential: CredentialFunc,
                 cache: TokenCache):
        self.host = host
        self.client = client
        self._credential = credential
        self._cache = cache

    def send(self, method: str, url: str, *, scope: str, headers: Optional[dict] = None,
             timeout: Optional[httpx.Timeout] = None, stream: bool = False) -> httpx.Response:
        """
        Send a request, answering an auth challenge if one comes back.

        Args:
            method: HTTP method
            url: Absolute URL on the registry
            scope: Scope hint, e.g. "repository:foo/bar:pull"
            headers: Extra request headers
            timeout: Per-request timeout
            stream: Leave the body unread (caller must close the response)

        Returns:
            The final response; status codes are not checked here

        Raises:
            RegistryAuthError: If the token endpoint rejects the credential
            httpx.RequestError: For transport failures
        """
        request_headers = dict(headers or {})
        cached = self._cached_authorization(scope)
        if cached:
            request_headers["Authorization"] = cached

        response = self._send(method, url, request_headers, timeout, stream)
        if response.status_code != 401:
            return response

        challenge = response.headers.get("WWW-Authenticate", "")
        response.close()

        scheme, params = parse_challenge(challenge)
        authorization = self._answer(scheme, params, scope, timeout)
        if authorization is None:
            # Nothing we can offer, hand the 401 back to the caller
            return self._send(method, url, request_headers, timeout, stream)

        request_headers["Authorization"] = authorization
        return self._send(method, url, request_headers, timeout, stream)

    def _send(self, method, url, headers, timeout, stream) -> httpx.Response:
        kwargs = {}
        if timeout is not None:
            kwargs["timeout"] = timeout
        request = self.client.build_request(method, url, headers=headers, **kwargs)
        return self.client.send(request, stream=stream)

    def _cached_authorization(self, scope: str) -> Optional[str]:
        return self._cache.get(self.host, "bearer", scope) or self._cache.get(self.host, "basic")

    def _answer(self, scheme: str, params: Dict[str, str], scope: str,
                timeout: Optional[httpx.Timeout]) -> Optional[str]:
        credential = self._credential(self.host)

        if scheme == "basic":
            self._cache.invalidate(self.host, "basic")
            if not (credential.username or credential.password):
                return None
            value = _basic(credential)
            self._cache.set(self.host, "basic", "", value)
            return value

        if scheme == "bearer":
            token_scope = params.get("scope") or scope
            self._cache.invalidate(self.host, "bearer", scope)
            token, expires_in = self._fetch_token(credential, params, token_scope, timeout)
            value = f"Bearer {token}"
            self._cache.set(self.host, "bearer", scope, value, expires_in)
            return value

        logger.debug(f"Unsupported auth scheme {scheme!r} from {self.host}")
        return None

    def _fetch_token(self, credential: Credential, params: Dict[str, str], scope: str,
                     timeout: Optional[httpx.Timeout]) -> Tuple[str, Optional[float]]:
        """
        Obtain a bearer token for scope.

        Order: configured access token, refresh-token OAuth2 exchange,
        distribution token GET with basic auth (or anonymous).
        """
        if credential.access_token:
            return credential.access_token, None

        realm = params.get("realm")
        if not realm:
            raise RegistryAuthError(f"Bearer challenge from {self.host} has no realm")

        service = params.get("service", "")
        kwargs = {}
        if timeout is not None:
            kwargs["timeout"] = timeout

        try:
            if credential.refresh_token:
                form = {
                    "grant_type": "refresh_token",
                    "refresh_token": credential.refresh_token,
                    "service": service,
                    "scope": scope,
                    "client_id": _CLIENT_ID,
                }
                response = self.client.post(realm, data=form, **kwargs)
            else:
                query = {"service": service}
                if scope:
                    query["scope"] = scope
                if credential.username or credential.password:
                    kwargs["auth"] = (credential.username, credential.password)
                response = self.client.get(realm, params=query, **kwargs)
        except httpx.RequestError as e:
            raise RegistryAuthError(f"Token request to {realm} failed: {e}") from e

        if response.status_code != 200:
            raise RegistryAuthError(f"Token request to {realm} returned {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise RegistryAuthError(f"Token response from {realm} is not JSON") from e

        token = data.get("access_token") or data.get("token")
        if not token:
            raise RegistryAuthError(f"Token response from {realm} has no token")

        expires_in = data.get("expires_in") or DEFAULT_TOKEN_LIFETIME_S
        logger.debug(f"Obtained bearer token from {realm} for scope {scope!r}")
        return token, float(expires_in)
