"""
Secured HTTP transport for registry access.

Builds one httpx.Client per provider with explicit limits, timeouts and a
TLS floor instead of relying on library defaults.
"""
from __future__ import annotations

import ipaddress
import logging
import socket
import ssl
import threading
import urllib.request
from typing import Callable, Dict, Iterator, Optional

import httpx

from .errors import ConfigurationError
from .settings import Settings

__all__ = [
    "build_ssl_context",
    "build_http_client",
    "HostLimitedTransport",
    "proxy_mounts",
    "DEFAULT_TIMEOUT",
    "DEFAULT_LIMITS",
]

logger = logging.getLogger(__name__)

DIAL_TIMEOUT_S = 30.0
TLS_HANDSHAKE_TIMEOUT_S = 10.0
TCP_KEEPALIVE_S = 30
IDLE_CONN_TIMEOUT_S = 90.0
MAX_IDLE_CONNS = 10
MAX_CONNS_PER_HOST = 3
READ_TIMEOUT_S = 60.0
MIN_TLS_VERSION = ssl.TLSVersion.TLSv1_2

# httpx has no separate handshake phase, the connect timeout covers dial + TLS
DEFAULT_TIMEOUT = httpx.Timeout(
    connect=DIAL_TIMEOUT_S + TLS_HANDSHAKE_TIMEOUT_S,
    read=READ_TIMEOUT_S,
    write=READ_TIMEOUT_S,
    pool=DIAL_TIMEOUT_S,
)

DEFAULT_LIMITS = httpx.Limits(
    max_connections=None,
    max_keepalive_connections=MAX_IDLE_CONNS,
    keepalive_expiry=IDLE_CONN_TIMEOUT_S,
)


def _keepalive_socket_options() -> list:
    """TCP keep-alive probes every TCP_KEEPALIVE_S, where the platform supports it."""
    options = [(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)]
    for name in ("TCP_KEEPIDLE", "TCP_KEEPINTVL"):
        if hasattr(socket, name):
            options.append((socket.IPPROTO_TCP, getattr(socket, name), TCP_KEEPALIVE_S))
    return options


def build_ssl_context(settings: Settings) -> ssl.SSLContext:
    """
    TLS client context for the registry.

    Trust roots come from settings.server_ca_path, or the system store if
    unset. A client certificate is attached only when both cert and key are
    configured.

    Raises:
        ConfigurationError: If the CA bundle or client key pair cannot be loaded
    """
    try:
        if settings.server_ca_path:
            ctx = ssl.create_default_context(cafile=settings.server_ca_path)
        else:
            ctx = ssl.create_default_context()
    except (OSError, ssl.SSLError) as e:
        raise ConfigurationError(f"loading server CA {settings.server_ca_path}: {e}") from e

    ctx.minimum_version = MIN_TLS_VERSION

    if settings.client_cert_path and settings.client_key_path:
        try:
            ctx.load_cert_chain(settings.client_cert_path, settings.client_key_path)
        except (OSError, ssl.SSLError) as e:
            raise ConfigurationError(
                f"loading client certificate {settings.client_cert_path}: {e}"
            ) from e
    elif settings.client_cert_path or settings.client_key_path:
        logger.warning("Client certificate and key must both be set, ignoring client identity")

    return ctx


class _HostSlot:
    """Semaphore for one host plus the number of requests holding or waiting on it."""

    def __init__(self, max_per_host: int):
        self.semaphore = threading.BoundedSemaphore(max_per_host)
        self.users = 0


class _ReleasingStream(httpx.SyncByteStream):
    """Response stream that frees its host slot when closed."""

    def __init__(self, stream: httpx.SyncByteStream, release: Callable[[], None]):
        self._stream = stream
        self._release = release
        self._released = False
        self._lock = threading.Lock()

    def __iter__(self) -> Iterator[bytes]:
        yield from self._stream

    def close(self) -> None:
        try:
            self._stream.close()
        finally:
            with self._lock:
                first = not self._released
                self._released = True
            if first:
                self._release()


class HostLimitedTransport(httpx.BaseTransport):
    """
    Caps concurrent requests per host.

    A slot is held from sending the request until the response stream is
    closed. Waiting for a slot is bounded by the request's pool timeout.
    A host's slot is dropped once no request holds or waits on it, so
    redirect targets do not accumulate.
    """

    def __init__(self, transport: httpx.BaseTransport, max_per_host: int = MAX_CONNS_PER_HOST):
        self._transport = transport
        self._max_per_host = max_per_host
        self._lock = threading.Lock()
        self._slots: Dict[str, _HostSlot] = {}

    @property
    def tracked_hosts(self) -> int:
        """Number of hosts with requests in flight or waiting."""
        with self._lock:
            return len(self._slots)

    def _enter(self, key: str) -> _HostSlot:
        with self._lock:
            slot = self._slots.get(key)
            if slot is None:
                slot = _HostSlot(self._max_per_host)
                self._slots[key] = slot
            slot.users += 1
            return slot

    def _leave(self, key: str, slot: _HostSlot) -> None:
        with self._lock:
            slot.users -= 1
            if slot.users == 0 and self._slots.get(key) is slot:
                del self._slots[key]

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        key = f"{request.url.scheme}://{request.url.host}:{request.url.port or ''}"
        slot = self._enter(key)
        pool_timeout: Optional[float] = request.extensions.get("timeout", {}).get("pool")
        if not slot.semaphore.acquire(timeout=pool_timeout):
            self._leave(key, slot)
            raise httpx.PoolTimeout(f"No free connection slot for {request.url.host}", request=request)

        def release() -> None:
            slot.semaphore.release()
            self._leave(key, slot)

        try:
            response = self._transport.handle_request(request)
        except BaseException:
            release()
            raise

        return httpx.Response(
            status_code=response.status_code,
            headers=response.headers,
            stream=_ReleasingStream(response.stream, release),
            extensions=response.extensions,
        )

    def close(self) -> None:
        self._transport.close()


def _http_transport(ssl_context: ssl.SSLContext, proxy: Optional[str] = None) -> httpx.HTTPTransport:
    return httpx.HTTPTransport(
        verify=ssl_context,
        http1=True,
        http2=False,  # avoid h2 dependency
        limits=DEFAULT_LIMITS,
        retries=0,
        proxy=proxy,
        socket_options=_keepalive_socket_options(),
    )


def proxy_mounts(ssl_context: ssl.SSLContext) -> Dict[str, Optional[httpx.BaseTransport]]:
    """
    Transports for proxies configured in the environment.

    Reads HTTP_PROXY / HTTPS_PROXY / ALL_PROXY and NO_PROXY the way httpx
    does, but builds every proxy transport with the shared TLS context and
    socket options and behind the per-host cap. A None value routes matching
    URLs to the client's direct transport.
    """
    proxies = urllib.request.getproxies()
    mounts: Dict[str, Optional[httpx.BaseTransport]] = {}

    for scheme in ("http", "https", "all"):
        url = proxies.get(scheme)
        if not url:
            continue
        if "://" not in url:
            url = f"http://{url}"
        mounts[f"{scheme}://"] = HostLimitedTransport(_http_transport(ssl_context, proxy=url))

    for host in proxies.get("no", "").split(","):
        host = host.strip()
        if host == "*":
            return {}
        if not host:
            continue
        if "://" in host:
            mounts[host] = None
        elif host.lower() == "localhost" or _is_ip_address(host):
            mounts[f"all://{host}"] = None
        else:
            mounts[f"all://*{host.lstrip('*')}"] = None
    return mounts


def _is_ip_address(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def build_http_client(settings: Settings, *, transport: Optional[httpx.BaseTransport] = None) -> httpx.Client:
    """
    Create the HTTP client shared by all fetches of one provider.

    Args:
        settings: Provider settings (TLS material)
        transport: Inner transport override (tests); wrapped with the per-host cap

    Returns:
        Configured httpx.Client
    """
    ssl_context = build_ssl_context(settings)

    if transport is None:
        transport = _http_transport(ssl_context)

    return httpx.Client(
        transport=HostLimitedTransport(transport),
        mounts=proxy_mounts(ssl_context),
        verify=ssl_context,
        limits=DEFAULT_LIMITS,
        timeout=DEFAULT_TIMEOUT,
        follow_redirects=True,
        # proxies are mounted above
        trust_env=False,
        headers={"User-Agent": "installer-artifacts/0.1.0"},
    )
