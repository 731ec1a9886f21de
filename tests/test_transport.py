"""
Tests for the secured transport builder.
"""
from __future__ import annotations

import logging
import ssl
import threading
import time

import httpx
import pytest

from installer_artifacts.errors import ConfigurationError
from installer_artifacts.settings import Settings
from installer_artifacts.transport import (
    DEFAULT_LIMITS,
    DEFAULT_TIMEOUT,
    HostLimitedTransport,
    build_http_client,
    build_ssl_context,
    proxy_mounts,
)


def _settings(**kwargs) -> Settings:
    return Settings(registry_url="oci://registry.test", file_store_base_path="/tmp", **kwargs)


class TestSSLContext:
    """Test TLS context construction."""

    def test_tls_floor(self):
        """Test that TLS 1.2 is the minimum protocol version."""
        ctx = build_ssl_context(_settings())
        assert ctx.minimum_version == ssl.TLSVersion.TLSv1_2
        assert ctx.verify_mode == ssl.CERT_REQUIRED
        assert ctx.check_hostname is True

    def test_missing_ca_bundle(self, tmp_path):
        """Test that an unreadable CA bundle fails at construction."""
        with pytest.raises(ConfigurationError, match="loading server CA"):
            build_ssl_context(_settings(server_ca_path=str(tmp_path / "missing.pem")))

    def test_invalid_ca_bundle(self, tmp_path):
        """Test that a CA bundle without certificates fails at construction."""
        bogus = tmp_path / "ca.pem"
        bogus.write_text("not a certificate")
        with pytest.raises(ConfigurationError):
            build_ssl_context(_settings(server_ca_path=str(bogus)))

    def test_half_client_identity_ignored(self, caplog):
        """Test that a cert without a key is ignored with a warning."""
        with caplog.at_level(logging.WARNING, logger="installer_artifacts.transport"):
            build_ssl_context(_settings(client_cert_path="/nonexistent/cert.pem"))
        assert "must both be set" in caplog.text

    def test_missing_client_key_pair(self, tmp_path):
        """Test that an unreadable client key pair fails at construction."""
        with pytest.raises(ConfigurationError, match="loading client certificate"):
            build_ssl_context(_settings(
                client_cert_path=str(tmp_path / "cert.pem"),
                client_key_path=str(tmp_path / "key.pem"),
            ))


class TestHttpClient:
    """Test client-level settings."""

    def test_limits_and_timeouts(self):
        """Test the pool and timeout configuration."""
        assert DEFAULT_LIMITS.max_keepalive_connections == 10
        assert DEFAULT_LIMITS.keepalive_expiry == 90.0
        assert DEFAULT_TIMEOUT.connect == 40.0

    def test_client_wraps_transport(self):
        """Test that the client follows redirects and applies the per-host cap."""
        inner = httpx.MockTransport(lambda request: httpx.Response(200, text="ok"))
        client = build_http_client(_settings(), transport=inner)
        try:
            assert client.follow_redirects is True
            assert client.timeout.connect == 40.0
            assert client.get("https://registry.test/v2/").text == "ok"
        finally:
            client.close()


class TestHostLimitedTransport:
    """Test the per-host connection cap."""

    def test_caps_concurrency_per_host(self):
        """Test that at most max_per_host requests to one host run at once."""
        lock = threading.Lock()
        active = {"now": 0, "peak": 0}

        def handler(request):
            with lock:
                active["now"] += 1
                active["peak"] = max(active["peak"], active["now"])
            time.sleep(0.05)
            with lock:
                active["now"] -= 1
            return httpx.Response(200)

        client = httpx.Client(transport=HostLimitedTransport(httpx.MockTransport(handler), max_per_host=3))
        threads = [threading.Thread(target=client.get, args=("https://registry.test/v2/",)) for _ in range(9)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        client.close()

        assert active["peak"] <= 3

    def test_slot_released_on_stream_close(self):
        """Test that a streamed response holds its slot until closed."""
        transport = HostLimitedTransport(httpx.MockTransport(lambda r: httpx.Response(200, content=b"x")),
                                         max_per_host=1)
        client = httpx.Client(transport=transport, timeout=httpx.Timeout(5.0, pool=0.1))

        with client.stream("GET", "https://registry.test/a") as response:
            assert response.status_code == 200
            with pytest.raises(httpx.PoolTimeout):
                client.get("https://registry.test/b")

        assert client.get("https://registry.test/c").status_code == 200
        # other hosts are independent
        assert client.get("https://other.test/").status_code == 200
        client.close()

    def test_idle_hosts_dropped(self):
        """Test that a host's slot is forgotten once nothing holds or waits on it."""
        transport = HostLimitedTransport(httpx.MockTransport(lambda r: httpx.Response(200, content=b"x")),
                                         max_per_host=1)
        client = httpx.Client(transport=transport)

        with client.stream("GET", "https://registry.test/a") as response:
            assert response.status_code == 200
            assert transport.tracked_hosts == 1

        for i in range(20):
            assert client.get(f"https://cdn-{i}.test/blob").status_code == 200

        assert transport.tracked_hosts == 0
        client.close()

    def test_failed_request_frees_slot(self):
        """Test that a transport error releases the slot and forgets the host."""
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        transport = HostLimitedTransport(httpx.MockTransport(handler), max_per_host=1)
        client = httpx.Client(transport=transport, timeout=httpx.Timeout(5.0, pool=0.1))

        for _ in range(2):
            with pytest.raises(httpx.ConnectError):
                client.get("https://registry.test/")

        assert transport.tracked_hosts == 0
        client.close()


class TestProxyMounts:
    """Test environment proxies are routed through capped transports."""

    def test_no_proxy_configured(self):
        assert proxy_mounts(build_ssl_context(_settings())) == {}

    def test_proxies_from_environment(self, monkeypatch):
        """Test that proxy transports get the per-host cap and NO_PROXY bypasses them."""
        monkeypatch.setenv("HTTPS_PROXY", "http://proxy.test:3128")
        monkeypatch.setenv("NO_PROXY", "registry.internal, .corp.test,10.0.0.1,localhost")

        mounts = proxy_mounts(build_ssl_context(_settings()))

        assert isinstance(mounts["https://"], HostLimitedTransport)
        assert "http://" not in mounts
        assert mounts["all://*registry.internal"] is None
        assert mounts["all://*.corp.test"] is None
        assert mounts["all://10.0.0.1"] is None
        assert mounts["all://localhost"] is None

    def test_proxy_without_scheme(self, monkeypatch):
        monkeypatch.setenv("HTTP_PROXY", "proxy.test:3128")
        mounts = proxy_mounts(build_ssl_context(_settings()))
        assert isinstance(mounts["http://"], HostLimitedTransport)

    def test_no_proxy_wildcard_disables_proxies(self, monkeypatch):
        monkeypatch.setenv("HTTPS_PROXY", "http://proxy.test:3128")
        monkeypatch.setenv("NO_PROXY", "*")
        assert proxy_mounts(build_ssl_context(_settings())) == {}

    def test_client_built_with_proxy(self, monkeypatch):
        """Test that a client can be built when the environment names a proxy."""
        monkeypatch.setenv("HTTPS_PROXY", "http://proxy.test:3128")
        client = build_http_client(_settings())
        client.close()
