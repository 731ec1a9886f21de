"""Root pytest configuration for installer-artifacts tests."""
import pytest

from installer_artifacts.provider import ArtifactProvider
from installer_artifacts.settings import Settings

from .fakes.fake_registry import FakeRegistry, REGISTRY_HOST


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow (may take significant time)"
    )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the caller's environment (settings, proxies) out of tests."""
    for name in (
        "INSTALLER_ARTIFACTS_REGISTRY_URL",
        "INSTALLER_ARTIFACTS_FILE_STORE_PATH",
        "INSTALLER_ARTIFACTS_PLAIN_HTTP",
        "INSTALLER_ARTIFACTS_TAG",
        "INSTALLER_ARTIFACTS_FETCH_TIMEOUT",
        "INSTALLER_ARTIFACTS_SERVER_CA",
        "INSTALLER_ARTIFACTS_CLIENT_CERT",
        "INSTALLER_ARTIFACTS_CLIENT_KEY",
        "INSTALLER_ARTIFACTS_USERNAME",
        "INSTALLER_ARTIFACTS_PASSWORD",
        "INSTALLER_ARTIFACTS_ACCESS_TOKEN",
        "INSTALLER_ARTIFACTS_REFRESH_TOKEN",
        "HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "NO_PROXY",
        "http_proxy", "https_proxy", "all_proxy", "no_proxy",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def store_base(tmp_path):
    """Base directory for temporary file stores."""
    base = tmp_path / "stores"
    base.mkdir()
    return base


@pytest.fixture
def settings(store_base):
    """Standard test settings."""
    return Settings(
        registry_url=f"oci://{REGISTRY_HOST}/githedgehog",
        file_store_base_path=str(store_base),
    )


@pytest.fixture
def registry():
    """Anonymous fake registry."""
    return FakeRegistry()


@pytest.fixture
def provider(settings, registry):
    """Provider talking to the fake registry."""
    with ArtifactProvider(settings, transport=registry.transport()) as p:
        yield p
