"""
Tests for registry URL parsing and repository name construction.
"""
from __future__ import annotations

import pytest

from installer_artifacts.errors import ConfigurationError, InvalidArtifactNameError
from installer_artifacts.registry import RegistryReference, parse_registry_url


class TestParseRegistryURL:
    """Test parse_registry_url validation."""

    def test_host_and_prefix(self):
        """Test that host (with port) and path prefix are kept."""
        ref = parse_registry_url("oci://registry.local:5000/githedgehog/dasboot")
        assert ref.host == "registry.local:5000"
        assert ref.path_prefix == "/githedgehog/dasboot"

    def test_no_prefix(self):
        """Test a bare registry URL."""
        ref = parse_registry_url("oci://ghcr.io")
        assert ref == RegistryReference(host="ghcr.io", path_prefix="")

    @pytest.mark.parametrize("url", [
        "https://registry.local/prefix",
        "http://registry.local",
        "registry.local/prefix",
        "docker://registry.local",
    ])
    def test_wrong_scheme(self, url):
        """Test that anything but oci:// is rejected."""
        with pytest.raises(ConfigurationError, match="OCI scheme"):
            parse_registry_url(url)

    def test_missing_host(self):
        """Test that oci:// without a host is rejected."""
        with pytest.raises(ConfigurationError, match="no host"):
            parse_registry_url("oci:///just/a/path")

    def test_bad_port(self):
        """Test that an unparsable port is a configuration error."""
        with pytest.raises(ConfigurationError, match="parsing registry URL"):
            parse_registry_url("oci://registry.local:notaport/x")

    def test_userinfo_rejected(self):
        """Test that credentials embedded in the URL are rejected."""
        with pytest.raises(ConfigurationError, match="credentials"):
            parse_registry_url("oci://user:pw@registry.local/x")


class TestRepositoryName:
    """Test RegistryReference.repository_name."""

    def test_join_prefix(self):
        """Test that the prefix is joined and the leading slash stripped."""
        ref = RegistryReference(host="r", path_prefix="/githedgehog")
        assert ref.repository_name("onie-installer") == "githedgehog/onie-installer"

    def test_leading_slash_equivalent(self):
        """Test that '/foo' and 'foo' resolve to the same repository."""
        ref = RegistryReference(host="r", path_prefix="/githedgehog")
        assert ref.repository_name("/foo") == ref.repository_name("foo") == "githedgehog/foo"

    def test_without_prefix(self):
        """Test names without a prefix never start with a separator."""
        ref = RegistryReference(host="r")
        assert ref.repository_name("/foo/bar") == "foo/bar"
        assert ref.repository_name("//foo") == "foo"

    def test_normalization(self):
        """Test that redundant separators and dot segments are cleaned."""
        ref = RegistryReference(host="r", path_prefix="/prefix/")
        assert ref.repository_name("a//b/./c") == "prefix/a/b/c"
        assert ref.repository_name("a/../b") == "prefix/b"

    @pytest.mark.parametrize("artifact", ["", "/", "Upper", "bad name", "x/-y"])
    def test_invalid_names(self, artifact):
        """Test that names outside the OCI repository grammar are rejected."""
        ref = RegistryReference(host="r")
        with pytest.raises(InvalidArtifactNameError):
            ref.repository_name(artifact)
