"""
Installer Artifacts CLI

- fetch: Fetch an artifact from the configured registry and write its payload
"""
from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Optional

import typer

from .errors import ConfigurationError
from .provider import ArtifactProvider, FetchStatus
from .settings import create_settings_from_env

app = typer.Typer(name="installer-artifacts", help="Installer artifact retrieval CLI")

# 0 is success
EXIT_CODES = {
    FetchStatus.NOT_FOUND: 1,
    FetchStatus.INVALID_NAME: 2,
    FetchStatus.TRANSIENT: 3,
    FetchStatus.PERMISSION_DENIED: 4,
}
CONFIG_EXIT_CODE = 2


def _create_provider() -> ArtifactProvider:
    """Create a provider from INSTALLER_ARTIFACTS_* environment variables."""
    return ArtifactProvider(create_settings_from_env())


def _default_output(artifact: str, title: Optional[str]) -> str:
    if title:
        return Path(title).name
    return artifact.rstrip("/").rsplit("/", 1)[-1]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # basicConfig is a no-op once handlers exist; --verbose may come after the command
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
) -> None:
    """Fetch installer artifacts from an OCI registry."""
    _configure_logging(verbose)


@app.command()
def fetch(
    artifact: str = typer.Argument(..., help="Artifact name, relative to the registry URL path"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output file, '-' for stdout"),
    tag: Optional[str] = typer.Option(None, "--tag", help="Tag to fetch instead of the configured one"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Fetch an artifact and write its payload."""
    if verbose:
        _configure_logging(verbose)

    try:
        provider = _create_provider()
    except ConfigurationError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=CONFIG_EXIT_CODE) from e

    with provider:
        result = provider.fetch(artifact, tag=tag)
        if not result.ok:
            typer.echo(f"Fetching {artifact} failed ({result.status.value}): {result.error}", err=True)
            raise typer.Exit(code=EXIT_CODES.get(result.status, 3))

        with result.handle as handle:
            if output == "-":
                shutil.copyfileobj(handle, typer.get_binary_stream("stdout"))
                return

            dest = Path(output or _default_output(artifact, handle.descriptor.title))
            with open(dest, "wb") as out:
                shutil.copyfileobj(handle, out)

        typer.echo(f"Wrote {handle.descriptor.size} bytes ({handle.descriptor.digest}) to {dest}")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
