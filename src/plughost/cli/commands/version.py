"""Version command for plughost CLI.

This module provides the `plughost version` command. Besides package and
dependency versions, verbose output reports which artifact types this
interpreter can load.
"""

import importlib.machinery
import sys
from importlib.metadata import PackageNotFoundError, version
from typing import Annotated

import typer

DEPENDENCIES = ("pydantic", "pyyaml", "structlog", "typer")


def get_version(distribution: str = "plughost") -> str:
    """Get the installed version of a distribution.

    Returns:
        Version string or 'unknown' if not installed.
    """
    try:
        return version(distribution)
    except PackageNotFoundError:
        return "unknown"


def artifact_suffixes() -> dict[str, list[str]]:
    """Return the file suffixes the import system can map, by artifact kind."""
    return {
        "source": list(importlib.machinery.SOURCE_SUFFIXES),
        "bytecode": list(importlib.machinery.BYTECODE_SUFFIXES),
        "extension": list(importlib.machinery.EXTENSION_SUFFIXES),
    }


def version_command(
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Show interpreter, dependency and artifact support details",
        ),
    ] = False,
) -> None:
    """Show plughost version information."""
    plughost_version = get_version()

    if not verbose:
        typer.echo(f"plughost {plughost_version}")
        return

    typer.echo(f"plughost version: {plughost_version}")
    typer.echo(f"Python version: {sys.version}")
    typer.echo(f"Python executable: {sys.executable}")

    typer.echo("\nDependencies:")
    for dep in DEPENDENCIES:
        typer.echo(f"  {dep}: {get_version(dep)}")

    typer.echo("\nLoadable artifacts:")
    for kind, suffixes in artifact_suffixes().items():
        typer.echo(f"  {kind}: {', '.join(suffixes) or 'none'}")
