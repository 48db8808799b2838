"""Call command for plughost CLI.

This module provides the `plughost call` command, which loads a single
artifact and invokes one of its exported functions. Each argument is
parsed as a YAML scalar, so `42` is passed as an int, `true` as a bool
and `hi` as a str.
"""

import json
from pathlib import Path
from typing import Annotated, Any

import typer
import yaml

from plughost.plugins.base import CallOutcome
from plughost.plugins.errors import PluginError
from plughost.plugins.manager import PluginManager


def parse_argument(raw: str) -> Any:
    """Parse one command-line argument as a YAML scalar.

    Args:
        raw: The argument text.

    Returns:
        The parsed value, or the raw text if it is not valid YAML.
    """
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw


def _render(value: Any) -> Any:
    if isinstance(value, BaseException):
        return str(value)
    return value


def call_command(
    path: Annotated[Path, typer.Argument(help="Path to the plugin artifact")],
    function: Annotated[str, typer.Argument(help="Exported function name")],
    args: Annotated[
        list[str] | None,
        typer.Argument(help="Arguments, each parsed as a YAML scalar"),
    ] = None,
    raw: Annotated[
        bool,
        typer.Option(
            "--raw",
            help="Pass arguments as strings without YAML parsing",
        ),
    ] = False,
) -> None:
    """Load an artifact and call one of its functions.

    Prints the result list as JSON. Exits with code 1 when the last result
    slot carries an error and 2 when the artifact cannot be loaded.

    Examples:
        plughost call ./plugins/echo.py Echo hi
        plughost call ./plugins/math.py Add 1 2
    """
    params = [a if raw else parse_argument(a) for a in args or []]
    manager = PluginManager()

    try:
        try:
            plugin = manager.load_plugin(path)
        except PluginError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(2) from e

        results = plugin.call(function, *params)
    finally:
        manager.stop()

    typer.echo(json.dumps([_render(r) for r in results], default=str))

    if not CallOutcome.from_results(results).success:
        raise typer.Exit(1)
