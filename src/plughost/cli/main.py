"""plughost CLI entry point.

This module provides the main Typer application and entry point for the
`plughost` CLI.

Usage:
    plughost status [options]                 - Load configured plugins, show status
    plughost call PATH FUNCTION [ARGS...]     - Call a plugin function
    plughost version [options]                - Show version information
"""

import logging
from typing import Annotated

import structlog
import typer

from plughost.cli.commands import call, status, version

app = typer.Typer(
    name="plughost",
    help="plughost CLI - Load plugins and call their functions",
    no_args_is_help=True,
)

app.command(name="status")(status.status_command)
app.command(name="call")(call.call_command)
app.command(name="version")(version.version_command)


def configure_logging(verbose: bool = False) -> None:
    """Route structlog through stdlib logging so command output stays clean.

    Args:
        verbose: Show INFO-level plugin events instead of warnings only.
    """
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
    )
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
    )


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Log plugin lifecycle events to stderr",
        ),
    ] = False,
) -> None:
    """plughost CLI - Load plugins and call their functions."""
    configure_logging(verbose)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
