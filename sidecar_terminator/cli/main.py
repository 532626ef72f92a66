"""sidecar-terminator command-line interface.

Commands:
    sidecar-terminator run [--workers N] [--log-level LEVEL]   Run the controller.
    sidecar-terminator version                                 Print version and exit.

Everything else is configured through ``SIDECAR_TERMINATOR_*`` environment
variables; cluster credentials come from the in-cluster service account or
the local kubeconfig.
"""

from __future__ import annotations

import asyncio

import click

from sidecar_terminator import __version__

_LOG_LEVELS = ["debug", "info", "warning", "error", "critical"]


@click.group()
def cli() -> None:
    """sidecar-terminator - stop sidecars once a Job pod's main containers finish."""


@cli.command("version")
def cmd_version() -> None:
    """Print the sidecar-terminator version and exit."""
    click.echo(f"sidecar-terminator {__version__}")


@cli.command("run")
@click.option(
    "--workers",
    "-w",
    type=click.IntRange(min=1, max=32),
    default=None,
    help="Number of parallel reconcile workers.  Defaults to SIDECAR_TERMINATOR_WORKERS or 2.",
)
@click.option(
    "--log-level",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Log level.  Defaults to SIDECAR_TERMINATOR_LOG_LEVEL or info.",
)
def cmd_run(workers: int | None, log_level: str | None) -> None:
    """Run the controller until SIGTERM/SIGINT."""
    from sidecar_terminator.app import main

    asyncio.run(main(workers=workers, log_level=log_level.lower() if log_level else None))


if __name__ == "__main__":
    cli()
