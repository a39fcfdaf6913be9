"""Command line entry points for harvester."""

import logging

import typer
from typer import Typer

from .tasks import tasks_app

cli = Typer(help="Harvester command line tools")
cli.add_typer(tasks_app, name="tasks")


@cli.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


__all__ = ["cli", "tasks_app"]
