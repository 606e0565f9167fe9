"""Logging setup for the command line surface."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_FORMAT = "%(message)s"


def configure_logging(
    *, verbose: bool = False, quiet: bool = False, console: Console | None = None
) -> None:
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    root = logging.getLogger("waverun")
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt="[%X]"))
