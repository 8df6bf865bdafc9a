"""Logging setup for the CLI."""

from __future__ import annotations

import logging

from rich.logging import RichHandler

from descsync.cli.common.output import console

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def resolve_level(name: str | None) -> int:
    """Map a level name to a logging level; unknown names resolve to INFO."""
    return _LEVELS.get((name or "").strip().upper(), logging.INFO)


def setup_logging(level: str | None = "INFO") -> None:
    """Route `descsync` loggers through Rich on the CLI console."""
    handler = RichHandler(console=console, show_path=False, rich_tracebacks=False)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    root = logging.getLogger("descsync")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(resolve_level(level))
    root.propagate = False
