"""Helpers shared by the CLI commands."""

from __future__ import annotations

import logging
import tomllib
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from pinforge.errors import ForgeError
from pinforge.models.recipe import DEFAULT_RECIPE, Recipe, load_recipe
from pinforge.models.runs import RunState

console = Console()
err_console = Console(stderr=True)

RUN_STATE_STYLES: dict[RunState, str] = {
    RunState.IDLE: "dim",
    RunState.RUNNING: "bold yellow",
    RunState.SUCCEEDED: "bold green",
    RunState.FAILED: "bold red",
    RunState.SUPERSEDED: "magenta",
}


def configure_logging(level: str) -> None:
    """Route all ``pinforge`` loggers through Rich on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


@contextmanager
def forge_errors() -> Iterator[None]:
    """Turn a ``ForgeError`` into a red message and exit code 1."""
    try:
        yield
    except ForgeError as exc:
        err_console.print(f"[bold red]{type(exc).__name__}:[/bold red] {exc}")
        raise typer.Exit(code=1) from None


def resolve_recipe(path: Path | None) -> Recipe:
    if path is None:
        return DEFAULT_RECIPE
    try:
        return load_recipe(path)
    except (OSError, tomllib.TOMLDecodeError, ValidationError) as exc:
        err_console.print(f"[bold red]Cannot load recipe {path}:[/bold red] {exc}")
        raise typer.Exit(code=1) from None
