"""``pinforge update-pins [SRC]`` — recompute content hashes for vendored sources.

This is the only command that writes the pin file. It needs network access
and should be followed by committing the updated file.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from pinforge.cli.common import console, forge_errors
from pinforge.config import settings
from pinforge.core.fetcher import GitFetcher
from pinforge.core.lockfile import load_lockfile
from pinforge.core.pin_store import PinStore
from pinforge.core.runner import CommandRunner


def update_pins_cmd(
    src: Path = typer.Argument(
        Path("."),
        help="Source tree containing the lockfile and pin file.",
    ),
    refresh: bool = typer.Option(
        False,
        "--refresh",
        help="Re-fetch and re-hash every vendored source, not just new ones.",
    ),
) -> None:
    """Fetch every git-sourced dependency lacking a pin and record its hash."""
    pin_path = src / settings.pin_file
    with forge_errors():
        lockfile = load_lockfile(src / settings.lockfile)
        current = PinStore.load(pin_path)
        runner = CommandRunner(default_timeout=settings.command_timeout_seconds)
        with GitFetcher(runner) as fetcher:
            updated = current.update(lockfile, fetcher, refresh=refresh)

    diff = current.diff(updated)
    if not any(diff.values()):
        console.print(f"[green]Pins up to date[/green] ({len(updated)} entries in {pin_path})")
        return

    table = Table(title=f"Pin changes in {pin_path}")
    table.add_column("Change")
    table.add_column("Dependency", style="cyan")
    table.add_column("Hash")
    styles = {"added": "green", "changed": "yellow", "removed": "red"}
    for change, dep_ids in diff.items():
        for dep_id in dep_ids:
            new_hash = updated.pins.get(dep_id, "")
            table.add_row(f"[{styles[change]}]{change}[/{styles[change]}]", dep_id, new_hash)
    console.print(table)
