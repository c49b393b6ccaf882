"""``pinforge cache`` — list or verify entries in the binary cache."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from pinforge.cli.common import console, err_console
from pinforge.config import settings
from pinforge.core.binary_cache import BinaryCache


def cache_cmd(
    cache_dir: Path = typer.Option(
        None,
        "--path",
        help="Cache directory (default: PINFORGE_CACHE_PATH).",
    ),
    verify: bool = typer.Option(
        False,
        "--verify",
        help="Re-hash every blob and report mismatches.",
    ),
) -> None:
    """Show what the binary cache holds."""
    cache = BinaryCache(cache_dir or settings.cache_path)
    entries = cache.entries()
    if not entries:
        console.print("[dim]Cache is empty.[/dim]")
        return

    table = Table(title="Binary cache")
    table.add_column("Hash", style="cyan")
    table.add_column("Name")
    table.add_column("Size", justify="right")
    table.add_column("Pushed")
    if verify:
        table.add_column("OK", justify="center")

    bad = 0
    for entry in entries:
        row = [
            entry.artifact_hash[:23],
            entry.name,
            f"{entry.size_bytes:,}",
            entry.pushed_at.strftime("%Y-%m-%d %H:%M:%S"),
        ]
        if verify:
            ok = cache.verify(entry.artifact_hash)
            bad += not ok
            row.append("[green]Yes[/green]" if ok else "[bold red]No[/bold red]")
        table.add_row(*row)
    console.print(table)

    if bad:
        err_console.print(f"[bold red]{bad} cache blob(s) failed verification[/bold red]")
        raise typer.Exit(code=1)
