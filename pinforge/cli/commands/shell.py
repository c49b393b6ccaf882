"""``pinforge shell [CMD...]`` — run a command with the built artifact on PATH.

Without a command an interactive ``$SHELL`` is started.
"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path

import typer

from pinforge.cli.common import err_console
from pinforge.config import settings
from pinforge.core.smoke import shell_env


def shell_cmd(
    command: list[str] = typer.Argument(
        None,
        help="Command to run; defaults to $SHELL.",
    ),
    out: Path = typer.Option(
        None,
        "--out",
        "-o",
        help="Output path of a previous build (default: PINFORGE_OUTPUT_PATH).",
    ),
) -> None:
    """Enter a shell whose PATH starts with the artifact's bin directory."""
    out_path = out or settings.output_path
    if not (out_path / "bin").is_dir():
        err_console.print(
            f"[bold red]No build output at {out_path}.[/bold red] Run `pinforge build` first."
        )
        raise typer.Exit(code=1)

    argv = list(command or [os.environ.get("SHELL", "bash")])
    env = {**os.environ, **shell_env(out_path)}
    try:
        completed = subprocess.run(argv, env=env, check=False)
    except FileNotFoundError:
        err_console.print(f"[bold red]Command not found:[/bold red] {argv[0]}")
        raise typer.Exit(code=127) from None
    raise typer.Exit(code=completed.returncode)
