"""Main Typer application — imports and registers all CLI commands.

Entry point: ``pinforge`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from pinforge.cli.commands.build import build_cmd
from pinforge.cli.commands.cache import cache_cmd
from pinforge.cli.commands.history import history_cmd
from pinforge.cli.commands.publish import publish_cmd
from pinforge.cli.commands.shell import shell_cmd
from pinforge.cli.commands.update_pins import update_pins_cmd
from pinforge.cli.common import configure_logging
from pinforge.config import settings

app = typer.Typer(
    name="pinforge",
    help="pinforge: reproducible, hash-pinned builds with a CI binary cache.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        settings.log_level,
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    ),
) -> None:
    configure_logging(log_level)


# Register subcommands
app.command(name="build", help="Build the recipe into an output tree.")(build_cmd)
app.command(name="shell", help="Run a shell with the built artifact on PATH.")(shell_cmd)
app.command(name="update-pins", help="Recompute pins for vendored sources.")(update_pins_cmd)
app.command(name="publish", help="Simulate a CI run for a trigger event.")(publish_cmd)
app.command(name="history", help="Show CI runs from the run ledger.")(history_cmd)
app.command(name="cache", help="List binary cache entries.")(cache_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
