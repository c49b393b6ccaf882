"""``pinforge build [SRC]`` — build the recipe into a self-contained output tree.

Runs every gate (toolchain, pins, assemble, compile, check, fixup,
install) and replaces the output path only when all of them pass.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.panel import Panel
from rich.table import Table

from pinforge.cli.common import console, forge_errors, resolve_recipe
from pinforge.config import settings
from pinforge.core.builder import RecipeBuilder
from pinforge.core.fetcher import GitFetcher, HttpFetcher, RegistryFetcher
from pinforge.core.lockfile import load_channel_file
from pinforge.core.pin_store import PinStore
from pinforge.core.platforms import detect_host_platform
from pinforge.core.runner import CommandRunner
from pinforge.core.toolchain import ToolchainResolver
from pinforge.core.vendor import Vendorer
from pinforge.models.artifacts import Artifact
from pinforge.models.platforms import Platform


def build_cmd(
    src: Path = typer.Argument(
        Path("."),
        help="Source tree containing the lockfile and pin file.",
    ),
    out: Path = typer.Option(
        None,
        "--out",
        "-o",
        help="Output path (default: PINFORGE_OUTPUT_PATH).",
    ),
    recipe_file: Path = typer.Option(
        None,
        "--recipe",
        "-r",
        help="TOML recipe overriding the built-in one.",
    ),
    platform: Platform = typer.Option(
        None,
        "--platform",
        "-p",
        help="Target platform (default: the host).",
    ),
    allow_broken: bool = typer.Option(
        settings.allow_broken,
        "--allow-broken/--no-allow-broken",
        help="Build on platforms marked broken.",
    ),
    vendor_registry: bool = typer.Option(
        True,
        "--vendor-registry/--no-vendor-registry",
        help="Download crates.io packages into the vendor directory.",
    ),
) -> None:
    """Build the recipe from SRC and install it at the output path."""
    out_path = out or settings.output_path
    with forge_errors():
        recipe = resolve_recipe(recipe_file)
        target = platform or detect_host_platform()
        pin_store = PinStore.load(src / settings.pin_file)
        descriptor = load_channel_file(
            src / settings.channel_file,
            integrity_hash=recipe.toolchain.integrity_hash or settings.toolchain_hash,
        )

        runner = CommandRunner(default_timeout=settings.command_timeout_seconds)
        http = HttpFetcher(timeout=settings.http_timeout_seconds)
        with GitFetcher(runner) as git_fetcher:
            builder = RecipeBuilder(
                recipe,
                runner=runner,
                toolchain_resolver=ToolchainResolver(
                    http, runner, dist_server=settings.dist_server
                ),
                vendorer=Vendorer(
                    git_fetcher, RegistryFetcher(http) if vendor_registry else None
                ),
                allow_broken=allow_broken,
                lockfile_name=str(settings.lockfile),
            )
            artifact = builder.build(src, pin_store, descriptor, target, out_path)

    console.print(render_artifact(artifact))


def render_artifact(artifact: Artifact) -> Panel:
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Output", str(artifact.out_path))
    table.add_row("Platform", artifact.platform.value)
    table.add_row("Tree hash", artifact.tree_hash)
    table.add_row("Binaries", ", ".join(sorted(artifact.binary_paths)))
    if artifact.checked:
        checked = "[green]yes[/green]"
        if artifact.unverified_tests:
            checked += f" [yellow](skipped: {', '.join(artifact.unverified_tests)})[/yellow]"
    else:
        checked = "[yellow]no (test suite disabled)[/yellow]"
    table.add_row("Tested", checked)
    return Panel(
        table,
        title=f"[bold]{artifact.metadata.name} {artifact.metadata.version}[/bold]",
        border_style="green",
    )
