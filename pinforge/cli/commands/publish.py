"""``pinforge publish`` — simulate the CI workflow for one repository event.

Builds SRC, smoke-tests the result and, unless the event is a pull
request, pushes the output tree to the binary cache. The run and every
state transition are recorded in the run ledger.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.panel import Panel
from rich.table import Table

from pinforge.cli.common import RUN_STATE_STYLES, console, forge_errors, resolve_recipe
from pinforge.config import settings
from pinforge.core.binary_cache import BinaryCache
from pinforge.core.fetcher import HttpFetcher, RegistryFetcher
from pinforge.core.pipeline import RecipePipeline
from pinforge.core.publisher import CIPublisher, TriggerPolicy
from pinforge.core.run_ledger import RunLedger
from pinforge.models.runs import RunRecord, RunState, TriggerEvent, TriggerKind


def publish_cmd(
    src: Path = typer.Argument(
        Path("."),
        help="Source tree to build.",
    ),
    event: TriggerKind = typer.Option(
        TriggerKind.PUSH,
        "--event",
        "-e",
        help="Event kind that triggered the run.",
    ),
    ref: str = typer.Option(
        settings.main_branch,
        "--ref",
        help="Branch or PR ref the event targets.",
    ),
    commit: str = typer.Option(
        "",
        "--commit",
        help="Commit being built (informational).",
    ),
    recipe_file: Path = typer.Option(
        None,
        "--recipe",
        "-r",
        help="TOML recipe overriding the built-in one.",
    ),
    output_root: Path = typer.Option(
        Path(".pinforge/runs"),
        "--output-root",
        help="Directory holding one output tree per run.",
    ),
) -> None:
    """Run build, smoke test and publish for a simulated trigger event."""
    with forge_errors():
        recipe = resolve_recipe(recipe_file)
        http = HttpFetcher(timeout=settings.http_timeout_seconds)
        pipeline = RecipePipeline(
            recipe,
            src,
            output_root,
            settings=settings,
            http=http,
            registry_fetcher=RegistryFetcher(http),
        )
        publisher = CIPublisher(
            pipeline,
            BinaryCache(settings.cache_path),
            RunLedger(settings.ledger_path),
            policy=TriggerPolicy(main_branch=settings.main_branch),
        )
        record = publisher.run(
            TriggerEvent(
                kind=event,
                workflow=settings.workflow_name,
                ref_name=ref,
                commit=commit,
            )
        )

    console.print(render_run(record))
    if record.state in (RunState.FAILED, RunState.SUPERSEDED):
        raise typer.Exit(code=1)


def render_run(record: RunRecord) -> Panel:
    style = RUN_STATE_STYLES[record.state]
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Run", record.run_id)
    table.add_row("Event", f"{record.event.kind.value} on {record.event.ref_name}")
    table.add_row("Concurrency key", record.concurrency_key)
    table.add_row("State", f"[{style}]{record.state.value}[/{style}]")
    table.add_row("Publish", record.publish.value)
    if record.artifact_hash:
        table.add_row("Artifact", record.artifact_hash)
    if record.reason:
        table.add_row("Reason", record.reason)
    return Panel(table, title="[bold]CI run[/bold]", border_style=style.split()[-1])
