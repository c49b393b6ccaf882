"""Recipe pipeline — the build and smoke-test half of a CI run.

``RecipePipeline`` wires the pin store, toolchain resolver, vendorer and
``RecipeBuilder`` together for one source tree. Each run gets its own
output directory under ``output_root`` and its own cancel token, so a
superseded run can be stopped and its output discarded without touching
any other run.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Protocol

from pinforge.config import ForgeSettings
from pinforge.core.builder import RecipeBuilder
from pinforge.core.fetcher import GitFetcher, HttpFetcher, SourceFetcher
from pinforge.core.lockfile import load_channel_file
from pinforge.core.pin_store import PinStore
from pinforge.core.platforms import detect_host_platform
from pinforge.core.runner import CancelToken, CommandRunner, Runner
from pinforge.core.smoke import smoke_test
from pinforge.core.toolchain import ToolchainResolver
from pinforge.core.vendor import Vendorer
from pinforge.models.artifacts import Artifact
from pinforge.models.platforms import Platform
from pinforge.models.recipe import Recipe
from pinforge.models.runs import RunRecord

logger = logging.getLogger(__name__)


class BuildPipeline(Protocol):
    """What the CI publisher needs from a build backend."""

    def build(self, record: RunRecord, cancel_token: CancelToken) -> Artifact: ...

    def smoke_test(self, artifact: Artifact, cancel_token: CancelToken) -> None: ...

    def discard(self, record: RunRecord) -> None: ...


class RecipePipeline:
    """Builds *recipe* from *src_tree* once per CI run.

    Parameters
    ----------
    recipe:
        The recipe to build.
    src_tree:
        Source checkout containing the lockfile, channel file and pin file.
    output_root:
        Each run's output tree is written to ``output_root / run_id``.
    settings:
        Paths and behaviour flags. Uses ``ForgeSettings()`` if not provided.
    runner:
        Executes every external command.
    http:
        Downloads the toolchain manifest and registry crates.
    git_fetcher:
        Fetcher for git-sourced crates. A fresh ``GitFetcher`` is used for
        each run when not provided.
    registry_fetcher:
        Fetcher for crates.io packages; they are not vendored when None.
    platform:
        Target platform. Defaults to the host platform.
    """

    def __init__(
        self,
        recipe: Recipe,
        src_tree: Path,
        output_root: Path,
        *,
        settings: ForgeSettings | None = None,
        runner: Runner | None = None,
        http: HttpFetcher | None = None,
        git_fetcher: SourceFetcher | None = None,
        registry_fetcher: SourceFetcher | None = None,
        platform: Platform | None = None,
    ) -> None:
        self.recipe = recipe
        self.src_tree = Path(src_tree)
        self.output_root = Path(output_root)
        self._settings = settings or ForgeSettings()
        self._runner = runner or CommandRunner(
            default_timeout=self._settings.command_timeout_seconds
        )
        self._http = http or HttpFetcher(timeout=self._settings.http_timeout_seconds)
        self._git_fetcher = git_fetcher
        self._registry_fetcher = registry_fetcher
        self._platform = platform

    @property
    def platform(self) -> Platform:
        return self._platform or detect_host_platform()

    def out_path(self, record: RunRecord) -> Path:
        return self.output_root / record.run_id

    # ------------------------------------------------------------------
    # BuildPipeline
    # ------------------------------------------------------------------

    def build(self, record: RunRecord, cancel_token: CancelToken) -> Artifact:
        pin_store = PinStore.load(self.src_tree / self._settings.pin_file)
        descriptor = load_channel_file(
            self.src_tree / self._settings.channel_file,
            integrity_hash=(
                self.recipe.toolchain.integrity_hash or self._settings.toolchain_hash
            ),
        )
        logger.info(
            "Building %s for %s at %s",
            self.recipe.name, record.concurrency_key, record.event.commit or "HEAD",
        )

        own_fetcher = self._git_fetcher is None
        git_fetcher = self._git_fetcher or GitFetcher(self._runner, cancel_token=cancel_token)
        try:
            builder = RecipeBuilder(
                self.recipe,
                runner=self._runner,
                toolchain_resolver=ToolchainResolver(
                    self._http,
                    self._runner,
                    dist_server=self._settings.dist_server,
                    cancel_token=cancel_token,
                ),
                vendorer=Vendorer(
                    git_fetcher, self._registry_fetcher, cancel_token=cancel_token
                ),
                allow_broken=self._settings.allow_broken,
                lockfile_name=str(self._settings.lockfile),
                cancel_token=cancel_token,
            )
            return builder.build(
                self.src_tree, pin_store, descriptor, self.platform, self.out_path(record)
            )
        finally:
            if own_fetcher:
                git_fetcher.close()

    def smoke_test(self, artifact: Artifact, cancel_token: CancelToken) -> None:
        smoke_test(
            artifact,
            self.recipe.meta.main_program,
            runner=self._runner,
            timeout=self._settings.smoke_timeout_seconds,
            cancel_token=cancel_token,
        )

    def discard(self, record: RunRecord) -> None:
        out_path = self.out_path(record)
        if out_path.exists():
            logger.info("Discarding output of %s at %s", record.run_id, out_path)
            shutil.rmtree(out_path, ignore_errors=True)
