"""Recipe builder — turns a source tree plus pins into an output tree.

Every build runs the same ordered gates:

    toolchain -> pins -> assemble -> compile -> check -> fixup -> install

Each gate either completes or raises; a raised error aborts the build. All
output is written to a staging directory beside ``out_path`` and only
renamed into place once every gate has passed, so a failed build never
leaves a partial output tree behind.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from pinforge.core.desktop import render_desktop_entry, render_fonts_conf
from pinforge.core.hasher import hash_tree
from pinforge.core.lockfile import load_lockfile
from pinforge.core.pin_store import PinStore
from pinforge.core.platforms import profile_for
from pinforge.core.runner import CancelToken, CommandRunner, Runner
from pinforge.core.toolchain import ToolchainResolver
from pinforge.core.vendor import Vendorer, render_cargo_config
from pinforge.errors import CompileError, InstallError, TestFailure, UnsupportedPlatform
from pinforge.models.artifacts import Artifact, ArtifactMetadata
from pinforge.models.platforms import Platform, PlatformProfile
from pinforge.models.recipe import Recipe
from pinforge.models.toolchain import ResolvedToolchain, ToolchainDescriptor

logger = logging.getLogger(__name__)

BUILD_STEPS: tuple[str, ...] = (
    "toolchain",
    "pins",
    "assemble",
    "compile",
    "check",
    "fixup",
    "install",
)


@dataclass(frozen=True)
class BuildConfiguration:
    """The fully resolved, platform-specific inputs of one build."""

    platform: Platform
    native_build_inputs: tuple[str, ...]
    build_inputs: tuple[str, ...]
    rustflags: tuple[str, ...]
    environment: dict[str, str]
    cargo_args: tuple[str, ...]
    check_skips: tuple[str, ...]
    patch_rpath: bool
    runtime_libraries: tuple[str, ...]


@dataclass
class _BuildState:
    src_tree: Path
    work: Path
    staging: Path
    profile: PlatformProfile
    toolchain: ResolvedToolchain | None = None
    config: BuildConfiguration | None = None
    checked: bool = False
    extra_env: dict[str, str] = field(default_factory=dict)

    @property
    def target_dir(self) -> Path:
        return self.work / "target"

    def release_dir(self) -> Path:
        return self.target_dir / self.profile.platform.rust_target / "release"


class RecipeBuilder:
    """Builds a ``Recipe`` into a self-contained output tree.

    Parameters
    ----------
    recipe:
        What to build and how to install it.
    runner:
        Executes cargo, pkg-config and patchelf.
    toolchain_resolver:
        Verifies and installs the compiler toolchain.
    vendorer:
        Fetches and verifies every locked dependency for an offline build.
    allow_broken:
        Build even on platforms the profile table marks as broken.
    lockfile_name:
        Lockfile path relative to the source tree.
    """

    def __init__(
        self,
        recipe: Recipe,
        *,
        runner: Runner | None = None,
        toolchain_resolver: ToolchainResolver,
        vendorer: Vendorer,
        allow_broken: bool = False,
        lockfile_name: str = "Cargo.lock",
        cancel_token: CancelToken | None = None,
    ) -> None:
        self.recipe = recipe
        self._runner = runner or CommandRunner()
        self._toolchains = toolchain_resolver
        self._vendorer = vendorer
        self._allow_broken = allow_broken
        self._lockfile_name = lockfile_name
        self._cancel_token = cancel_token

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def assemble(self, platform: Platform) -> BuildConfiguration:
        """Merge the recipe with the platform profile.

        The result depends only on the recipe and *platform*.
        """
        profile = profile_for(platform)
        rustflags = tuple(self.recipe.rustflags) + profile.rustflags
        env = {**self.recipe.environment, **profile.environment}
        if rustflags:
            env["RUSTFLAGS"] = " ".join(rustflags)

        cargo_args: list[str] = ["--release", "--frozen", "--offline", "--target", platform.rust_target]
        cargo_args += [f"--package={p}" for p in self.recipe.packages]
        if self.recipe.features:
            cargo_args += ["--features", ",".join(self.recipe.features)]

        return BuildConfiguration(
            platform=platform,
            native_build_inputs=profile.native_build_inputs,
            build_inputs=profile.build_inputs,
            rustflags=rustflags,
            environment=env,
            cargo_args=tuple(cargo_args),
            check_skips=profile.check_skips,
            patch_rpath=profile.patch_rpath,
            runtime_libraries=profile.runtime_libraries,
        )

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(
        self,
        src_tree: Path,
        pin_store: PinStore,
        toolchain: ToolchainDescriptor,
        platform: Platform,
        out_path: Path,
    ) -> Artifact:
        """Run every gate and move the finished tree to *out_path*.

        Raises the first gate's error; *out_path* is untouched on failure.
        """
        src_tree = Path(src_tree).resolve()
        out_path = Path(out_path).absolute()
        profile = profile_for(platform)
        if profile.broken and not self._allow_broken:
            raise UnsupportedPlatform(
                f"{self.recipe.name} is marked broken on {platform.value}: "
                f"{profile.broken_reason}. Set PINFORGE_ALLOW_BROKEN=true to try anyway."
            )

        out_path.parent.mkdir(parents=True, exist_ok=True)
        staging = out_path.parent / f".{out_path.name}.staging-{uuid.uuid4().hex[:8]}"
        work = Path(tempfile.mkdtemp(prefix=f"pinforge-{self.recipe.name}-"))
        state = _BuildState(src_tree=src_tree, work=work, staging=staging, profile=profile)

        try:
            staging.mkdir()
            self._step(1, "toolchain", self._resolve_toolchain, state, toolchain)
            self._step(2, "pins", self._vendor_dependencies, state, pin_store)
            self._step(3, "assemble", self._assemble, state)
            self._step(4, "compile", self._compile, state)
            self._step(5, "check", self._check, state)
            self._step(6, "fixup", self._fixup, state)
            self._step(7, "install", self._install, state)
            self._checkpoint()
            tree_hash = hash_tree(staging)
            _replace_dir(staging, out_path)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        finally:
            shutil.rmtree(work, ignore_errors=True)

        artifact = Artifact(
            out_path=out_path,
            platform=platform,
            metadata=ArtifactMetadata(
                name=self.recipe.name,
                version=self.recipe.version,
                license=self.recipe.meta.license,
                description=self.recipe.meta.description,
            ),
            binary_paths=frozenset(b.dest for b in self.recipe.binaries),
            resource_paths=frozenset(self._resource_paths()),
            tree_hash=tree_hash,
            checked=state.checked,
            unverified_tests=state.config.check_skips if state.checked and state.config else (),
        )
        logger.info("Built %s %s -> %s (%s)", self.recipe.name, self.recipe.version, out_path, tree_hash)
        return artifact

    def _step(self, number: int, name: str, func, *args) -> None:
        self._checkpoint()
        logger.info("[%d/%d] %s", number, len(BUILD_STEPS), name)
        func(*args)

    def _checkpoint(self) -> None:
        if self._cancel_token is not None:
            self._cancel_token.raise_if_cancelled()

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    def _resolve_toolchain(self, state: _BuildState, descriptor: ToolchainDescriptor) -> None:
        if not descriptor.integrity_hash and self.recipe.toolchain.integrity_hash:
            descriptor = descriptor.model_copy(
                update={"integrity_hash": self.recipe.toolchain.integrity_hash}
            )
        if self.recipe.toolchain.extra_components:
            descriptor = descriptor.with_components(self.recipe.toolchain.extra_components)
        state.toolchain = self._toolchains.resolve(descriptor)

    def _vendor_dependencies(self, state: _BuildState, pin_store: PinStore) -> None:
        lockfile = load_lockfile(state.src_tree / self._lockfile_name)
        # Every pin must exist before anything is fetched.
        pin_store.resolve_all(lockfile)

        vendor_dir = state.work / "vendor"
        self._vendorer.vendor(lockfile, pin_store, vendor_dir)

        cargo_home = state.work / "cargo-home"
        cargo_home.mkdir(parents=True, exist_ok=True)
        (cargo_home / "config.toml").write_text(
            render_cargo_config(
                lockfile, vendor_dir, replace_registry=self._vendorer.vendors_registry
            ),
            encoding="utf-8",
        )
        state.extra_env["CARGO_HOME"] = str(cargo_home)

    def _assemble(self, state: _BuildState) -> None:
        state.config = self.assemble(state.profile.platform)
        state.extra_env["CARGO_TARGET_DIR"] = str(state.target_dir)
        if self.recipe.font_dirs:
            fonts_conf = state.work / "fonts.conf"
            fonts_conf.write_text(
                render_fonts_conf(state.src_tree / d for d in self.recipe.font_dirs),
                encoding="utf-8",
            )
            state.extra_env["FONTCONFIG_FILE"] = str(fonts_conf)

    def _env(self, state: _BuildState) -> dict[str, str]:
        assert state.config is not None
        return {**state.config.environment, **state.extra_env}

    def _cargo(self, state: _BuildState, subcommand: str, trailing: list[str] | None = None):
        assert state.toolchain is not None and state.config is not None
        cmd = [*state.toolchain.cargo, subcommand, *state.config.cargo_args, *(trailing or [])]
        return self._runner.run(
            cmd, cwd=state.src_tree, env=self._env(state), cancel_token=self._cancel_token
        )

    def _compile(self, state: _BuildState) -> None:
        result = self._cargo(state, "build")
        self._checkpoint()
        if not result.ok:
            raise CompileError(
                f"cargo build failed (exit {result.exit_code}):\n{result.tail()}"
            )

    def _check(self, state: _BuildState) -> None:
        assert state.config is not None
        if not self.recipe.do_check:
            logger.info("Upstream test suite skipped; the artifact is not test-verified")
            return
        skips = list(state.config.check_skips)
        if skips:
            logger.warning("Excluding environment-sensitive tests: %s", ", ".join(skips))
        result = self._cargo(state, "test", ["--", *(f"--skip={name}" for name in skips)])
        self._checkpoint()
        if not result.ok:
            raise TestFailure(
                f"cargo test failed (exit {result.exit_code}):\n{result.tail()}",
                skipped=skips,
            )
        state.checked = True

    def _fixup(self, state: _BuildState) -> None:
        assert state.config is not None
        if not state.config.patch_rpath:
            return
        lib_dirs = self._runtime_lib_dirs(state)
        if not lib_dirs:
            logger.warning("No runtime library directories found; rpath left unchanged")
            return
        rpath = ":".join(lib_dirs)
        for binary in self.recipe.binaries:
            if not binary.dest.startswith("libexec/"):
                continue
            path = state.release_dir() / binary.source
            result = self._runner.run(
                ["patchelf", "--add-rpath", rpath, str(path)],
                cancel_token=self._cancel_token,
            )
            if not result.ok:
                raise InstallError(f"patchelf failed on {path}: {result.tail(5)}")
            logger.debug("Added rpath %s to %s", rpath, path)

    def _runtime_lib_dirs(self, state: _BuildState) -> list[str]:
        assert state.config is not None
        dirs: list[str] = []
        for module in state.config.runtime_libraries:
            result = self._runner.run(
                ["pkg-config", "--variable=libdir", module],
                env=self._env(state),
                cancel_token=self._cancel_token,
            )
            libdir = result.stdout.strip()
            if not result.ok or not libdir:
                logger.warning("pkg-config has no libdir for %s; skipping", module)
                continue
            if libdir not in dirs:
                dirs.append(libdir)
        return dirs

    def _install(self, state: _BuildState) -> None:
        for binary in self.recipe.binaries:
            source = state.release_dir() / binary.source
            _install_file(source, state.staging / binary.dest)

        for icon in self.recipe.icons:
            _install_file(state.src_tree / icon.source, state.staging / icon.dest)

        desktop = self.recipe.desktop
        if desktop is not None:
            dest = state.staging / "share" / "applications" / f"{desktop.app_id}.desktop"
            dest.parent.mkdir(parents=True, exist_ok=True)
            try:
                dest.write_text(render_desktop_entry(desktop), encoding="utf-8")
            except ValueError as exc:
                raise InstallError(f"Invalid desktop entry: {exc}") from exc

    def _resource_paths(self) -> list[str]:
        paths = [icon.dest for icon in self.recipe.icons]
        if self.recipe.desktop is not None:
            paths.append(f"share/applications/{self.recipe.desktop.app_id}.desktop")
        return paths


def _install_file(source: Path, dest: Path) -> None:
    if not source.is_file():
        raise InstallError(f"Expected build output is missing: {source}")
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, dest)


def _replace_dir(staging: Path, out_path: Path) -> None:
    """Move *staging* to *out_path*, replacing any previous result."""
    if out_path.is_symlink() or out_path.is_file():
        out_path.unlink()
    elif out_path.exists():
        old = out_path.parent / f".{out_path.name}.old-{uuid.uuid4().hex[:8]}"
        out_path.rename(old)
        staging.rename(out_path)
        shutil.rmtree(old, ignore_errors=True)
        return
    staging.rename(out_path)
