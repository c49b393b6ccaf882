"""Build recipe model — what to build and how to install it.

The recipe is platform-independent. Platform-conditional inputs live in the
platform table (``pinforge.core.platforms``) and are merged in at build time.

A recipe can be loaded from a TOML file whose top-level keys mirror the
``Recipe`` fields::

    name = "zed-editor"
    version = "git"
    packages = ["zed", "cli"]

    [toolchain]
    integrity_hash = "sha256-..."
"""

from __future__ import annotations

import tomllib
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from pinforge.models.desktop import DesktopAction, DesktopEntry


class BinaryInstall(BaseModel):
    """Copy ``target/<triple>/release/<source>`` to ``<out>/<dest>``."""

    model_config = ConfigDict(frozen=True)

    source: str
    dest: str


class IconInstall(BaseModel):
    """Install a source-tree icon under ``share/icons/hicolor/<size>/apps``."""

    model_config = ConfigDict(frozen=True)

    source: str
    size: str
    name: str

    @property
    def dest(self) -> str:
        return f"share/icons/hicolor/{self.size}/apps/{self.name}.png"


class RecipeMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str = ""
    homepage: str = ""
    license: str = ""
    main_program: str = ""


class ToolchainPin(BaseModel):
    """Recipe-owned part of the toolchain descriptor.

    Attributes
    ----------
    integrity_hash:
        SRI hash of the channel manifest (``channel-rust-<channel>.toml`` on
        the dist server) for the channel named in ``rust-toolchain.toml``.
        Empty means "not pinned here"; the ``toolchain_hash`` setting is then
        used, and the build refuses to start when both are empty.
    extra_components:
        Components installed on top of the channel file's own list.
    """

    model_config = ConfigDict(frozen=True)

    integrity_hash: str = ""
    extra_components: tuple[str, ...] = ()


class Recipe(BaseModel):
    """Declarative description of one package build."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str = "git"
    packages: tuple[str, ...] = ()  # restrict the build to these targets
    features: tuple[str, ...] = ()
    rustflags: tuple[str, ...] = ()
    environment: dict[str, str] = {}
    font_dirs: tuple[str, ...] = ()  # source-relative, exported via FONTCONFIG_FILE
    do_check: bool = False
    binaries: tuple[BinaryInstall, ...] = ()
    icons: tuple[IconInstall, ...] = ()
    desktop: DesktopEntry | None = None
    toolchain: ToolchainPin = ToolchainPin()
    meta: RecipeMeta = RecipeMeta()


def load_recipe(path: Path) -> Recipe:
    """Load a recipe from a TOML file."""
    with Path(path).open("rb") as fh:
        data = tomllib.load(fh)
    return Recipe.model_validate(data)


DEFAULT_RECIPE = Recipe(
    name="zed-editor",
    version="git",
    packages=("zed", "cli"),
    features=("gpui/runtime_shaders", "mimalloc"),
    rustflags=("-C", "symbol-mangling-version=v0", "--cfg", "tokio_unstable"),
    environment={
        "ZSTD_SYS_USE_PKG_CONFIG": "1",
        "OPENSSL_NO_VENDOR": "1",
    },
    font_dirs=("assets/fonts/zed-mono", "assets/fonts/zed-sans"),
    do_check=False,
    binaries=(
        BinaryInstall(source="zed", dest="libexec/zed-editor"),
        BinaryInstall(source="cli", dest="bin/zed"),
    ),
    icons=(
        IconInstall(
            source="crates/zed/resources/app-icon@2x.png",
            size="1024x1024@2x",
            name="zed",
        ),
        IconInstall(
            source="crates/zed/resources/app-icon.png",
            size="512x512",
            name="zed",
        ),
    ),
    desktop=DesktopEntry(
        app_id="dev.zed.Zed",
        name="Zed",
        generic_name="Text Editor",
        comment="A high-performance, multiplayer code editor.",
        exec_command="zed",
        exec_args=("%U",),
        icon="zed",
        startup_notify=True,
        categories=("Utility", "TextEditor", "Development", "IDE"),
        keywords=("zed",),
        mime_types=("text/plain", "application/x-zerosize", "x-scheme-handler/zed"),
        actions=(
            DesktopAction(
                action_id="NewWorkspace",
                name="Open a new workspace",
                exec_args=("--new", "%U"),
            ),
        ),
    ),
    # The channel manifest changes on every nightly respin; supply its hash via
    # a recipe file or PINFORGE_TOOLCHAIN_HASH.
    toolchain=ToolchainPin(),
    meta=RecipeMeta(
        description=(
            "High-performance, multiplayer code editor from the creators "
            "of Atom and Tree-sitter"
        ),
        homepage="https://zed.dev",
        license="GPL-3.0-only",
        main_program="zed",
    ),
)
