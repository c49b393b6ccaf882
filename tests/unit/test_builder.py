"""Tests for RecipeBuilder — gate order, all-or-nothing output, platform rows."""

from __future__ import annotations

import os
import tomllib
from collections.abc import Callable
from pathlib import Path

import pytest

from pinforge.core.builder import BUILD_STEPS, RecipeBuilder
from pinforge.core.hasher import hash_tree, sri_sha256
from pinforge.core.pin_store import PinStore
from pinforge.core.runner import CancelToken
from pinforge.core.toolchain import ToolchainResolver
from pinforge.core.vendor import Vendorer
from pinforge.errors import (
    CompileError,
    InstallError,
    PinFileError,
    PinMismatchError,
    RunCancelled,
    TestFailure,
    ToolchainIntegrityError,
    UnresolvedPin,
    UnsupportedPlatform,
)
from pinforge.models.platforms import Platform
from pinforge.models.recipe import BinaryInstall, Recipe


@pytest.fixture
def make_builder(
    recipe: Recipe, fake_runner, toolchain_resolver, vendorer
) -> Callable[..., RecipeBuilder]:
    def _factory(**overrides) -> RecipeBuilder:
        kwargs = {
            "runner": fake_runner,
            "toolchain_resolver": toolchain_resolver,
            "vendorer": vendorer,
        }
        kwargs.update(overrides)
        target_recipe = kwargs.pop("recipe", recipe)
        return RecipeBuilder(target_recipe, **kwargs)

    return _factory


def _no_leftovers(out_path: Path) -> bool:
    return not any(p.name.startswith(f".{out_path.name}.") for p in out_path.parent.iterdir())


class TestAssemble:
    def test_deterministic(self, make_builder):
        builder = make_builder()
        assert builder.assemble(Platform.LINUX_X86_64) == builder.assemble(Platform.LINUX_X86_64)

    def test_cargo_args(self, make_builder):
        config = make_builder().assemble(Platform.LINUX_X86_64)
        args = list(config.cargo_args)
        assert {"--release", "--frozen", "--offline"} <= set(args)
        assert args[args.index("--target") + 1] == "x86_64-unknown-linux-gnu"
        assert "--package=zed" in args and "--package=cli" in args
        assert args[args.index("--features") + 1] == "gpui/runtime_shaders,mimalloc"

    def test_rustflags_merge_recipe_and_platform(self, make_builder):
        config = make_builder().assemble(Platform.LINUX_X86_64)
        flags = config.environment["RUSTFLAGS"]
        assert "symbol-mangling-version=v0" in flags
        assert "--cfg tokio_unstable" in flags
        assert "target-cpu=x86-64-v3" in flags
        assert config.environment["OPENSSL_NO_VENDOR"] == "1"

    def test_platform_rows_do_not_leak(self, make_builder):
        builder = make_builder()
        linux = builder.assemble(Platform.LINUX_AARCH64)
        darwin = builder.assemble(Platform.DARWIN_AARCH64)
        assert "mold" in linux.native_build_inputs
        assert "mold" not in darwin.native_build_inputs
        assert darwin.patch_rpath is False
        assert darwin.check_skips == ()


class TestBuildSuccess:
    def test_output_tree(self, make_builder, src_tree, pin_store, descriptor, tmp_dir):
        out = tmp_dir / "result"
        artifact = make_builder().build(src_tree, pin_store, descriptor, Platform.LINUX_X86_64, out)

        assert (out / "libexec" / "zed-editor").is_file()
        assert os.access(out / "bin" / "zed", os.X_OK)
        assert (out / "share/icons/hicolor/1024x1024@2x/apps/zed.png").read_bytes() == b"\x89PNG-1024"
        assert (out / "share/icons/hicolor/512x512/apps/zed.png").is_file()
        desktop = (out / "share/applications/dev.zed.Zed.desktop").read_text(encoding="utf-8")
        assert "Exec=zed %U" in desktop

        assert artifact.out_path == out.absolute()
        assert artifact.binary_paths == {"libexec/zed-editor", "bin/zed"}
        assert "share/applications/dev.zed.Zed.desktop" in artifact.resource_paths
        assert artifact.tree_hash == hash_tree(out)
        assert artifact.metadata.license == "GPL-3.0-only"
        assert artifact.checked is False
        assert _no_leftovers(out)

    def test_gate_order(self, make_builder, fake_runner, src_tree, pin_store, descriptor, tmp_dir):
        make_builder().build(src_tree, pin_store, descriptor, Platform.LINUX_X86_64, tmp_dir / "r")
        keys = [fake_runner.key(c) for c in fake_runner.calls]
        assert keys[0] == "rustup"
        assert keys[1] == "cargo build"
        assert set(keys[2:-1]) == {"pkg-config"}
        assert keys[-1] == "patchelf"
        assert len(BUILD_STEPS) == 7

    def test_build_environment(self, make_builder, fake_runner, src_tree, pin_store, descriptor, tmp_dir):
        make_builder().build(src_tree, pin_store, descriptor, Platform.LINUX_X86_64, tmp_dir / "r")
        (cmd,) = fake_runner.commands("cargo build")
        env = fake_runner.envs[fake_runner.calls.index(cmd)]
        assert cmd[:2] == ["cargo", "+1.78.0"]
        assert {"CARGO_HOME", "CARGO_TARGET_DIR", "FONTCONFIG_FILE", "RUSTFLAGS"} <= set(env)
        assert env["ZSTD_SYS_USE_PKG_CONFIG"] == "1"

    def test_git_only_vendoring_keeps_crates_io(
        self, make_builder, fake_runner, src_tree, pin_store, descriptor, tmp_dir
    ):
        seen: list[dict] = []

        def capture(argv: list[str]) -> None:
            if fake_runner.key(argv) == "cargo build":
                cargo_home = Path(fake_runner.envs[-1]["CARGO_HOME"])
                seen.append(tomllib.loads((cargo_home / "config.toml").read_text(encoding="utf-8")))

        fake_runner.on_call = capture
        make_builder().build(src_tree, pin_store, descriptor, Platform.LINUX_X86_64, tmp_dir / "r")
        (config,) = seen
        assert "crates-io" not in config["source"]
        assert "https://github.com/example/foo?rev=v0.1.0" in config["source"]

    def test_rpath_patched_for_libexec_only(
        self, make_builder, fake_runner, src_tree, pin_store, descriptor, tmp_dir
    ):
        make_builder().build(src_tree, pin_store, descriptor, Platform.LINUX_X86_64, tmp_dir / "r")
        (cmd,) = fake_runner.commands("patchelf")
        assert cmd[1] == "--add-rpath"
        assert "/opt/lib/wayland-client" in cmd[2].split(":")
        assert cmd[3].endswith("/release/zed")

    def test_rebuild_replaces_previous_output(
        self, make_builder, src_tree, pin_store, descriptor, tmp_dir
    ):
        out = tmp_dir / "result"
        out.mkdir()
        (out / "stale.txt").write_text("old", encoding="utf-8")
        make_builder().build(src_tree, pin_store, descriptor, Platform.LINUX_X86_64, out)
        assert not (out / "stale.txt").exists()
        assert _no_leftovers(out)

    def test_reproducible_tree_hash(self, make_builder, src_tree, pin_store, descriptor, tmp_dir):
        a = make_builder().build(src_tree, pin_store, descriptor, Platform.LINUX_X86_64, tmp_dir / "a")
        b = make_builder().build(src_tree, pin_store, descriptor, Platform.LINUX_X86_64, tmp_dir / "b")
        assert a.tree_hash == b.tree_hash


class TestBuildFailures:
    def test_toolchain_mismatch_produces_nothing(
        self, make_builder, make_http, fake_runner, src_tree, pin_store, descriptor, tmp_dir
    ):
        builder = make_builder(
            toolchain_resolver=ToolchainResolver(make_http(default=b"evil"), fake_runner)
        )
        out = tmp_dir / "result"
        with pytest.raises(ToolchainIntegrityError):
            builder.build(src_tree, pin_store, descriptor, Platform.LINUX_X86_64, out)
        assert not out.exists()
        assert fake_runner.commands("cargo build") == []
        assert _no_leftovers(out)

    def test_missing_pin_fetches_nothing(
        self, make_builder, git_fetcher, src_tree, descriptor, tmp_dir
    ):
        partial = PinStore({"foo-dep-0.1.0": sri_sha256(b"foo")})
        with pytest.raises(UnresolvedPin) as exc_info:
            make_builder().build(src_tree, partial, descriptor, Platform.LINUX_X86_64, tmp_dir / "r")
        assert exc_info.value.dependency_id == "bar-dep-0.2.0"
        assert git_fetcher.fetched == []

    def test_non_hash_pins_stop_before_compile(
        self, make_builder, fake_runner, src_tree, descriptor, tmp_dir
    ):
        bogus = PinStore({"foo-dep-0.1.0": "hash-A", "bar-dep-0.2.0": "hash-B"})
        out = tmp_dir / "result"
        with pytest.raises(PinFileError, match="not a SHA-256"):
            make_builder().build(src_tree, bogus, descriptor, Platform.LINUX_X86_64, out)
        assert fake_runner.commands("cargo build") == []
        assert not out.exists()

    def test_partial_non_hash_pins_name_missing_pin(
        self, make_builder, fake_runner, src_tree, descriptor, tmp_dir
    ):
        partial = PinStore({"foo-dep-0.1.0": "hash-A"})
        with pytest.raises(UnresolvedPin) as exc_info:
            make_builder().build(src_tree, partial, descriptor, Platform.LINUX_X86_64, tmp_dir / "r")
        assert exc_info.value.dependency_id == "bar-dep-0.2.0"
        assert fake_runner.commands("cargo build") == []

    def test_tampered_dependency(
        self, make_builder, make_git_fetcher, fake_runner, src_tree, pin_store, descriptor, tmp_dir
    ):
        builder = make_builder(vendorer=Vendorer(make_git_fetcher({"bar-dep-0.2.0"})))
        with pytest.raises(PinMismatchError) as exc_info:
            builder.build(src_tree, pin_store, descriptor, Platform.LINUX_X86_64, tmp_dir / "r")
        assert exc_info.value.dependency_id == "bar-dep-0.2.0"
        assert fake_runner.commands("cargo build") == []

    def test_compile_error_keeps_previous_output(
        self, make_builder, fake_runner, src_tree, pin_store, descriptor, tmp_dir
    ):
        out = tmp_dir / "result"
        out.mkdir()
        (out / "marker").write_text("previous", encoding="utf-8")
        fake_runner.failures["cargo build"] = 101
        with pytest.raises(CompileError, match="exit 101"):
            make_builder().build(src_tree, pin_store, descriptor, Platform.LINUX_X86_64, out)
        assert (out / "marker").read_text(encoding="utf-8") == "previous"
        assert _no_leftovers(out)

    def test_missing_binary_is_install_error(
        self, make_builder, recipe, src_tree, pin_store, descriptor, tmp_dir
    ):
        broken = recipe.model_copy(
            update={"binaries": (BinaryInstall(source="not-built", dest="bin/nope"),)}
        )
        out = tmp_dir / "result"
        with pytest.raises(InstallError, match="not-built"):
            make_builder(recipe=broken).build(
                src_tree, pin_store, descriptor, Platform.LINUX_X86_64, out
            )
        assert not out.exists()

    def test_cancel_mid_compile(
        self, make_builder, fake_runner, src_tree, pin_store, descriptor, tmp_dir
    ):
        token = CancelToken()

        def _cancel_on_build(argv: list[str]) -> None:
            if fake_runner.key(argv) == "cargo build":
                token.cancel("superseded")

        fake_runner.on_call = _cancel_on_build
        out = tmp_dir / "result"
        with pytest.raises(RunCancelled, match="superseded"):
            make_builder(cancel_token=token).build(
                src_tree, pin_store, descriptor, Platform.LINUX_X86_64, out
            )
        assert not out.exists()
        assert fake_runner.commands("patchelf") == []


class TestCheckStep:
    def test_skips_are_passed_and_reported(
        self, make_builder, recipe, fake_runner, src_tree, pin_store, descriptor, tmp_dir
    ):
        checked = recipe.model_copy(update={"do_check": True})
        artifact = make_builder(recipe=checked).build(
            src_tree, pin_store, descriptor, Platform.LINUX_X86_64, tmp_dir / "r"
        )
        (cmd,) = fake_runner.commands("cargo test")
        assert "--skip=test_base_keymap" in cmd
        assert "--skip=test_disabled_keymap_binding" in cmd
        assert artifact.checked is True
        assert artifact.unverified_tests == ("test_base_keymap", "test_disabled_keymap_binding")

    def test_failure(self, make_builder, recipe, fake_runner, src_tree, pin_store, descriptor, tmp_dir):
        checked = recipe.model_copy(update={"do_check": True})
        fake_runner.failures["cargo test"] = 101
        with pytest.raises(TestFailure) as exc_info:
            make_builder(recipe=checked).build(
                src_tree, pin_store, descriptor, Platform.LINUX_X86_64, tmp_dir / "r"
            )
        assert "test_base_keymap" in exc_info.value.skipped
        assert not (tmp_dir / "r").exists()


class TestBrokenPlatforms:
    def test_darwin_refused(self, make_builder, fake_runner, src_tree, pin_store, descriptor, tmp_dir):
        with pytest.raises(UnsupportedPlatform, match="broken"):
            make_builder().build(
                src_tree, pin_store, descriptor, Platform.DARWIN_AARCH64, tmp_dir / "r"
            )
        assert fake_runner.calls == []

    def test_darwin_allowed_when_forced(
        self, make_builder, fake_runner, src_tree, pin_store, descriptor, tmp_dir
    ):
        artifact = make_builder(allow_broken=True).build(
            src_tree, pin_store, descriptor, Platform.DARWIN_AARCH64, tmp_dir / "r"
        )
        assert artifact.platform is Platform.DARWIN_AARCH64
        assert fake_runner.commands("patchelf") == []
        assert fake_runner.commands("pkg-config") == []
