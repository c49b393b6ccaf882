"""Shared test fixtures for pinforge.

No test touches the network or runs a real compiler: external commands go
through ``FakeRunner``, git checkouts through ``FakeGitFetcher`` and HTTP
through ``FakeHttp``.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

import pytest

from pinforge.core.binary_cache import BinaryCache
from pinforge.core.hasher import hash_tree, sri_sha256
from pinforge.core.pin_store import PinStore
from pinforge.core.run_ledger import RunLedger
from pinforge.core.run_machine import RunStateMachine
from pinforge.core.runner import CancelToken, CommandResult
from pinforge.core.toolchain import ToolchainResolver
from pinforge.core.vendor import Vendorer
from pinforge.errors import FetchError
from pinforge.models.pins import LockedPackage
from pinforge.models.recipe import DEFAULT_RECIPE, Recipe, ToolchainPin
from pinforge.models.runs import TriggerEvent, TriggerKind
from pinforge.models.toolchain import ToolchainDescriptor

MANIFEST = b'manifest-version = "2"\ndate = "2024-05-01"\n'
MANIFEST_HASH = sri_sha256(MANIFEST)

FOO_COMMIT = "a" * 40
BAR_COMMIT = "b" * 40

LOCKFILE_TEXT = f"""\
version = 3

[[package]]
name = "zed"
version = "0.140.0"

[[package]]
name = "foo-dep"
version = "0.1.0"
source = "git+https://github.com/example/foo?rev=v0.1.0#{FOO_COMMIT}"

[[package]]
name = "bar-dep"
version = "0.2.0"
source = "git+https://github.com/example/bar?branch=main#{BAR_COMMIT}"

[[package]]
name = "serde"
version = "1.0.200"
source = "registry+https://github.com/rust-lang/crates.io-index"
checksum = "ddc6f9cc94d67c0e21aaf7eda3a010fd3af78ebf6e096aa6e2e13c79749cce4f"
"""

CHANNEL_TEXT = """\
[toolchain]
channel = "1.78.0"
profile = "minimal"
components = ["rustfmt", "clippy"]
"""


# ---------------------------------------------------------------------------
# Fakes for external effects
# ---------------------------------------------------------------------------


class FakeRunner:
    """Scripted stand-in for ``CommandRunner``.

    ``cargo build`` creates one executable per ``--package`` in the release
    directory named by ``CARGO_TARGET_DIR`` and ``--target``. Every other
    command succeeds with empty output unless listed in ``failures``.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.envs: list[dict[str, str]] = []
        self.failures: dict[str, int] = {}
        self.on_call: Callable[[list[str]], None] | None = None

    @staticmethod
    def key(argv: Sequence[str]) -> str:
        if argv[0] == "cargo":
            sub = argv[2] if argv[1].startswith("+") else argv[1]
            return f"cargo {sub}"
        if argv[0] == "git":
            return f"git {argv[3] if argv[1] == '-C' else argv[1]}"
        return argv[0]

    def commands(self, key: str) -> list[list[str]]:
        return [c for c in self.calls if self.key(c) == key]

    def run(
        self,
        cmd: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        cancel_token: CancelToken | None = None,
    ) -> CommandResult:
        argv = [str(part) for part in cmd]
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        self.calls.append(argv)
        self.envs.append(dict(env or {}))
        if self.on_call is not None:
            self.on_call(argv)
        if cancel_token is not None and cancel_token.is_set():
            return CommandResult(command=argv, exit_code=-15, cancelled=True)

        key = self.key(argv)
        if key in self.failures:
            return CommandResult(
                command=argv, exit_code=self.failures[key], stderr=f"{key}: simulated failure"
            )
        stdout = ""
        if key == "cargo build":
            self._emit_binaries(argv, env or {})
        elif key == "pkg-config":
            stdout = f"/opt/lib/{argv[-1]}\n"
        elif key == "bash":
            stdout = "Ok\n"
        return CommandResult(command=argv, exit_code=0, stdout=stdout)

    @staticmethod
    def _emit_binaries(argv: list[str], env: Mapping[str, str]) -> None:
        triple = argv[argv.index("--target") + 1]
        release = Path(env["CARGO_TARGET_DIR"]) / triple / "release"
        release.mkdir(parents=True, exist_ok=True)
        for arg in argv:
            if arg.startswith("--package="):
                binary = release / arg.split("=", 1)[1]
                binary.write_text(f"#!/bin/sh\necho {binary.name}\n", encoding="utf-8")
                binary.chmod(0o755)


class FakeGitFetcher:
    """Writes a small deterministic crate for each git package.

    ``tampered`` names dependency ids whose content differs from what the
    pins were computed from.
    """

    def __init__(self, tampered: set[str] | None = None) -> None:
        self.fetched: list[str] = []
        self.tampered = set(tampered or ())

    def fetch(self, package: LockedPackage, dest: Path) -> Path:
        self.fetched.append(package.dependency_id)
        (dest / "src").mkdir(parents=True, exist_ok=True)
        (dest / "Cargo.toml").write_text(
            f'[package]\nname = "{package.name}"\nversion = "{package.version}"\n',
            encoding="utf-8",
        )
        body = f"// {package.git_source.commit}\npub fn {package.name.replace('-', '_')}() {{}}\n"
        if package.dependency_id in self.tampered:
            body += "// injected\n"
        (dest / "src" / "lib.rs").write_text(body, encoding="utf-8")
        return dest


class FailingFetcher:
    def fetch(self, package: LockedPackage, dest: Path) -> Path:
        raise FetchError(f"network unreachable for {package.dependency_id}")


class FakeHttp:
    """Returns fixed bytes per URL; records every request."""

    def __init__(self, default: bytes = MANIFEST, responses: dict[str, bytes] | None = None) -> None:
        self.default = default
        self.responses = dict(responses or {})
        self.requested: list[str] = []

    def fetch_bytes(self, url: str) -> bytes:
        self.requested.append(url)
        return self.responses.get(url, self.default)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fake_http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture
def git_fetcher() -> FakeGitFetcher:
    return FakeGitFetcher()


@pytest.fixture
def recipe() -> Recipe:
    """The built-in recipe, pinned to the fake toolchain manifest."""
    return DEFAULT_RECIPE.model_copy(
        update={"toolchain": ToolchainPin(integrity_hash=MANIFEST_HASH)}
    )


@pytest.fixture
def descriptor() -> ToolchainDescriptor:
    return ToolchainDescriptor(
        channel="1.78.0",
        components=frozenset({"rustfmt", "clippy"}),
        integrity_hash=MANIFEST_HASH,
    )


@pytest.fixture
def pin_for() -> Callable[[str, str], str]:
    """Compute the pin ``FakeGitFetcher`` content hashes to."""

    def _pin(name: str, version: str, source: str) -> str:
        package = LockedPackage(name=name, version=version, source=source)
        with tempfile.TemporaryDirectory() as tmp:
            dest = Path(tmp) / package.dependency_id
            FakeGitFetcher().fetch(package, dest)
            return hash_tree(dest)

    return _pin


@pytest.fixture
def src_tree(tmp_dir: Path, pin_for: Callable[..., str]) -> Path:
    """A minimal source tree: lockfile, channel file, pins, icons and fonts."""
    src = tmp_dir / "src"
    src.mkdir()
    (src / "Cargo.lock").write_text(LOCKFILE_TEXT, encoding="utf-8")
    (src / "rust-toolchain.toml").write_text(CHANNEL_TEXT, encoding="utf-8")

    resources = src / "crates" / "zed" / "resources"
    resources.mkdir(parents=True)
    (resources / "app-icon@2x.png").write_bytes(b"\x89PNG-1024")
    (resources / "app-icon.png").write_bytes(b"\x89PNG-512")
    for font_dir in ("zed-mono", "zed-sans"):
        (src / "assets" / "fonts" / font_dir).mkdir(parents=True)

    pins = {
        "foo-dep-0.1.0": pin_for(
            "foo-dep", "0.1.0", f"git+https://github.com/example/foo?rev=v0.1.0#{FOO_COMMIT}"
        ),
        "bar-dep-0.2.0": pin_for(
            "bar-dep", "0.2.0", f"git+https://github.com/example/bar?branch=main#{BAR_COMMIT}"
        ),
    }
    PinStore(pins, src / "tooling" / "nix" / "pins.json").save()
    return src


@pytest.fixture
def pin_store(src_tree: Path) -> PinStore:
    return PinStore.load(src_tree / "tooling" / "nix" / "pins.json")


@pytest.fixture
def toolchain_resolver(fake_http: FakeHttp, fake_runner: FakeRunner) -> ToolchainResolver:
    return ToolchainResolver(fake_http, fake_runner)


@pytest.fixture
def vendorer(git_fetcher: FakeGitFetcher) -> Vendorer:
    return Vendorer(git_fetcher)


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "runs.db")


@pytest.fixture
def run_machine(ledger: RunLedger) -> RunStateMachine:
    return RunStateMachine(ledger)


@pytest.fixture
def binary_cache(tmp_dir: Path) -> BinaryCache:
    return BinaryCache(tmp_dir / "cache")


@pytest.fixture
def make_event() -> Callable[..., TriggerEvent]:
    """Factory fixture: build a TriggerEvent with sensible defaults."""

    def _factory(
        kind: TriggerKind = TriggerKind.PUSH,
        ref_name: str = "main",
        **overrides: Any,
    ) -> TriggerEvent:
        defaults: dict[str, Any] = {
            "kind": kind,
            "workflow": "Publish to cache",
            "ref_name": ref_name,
            "commit": "c" * 40,
        }
        defaults.update(overrides)
        return TriggerEvent(**defaults)

    return _factory


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's PINFORGE_* variables out of the tests."""
    for name in list(os.environ):
        if name.startswith("PINFORGE_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def manifest() -> bytes:
    """Channel manifest bytes served by ``FakeHttp``."""
    return MANIFEST


@pytest.fixture
def lockfile_text() -> str:
    return LOCKFILE_TEXT


@pytest.fixture
def make_git_fetcher() -> Callable[..., FakeGitFetcher]:
    """Factory fixture: a ``FakeGitFetcher`` with some crates tampered."""

    def _factory(tampered: set[str] | None = None) -> FakeGitFetcher:
        return FakeGitFetcher(tampered)

    return _factory


@pytest.fixture
def failing_fetcher() -> FailingFetcher:
    return FailingFetcher()


@pytest.fixture
def make_http() -> Callable[..., FakeHttp]:
    def _factory(default: bytes = MANIFEST, responses: dict[str, bytes] | None = None) -> FakeHttp:
        return FakeHttp(default, responses)

    return _factory
