"""Network fetchers for vendored sources and toolchain manifests.

Fetching is the only place the network is touched. The pin update
procedure fetches to *compute* hashes; the build fetches to *verify* them.
Both go through the same code so the two can never disagree.
"""

from __future__ import annotations

import io
import logging
import shutil
import tarfile
import tempfile
import tomllib
from pathlib import Path
from typing import Protocol

import requests

from pinforge.core.hasher import sha256_hex
from pinforge.core.runner import CancelToken, CommandRunner, Runner
from pinforge.errors import FetchError, PinMismatchError
from pinforge.models.pins import GitSource, LockedPackage

logger = logging.getLogger(__name__)

CRATES_DOWNLOAD_URL = "https://static.crates.io/crates"
HTTP_TIMEOUT_S = 30.0


class SourceFetcher(Protocol):
    """Materialises one locked package's source tree into *dest*."""

    def fetch(self, package: LockedPackage, dest: Path) -> Path: ...


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


class HttpFetcher:
    """Plain HTTP GET with timeout and status checking."""

    def __init__(self, timeout: float = HTTP_TIMEOUT_S, session: requests.Session | None = None) -> None:
        self._timeout = timeout
        self._session = session or requests.Session()

    def fetch_bytes(self, url: str) -> bytes:
        logger.debug("GET %s", url)
        try:
            resp = self._session.get(url, timeout=self._timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise FetchError(f"Failed to fetch {url}: {exc}") from exc
        return resp.content


# ---------------------------------------------------------------------------
# Git
# ---------------------------------------------------------------------------


class GitFetcher:
    """Fetches git-sourced crates at their locked commit.

    A repository checkout is reused for every crate it provides within the
    lifetime of the fetcher. The copied crate directory excludes ``.git``.
    """

    def __init__(
        self,
        runner: Runner | None = None,
        *,
        cancel_token: CancelToken | None = None,
    ) -> None:
        self._runner = runner or CommandRunner()
        self._cancel_token = cancel_token
        self._workdir = Path(tempfile.mkdtemp(prefix="pinforge-git-"))
        self._checkouts: dict[tuple[str, str], Path] = {}

    def close(self) -> None:
        shutil.rmtree(self._workdir, ignore_errors=True)

    def __enter__(self) -> GitFetcher:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def fetch(self, package: LockedPackage, dest: Path) -> Path:
        source = package.git_source
        checkout = self._checkout(source)
        crate_dir = find_crate_dir(checkout, package.name)
        if crate_dir is None:
            raise FetchError(
                f"{source.url}@{source.commit[:12]} does not contain crate {package.name!r}"
            )
        if dest.exists():
            shutil.rmtree(dest)
        shutil.copytree(
            crate_dir, dest, symlinks=True, ignore=shutil.ignore_patterns(".git")
        )
        return dest

    def _checkout(self, source: GitSource) -> Path:
        key = (source.url, source.commit)
        if key in self._checkouts:
            return self._checkouts[key]

        target = self._workdir / f"{len(self._checkouts):03d}"
        logger.info("Fetching %s at %s", source.url, source.commit[:12])
        for cmd in (
            ["git", "init", "--quiet", str(target)],
            ["git", "-C", str(target), "fetch", "--quiet", "--depth=1", source.url, source.commit],
            ["git", "-C", str(target), "checkout", "--quiet", "FETCH_HEAD"],
        ):
            result = self._runner.run(cmd, cancel_token=self._cancel_token)
            if not result.ok:
                raise FetchError(
                    f"git failed for {source.url}: {result.tail(5) or result.exit_code}"
                )
        self._checkouts[key] = target
        return target


def find_crate_dir(checkout: Path, crate_name: str) -> Path | None:
    """Locate the directory whose Cargo.toml declares ``[package] name``.

    Shallowest match wins so a workspace root beats nested fixtures.
    """
    manifests = sorted(
        (p for p in checkout.rglob("Cargo.toml") if ".git" not in p.parts),
        key=lambda p: (len(p.parts), p.as_posix()),
    )
    for manifest in manifests:
        try:
            data = tomllib.loads(manifest.read_text(encoding="utf-8"))
        except (tomllib.TOMLDecodeError, UnicodeDecodeError):
            continue
        if data.get("package", {}).get("name") == crate_name:
            return manifest.parent
    return None


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class RegistryFetcher:
    """Fetches registry crates and checks them against the lockfile checksum.

    Registry crates are pinned by the lockfile itself, so they need no
    pin-file entry; a checksum mismatch is still fatal.
    """

    def __init__(self, http: HttpFetcher | None = None, base_url: str = CRATES_DOWNLOAD_URL) -> None:
        self._http = http or HttpFetcher()
        self._base_url = base_url.rstrip("/")

    def fetch(self, package: LockedPackage, dest: Path) -> Path:
        if not package.checksum:
            raise FetchError(f"{package.dependency_id} has no lockfile checksum")
        url = f"{self._base_url}/{package.name}/{package.dependency_id}.crate"
        data = self._http.fetch_bytes(url)
        actual = sha256_hex(data)
        if actual != package.checksum:
            raise PinMismatchError(package.dependency_id, package.checksum, actual)

        if dest.exists():
            shutil.rmtree(dest)
        with tempfile.TemporaryDirectory(prefix="pinforge-crate-") as tmp:
            with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as archive:
                archive.extractall(tmp, filter="data")
            unpacked = Path(tmp) / package.dependency_id
            if not unpacked.is_dir():
                raise FetchError(f"{url} did not unpack to {package.dependency_id}/")
            shutil.copytree(unpacked, dest, symlinks=True)
        return dest
