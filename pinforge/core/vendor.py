"""Offline vendoring of every locked dependency.

Git-sourced packages are verified against the pin store; registry packages
are verified against the lockfile checksum. The resulting directory is wired
into cargo with a source-replacement config so the compile step never
touches the network.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pinforge.core.fetcher import SourceFetcher
from pinforge.core.hasher import hash_tree
from pinforge.core.pin_store import PinStore
from pinforge.core.runner import CancelToken
from pinforge.models.pins import Lockfile, LockedPackage

logger = logging.getLogger(__name__)

VENDOR_SOURCE_NAME = "vendored-sources"


def _toml_str(value: str) -> str:
    # JSON string escapes are a subset of TOML basic-string escapes.
    return json.dumps(value)


def _git_source_key(package: LockedPackage) -> tuple[str, list[str]]:
    """Return the cargo ``[source."<key>"]`` name and its body lines."""
    src = package.git_source
    body = [f"git = {_toml_str(src.url)}"]
    key = src.url
    for kind in ("rev", "branch", "tag"):
        value = getattr(src, kind)
        if value:
            key = f"{src.url}?{kind}={value}"
            body.append(f"{kind} = {_toml_str(value)}")
            break
    return key, body


def render_cargo_config(
    lockfile: Lockfile, vendor_dir: Path, *, replace_registry: bool = True
) -> str:
    """Render ``.cargo/config.toml`` redirecting sources to *vendor_dir*.

    Git sources are always redirected. crates.io is redirected only when
    *replace_registry* is set, that is when registry crates were vendored
    too; otherwise cargo resolves them from its own registry cache.
    """
    lines: list[str] = []
    if replace_registry:
        lines += [
            "[source.crates-io]",
            f"replace-with = {_toml_str(VENDOR_SOURCE_NAME)}",
            "",
        ]
    seen: set[str] = set()
    for package in lockfile.vendored():
        key, body = _git_source_key(package)
        if key in seen:
            continue
        seen.add(key)
        lines += [f"[source.{_toml_str(key)}]", *body, f"replace-with = {_toml_str(VENDOR_SOURCE_NAME)}", ""]
    lines += [
        f"[source.{VENDOR_SOURCE_NAME}]",
        f"directory = {_toml_str(str(vendor_dir))}",
        "",
    ]
    return "\n".join(lines)


class Vendorer:
    """Populates a vendor directory from a lockfile.

    Parameters
    ----------
    git_fetcher:
        Fetcher for ``git+`` sources; its output is checked against pins.
    registry_fetcher:
        Fetcher for registry crates; it checks the lockfile checksum itself.
        When ``None`` registry packages are not vendored and the cargo config
        leaves crates.io unreplaced (see ``vendors_registry``).
    """

    def __init__(
        self,
        git_fetcher: SourceFetcher,
        registry_fetcher: SourceFetcher | None = None,
        *,
        cancel_token: CancelToken | None = None,
    ) -> None:
        self._git = git_fetcher
        self._registry = registry_fetcher
        self._cancel_token = cancel_token

    @property
    def vendors_registry(self) -> bool:
        """Whether registry crates land in the vendor directory."""
        return self._registry is not None

    def vendor(self, lockfile: Lockfile, pins: PinStore, vendor_dir: Path) -> dict[str, str]:
        """Fetch and verify every dependency into *vendor_dir*.

        Returns the verified ``dependency_id -> content_hash`` mapping for
        git packages. Raises ``PinMismatchError`` on the first mismatch.
        """
        vendor_dir.mkdir(parents=True, exist_ok=True)
        verified: dict[str, str] = {}

        for package in lockfile.vendored():
            self._checkpoint()
            dest = vendor_dir / package.dependency_id
            self._git.fetch(package, dest)
            actual = hash_tree(dest)
            pins.verify(package.dependency_id, actual)
            _write_checksum(dest, None)
            verified[package.dependency_id] = actual

        if self._registry is not None:
            for package in lockfile.packages:
                if package.is_vendored or package.source is None:
                    continue  # git deps done above; path deps live in the tree
                self._checkpoint()
                dest = vendor_dir / package.dependency_id
                self._registry.fetch(package, dest)
                _write_checksum(dest, package.checksum)

        logger.info(
            "Vendored %d pinned git packages into %s", len(verified), vendor_dir
        )
        return verified

    def _checkpoint(self) -> None:
        if self._cancel_token is not None:
            self._cancel_token.raise_if_cancelled()


def _write_checksum(crate_dir: Path, package_checksum: str | None) -> None:
    # Written after hashing so it never contributes to the pinned hash.
    (crate_dir / ".cargo-checksum.json").write_text(
        json.dumps({"files": {}, "package": package_checksum}), encoding="utf-8"
    )
