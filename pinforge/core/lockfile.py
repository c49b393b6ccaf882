"""Lockfile and channel-file readers.

Both inputs are small TOML documents owned by the upstream source tree and
are treated as read-only.
"""

from __future__ import annotations

import tomllib
from pathlib import Path

from pinforge.errors import LockfileError
from pinforge.models.pins import LockedPackage, Lockfile
from pinforge.models.toolchain import ToolchainDescriptor


def parse_lockfile_text(text: str) -> Lockfile:
    """Parse Cargo.lock-format TOML text into a ``Lockfile``."""
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise LockfileError(f"Invalid lockfile: {exc}") from exc

    packages = []
    for raw in data.get("package", []):
        try:
            packages.append(
                LockedPackage(
                    name=raw["name"],
                    version=raw["version"],
                    source=raw.get("source"),
                    checksum=raw.get("checksum"),
                )
            )
        except KeyError as exc:
            raise LockfileError(f"Lockfile package missing field {exc}") from exc
    return Lockfile(version=int(data.get("version", 1)), packages=tuple(packages))


def load_lockfile(path: Path) -> Lockfile:
    """Read and parse a lockfile from disk."""
    path = Path(path)
    if not path.exists():
        raise LockfileError(f"Lockfile not found: {path}")
    return parse_lockfile_text(path.read_text(encoding="utf-8"))


def load_channel_file(path: Path, *, integrity_hash: str = "") -> ToolchainDescriptor:
    """Read a ``rust-toolchain.toml`` channel file into a descriptor.

    The file names the channel and components; the integrity hash is not
    part of it and is supplied by the recipe.
    """
    path = Path(path)
    if not path.exists():
        raise LockfileError(f"Toolchain channel file not found: {path}")
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise LockfileError(f"Invalid channel file {path}: {exc}") from exc

    toolchain = data.get("toolchain")
    if not isinstance(toolchain, dict) or "channel" not in toolchain:
        raise LockfileError(f"{path} has no [toolchain] channel")
    return ToolchainDescriptor(
        channel=str(toolchain["channel"]),
        components=frozenset(toolchain.get("components", [])),
        targets=frozenset(toolchain.get("targets", [])),
        profile=str(toolchain.get("profile", "minimal")),
        integrity_hash=integrity_hash,
    )
