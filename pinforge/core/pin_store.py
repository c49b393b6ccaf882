"""Pin store — dependency identifier -> content hash, persisted as JSON.

A loaded ``PinStore`` is an immutable snapshot: builds read it, never write
it. The only writer is ``update()``, an explicit offline maintenance step
that needs network access and replaces the file atomically (write to a temp
file in the same directory, then ``os.replace``) so a crash mid-update
leaves the previous file intact.
"""

from __future__ import annotations

import json
import logging
import shutil
import tempfile
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType

from pinforge.core.fetcher import SourceFetcher
from pinforge.core.hasher import hash_tree, normalize_sri
from pinforge.core.json_io import write_json_atomic
from pinforge.errors import PinFileError, PinMismatchError, UnknownDependency, UnresolvedPin
from pinforge.models.pins import Lockfile, PinEntry

logger = logging.getLogger(__name__)


class PinStore:
    """Read-only snapshot of the pin file.

    Parameters
    ----------
    pins:
        Mapping of dependency identifier to SRI content hash.
    path:
        Where the snapshot was loaded from; ``update()`` writes back here.
    """

    def __init__(self, pins: Mapping[str, str] | None = None, path: Path | None = None) -> None:
        self._pins: Mapping[str, str] = MappingProxyType(dict(sorted((pins or {}).items())))
        self._path = Path(path) if path is not None else None

    @classmethod
    def load(cls, path: Path) -> PinStore:
        """Load a pin file. A missing file is an empty store."""
        path = Path(path)
        if not path.exists():
            logger.debug("Pin file %s does not exist; starting empty", path)
            return cls({}, path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise PinFileError(f"{path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise PinFileError(f"{path} must contain a JSON object")
        for key, value in data.items():
            if not isinstance(value, str):
                raise PinFileError(f"{path}: pin for {key!r} is not a string")
            try:
                normalize_sri(value)
            except ValueError:
                raise PinFileError(
                    f"{path}: pin for {key!r} is not a SHA-256 hash: {value!r}"
                ) from None
        return cls(data, path)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def pins(self) -> Mapping[str, str]:
        return self._pins

    def __len__(self) -> int:
        return len(self._pins)

    def __contains__(self, dependency_id: object) -> bool:
        return dependency_id in self._pins

    def entries(self) -> list[PinEntry]:
        return [
            PinEntry(dependency_id=k, content_hash=v) for k, v in self._pins.items()
        ]

    def resolve(self, dependency_id: str) -> str:
        """Return the pinned content hash; raises ``UnknownDependency``."""
        try:
            return self._pins[dependency_id]
        except KeyError:
            raise UnknownDependency(dependency_id) from None

    def resolve_all(self, lockfile: Lockfile) -> dict[str, str]:
        """Resolve every vendored package of *lockfile*, in lockfile order.

        Raises ``UnresolvedPin`` for the first package with no pin.
        """
        resolved: dict[str, str] = {}
        for package in lockfile.vendored():
            try:
                resolved[package.dependency_id] = self.resolve(package.dependency_id)
            except UnknownDependency:
                raise UnresolvedPin(package.dependency_id) from None
        return resolved

    def verify(self, dependency_id: str, content_hash: str) -> None:
        """Check fetched content against its pin; raises ``PinMismatchError``.

        A pin that is not a SHA-256 hash raises ``PinFileError``; it can only
        get here through a store built in memory, since ``load`` rejects it.
        """
        expected = self.resolve(dependency_id)
        try:
            pinned = normalize_sri(expected)
        except ValueError:
            raise PinFileError(
                f"Pin for {dependency_id!r} is not a SHA-256 hash: {expected!r}"
            ) from None
        try:
            matches = pinned == normalize_sri(content_hash)
        except ValueError:
            matches = False
        if not matches:
            raise PinMismatchError(dependency_id, expected, content_hash)

    def diff(self, other: PinStore) -> dict[str, list[str]]:
        """Identifiers added, changed and removed going from self to *other*."""
        return {
            "added": sorted(k for k in other.pins if k not in self._pins),
            "changed": sorted(
                k for k in other.pins
                if k in self._pins and self._pins[k] != other.pins[k]
            ),
            "removed": sorted(k for k in self._pins if k not in other.pins),
        }

    # ------------------------------------------------------------------
    # Write side (offline maintenance only)
    # ------------------------------------------------------------------

    def update(
        self,
        lockfile: Lockfile,
        fetcher: SourceFetcher,
        *,
        refresh: bool = False,
        path: Path | None = None,
    ) -> PinStore:
        """Compute pins for vendored packages that lack one and persist them.

        With ``refresh=True`` every vendored package is re-fetched and
        re-hashed. Pins for packages no longer in the lockfile are dropped.
        Returns the new snapshot; ``self`` is left unchanged.
        """
        target = Path(path) if path is not None else self._path
        if target is None:
            raise PinFileError("No pin file path to write to")

        new_pins: dict[str, str] = {}
        with tempfile.TemporaryDirectory(prefix="pinforge-pins-") as tmp:
            for package in lockfile.vendored():
                dep_id = package.dependency_id
                if not refresh and dep_id in self._pins:
                    new_pins[dep_id] = self._pins[dep_id]
                    continue
                dest = Path(tmp) / dep_id
                fetcher.fetch(package, dest)
                new_pins[dep_id] = hash_tree(dest)
                shutil.rmtree(dest, ignore_errors=True)
                if self._pins.get(dep_id) != new_pins[dep_id]:
                    logger.info("Pinned %s -> %s", dep_id, new_pins[dep_id])

        updated = PinStore(new_pins, target)
        updated.save()
        return updated

    def save(self) -> None:
        """Atomically write the snapshot to its path."""
        if self._path is None:
            raise PinFileError("No pin file path to write to")
        write_json_atomic(self._path, dict(self._pins))
