"""Content-addressed, append-only binary cache for built output trees.

Storage layout: {base_path}/{sha256[0:2]}/{sha256[2:4]}/{sha256}.tar
with a {sha256}.json sidecar holding the ``CacheEntry``.

There is no delete method and stored blobs are never rewritten. Pushing the same
hash again is a no-op, so concurrent pushes of one artifact are safe.
"""

from __future__ import annotations

import io
import logging
import os
import stat
import tarfile
import uuid
from pathlib import Path

from pinforge.core.hasher import sha256_hex
from pinforge.core.json_io import write_json_atomic
from pinforge.errors import CacheIntegrityError
from pinforge.models.artifacts import CacheEntry

logger = logging.getLogger(__name__)


def pack_tree(root: Path) -> bytes:
    """Pack *root* into an uncompressed tar that depends only on content.

    Entries are sorted; mtimes, owners and non-exec mode bits are normalized.
    """
    root = Path(root)
    buffer = io.BytesIO()

    def _normalize(info: tarfile.TarInfo) -> tarfile.TarInfo:
        info.mtime = 0
        info.uid = info.gid = 0
        info.uname = info.gname = ""
        if info.isdir() or info.mode & stat.S_IXUSR:
            info.mode = 0o755
        else:
            info.mode = 0o644
        return info

    paths = sorted(root.rglob("*"), key=lambda p: p.relative_to(root).as_posix())
    with tarfile.open(fileobj=buffer, mode="w", format=tarfile.GNU_FORMAT) as archive:
        for path in paths:
            archive.add(
                path,
                arcname=path.relative_to(root).as_posix(),
                recursive=False,
                filter=_normalize,
            )
    return buffer.getvalue()


class BinaryCache:
    """SHA-256 keyed, append-only artifact cache.

    Parameters
    ----------
    base_path:
        Root directory of the cache. Shared between CI runs and developers.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _extract_digest(address: str) -> str:
        """Strip the ``sha256:`` prefix from an address, if present."""
        return address.removeprefix("sha256:")

    def _blob_path(self, digest: str) -> Path:
        return self._base / digest[:2] / digest[2:4] / f"{digest}.tar"

    def _entry_path(self, digest: str) -> Path:
        return self._blob_path(digest).with_suffix(".json")

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def push(self, blob: bytes, *, name: str) -> CacheEntry:
        """Store *blob* under its hash and return its entry.

        If the hash is already present its integrity is verified and the
        existing entry is returned unchanged.
        """
        digest = sha256_hex(blob)
        path = self._blob_path(digest)

        if path.exists():
            if not self.verify(digest):
                raise CacheIntegrityError(
                    f"Cached blob {digest} failed integrity check"
                )
            existing = self.get_entry(digest)
            if existing is not None:
                logger.info("Cache already holds %s (%s)", digest[:16], existing.name)
                return existing

        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.{os.getpid()}.{uuid.uuid4().hex}.tmp")
        tmp.write_bytes(blob)
        os.replace(tmp, path)

        entry = CacheEntry(
            artifact_hash=f"sha256:{digest}",
            name=name,
            size_bytes=len(blob),
        )
        write_json_atomic(self._entry_path(digest), entry.model_dump(mode="json"))
        logger.info("Pushed %s (%s, %d bytes)", digest[:16], name, len(blob))
        return entry

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def fetch(self, address: str) -> bytes:
        """Return blob bytes by address (``sha256:<hex>`` or bare hex)."""
        path = self._blob_path(self._extract_digest(address))
        if not path.exists():
            raise FileNotFoundError(f"Not in cache: {address}")
        return path.read_bytes()

    def restore(self, address: str, dest: Path) -> Path:
        """Unpack a cached tree into *dest* after verifying it."""
        if not self.verify(address):
            raise CacheIntegrityError(f"Cached blob {address} failed integrity check")
        dest = Path(dest)
        dest.mkdir(parents=True, exist_ok=True)
        with tarfile.open(fileobj=io.BytesIO(self.fetch(address)), mode="r") as archive:
            archive.extractall(dest, filter="data")
        return dest

    def get_entry(self, address: str) -> CacheEntry | None:
        path = self._entry_path(self._extract_digest(address))
        if not path.exists():
            return None
        return CacheEntry.model_validate_json(path.read_text(encoding="utf-8"))

    def entries(self) -> list[CacheEntry]:
        """All cache entries, oldest first."""
        found = [
            CacheEntry.model_validate_json(p.read_text(encoding="utf-8"))
            for p in self._base.glob("*/*/*.json")
        ]
        return sorted(found, key=lambda e: (e.pushed_at, e.artifact_hash))

    # ------------------------------------------------------------------
    # Check and verify
    # ------------------------------------------------------------------

    def exists(self, address: str) -> bool:
        return self._blob_path(self._extract_digest(address)).exists()

    def verify(self, address: str) -> bool:
        """Re-hash the stored blob and compare against its address."""
        digest = self._extract_digest(address)
        path = self._blob_path(digest)
        if not path.exists():
            return False
        return sha256_hex(path.read_bytes()) == digest
