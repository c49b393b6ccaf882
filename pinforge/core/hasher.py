"""Canonical hashing helpers for pins, content addressing and the ledger.

Two hash spellings are in use:

- ``sha256-<base64>`` (SRI) for pins and toolchain manifests, matching the
  format of ``outputHashes`` tables.
- ``sha256:<hex>`` for binary cache addresses and ledger seals.
"""

from __future__ import annotations

import base64
import hashlib
import json
import os
import stat
from pathlib import Path
from typing import Any

_CHUNK = 1 << 20
_IGNORED_DIRS = frozenset({".git"})


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes: sorted keys, compact separators."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def sri_sha256(data: bytes) -> str:
    """Return the SRI form (``sha256-<base64>``) of the SHA-256 of *data*."""
    return _sri(hashlib.sha256(data).digest())


def _sri(digest: bytes) -> str:
    return "sha256-" + base64.b64encode(digest).decode("ascii")


def normalize_sri(value: str) -> str:
    """Accept ``sha256-<b64>``, ``sha256:<hex>`` or bare hex; return SRI.

    Raises ``ValueError`` for anything else.
    """
    if value.startswith("sha256-"):
        raw = base64.b64decode(value.removeprefix("sha256-"), validate=True)
        if len(raw) != 32:
            raise ValueError(f"Not a SHA-256 SRI hash: {value!r}")
        return value
    hex_part = value.removeprefix("sha256:")
    try:
        raw = bytes.fromhex(hex_part)
    except ValueError:
        raise ValueError(f"Unrecognized hash format: {value!r}") from None
    if len(raw) != 32:
        raise ValueError(f"Not a SHA-256 digest: {value!r}")
    return _sri(raw)


def content_address(data: bytes) -> str:
    """Content-address raw bytes as ``sha256:<hex>``."""
    return f"sha256:{sha256_hex(data)}"


def _file_digest(path: Path) -> bytes:
    h = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK), b""):
            h.update(chunk)
    return h.digest()


def hash_tree(root: Path) -> str:
    """Deterministic SRI hash of a directory tree.

    Covers relative paths (sorted, POSIX separators), file contents, the
    executable bit and symlink targets. Timestamps, ownership and ``.git``
    directories are ignored so that two checkouts of the same commit hash
    identically.
    """
    root = Path(root)
    h = hashlib.sha256()
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        dirnames[:] = sorted(d for d in dirnames if d not in _IGNORED_DIRS)
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        if rel_dir != ".":
            h.update(b"dir\0" + rel_dir.encode("utf-8") + b"\0")

        # Symlinked directories show up in dirnames; record them as links.
        entries = sorted(
            filenames + [d for d in dirnames if (Path(dirpath) / d).is_symlink()]
        )
        for name in entries:
            path = Path(dirpath) / name
            rel = path.relative_to(root).as_posix().encode("utf-8")
            mode = path.lstat().st_mode
            if stat.S_ISLNK(mode):
                target = os.readlink(path).encode("utf-8")
                h.update(b"link\0" + rel + b"\0" + target + b"\0")
            else:
                executable = b"x" if mode & stat.S_IXUSR else b"-"
                h.update(b"file\0" + rel + b"\0" + executable + b"\0")
                h.update(_file_digest(path))
        dirnames[:] = [d for d in dirnames if not (Path(dirpath) / d).is_symlink()]
    return _sri(h.digest())


def compute_entry_hash(entry_dict: dict[str, Any]) -> str:
    """SHA-256 of a ledger entry (excluding the entry_hash field itself)."""
    d = {k: v for k, v in entry_dict.items() if k != "entry_hash"}
    return sha256_hex(canonical_json_bytes(d))
