"""Tests for BinaryCache content addressing and integrity."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from pinforge.core.binary_cache import BinaryCache, pack_tree
from pinforge.core.hasher import sha256_hex
from pinforge.errors import CacheIntegrityError


def _tree(root: Path) -> Path:
    (root / "bin").mkdir(parents=True)
    (root / "bin" / "zed").write_text("#!/bin/sh\n", encoding="utf-8")
    (root / "bin" / "zed").chmod(0o755)
    (root / "share").mkdir()
    (root / "share" / "readme").write_text("hello", encoding="utf-8")
    return root


class TestPackTree:
    def test_deterministic_across_copies(self, tmp_dir: Path):
        a = _tree(tmp_dir / "a")
        b = _tree(tmp_dir / "b")
        os.utime(b / "share" / "readme", (1, 1))
        assert pack_tree(a) == pack_tree(b)

    def test_content_change_changes_blob(self, tmp_dir: Path):
        root = _tree(tmp_dir / "a")
        before = pack_tree(root)
        (root / "share" / "readme").write_text("changed", encoding="utf-8")
        assert pack_tree(root) != before


class TestBinaryCache:
    def test_push_and_fetch(self, binary_cache: BinaryCache):
        entry = binary_cache.push(b"artifact bytes", name="zed-editor-git")
        assert entry.artifact_hash == f"sha256:{sha256_hex(b'artifact bytes')}"
        assert entry.size_bytes == len(b"artifact bytes")
        assert binary_cache.fetch(entry.artifact_hash) == b"artifact bytes"

    def test_layout(self, binary_cache: BinaryCache, tmp_dir: Path):
        digest = sha256_hex(b"layout")
        binary_cache.push(b"layout", name="x")
        assert (tmp_dir / "cache" / digest[:2] / digest[2:4] / f"{digest}.tar").is_file()
        assert (tmp_dir / "cache" / digest[:2] / digest[2:4] / f"{digest}.json").is_file()

    def test_push_is_idempotent(self, binary_cache: BinaryCache):
        first = binary_cache.push(b"same", name="first")
        second = binary_cache.push(b"same", name="second")
        assert second == first
        assert len(binary_cache.entries()) == 1

    def test_exists_and_verify(self, binary_cache: BinaryCache):
        entry = binary_cache.push(b"check", name="x")
        assert binary_cache.exists(entry.artifact_hash)
        assert binary_cache.verify(entry.artifact_hash)
        assert not binary_cache.exists("sha256:" + "0" * 64)
        assert not binary_cache.verify("sha256:" + "0" * 64)

    def test_fetch_missing(self, binary_cache: BinaryCache):
        with pytest.raises(FileNotFoundError):
            binary_cache.fetch("sha256:" + "0" * 64)

    def test_corrupted_blob_detected_on_push(self, binary_cache: BinaryCache, tmp_dir: Path):
        digest = sha256_hex(b"victim")
        binary_cache.push(b"victim", name="x")
        blob = tmp_dir / "cache" / digest[:2] / digest[2:4] / f"{digest}.tar"
        blob.write_bytes(b"corrupted")
        assert not binary_cache.verify(digest)
        with pytest.raises(CacheIntegrityError):
            binary_cache.push(b"victim", name="x")

    def test_restore_round_trip(self, binary_cache: BinaryCache, tmp_dir: Path):
        root = _tree(tmp_dir / "a")
        entry = binary_cache.push(pack_tree(root), name="tree")
        dest = binary_cache.restore(entry.artifact_hash, tmp_dir / "restored")
        assert (dest / "share" / "readme").read_text(encoding="utf-8") == "hello"
        assert os.access(dest / "bin" / "zed", os.X_OK)

    def test_entries_sorted_oldest_first(self, binary_cache: BinaryCache):
        binary_cache.push(b"one", name="one")
        binary_cache.push(b"two", name="two")
        names = [e.name for e in binary_cache.entries()]
        assert sorted(names) == ["one", "two"]
        assert len(names) == 2
