"""Build artifact and binary cache models (immutable once produced)."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from pinforge.models.platforms import Platform


class ArtifactMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    license: str = ""
    description: str = ""


class Artifact(BaseModel):
    """A successfully built, self-contained output tree.

    Paths in ``binary_paths`` and ``resource_paths`` are relative to
    ``out_path``. ``tree_hash`` is the SRI hash of the whole output tree;
    two reproducible builds of the same inputs agree on it.

    ``checked`` is False when the upstream test suite was skipped; when it
    ran, ``unverified_tests`` names the tests that were excluded from it.
    """

    model_config = ConfigDict(frozen=True)

    out_path: Path
    platform: Platform
    metadata: ArtifactMetadata
    binary_paths: frozenset[str] = frozenset()
    resource_paths: frozenset[str] = frozenset()
    tree_hash: str = ""
    checked: bool = False
    unverified_tests: tuple[str, ...] = ()


class CacheEntry(BaseModel):
    """Metadata for a blob in the binary cache. The bytes live in the store.

    Entries are never mutated or deleted; pushing the same hash again is a
    no-op.
    """

    model_config = ConfigDict(frozen=True)

    artifact_hash: str  # "sha256:<hex>"
    name: str
    size_bytes: int
    pushed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
