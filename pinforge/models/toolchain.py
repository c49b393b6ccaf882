"""Toolchain descriptor model — which compiler build produces the artifact."""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict


class ToolchainDescriptor(BaseModel):
    """Identifies a compiler toolchain exactly.

    ``channel`` and ``components`` come from the repository's channel file;
    ``integrity_hash`` is the SRI hash of the channel manifest and is owned
    by the recipe.
    """

    model_config = ConfigDict(frozen=True)

    channel: str
    components: frozenset[str] = frozenset()
    targets: frozenset[str] = frozenset()
    profile: str = "minimal"
    integrity_hash: str = ""

    def with_components(self, extra: Iterable[str]) -> ToolchainDescriptor:
        """Return a copy with additional components (e.g. for a dev shell)."""
        return self.model_copy(
            update={"components": self.components | frozenset(extra)}
        )


class ResolvedToolchain(BaseModel):
    """A toolchain whose manifest passed the integrity check."""

    model_config = ConfigDict(frozen=True)

    descriptor: ToolchainDescriptor
    manifest_url: str
    manifest_hash: str

    @property
    def cargo(self) -> list[str]:
        """Command prefix that runs cargo from this toolchain."""
        return ["cargo", f"+{self.descriptor.channel}"]
