"""Pin and lockfile models — the reproducibility inputs of a build."""

from __future__ import annotations

from urllib.parse import parse_qs, urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict


class PinEntry(BaseModel):
    """Binds a vendored dependency identifier to its content hash.

    ``content_hash`` is an SRI string (``sha256-<base64>``), the same format
    used by the ``outputHashes`` table the lockfile is checked against.
    """

    model_config = ConfigDict(frozen=True)

    dependency_id: str
    content_hash: str


class GitSource(BaseModel):
    """A ``git+<url>?rev=<rev>#<commit>`` lockfile source, split apart."""

    model_config = ConfigDict(frozen=True)

    url: str
    commit: str
    rev: str | None = None
    branch: str | None = None
    tag: str | None = None

    @classmethod
    def parse(cls, source: str) -> GitSource:
        """Parse a Cargo.lock git source string.

        The commit after ``#`` is authoritative; ``rev``/``branch``/``tag``
        only record what the manifest asked for.
        """
        if not source.startswith("git+"):
            raise ValueError(f"Not a git source: {source!r}")
        parts = urlsplit(source.removeprefix("git+"))
        if not parts.fragment:
            raise ValueError(f"Git source has no locked commit: {source!r}")
        query = parse_qs(parts.query)
        url = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
        return cls(
            url=url,
            commit=parts.fragment,
            rev=query.get("rev", [None])[0],
            branch=query.get("branch", [None])[0],
            tag=query.get("tag", [None])[0],
        )


class LockedPackage(BaseModel):
    """One ``[[package]]`` entry of a Cargo.lock-format lockfile."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    source: str | None = None
    checksum: str | None = None

    @property
    def dependency_id(self) -> str:
        """The identifier used as the pin file key (``name-version``)."""
        return f"{self.name}-{self.version}"

    @property
    def is_vendored(self) -> bool:
        """Git-sourced packages have no registry checksum and need a pin."""
        return self.source is not None and self.source.startswith("git+")

    @property
    def git_source(self) -> GitSource:
        if self.source is None:
            raise ValueError(f"{self.dependency_id} has no source")
        return GitSource.parse(self.source)


class Lockfile(BaseModel):
    """A parsed lockfile: ordered packages as they appear in the file."""

    model_config = ConfigDict(frozen=True)

    version: int = 3
    packages: tuple[LockedPackage, ...] = ()

    def vendored(self) -> list[LockedPackage]:
        """Return vendored packages in lockfile order, de-duplicated by id.

        A single git checkout can provide several crates; each crate is
        pinned under its own identifier.
        """
        seen: set[str] = set()
        result: list[LockedPackage] = []
        for package in self.packages:
            if package.is_vendored and package.dependency_id not in seen:
                seen.add(package.dependency_id)
                result.append(package)
        return result
