"""Build platform models — the four supported host systems."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class Platform(str, Enum):
    """A host system the recipe can be built on."""

    LINUX_X86_64 = "linux-x86_64"
    LINUX_AARCH64 = "linux-aarch64"
    DARWIN_X86_64 = "darwin-x86_64"
    DARWIN_AARCH64 = "darwin-aarch64"

    @property
    def family(self) -> str:
        return self.value.split("-", 1)[0]

    @property
    def arch(self) -> str:
        return self.value.split("-", 1)[1]

    @property
    def is_linux(self) -> bool:
        return self.family == "linux"

    @property
    def is_darwin(self) -> bool:
        return self.family == "darwin"

    @property
    def rust_target(self) -> str:
        """The compiler target triple, used for the ``target/<triple>`` dir."""
        vendor_os = "unknown-linux-gnu" if self.is_linux else "apple-darwin"
        return f"{self.arch}-{vendor_os}"


class PlatformProfile(BaseModel):
    """Per-platform dependency lists, flags and fixups for one build.

    Every field is a deterministic function of ``platform``; profiles are
    only ever obtained from the platform table, never assembled ad hoc.
    """

    model_config = ConfigDict(frozen=True)

    platform: Platform
    native_build_inputs: tuple[str, ...] = ()
    build_inputs: tuple[str, ...] = ()
    runtime_libraries: tuple[str, ...] = ()  # pkg-config modules added to rpath
    rustflags: tuple[str, ...] = ()
    environment: dict[str, str] = {}
    check_skips: tuple[str, ...] = ()
    patch_rpath: bool = False
    broken: bool = False
    broken_reason: str = ""
