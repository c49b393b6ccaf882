"""Platform table — every platform-conditional input in one place.

Each supported platform maps to one ``PlatformProfile``. The builder asks
for the profile once and never branches on the platform itself, so each
row can be tested in isolation.
"""

from __future__ import annotations

import platform as _host

from pinforge.errors import UnsupportedPlatform
from pinforge.models.platforms import Platform, PlatformProfile

# ---------------------------------------------------------------------------
# Building blocks shared between rows
# ---------------------------------------------------------------------------

_COMMON_NATIVE = ("curl", "perl", "pkg-config", "protobuf", "bindgen")
_COMMON_BUILD = (
    "curl", "fontconfig", "freetype", "libgit2", "openssl", "sqlite", "zlib", "zstd",
)

_LINUX_NATIVE = _COMMON_NATIVE + ("clang", "llvm-bintools", "mold", "patchelf")
_LINUX_BUILD = _COMMON_BUILD + ("alsa-lib", "libxkbcommon", "wayland", "libxcb", "mold")
# pkg-config modules whose libdir is injected into the binaries' rpath.
_LINUX_RUNTIME = (
    "libcurl", "fontconfig", "freetype2", "libgit2", "openssl", "sqlite3", "zlib",
    "libzstd", "alsa", "xkbcommon", "wayland-client", "xcb", "vulkan",
)
_LINUX_RUSTFLAGS = ("-C", "link-arg=-fuse-ld=mold")
_LINUX_CHECK_SKIPS = (
    # Keyboard-layout dependent; fails with "Failed to find test1:A".
    "test_base_keymap",
    # Fails parsing `cmd-k` outside macOS. zed-industries/zed#10427
    "test_disabled_keymap_binding",
)

_DARWIN_NATIVE = _COMMON_NATIVE + ("xcrun",)
_DARWIN_FRAMEWORKS = (
    "AppKit", "CoreAudio", "CoreFoundation", "CoreGraphics", "CoreMedia",
    "CoreServices", "CoreText", "Foundation", "IOKit", "Metal", "Security",
    "SystemConfiguration", "VideoToolbox",
)
_DARWIN_BUILD = _COMMON_BUILD + tuple(f"framework:{f}" for f in _DARWIN_FRAMEWORKS)
_DARWIN_BROKEN = "bindgen and the SDK frameworks do not link under this toolchain"

_X86_64_RUSTFLAGS = ("-C", "target-cpu=x86-64-v3")


PLATFORM_PROFILES: dict[Platform, PlatformProfile] = {
    Platform.LINUX_X86_64: PlatformProfile(
        platform=Platform.LINUX_X86_64,
        native_build_inputs=_LINUX_NATIVE,
        build_inputs=_LINUX_BUILD,
        runtime_libraries=_LINUX_RUNTIME,
        rustflags=_X86_64_RUSTFLAGS + _LINUX_RUSTFLAGS,
        check_skips=_LINUX_CHECK_SKIPS,
        patch_rpath=True,
    ),
    Platform.LINUX_AARCH64: PlatformProfile(
        platform=Platform.LINUX_AARCH64,
        native_build_inputs=_LINUX_NATIVE,
        build_inputs=_LINUX_BUILD,
        runtime_libraries=_LINUX_RUNTIME,
        rustflags=_LINUX_RUSTFLAGS,
        check_skips=_LINUX_CHECK_SKIPS,
        patch_rpath=True,
    ),
    Platform.DARWIN_X86_64: PlatformProfile(
        platform=Platform.DARWIN_X86_64,
        native_build_inputs=_DARWIN_NATIVE,
        build_inputs=_DARWIN_BUILD,
        rustflags=_X86_64_RUSTFLAGS,
        broken=True,
        broken_reason=_DARWIN_BROKEN,
    ),
    Platform.DARWIN_AARCH64: PlatformProfile(
        platform=Platform.DARWIN_AARCH64,
        native_build_inputs=_DARWIN_NATIVE,
        build_inputs=_DARWIN_BUILD,
        broken=True,
        broken_reason=_DARWIN_BROKEN,
    ),
}


def profile_for(target: Platform) -> PlatformProfile:
    """Return the profile for *target*; raises ``UnsupportedPlatform``."""
    try:
        return PLATFORM_PROFILES[Platform(target)]
    except (KeyError, ValueError):
        raise UnsupportedPlatform(f"No build profile for platform {target!r}") from None


_MACHINE_ALIASES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "aarch64": "aarch64",
    "arm64": "aarch64",
}


def detect_host_platform() -> Platform:
    """Map the running interpreter's OS and CPU to a ``Platform``."""
    system = _host.system().lower()
    machine = _MACHINE_ALIASES.get(_host.machine().lower())
    if system not in ("linux", "darwin") or machine is None:
        raise UnsupportedPlatform(
            f"Unsupported host {_host.system()}/{_host.machine()}"
        )
    return Platform(f"{system}-{machine}")
