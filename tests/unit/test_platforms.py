"""Tests for the platform table, one row at a time."""

from __future__ import annotations

import pytest

from pinforge.core import platforms as platform_table
from pinforge.core.platforms import PLATFORM_PROFILES, detect_host_platform, profile_for
from pinforge.errors import UnsupportedPlatform
from pinforge.models.platforms import Platform

LINUX = [Platform.LINUX_X86_64, Platform.LINUX_AARCH64]
DARWIN = [Platform.DARWIN_X86_64, Platform.DARWIN_AARCH64]


class TestPlatformTable:
    def test_every_platform_has_a_row(self):
        assert set(PLATFORM_PROFILES) == set(Platform)
        for target, profile in PLATFORM_PROFILES.items():
            assert profile.platform is target

    @pytest.mark.parametrize("target", LINUX)
    def test_linux_rows(self, target: Platform):
        profile = profile_for(target)
        assert "mold" in profile.native_build_inputs
        assert {"alsa-lib", "wayland", "libxkbcommon"} <= set(profile.build_inputs)
        assert profile.patch_rpath is True
        assert profile.check_skips == ("test_base_keymap", "test_disabled_keymap_binding")
        assert not any(i.startswith("framework:") for i in profile.build_inputs)
        assert profile.broken is False

    @pytest.mark.parametrize("target", DARWIN)
    def test_darwin_rows(self, target: Platform):
        profile = profile_for(target)
        assert "xcrun" in profile.native_build_inputs
        assert "framework:Metal" in profile.build_inputs
        assert "mold" not in profile.native_build_inputs
        assert "alsa-lib" not in profile.build_inputs
        assert profile.patch_rpath is False
        assert profile.broken is True
        assert profile.broken_reason

    def test_x86_64_targets_v3(self):
        for target in (Platform.LINUX_X86_64, Platform.DARWIN_X86_64):
            assert "target-cpu=x86-64-v3" in profile_for(target).rustflags
        for target in (Platform.LINUX_AARCH64, Platform.DARWIN_AARCH64):
            assert "target-cpu=x86-64-v3" not in profile_for(target).rustflags

    def test_unknown_platform(self):
        with pytest.raises(UnsupportedPlatform):
            profile_for("windows-x86_64")  # type: ignore[arg-type]

    def test_rust_targets(self):
        assert Platform.LINUX_X86_64.rust_target == "x86_64-unknown-linux-gnu"
        assert Platform.DARWIN_AARCH64.rust_target == "aarch64-apple-darwin"


class TestDetectHost:
    @pytest.mark.parametrize(
        ("system", "machine", "expected"),
        [
            ("Linux", "x86_64", Platform.LINUX_X86_64),
            ("Linux", "aarch64", Platform.LINUX_AARCH64),
            ("Darwin", "arm64", Platform.DARWIN_AARCH64),
            ("Darwin", "x86_64", Platform.DARWIN_X86_64),
        ],
    )
    def test_mapping(self, monkeypatch, system: str, machine: str, expected: Platform):
        monkeypatch.setattr(platform_table._host, "system", lambda: system)
        monkeypatch.setattr(platform_table._host, "machine", lambda: machine)
        assert detect_host_platform() is expected

    def test_unsupported_host(self, monkeypatch):
        monkeypatch.setattr(platform_table._host, "system", lambda: "Windows")
        monkeypatch.setattr(platform_table._host, "machine", lambda: "AMD64")
        with pytest.raises(UnsupportedPlatform):
            detect_host_platform()
