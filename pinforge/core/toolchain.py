"""Toolchain resolution — verify the channel manifest, then install it.

The integrity hash in a ``ToolchainDescriptor`` is the SRI hash of the
channel manifest published on the distribution server. The manifest lists
the hash of every component archive, so checking it transitively pins the
whole toolchain. A mismatch aborts before anything is compiled.
"""

from __future__ import annotations

import logging
import re

from pinforge.core.fetcher import HttpFetcher
from pinforge.core.hasher import normalize_sri, sri_sha256
from pinforge.core.runner import CancelToken, CommandRunner, Runner
from pinforge.errors import UNSET_HASH, FetchError, ToolchainIntegrityError
from pinforge.models.toolchain import ResolvedToolchain, ToolchainDescriptor

logger = logging.getLogger(__name__)

DEFAULT_DIST_SERVER = "https://static.rust-lang.org"

_DATED = re.compile(r"^(?P<channel>stable|beta|nightly)-(?P<date>\d{4}-\d{2}-\d{2})$")


def manifest_url(channel: str, dist_server: str = DEFAULT_DIST_SERVER) -> str:
    """Return the channel manifest URL for a toolchain channel name.

    ``nightly-2024-05-01`` lives under ``dist/2024-05-01/``; plain channels
    and version numbers live directly under ``dist/``.
    """
    base = dist_server.rstrip("/")
    match = _DATED.match(channel)
    if match:
        return f"{base}/dist/{match['date']}/channel-rust-{match['channel']}.toml"
    return f"{base}/dist/channel-rust-{channel}.toml"


class ToolchainResolver:
    """Resolves and installs a toolchain described by a descriptor.

    Parameters
    ----------
    http:
        Fetcher used to download the channel manifest.
    runner:
        Command runner used for ``rustup``.
    dist_server:
        Base URL of the toolchain distribution server.
    """

    def __init__(
        self,
        http: HttpFetcher | None = None,
        runner: Runner | None = None,
        *,
        dist_server: str = DEFAULT_DIST_SERVER,
        cancel_token: CancelToken | None = None,
    ) -> None:
        self._http = http or HttpFetcher()
        self._runner = runner or CommandRunner()
        self._dist_server = dist_server
        self._cancel_token = cancel_token

    def verify(self, descriptor: ToolchainDescriptor) -> ResolvedToolchain:
        """Download the manifest and check it against the integrity hash."""
        url = manifest_url(descriptor.channel, self._dist_server)
        manifest = self._http.fetch_bytes(url)
        actual = sri_sha256(manifest)

        expected = descriptor.integrity_hash
        try:
            matches = bool(expected) and normalize_sri(expected) == actual
        except ValueError:
            matches = False
        if not matches:
            raise ToolchainIntegrityError(descriptor.channel, expected or UNSET_HASH, actual)

        logger.info("Toolchain %s verified (%s)", descriptor.channel, actual)
        return ResolvedToolchain(descriptor=descriptor, manifest_url=url, manifest_hash=actual)

    def install(self, resolved: ResolvedToolchain) -> None:
        """Install the verified channel with its components via rustup."""
        descriptor = resolved.descriptor
        cmd = [
            "rustup", "toolchain", "install", descriptor.channel,
            "--profile", descriptor.profile, "--no-self-update",
        ]
        for component in sorted(descriptor.components):
            cmd += ["--component", component]
        for target in sorted(descriptor.targets):
            cmd += ["--target", target]
        result = self._runner.run(cmd, cancel_token=self._cancel_token)
        if not result.ok:
            raise FetchError(
                f"Failed to install toolchain {descriptor.channel}: {result.tail(5)}"
            )

    def resolve(self, descriptor: ToolchainDescriptor) -> ResolvedToolchain:
        """Verify then install. Nothing is installed if verification fails."""
        resolved = self.verify(descriptor)
        self.install(resolved)
        return resolved
