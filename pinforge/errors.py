"""Error taxonomy for pin resolution, recipe builds and CI publishing.

Every step-local failure raises a subclass of ``ForgeError``. The build and
publish layers never downgrade these: a raised error aborts the whole run
and no partial output is kept or cached.

Skipping the cache push for a pull request is not an error: it is a
policy outcome recorded on the run as ``PublishOutcome.SKIPPED``.
"""

from __future__ import annotations


class ForgeError(RuntimeError):
    """Base class for all pinforge errors."""


# ---------------------------------------------------------------------------
# Pin store
# ---------------------------------------------------------------------------


class PinFileError(ForgeError):
    """Raised when the pin file cannot be parsed as a string->string mapping."""


class UnknownDependency(ForgeError, KeyError):
    """Raised by ``PinStore.resolve`` for an identifier with no pin."""

    def __init__(self, dependency_id: str) -> None:
        super().__init__(dependency_id)
        self.dependency_id = dependency_id

    def __str__(self) -> str:
        return f"No pin recorded for {self.dependency_id!r}"


class UnresolvedPin(ForgeError):
    """Raised when the lockfile references a vendored dependency with no pin."""

    def __init__(self, dependency_id: str) -> None:
        super().__init__(
            f"Lockfile references {dependency_id!r} but the pin file has no "
            f"entry for it. Run `pinforge update-pins` and commit the result."
        )
        self.dependency_id = dependency_id


class PinMismatchError(ForgeError):
    """Raised when fetched content does not hash to its recorded pin."""

    def __init__(self, dependency_id: str, expected: str, actual: str) -> None:
        super().__init__(
            f"Hash mismatch for {dependency_id!r}: pinned {expected}, got {actual}"
        )
        self.dependency_id = dependency_id
        self.expected = expected
        self.actual = actual


class FetchError(ForgeError):
    """Raised when a network or VCS fetch fails."""


class LockfileError(ForgeError):
    """Raised when the lockfile or channel file is missing or malformed."""


# ---------------------------------------------------------------------------
# Build recipe
# ---------------------------------------------------------------------------


# Stands in for the expected hash when none was configured.
UNSET_HASH = "<unset>"


class ToolchainIntegrityError(ForgeError):
    """Raised when the fetched toolchain manifest does not match its hash."""

    def __init__(self, channel: str, expected: str, actual: str) -> None:
        if expected == UNSET_HASH:
            message = (
                f"Toolchain {channel!r} has no pinned manifest hash; set "
                "[toolchain] integrity_hash in the recipe or PINFORGE_TOOLCHAIN_HASH "
                f"(the manifest currently hashes to {actual})"
            )
        else:
            message = (
                f"Toolchain {channel!r} failed integrity check: "
                f"expected {expected}, got {actual}"
            )
        super().__init__(message)
        self.channel = channel
        self.expected = expected
        self.actual = actual


class UnsupportedPlatform(ForgeError):
    """Raised when the recipe is not buildable on the requested platform."""


class CompileError(ForgeError):
    """Raised when the compiler exits non-zero."""


class TestFailure(ForgeError):
    """Raised when the upstream test suite fails.

    ``skipped`` lists the test names that were excluded from the run; they
    are not verified by a passing or failing result.
    """

    __test__ = False  # keep pytest from collecting this as a test class

    def __init__(self, message: str, skipped: list[str] | None = None) -> None:
        super().__init__(message)
        self.skipped = list(skipped or [])


class InstallError(ForgeError):
    """Raised when an expected build output cannot be installed."""


# ---------------------------------------------------------------------------
# CI publisher
# ---------------------------------------------------------------------------


class SmokeTestFailure(ForgeError):
    """Raised when the built artifact does not start in a minimal shell."""


class RunCancelled(ForgeError):
    """Raised inside a run whose cancel token has been set."""


class InvalidTransitionError(ForgeError):
    """Raised when a requested run state transition is not valid."""


class LedgerIntegrityError(ForgeError):
    """Raised when the run ledger hash chain is broken."""


class CacheIntegrityError(ForgeError):
    """Raised when a cached blob's hash does not match its address."""
