"""pinforge data models — all Pydantic v2, all frozen (immutable)."""

from pinforge.models.artifacts import Artifact, ArtifactMetadata, CacheEntry
from pinforge.models.desktop import DesktopAction, DesktopEntry
from pinforge.models.ledger import LedgerEntry
from pinforge.models.pins import GitSource, LockedPackage, Lockfile, PinEntry
from pinforge.models.platforms import Platform, PlatformProfile
from pinforge.models.recipe import (
    DEFAULT_RECIPE,
    BinaryInstall,
    IconInstall,
    Recipe,
    RecipeMeta,
    ToolchainPin,
    load_recipe,
)
from pinforge.models.runs import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    PublishOutcome,
    RunRecord,
    RunState,
    TriggerEvent,
    TriggerKind,
)
from pinforge.models.toolchain import ResolvedToolchain, ToolchainDescriptor

__all__ = [
    # pins
    "PinEntry",
    "GitSource",
    "LockedPackage",
    "Lockfile",
    # toolchain
    "ToolchainDescriptor",
    "ResolvedToolchain",
    # platforms
    "Platform",
    "PlatformProfile",
    # recipe
    "Recipe",
    "RecipeMeta",
    "BinaryInstall",
    "IconInstall",
    "ToolchainPin",
    "DEFAULT_RECIPE",
    "load_recipe",
    # desktop
    "DesktopEntry",
    "DesktopAction",
    # artifacts
    "Artifact",
    "ArtifactMetadata",
    "CacheEntry",
    # runs
    "TriggerKind",
    "TriggerEvent",
    "RunState",
    "RunRecord",
    "PublishOutcome",
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    # ledger
    "LedgerEntry",
]
