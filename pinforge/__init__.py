"""pinforge: reproducible, hash-pinned builds with a CI binary cache.

  - Pin store mapping each vendored dependency to its content hash
  - Toolchain integrity check against the channel manifest hash
  - Seven-gate recipe builder with an all-or-nothing output tree
  - Platform profile table (Linux buildable, Darwin marked broken)
  - CI publisher with per-branch concurrency, superseding and a
    content-addressed binary cache
  - Hash-chained SQLite run ledger
"""

__version__ = "0.1.0"
__description__ = "Reproducible, hash-pinned builds with a CI binary cache"

from pinforge.core.builder import RecipeBuilder
from pinforge.core.pin_store import PinStore
from pinforge.core.publisher import CIPublisher
from pinforge.cli.app import app as cli

__all__ = ["PinStore", "RecipeBuilder", "CIPublisher", "cli", "__version__"]
