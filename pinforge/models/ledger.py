"""Run ledger entry model — append-only, hash-chained.

One entry is written per run state transition. The ledger is what the
``history`` command displays; it is never updated or deleted.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntry(BaseModel):
    """A single run state transition."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    concurrency_key: str
    transition: str  # "from_state->to_state", e.g. "idle->running"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    event_kind: str = ""
    commit: str = ""
    reason: str = ""
    artifact_hash: str = ""
    publish: str = ""
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed on append, seals this entry
