"""CI run models — trigger events and the run state machine."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class TriggerKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    WORKFLOW_DISPATCH = "workflow_dispatch"


class TriggerEvent(BaseModel):
    """A repository event that may start a CI run."""

    model_config = ConfigDict(frozen=True)

    kind: TriggerKind
    workflow: str
    ref_name: str
    commit: str = ""
    from_fork: bool = False

    @property
    def concurrency_key(self) -> str:
        """Runs sharing this key are mutually exclusive."""
        return f"{self.workflow}-{self.ref_name}"

    @property
    def is_pull_request(self) -> bool:
        return self.kind == TriggerKind.PULL_REQUEST


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SUPERSEDED = "superseded"


# Valid run transitions, enforced by RunStateMachine.
# SUCCEEDED, FAILED and SUPERSEDED are terminal.
VALID_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.IDLE: {RunState.RUNNING},
    RunState.RUNNING: {RunState.SUCCEEDED, RunState.FAILED, RunState.SUPERSEDED},
    RunState.SUCCEEDED: set(),
    RunState.FAILED: set(),
    RunState.SUPERSEDED: set(),
}

TERMINAL_STATES: frozenset[RunState] = frozenset(
    state for state, targets in VALID_TRANSITIONS.items() if not targets
)


class PublishOutcome(str, Enum):
    PUBLISHED = "published"
    ALREADY_CACHED = "already_cached"
    SKIPPED = "skipped"  # policy: untrusted pull request
    NOT_ATTEMPTED = "not_attempted"


class RunRecord(BaseModel):
    """The externally visible result of one CI run."""

    model_config = ConfigDict(frozen=True)

    run_id: str = Field(default_factory=lambda: f"run-{uuid.uuid4().hex[:12]}")
    event: TriggerEvent
    state: RunState = RunState.IDLE
    reason: str = ""
    artifact_hash: str = ""
    publish: PublishOutcome = PublishOutcome.NOT_ATTEMPTED
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    finished_at: datetime | None = None

    @property
    def concurrency_key(self) -> str:
        return self.event.concurrency_key
