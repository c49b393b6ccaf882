"""CI run state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Terminal states are final
- Every transition recorded in the run ledger
"""

from __future__ import annotations

import logging
import threading

from pinforge.core.run_ledger import RunLedger
from pinforge.errors import InvalidTransitionError
from pinforge.models.ledger import LedgerEntry
from pinforge.models.runs import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    PublishOutcome,
    RunRecord,
    RunState,
)

logger = logging.getLogger(__name__)


class RunStateMachine:
    """Tracks the state of each run and records transitions in the ledger.

    Parameters
    ----------
    ledger:
        The run ledger to record transitions into.
    """

    def __init__(self, ledger: RunLedger) -> None:
        self._ledger = ledger
        self._states: dict[str, RunState] = {}
        self._lock = threading.Lock()

    @property
    def ledger(self) -> RunLedger:
        return self._ledger

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def get_state(self, run_id: str) -> RunState:
        with self._lock:
            if run_id not in self._states:
                self._states[run_id] = self._rebuild_state(run_id)
            return self._states[run_id]

    def is_terminal(self, run_id: str) -> bool:
        return self.get_state(run_id) in TERMINAL_STATES

    def _rebuild_state(self, run_id: str) -> RunState:
        """Replay the ledger for a run this process has not seen."""
        state = RunState.IDLE
        for entry in self._ledger.get_run_entries(run_id):
            _, _, to_state = entry.transition.partition("->")
            try:
                state = RunState(to_state)
            except ValueError:
                logger.warning(
                    "Ignoring unknown state %r in ledger entry %s",
                    to_state, entry.entry_id,
                )
        return state

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(
        self,
        record: RunRecord,
        target_state: RunState,
        *,
        reason: str = "",
        artifact_hash: str = "",
        publish: PublishOutcome | None = None,
    ) -> LedgerEntry:
        """Move *record*'s run to *target_state*, recording it in the ledger.

        Raises ``InvalidTransitionError`` if the move is not allowed from the
        run's current state. Returns the sealed ledger entry.
        """
        with self._lock:
            run_id = record.run_id
            if run_id not in self._states:
                self._states[run_id] = self._rebuild_state(run_id)
            current = self._states[run_id]

            allowed = VALID_TRANSITIONS.get(current, set())
            if target_state not in allowed:
                raise InvalidTransitionError(
                    f"Cannot transition run {run_id} from {current.value} to "
                    f"{target_state.value}. Allowed: {sorted(s.value for s in allowed)}"
                )

            entry = LedgerEntry(
                run_id=run_id,
                concurrency_key=record.concurrency_key,
                transition=f"{current.value}->{target_state.value}",
                event_kind=record.event.kind.value,
                commit=record.event.commit,
                reason=reason,
                artifact_hash=artifact_hash,
                publish=publish.value if publish is not None else "",
            )
            sealed = self._ledger.append(entry)
            self._states[run_id] = target_state

        logger.info(
            "Run %s [%s]: %s", run_id, record.concurrency_key, sealed.transition
        )
        return sealed
