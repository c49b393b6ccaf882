"""Tests for RunStateMachine — transition table and ledger recording."""

from __future__ import annotations

import pytest

from pinforge.core.run_ledger import RunLedger
from pinforge.core.run_machine import RunStateMachine
from pinforge.errors import InvalidTransitionError
from pinforge.models.runs import TERMINAL_STATES, PublishOutcome, RunRecord, RunState


class TestRunStateMachine:
    def test_new_run_is_idle(self, run_machine: RunStateMachine, make_event):
        record = RunRecord(event=make_event())
        assert run_machine.get_state(record.run_id) is RunState.IDLE

    def test_happy_path(self, run_machine: RunStateMachine, ledger: RunLedger, make_event):
        record = RunRecord(event=make_event())
        run_machine.transition(record, RunState.RUNNING)
        run_machine.transition(
            record,
            RunState.SUCCEEDED,
            artifact_hash="sha256:" + "a" * 64,
            publish=PublishOutcome.PUBLISHED,
        )
        assert run_machine.is_terminal(record.run_id)
        entries = ledger.get_run_entries(record.run_id)
        assert [e.transition for e in entries] == ["idle->running", "running->succeeded"]
        assert entries[-1].publish == "published"
        assert entries[0].concurrency_key == "Publish to cache-main"
        assert ledger.verify_chain(record.run_id)

    def test_cannot_skip_running(self, run_machine: RunStateMachine, make_event):
        record = RunRecord(event=make_event())
        with pytest.raises(InvalidTransitionError, match="idle"):
            run_machine.transition(record, RunState.SUCCEEDED)

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATES, key=lambda s: s.value))
    def test_terminal_states_are_final(self, run_machine: RunStateMachine, make_event, terminal):
        record = RunRecord(event=make_event())
        run_machine.transition(record, RunState.RUNNING)
        run_machine.transition(record, terminal)
        with pytest.raises(InvalidTransitionError):
            run_machine.transition(record, RunState.RUNNING)

    def test_state_rebuilt_from_ledger(self, ledger: RunLedger, make_event):
        record = RunRecord(event=make_event())
        RunStateMachine(ledger).transition(record, RunState.RUNNING)
        fresh = RunStateMachine(ledger)
        assert fresh.get_state(record.run_id) is RunState.RUNNING
        fresh.transition(record, RunState.FAILED, reason="CompileError: boom")
        assert fresh.is_terminal(record.run_id)

    def test_rejected_transition_is_not_recorded(
        self, run_machine: RunStateMachine, ledger: RunLedger, make_event
    ):
        record = RunRecord(event=make_event())
        with pytest.raises(InvalidTransitionError):
            run_machine.transition(record, RunState.SUPERSEDED)
        assert ledger.get_run_entries(record.run_id) == []
