"""CI publisher — build, smoke-test and publish on repository events.

Each accepted event becomes one run:

    idle -> running -> succeeded | failed | superseded

Runs sharing a concurrency key (``"{workflow}-{ref_name}"``) are mutually
exclusive. Submitting a new run cancels the in-flight one for the same key
and waits for it to stop before starting; the cancelled run ends
Superseded and never pushes to the cache.

Each run's cancellation and its own cache push share that run's
``publish_lock``: a cancel issued while the run is pushing waits for the
push, and the run still ends Succeeded. A push never starts for a run whose
token is already set. Runs on different keys push independently, so
cancelling one never waits on another run's upload.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone

from pinforge.core.binary_cache import BinaryCache, pack_tree
from pinforge.core.hasher import content_address
from pinforge.core.pipeline import BuildPipeline
from pinforge.core.run_ledger import RunLedger
from pinforge.core.run_machine import RunStateMachine
from pinforge.core.runner import CancelToken
from pinforge.errors import ForgeError, RunCancelled
from pinforge.models.artifacts import Artifact
from pinforge.models.runs import (
    PublishOutcome,
    RunRecord,
    RunState,
    TriggerEvent,
    TriggerKind,
)

logger = logging.getLogger(__name__)


class TriggerPolicy:
    """Decides which repository events start a run.

    Push to the main branch, any pull request and manual dispatch are
    accepted; everything else is ignored.
    """

    def __init__(self, main_branch: str = "main") -> None:
        self.main_branch = main_branch

    def accepts(self, event: TriggerEvent) -> bool:
        if event.kind == TriggerKind.PUSH:
            return event.ref_name == self.main_branch
        return event.kind in (TriggerKind.PULL_REQUEST, TriggerKind.WORKFLOW_DISPATCH)

    def may_publish(self, event: TriggerEvent) -> bool:
        """Pull-request runs build and test but never push to the cache."""
        return not event.is_pull_request


class RunHandle:
    """A submitted run. ``wait()`` returns its final ``RunRecord``."""

    def __init__(self, record: RunRecord, token: CancelToken) -> None:
        self._record = record
        self.token = token
        # Held across this run's cache push.
        self.publish_lock = threading.Lock()
        self._done = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def run_id(self) -> str:
        return self._record.run_id

    @property
    def record(self) -> RunRecord:
        return self._record

    def done(self) -> bool:
        return self._done.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        with self.publish_lock:
            if not self._done.is_set():
                self.token.cancel(reason)

    def wait(self, timeout: float | None = None) -> RunRecord:
        self._done.wait(timeout)
        return self._record

    def _finish(self, record: RunRecord) -> None:
        self._record = record
        self._done.set()


class CIPublisher:
    """Runs the build -> smoke test -> publish sequence per trigger event.

    Parameters
    ----------
    pipeline:
        Builds and smoke-tests one run.
    cache:
        Binary cache that successful non-PR runs are pushed to.
    ledger:
        Run ledger every state transition is recorded in.
    policy:
        Trigger policy. Uses ``TriggerPolicy()`` if not provided.
    """

    def __init__(
        self,
        pipeline: BuildPipeline,
        cache: BinaryCache,
        ledger: RunLedger,
        *,
        policy: TriggerPolicy | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._cache = cache
        self.machine = RunStateMachine(ledger)
        self.policy = policy or TriggerPolicy()
        self._active: dict[str, RunHandle] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, event: TriggerEvent) -> RunHandle:
        """Start a run for *event* on a worker thread.

        An event the policy ignores returns an already-finished Idle handle.
        """
        record = RunRecord(event=event)
        handle = RunHandle(record, CancelToken())
        if not self.policy.accepts(event):
            logger.info(
                "Ignoring %s on %s: not a trigger for %s",
                event.kind.value, event.ref_name, event.workflow,
            )
            handle._finish(record.model_copy(update={"reason": "ignored by trigger policy"}))
            return handle

        key = event.concurrency_key
        with self._lock:
            previous = self._active.get(key)
            self._active[key] = handle
        if previous is not None:
            logger.info("Run %s supersedes %s on %s", record.run_id, previous.run_id, key)
            previous.cancel(f"superseded by {record.run_id}")

        thread = threading.Thread(
            target=self._worker,
            args=(handle, previous),
            name=f"pinforge-{record.run_id}",
            daemon=True,
        )
        handle._thread = thread
        thread.start()
        return handle

    def run(self, event: TriggerEvent) -> RunRecord:
        """Submit *event* and block until its run finishes."""
        return self.submit(event).wait()

    def active_runs(self) -> list[RunHandle]:
        with self._lock:
            return list(self._active.values())

    def wait_all(self, timeout: float | None = None) -> None:
        for handle in self.active_runs():
            handle.wait(timeout)

    def _worker(self, handle: RunHandle, previous: RunHandle | None) -> None:
        final = handle.record
        try:
            if previous is not None:
                previous.wait()
            final = self._execute(handle.record, handle.token, handle.publish_lock)
        finally:
            with self._lock:
                if self._active.get(final.concurrency_key) is handle:
                    del self._active[final.concurrency_key]
            handle._finish(final)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _execute(
        self, record: RunRecord, token: CancelToken, publish_lock: threading.Lock
    ) -> RunRecord:
        self.machine.transition(record, RunState.RUNNING)
        record = record.model_copy(update={"state": RunState.RUNNING})

        try:
            token.raise_if_cancelled()
            artifact = self._pipeline.build(record, token)
            token.raise_if_cancelled()
            self._pipeline.smoke_test(artifact, token)
            outcome, address = self._publish(record, artifact, token, publish_lock)
        except RunCancelled as exc:
            self._pipeline.discard(record)
            return self._finish(record, RunState.SUPERSEDED, reason=str(exc))
        except ForgeError as exc:
            logger.error("Run %s failed: %s", record.run_id, exc)
            self._pipeline.discard(record)
            return self._finish(
                record, RunState.FAILED, reason=f"{type(exc).__name__}: {exc}"
            )
        except Exception as exc:
            logger.exception("Run %s crashed", record.run_id)
            self._pipeline.discard(record)
            return self._finish(
                record, RunState.FAILED, reason=f"{type(exc).__name__}: {exc}"
            )

        return self._finish(
            record, RunState.SUCCEEDED, artifact_hash=address, publish=outcome
        )

    def _publish(
        self,
        record: RunRecord,
        artifact: Artifact,
        token: CancelToken,
        publish_lock: threading.Lock,
    ) -> tuple[PublishOutcome, str]:
        if not self.policy.may_publish(record.event):
            logger.info("Run %s is a pull request; not publishing", record.run_id)
            return PublishOutcome.SKIPPED, content_address(pack_tree(artifact.out_path))

        blob = pack_tree(artifact.out_path)
        address = content_address(blob)
        name = f"{artifact.metadata.name}-{artifact.metadata.version}"
        with publish_lock:
            token.raise_if_cancelled()
            already = self._cache.exists(address)
            self._cache.push(blob, name=name)
        if already:
            return PublishOutcome.ALREADY_CACHED, address
        return PublishOutcome.PUBLISHED, address

    def _finish(
        self,
        record: RunRecord,
        state: RunState,
        *,
        reason: str = "",
        artifact_hash: str = "",
        publish: PublishOutcome = PublishOutcome.NOT_ATTEMPTED,
    ) -> RunRecord:
        self.machine.transition(
            record, state, reason=reason, artifact_hash=artifact_hash, publish=publish
        )
        return record.model_copy(
            update={
                "state": state,
                "reason": reason,
                "artifact_hash": artifact_hash,
                "publish": publish,
                "finished_at": datetime.now(timezone.utc),
            }
        )
