"""Run ledger: every CI run state transition, hash-chained, in SQLite.

The ``history`` command reads this table as-is; run state is never derived
anywhere else. Rows are only ever inserted. Each row carries the hash of
the previous row of the same run, so editing or removing a row breaks that
run's chain. The database uses WAL so ``history`` can read while a run
appends.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from pinforge.core.hasher import compute_entry_hash
from pinforge.errors import LedgerIntegrityError
from pinforge.models.ledger import LedgerEntry

# Model field -> column. ``commit`` is a reserved word in SQLite.
_FIELDS: tuple[tuple[str, str], ...] = (
    ("entry_id", "entry_id"),
    ("run_id", "run_id"),
    ("concurrency_key", "concurrency_key"),
    ("transition", "transition"),
    ("timestamp_utc", "timestamp_utc"),
    ("event_kind", "event_kind"),
    ("commit", "commit_sha"),
    ("reason", "reason"),
    ("artifact_hash", "artifact_hash"),
    ("publish", "publish"),
    ("previous_entry_hash", "previous_entry_hash"),
    ("entry_hash", "entry_hash"),
)
_SELECT = ", ".join(column for _, column in _FIELDS)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS run_ledger (
        id                   INTEGER PRIMARY KEY AUTOINCREMENT,
        entry_id             TEXT NOT NULL UNIQUE,
        run_id               TEXT NOT NULL,
        concurrency_key      TEXT NOT NULL,
        transition           TEXT NOT NULL,
        timestamp_utc        TEXT NOT NULL,
        event_kind           TEXT NOT NULL DEFAULT '',
        commit_sha           TEXT NOT NULL DEFAULT '',
        reason               TEXT NOT NULL DEFAULT '',
        artifact_hash        TEXT NOT NULL DEFAULT '',
        publish              TEXT NOT NULL DEFAULT '',
        previous_entry_hash  TEXT NOT NULL DEFAULT '',
        entry_hash           TEXT NOT NULL UNIQUE
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_ledger_run ON run_ledger(run_id, id)",
    "CREATE INDEX IF NOT EXISTS ix_ledger_key ON run_ledger(concurrency_key, id)",
)


class RunLedger:
    """Append-only, hash-chained record of CI run transitions.

    Parameters
    ----------
    db_path:
        SQLite database file; it and its parent directory are created on
        first use.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._append_lock = threading.Lock()
        with self._db() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    @contextmanager
    def _db(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            with conn:
                yield conn
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Link *entry* to the tail of its run's chain, seal it and store it.

        Returns the stored entry, with ``previous_entry_hash`` and
        ``entry_hash`` filled in.
        """
        with self._append_lock, self._db() as conn:
            tail = conn.execute(
                "SELECT entry_hash FROM run_ledger WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (entry.run_id,),
            ).fetchone()
            linked = entry.model_copy(
                update={"previous_entry_hash": tail[0] if tail else "", "entry_hash": ""}
            )
            sealed = linked.model_copy(
                update={"entry_hash": compute_entry_hash(linked.model_dump(mode="json"))}
            )
            values = sealed.model_dump(mode="json")
            placeholders = ", ".join("?" * len(_FIELDS))
            conn.execute(
                f"INSERT INTO run_ledger ({_SELECT}) VALUES ({placeholders})",
                [values[name] for name, _ in _FIELDS],
            )
        return sealed

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Every entry of one run, oldest first."""
        return self._select("WHERE run_id = ? ORDER BY id", (run_id,))

    def get_latest(self, run_id: str) -> LedgerEntry | None:
        found = self._select("WHERE run_id = ? ORDER BY id DESC LIMIT 1", (run_id,))
        return found[0] if found else None

    def latest_per_run(
        self, concurrency_key: str | None = None, limit: int = 50
    ) -> list[LedgerEntry]:
        """The newest entry of each run, most recent run first."""
        key_filter, params = "", [limit]
        if concurrency_key is not None:
            key_filter, params = "WHERE concurrency_key = ?", [concurrency_key, limit]
        return self._select(
            f"WHERE id IN (SELECT MAX(id) FROM run_ledger {key_filter} GROUP BY run_id) "
            "ORDER BY id DESC LIMIT ?",
            params,
        )

    def _select(self, clause: str, params) -> list[LedgerEntry]:
        with self._db() as conn:
            rows = conn.execute(f"SELECT {_SELECT} FROM run_ledger {clause}", params).fetchall()
        return [
            LedgerEntry.model_validate({name: row[column] for name, column in _FIELDS})
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Recompute every link and seal of one run.

        Returns True when intact; raises ``LedgerIntegrityError`` naming the
        first bad entry otherwise.
        """
        expected_previous = ""
        for entry in self.get_run_entries(run_id):
            if entry.previous_entry_hash != expected_previous:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id} of {run_id}: links to "
                    f"{entry.previous_entry_hash or '<start>'}, "
                    f"previous entry is {expected_previous or '<start>'}"
                )
            if compute_entry_hash(entry.model_dump(mode="json")) != entry.entry_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id} of {run_id}: content does not match its seal"
                )
            expected_previous = entry.entry_hash
        return True
