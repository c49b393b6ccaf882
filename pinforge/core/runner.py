"""Subprocess execution with timeouts and cooperative cancellation.

Commands are always argument lists, never shell strings. A ``CancelToken``
shared with the CI publisher lets a superseding run stop the in-flight one:
the child process receives SIGTERM (then SIGKILL after a grace period) and
the result is marked ``cancelled``.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from pinforge.errors import RunCancelled

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.2
_TERMINATE_GRACE = 10.0
_MAX_OUTPUT_CHARS = 200_000


class CancelToken:
    """A thread-safe, one-way cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelled(self.reason or "cancelled")


@dataclass(frozen=True)
class CommandResult:
    command: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled

    def tail(self, lines: int = 20) -> str:
        """Last *lines* of stderr (or stdout if stderr is empty)."""
        text = self.stderr.strip() or self.stdout.strip()
        return "\n".join(text.splitlines()[-lines:])


class Runner(Protocol):
    def run(
        self,
        cmd: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        cancel_token: CancelToken | None = None,
    ) -> CommandResult: ...


@dataclass
class CommandRunner:
    """Runs external commands on behalf of the build and smoke-test steps.

    Parameters
    ----------
    default_timeout:
        Timeout in seconds applied when ``run`` is called without one.
    inherit_env:
        When True the child sees ``os.environ`` overlaid with ``env``;
        otherwise only ``env`` plus ``base_env``.
    """

    default_timeout: float = 4 * 60 * 60
    inherit_env: bool = True
    base_env: dict[str, str] = field(default_factory=dict)

    def _build_env(self, env: Mapping[str, str] | None) -> dict[str, str]:
        merged: dict[str, str] = dict(os.environ) if self.inherit_env else {}
        merged.update(self.base_env)
        if env:
            merged.update(env)
        return merged

    def run(
        self,
        cmd: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        cancel_token: CancelToken | None = None,
    ) -> CommandResult:
        """Execute *cmd* and wait for it, honoring timeout and cancellation."""
        if isinstance(cmd, str) or not cmd:
            raise ValueError("Command must be a non-empty argument list")
        argv = [str(part) for part in cmd]
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        limit = timeout if timeout is not None else self.default_timeout
        logger.debug("exec %s (cwd=%s)", " ".join(argv), cwd)
        start = time.monotonic()

        try:
            proc = subprocess.Popen(
                argv,
                cwd=str(cwd) if cwd else None,
                env=self._build_env(env),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except FileNotFoundError as exc:
            return CommandResult(command=argv, exit_code=127, stderr=str(exc))

        timed_out = False
        cancelled = False
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=_POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                if cancel_token is not None and cancel_token.is_set():
                    cancelled = True
                elif time.monotonic() - start > limit:
                    timed_out = True
                else:
                    continue
                logger.warning(
                    "Stopping %s: %s", argv[0], "cancelled" if cancelled else "timed out"
                )
                stdout, stderr = self._terminate(proc)
                break

        duration_ms = int((time.monotonic() - start) * 1000)
        return CommandResult(
            command=argv,
            exit_code=proc.returncode if proc.returncode is not None else -1,
            stdout=_truncate(stdout or ""),
            stderr=_truncate(stderr or ""),
            duration_ms=duration_ms,
            timed_out=timed_out,
            cancelled=cancelled,
        )

    @staticmethod
    def _terminate(proc: subprocess.Popen) -> tuple[str, str]:
        proc.terminate()
        try:
            return proc.communicate(timeout=_TERMINATE_GRACE)
        except subprocess.TimeoutExpired:
            proc.kill()
            return proc.communicate()


def _truncate(text: str) -> str:
    if len(text) <= _MAX_OUTPUT_CHARS:
        return text
    return f"... (truncated, {len(text)} total chars)\n" + text[-_MAX_OUTPUT_CHARS:]
