"""Shell access to a built artifact, and the post-build smoke test.

The smoke test starts a minimal non-interactive shell with only the
artifact's ``bin/`` prepended to ``PATH`` and checks that it starts, that
the main program resolves, and that the shell answers ``Ok``. It is a
start-up check, not functional testing.
"""

from __future__ import annotations

import logging
import os
import shlex
from collections.abc import Sequence
from pathlib import Path

from pinforge.core.runner import CancelToken, CommandResult, CommandRunner, Runner
from pinforge.errors import SmokeTestFailure
from pinforge.models.artifacts import Artifact

logger = logging.getLogger(__name__)

SMOKE_SHELL = ("bash", "--noprofile", "--norc", "-c")


def shell_env(out_path: Path) -> dict[str, str]:
    """Environment with the artifact's ``bin/`` first on ``PATH``."""
    system_path = os.environ.get("PATH", os.defpath)
    return {"PATH": os.pathsep.join([str(Path(out_path) / "bin"), system_path])}


def run_in_shell(
    out_path: Path,
    command: Sequence[str],
    *,
    runner: Runner | None = None,
    timeout: float | None = None,
    cancel_token: CancelToken | None = None,
) -> CommandResult:
    """Run *command* with the artifact on ``PATH``."""
    runner = runner or CommandRunner()
    return runner.run(
        list(command),
        env=shell_env(out_path),
        timeout=timeout,
        cancel_token=cancel_token,
    )


def smoke_test(
    artifact: Artifact,
    main_program: str,
    *,
    runner: Runner | None = None,
    timeout: float = 60.0,
    cancel_token: CancelToken | None = None,
) -> CommandResult:
    """Confirm the artifact starts in a minimal shell; raises ``SmokeTestFailure``."""
    script = f"command -v {shlex.quote(main_program)} >/dev/null && echo Ok"
    result = run_in_shell(
        artifact.out_path,
        [*SMOKE_SHELL, script],
        runner=runner,
        timeout=timeout,
        cancel_token=cancel_token,
    )
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()

    last_line = (result.stdout.strip().splitlines() or [""])[-1]
    if not result.ok or last_line != "Ok":
        raise SmokeTestFailure(
            f"{artifact.metadata.name}: `{main_program}` did not start from "
            f"{artifact.out_path / 'bin'} (exit {result.exit_code}): {result.tail(5)}"
        )
    logger.info("Smoke test passed for %s", artifact.metadata.name)
    return result
