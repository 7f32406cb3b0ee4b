"""Run configured lifecycle scripts (setup / archive) in a workspace."""

from __future__ import annotations

import subprocess
from pathlib import Path

from loguru import logger

from berth.runtime.errors import ExternalOperationError


def run_script(script: str, cwd: Path, env: dict[str, str], *, label: str = "script") -> None:
    """Run *script* with ``sh -c`` inside *cwd*.

    Output goes straight to the terminal.  A non-zero exit raises
    ``ExternalOperationError``.
    """
    logger.info("Running {} in {}: {}", label, cwd, script)
    try:
        proc = subprocess.run(["sh", "-c", script], cwd=cwd, env=env, check=False)  # noqa: S603, S607
    except OSError as exc:
        raise ExternalOperationError(f"{label} script", str(exc)) from exc
    if proc.returncode != 0:
        raise ExternalOperationError(f"{label} script", f"exit status {proc.returncode}")


def run_command(command: list[str], cwd: Path, env: dict[str, str]) -> int:
    """Run an ad-hoc command line with ``sh -c`` inside *cwd* and return its exit status.

    Unlike ``run_script`` a non-zero status is not an error: the caller
    passes it on as its own exit status.
    """
    line = " ".join(command)
    logger.debug("Running in {}: {}", cwd, line)
    try:
        return subprocess.run(["sh", "-c", line], cwd=cwd, env=env, check=False).returncode  # noqa: S603, S607
    except OSError as exc:
        raise ExternalOperationError("exec", str(exc)) from exc
