"""Background sessions for long-running workspace processes (tmux).

Each workspace has at most one session, named
``{prefix}/{repo dir name}/{workspace name}``.  Only the workspace's own
environment variables are exported into the session; everything else is
inherited from the tmux server.
"""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from loguru import logger

from berth.runtime.errors import ExternalOperationError, SessionUnavailableError


def session_name(prefix: str, repo_root: Path | str, workspace_name: str) -> str:
    return f"{prefix}/{Path(repo_root).name}/{workspace_name}"


@dataclass(frozen=True)
class SessionInfo:
    """A running workspace session, split back into its name components."""

    name: str
    repo: str
    workspace: str


def parse_session_name(prefix: str, name: str) -> SessionInfo | None:
    """Inverse of ``session_name``.  Returns ``None`` for sessions berth did not start."""
    parts = name.split("/", 2)
    if len(parts) != 3 or parts[0] != prefix or not parts[1] or not parts[2]:
        return None
    return SessionInfo(name=name, repo=parts[1], workspace=parts[2])


class SessionBackend(Protocol):
    """Operations the lifecycle core needs from the session manager."""

    def available(self) -> bool: ...

    def start(self, name: str, directory: Path, command: str, env: dict[str, str]) -> None: ...

    def stop(self, name: str) -> None: ...

    def is_running(self, name: str) -> bool: ...

    def capture(self, name: str, lines: int = 100) -> str: ...

    def rename(self, old_name: str, new_name: str) -> None: ...

    def list_sessions(self, prefix: str) -> list[SessionInfo]: ...


class TmuxSessions:
    """``SessionBackend`` implementation backed by the ``tmux`` executable."""

    def __init__(self, executable: str = "tmux") -> None:
        self._tmux = executable

    def available(self) -> bool:
        return shutil.which(self._tmux) is not None

    def start(self, name: str, directory: Path, command: str, env: dict[str, str]) -> None:
        self._require()
        if self.is_running(name):
            raise ExternalOperationError("tmux new-session", f"session '{name}' is already running")
        exports = [f"export {key}={shlex.quote(value)}" for key, value in sorted(env.items())]
        session_cmd = "; ".join([*exports, f"exec {command}"])
        self._run("new-session", "-d", "-s", name, "-c", os.fspath(directory), session_cmd)

    def stop(self, name: str) -> None:
        """Kill the session.  No-op if it is not running."""
        if not self.is_running(name):
            return
        self._run("kill-session", "-t", name)

    def is_running(self, name: str) -> bool:
        if not self.available():
            return False
        proc = subprocess.run(  # noqa: S603
            [self._tmux, "has-session", "-t", name],
            capture_output=True,
            check=False,
        )
        return proc.returncode == 0

    def capture(self, name: str, lines: int = 100) -> str:
        self._require()
        if not self.is_running(name):
            raise ExternalOperationError("tmux capture-pane", f"session '{name}' is not running")
        return self._run("capture-pane", "-t", name, "-p", "-S", f"-{lines}")

    def rename(self, old_name: str, new_name: str) -> None:
        self._require()
        self._run("rename-session", "-t", old_name, new_name)

    def list_sessions(self, prefix: str) -> list[SessionInfo]:
        """Every running session named ``{prefix}/{repo}/{workspace}``, in tmux order."""
        self._require()
        proc = subprocess.run(  # noqa: S603
            [self._tmux, "list-sessions", "-F", "#{session_name}"],
            capture_output=True,
            text=True,
            check=False,
        )
        if proc.returncode != 0:
            # No tmux server running means no sessions.
            return []
        found = (parse_session_name(prefix, line.strip()) for line in proc.stdout.splitlines())
        return [info for info in found if info is not None]

    def _require(self) -> None:
        if not self.available():
            raise SessionUnavailableError

    def _run(self, *args: str) -> str:
        logger.debug("tmux {}", " ".join(args))
        proc = subprocess.run(  # noqa: S603
            [self._tmux, *args],
            capture_output=True,
            text=True,
            check=False,
        )
        if proc.returncode != 0:
            raise ExternalOperationError(f"tmux {args[0]}", (proc.stderr or proc.stdout).strip())
        return proc.stdout
