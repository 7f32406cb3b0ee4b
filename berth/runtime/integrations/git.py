"""Git worktree and branch primitives.

Each call runs one ``git`` subprocess in a given directory.  Failures are
raised as ``ExternalOperationError`` with git's combined output as detail;
predicate helpers (``branch_exists`` and friends) return ``False`` instead.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from loguru import logger

from berth.runtime.errors import ExternalOperationError


@dataclass(frozen=True)
class Worktree:
    """One entry of ``git worktree list --porcelain``."""

    path: str
    head: str = ""
    branch: str = ""
    bare: bool = False
    prunable: bool = False
    """Git knows the worktree directory is gone (awaiting ``git worktree prune``)."""


class Git(Protocol):
    """Operations the lifecycle core needs from version control."""

    def worktree_list(self, directory: Path) -> list[Worktree]: ...

    def worktree_add(
        self,
        directory: Path,
        path: Path,
        branch: str,
        *,
        new_branch: bool = False,
        start_point: str | None = None,
    ) -> None: ...

    def worktree_remove(self, directory: Path, path: Path) -> None: ...

    def worktree_move(self, directory: Path, old_path: Path, new_path: Path) -> None: ...

    def common_dir(self, directory: Path) -> Path: ...

    def root_worktree_path(self, directory: Path) -> Path: ...

    def is_inside_work_tree(self, directory: Path) -> bool: ...

    def default_branch(self, directory: Path) -> str | None: ...

    def current_branch(self, directory: Path) -> str: ...

    def has_uncommitted_changes(self, directory: Path) -> bool: ...

    def is_merged(self, directory: Path, branch: str, target: str) -> bool: ...

    def branch_exists(self, directory: Path, branch: str) -> bool: ...

    def remote_ref_exists(self, directory: Path, ref: str) -> bool: ...

    def fetch(self, directory: Path, remote: str = "origin") -> None: ...

    def create_tracking_branch(self, directory: Path, branch: str, remote_branch: str) -> None: ...


class GitCli:
    """``Git`` implementation backed by the ``git`` executable."""

    def __init__(self, executable: str = "git") -> None:
        self._git = executable

    # -- Worktrees -------------------------------------------------------------

    def worktree_list(self, directory: Path) -> list[Worktree]:
        return parse_porcelain(self._run(directory, "worktree", "list", "--porcelain"))

    def worktree_add(
        self,
        directory: Path,
        path: Path,
        branch: str,
        *,
        new_branch: bool = False,
        start_point: str | None = None,
    ) -> None:
        if new_branch:
            args = ["worktree", "add", "-b", branch, str(path)]
            if start_point:
                args.append(start_point)
        else:
            args = ["worktree", "add", str(path), branch]
        self._run(directory, *args)

    def worktree_remove(self, directory: Path, path: Path) -> None:
        self._run(directory, "worktree", "remove", str(path), "--force")

    def worktree_move(self, directory: Path, old_path: Path, new_path: Path) -> None:
        self._run(directory, "worktree", "move", str(old_path), str(new_path))

    # -- Repository layout -----------------------------------------------------

    def common_dir(self, directory: Path) -> Path:
        """Shared ``.git`` directory, identical for every worktree of a repository."""
        out = self._run(directory, "rev-parse", "--git-common-dir").strip()
        path = Path(out)
        if not path.is_absolute():
            path = Path(directory) / path
        return Path(os.path.normpath(path))

    def root_worktree_path(self, directory: Path) -> Path:
        """Path of the primary worktree (always listed first by git)."""
        worktrees = self.worktree_list(directory)
        if not worktrees:
            raise ExternalOperationError("git worktree list", f"no worktrees found for {directory}")
        return Path(worktrees[0].path)

    def is_inside_work_tree(self, directory: Path) -> bool:
        return self._ok(directory, "rev-parse", "--is-inside-work-tree")

    # -- Branches --------------------------------------------------------------

    def default_branch(self, directory: Path) -> str | None:
        for branch in ("main", "master"):
            if self.branch_exists(directory, branch):
                return branch
        return None

    def current_branch(self, directory: Path) -> str:
        return self._run(directory, "rev-parse", "--abbrev-ref", "HEAD").strip()

    def has_uncommitted_changes(self, directory: Path) -> bool:
        return self._run(directory, "status", "--porcelain").strip() != ""

    def is_merged(self, directory: Path, branch: str, target: str) -> bool:
        """``git merge-base --is-ancestor``: exit 0 merged, exit 1 not merged."""
        proc = self._exec(directory, "merge-base", "--is-ancestor", branch, target)
        if proc.returncode == 0:
            return True
        if proc.returncode == 1:
            return False
        raise ExternalOperationError("git merge-base --is-ancestor", proc.stdout.strip())

    def branch_exists(self, directory: Path, branch: str) -> bool:
        return self._ok(directory, "rev-parse", "--verify", "--quiet", f"refs/heads/{branch}")

    def remote_ref_exists(self, directory: Path, ref: str) -> bool:
        return self._ok(directory, "rev-parse", "--verify", "--quiet", f"refs/remotes/{ref}")

    def fetch(self, directory: Path, remote: str = "origin") -> None:
        self._run(directory, "fetch", remote)

    def create_tracking_branch(self, directory: Path, branch: str, remote_branch: str) -> None:
        self._run(directory, "branch", "--track", branch, remote_branch)

    # -- Subprocess helpers ----------------------------------------------------

    def _exec(self, directory: Path, *args: str) -> subprocess.CompletedProcess[str]:
        logger.debug("git {} (cwd={})", " ".join(args), directory)
        try:
            return subprocess.run(  # noqa: S603
                [self._git, *args],
                cwd=directory,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                check=False,
            )
        except (FileNotFoundError, NotADirectoryError) as exc:
            raise ExternalOperationError(f"git {args[0]}", str(exc)) from exc

    def _run(self, directory: Path, *args: str) -> str:
        proc = self._exec(directory, *args)
        if proc.returncode != 0:
            raise ExternalOperationError(f"git {' '.join(args[:2])}", proc.stdout.strip())
        return proc.stdout

    def _ok(self, directory: Path, *args: str) -> bool:
        try:
            return self._exec(directory, *args).returncode == 0
        except ExternalOperationError:
            return False


def parse_porcelain(output: str) -> list[Worktree]:
    """Parse ``git worktree list --porcelain`` into ``Worktree`` entries."""
    worktrees: list[Worktree] = []
    current: dict[str, str | bool] = {}

    def flush() -> None:
        if current.get("path"):
            worktrees.append(Worktree(**current))  # type: ignore[arg-type]
        current.clear()

    for line in output.splitlines():
        if line.startswith("worktree "):
            flush()
            current["path"] = line.removeprefix("worktree ")
        elif line.startswith("HEAD "):
            current["head"] = line.removeprefix("HEAD ")
        elif line.startswith("branch "):
            current["branch"] = line.removeprefix("branch ").removeprefix("refs/heads/")
        elif line == "bare":
            current["bare"] = True
        elif line == "prunable" or line.startswith("prunable "):
            current["prunable"] = True
        elif line == "":
            flush()
    flush()
    return worktrees
