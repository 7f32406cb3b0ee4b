"""Workspace registry access for one repository.

The registry document lives in the repository's shared git directory
(``{common_dir}/berth.json``), so all worktrees of a repository read and write
the same file.  The registry is a cache of what git knows: every load
cross-checks entries against ``git worktree list`` and drops workspaces whose
worktree has disappeared (deleted by hand, pruned, ...), persisting the
correction.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from berth.runtime.context import RepoContext
from berth.runtime.errors import BerthError
from berth.runtime.models.workspace import Workspace, WorkspaceState
from berth.runtime.store.base import DocumentStore
from berth.runtime.store.local import LockedDocumentStore

if TYPE_CHECKING:
    from berth.runtime.integrations.git import Git
    from berth.runtime.managers.repos import RepoManager

STATE_FILENAME = "berth.json"


class WorkspaceManager:
    """Loads, reconciles and saves per-repository workspace registries."""

    def __init__(self, git: Git, store: DocumentStore[WorkspaceState] | None = None) -> None:
        self._git = git
        self._store: DocumentStore[WorkspaceState] = store or LockedDocumentStore(WorkspaceState)

    @staticmethod
    def state_path(common_dir: Path) -> Path:
        return common_dir / STATE_FILENAME

    # -- Load / save -----------------------------------------------------------

    def load(self, ctx: RepoContext, *, reconcile: bool = True) -> WorkspaceState:
        """Load the registry for *ctx*.

        With *reconcile* (the default) stale entries are dropped and, if any
        were found, the corrected registry is saved before returning.
        Raises ``CorruptDocumentError`` if the document does not parse.
        """
        state = self._store.load(self.state_path(ctx.common_dir))
        if reconcile and self.reconcile(ctx, state):
            self.save(ctx, state)
        return state

    def save(self, ctx: RepoContext, state: WorkspaceState) -> None:
        self._store.save(self.state_path(ctx.common_dir), state)

    def update(
        self,
        ctx: RepoContext,
        mutate: Callable[[WorkspaceState], object],
        *,
        reconcile: bool = True,
    ) -> WorkspaceState:
        """Fresh load, mutate, save.

        Pass ``reconcile=False`` when git's worktree list is known to be ahead
        of the registry (a worktree was just moved) and the entry must survive
        the load.
        """
        state = self.load(ctx, reconcile=reconcile)
        mutate(state)
        self.save(ctx, state)
        return state

    # -- Reconciliation --------------------------------------------------------

    def reconcile(self, ctx: RepoContext, state: WorkspaceState) -> list[Workspace]:
        """Drop workspaces whose worktree is gone.  Returns the dropped entries.

        A worktree is gone when git no longer lists it, lists it as
        ``prunable``, or its directory has been deleted.  If git cannot be
        queried the state is left untouched.
        """
        if not state.workspaces:
            return []
        try:
            worktrees = self._git.worktree_list(ctx.root_path)
        except BerthError as exc:
            logger.debug("Skipping reconciliation for {}: {}", ctx.name, exc)
            return []

        live = {_canonical(wt.path) for wt in worktrees if not wt.prunable and os.path.isdir(wt.path)}
        kept: list[Workspace] = []
        dropped: list[Workspace] = []
        for ws in state.workspaces:
            (kept if _canonical(ws.path) in live else dropped).append(ws)

        for ws in dropped:
            logger.warning("Removed stale workspace '{}' (worktree {} no longer exists)", ws.name, ws.path)
        state.workspaces = kept
        return dropped

    # -- Cross-repository ------------------------------------------------------

    def allocated_ports_everywhere(self, repos: RepoManager, extra: Iterable[int] = ()) -> set[int]:
        """Union of every workspace's starting port across all registered repositories.

        Repositories that cannot be read are skipped with a warning so that an
        unrelated broken repository never blocks workspace creation.  *extra*
        is merged in (the target repository may not be registered yet).
        """
        ports = set(extra)
        for repo in repos.load().repos:
            root = Path(repo.path)
            try:
                ctx = RepoContext(root_path=root, common_dir=self._git.common_dir(root), name=repo.name)
                ports.update(self.load(ctx, reconcile=False).allocated_ports())
            except (BerthError, OSError) as exc:
                logger.warning("Skipping ports of repo '{}': {}", repo.name, exc)
        return ports


def _canonical(path: str | os.PathLike[str]) -> str:
    return os.path.normcase(os.path.realpath(path))
