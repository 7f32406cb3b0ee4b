"""Workspace resolver -- turns "a name and/or the current directory" into a
workspace plus the repository it belongs to.

Two modes:

- **Local**: the caller runs inside a git repository.  A given name is looked
  up in that repository's registry; without a name, the current directory
  must lie inside one of its workspaces.
- **Global**: a name is required.  With a repository name only that
  repository is searched; otherwise every registered repository is searched
  in registration order and the first match wins.

``resolve`` implements the CLI policy: local first, global only when the
current directory is not inside any git repository.  Long-running callers
without a meaningful working directory should call ``resolve_global``
directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from berth.runtime.context import RepoContext
from berth.runtime.errors import (
    BerthError,
    NotFoundAnywhereError,
    NotInRepoError,
    NotInWorkspaceError,
    RepoNotFoundError,
    WorkspaceNotFoundError,
)
from berth.runtime.models.enums import ResolutionMode

if TYPE_CHECKING:
    from berth.runtime.integrations.git import Git
    from berth.runtime.managers.repos import RepoManager
    from berth.runtime.managers.workspaces import WorkspaceManager
    from berth.runtime.models.workspace import Workspace, WorkspaceState


@dataclass(frozen=True)
class ResolvedWorkspace:
    workspace: Workspace
    repo: RepoContext
    mode: ResolutionMode


class WorkspaceResolver:
    def __init__(self, git: Git, workspaces: WorkspaceManager, repos: RepoManager) -> None:
        self._git = git
        self._workspaces = workspaces
        self._repos = repos

    # -- Repository contexts ---------------------------------------------------

    def repo_context(self, repo_name: str) -> RepoContext:
        """Context for a registered repository.  Raises ``RepoNotFoundError``."""
        repo = self._repos.find(repo_name)
        if repo is None:
            raise RepoNotFoundError(repo_name)
        root = Path(repo.path)
        return RepoContext(root_path=root, common_dir=self._git.common_dir(root), name=repo.name)

    def local_context(self, cwd: Path) -> RepoContext | None:
        """Context for the repository containing *cwd*, or ``None`` outside git."""
        if not self._git.is_inside_work_tree(cwd):
            return None
        ctx = RepoContext.from_directory(self._git, cwd)
        registered = self._repos.load().find_by_path(ctx.root_path)
        if registered is not None and registered.name != ctx.name:
            ctx = RepoContext(root_path=ctx.root_path, common_dir=ctx.common_dir, name=registered.name)
        return ctx

    def repo_context_for(self, cwd: Path, repo_name: str | None = None) -> RepoContext:
        """Repository to operate on: the named one, else the one containing *cwd*.

        Raises ``RepoNotFoundError`` or ``NotInRepoError``.
        """
        if repo_name:
            return self.repo_context(repo_name)
        ctx = self.local_context(cwd)
        if ctx is None:
            raise NotInRepoError(cwd)
        return ctx

    # -- Local -----------------------------------------------------------------

    @staticmethod
    def resolve_local(name: str | None, state: WorkspaceState, cwd: Path) -> Workspace:
        """Look *name* up in *state*, or derive it from *cwd* when no name is given.

        Raises ``WorkspaceNotFoundError`` or ``NotInWorkspaceError``.
        """
        if name:
            ws = state.find(name)
            if ws is None:
                raise WorkspaceNotFoundError(name)
            return ws
        ws = state.find_by_path(cwd)
        if ws is None:
            raise NotInWorkspaceError(cwd)
        return ws

    # -- Global ----------------------------------------------------------------

    def resolve_global(self, name: str, repo_name: str | None = None) -> ResolvedWorkspace:
        """Find *name* in one named repository or across all registered ones.

        Raises ``RepoNotFoundError``, ``WorkspaceNotFoundError`` (named repo)
        or ``NotFoundAnywhereError``.
        """
        if repo_name:
            ctx = self.repo_context(repo_name)
            ws = self._workspaces.load(ctx).find(name)
            if ws is None:
                raise WorkspaceNotFoundError(name, repo_name)
            return ResolvedWorkspace(workspace=ws, repo=ctx, mode=ResolutionMode.GLOBAL)

        for repo in self._repos.load().repos:
            root = Path(repo.path)
            try:
                ctx = RepoContext(root_path=root, common_dir=self._git.common_dir(root), name=repo.name)
                ws = self._workspaces.load(ctx).find(name)
            except (BerthError, OSError) as exc:
                logger.warning("Skipping repo '{}' during lookup: {}", repo.name, exc)
                continue
            if ws is not None:
                logger.debug("Resolved '{}' from repo '{}'", name, repo.name)
                return ResolvedWorkspace(workspace=ws, repo=ctx, mode=ResolutionMode.GLOBAL)

        raise NotFoundAnywhereError(name)

    # -- CLI policy ------------------------------------------------------------

    def resolve(self, name: str | None, cwd: Path, repo_name: str | None = None) -> ResolvedWorkspace:
        """Local resolution when *cwd* is inside a repository, global otherwise.

        An explicit *repo_name* pins the lookup to that repository (the
        current directory still works as a fallback when no name is given).
        """
        if repo_name:
            ctx = self.repo_context(repo_name)
            ws = self.resolve_local(name, self._workspaces.load(ctx), cwd)
            return ResolvedWorkspace(workspace=ws, repo=ctx, mode=ResolutionMode.GLOBAL)

        ctx = self.local_context(cwd)
        if ctx is not None:
            ws = self.resolve_local(name, self._workspaces.load(ctx), cwd)
            return ResolvedWorkspace(workspace=ws, repo=ctx, mode=ResolutionMode.LOCAL)

        if not name:
            raise NotInRepoError(cwd)
        return self.resolve_global(name)
