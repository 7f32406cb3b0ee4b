"""Lifecycle coordinator -- create, archive and rename workspaces.

Each operation is a short ordered sequence touching two kinds of state:

- **Bookkeeping**: the repository's workspace registry (``berth.json`` in the
  shared git directory).  Saves are exclusive; see
  :mod:`berth.runtime.store.local`.
- **External resources** without transactions: git worktrees, background
  sessions and lifecycle scripts.

Ordering per operation:

1. **Create**: allocate ports, add the worktree, then commit the registry.
   If the commit fails the worktree is removed again (compensation).
   Auto-registration, file sync and the setup script follow and only warn.
2. **Archive**: stop the session and run the archive script (both warn only),
   remove the worktree (warns only), then commit the registry removal.  The
   registry is always updated so no phantom entry is left behind.
3. **Rename**: move the worktree first; only then rename the registry entry.
   A failed move leaves the registry untouched.  The session rename warns only.

Advisory failures are logged and returned in ``warnings`` on the result.
"""

from __future__ import annotations

import functools
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from berth.runtime import names
from berth.runtime.errors import (
    BerthError,
    DirtyWorkspaceError,
    ExternalOperationError,
    InvalidRenameError,
    WorkspaceExistsError,
    WorkspaceNotFoundError,
)
from berth.runtime.execution.compensation import Step, run_steps
from berth.runtime.execution.environment import build_env, workspace_variables
from berth.runtime.integrations.filesync import sync_included_files
from berth.runtime.integrations.scripts import run_script
from berth.runtime.integrations.sessions import session_name
from berth.runtime.models.config import load_repo_config
from berth.runtime.models.enums import ArchiveAction
from berth.runtime.models.workspace import Workspace, WorkspaceState
from berth.runtime.ports import PortProbe, allocate, is_free

if TYPE_CHECKING:
    from berth.runtime.context import RepoContext
    from berth.runtime.integrations.git import Git
    from berth.runtime.integrations.sessions import SessionBackend
    from berth.runtime.managers.repos import RepoManager
    from berth.runtime.managers.workspaces import WorkspaceManager
    from berth.runtime.settings import BerthSettings

FALLBACK_DEFAULT_BRANCH = "main"

FileSync = Callable[[Path, Path], list[str]]
ScriptRunner = Callable[..., None]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class CreateResult:
    workspace: Workspace
    created: bool
    """``False`` when an existing workspace was returned (``if_not_exists``)."""
    block_size: int
    warnings: list[str] = field(default_factory=list)
    synced_files: list[str] = field(default_factory=list)


@dataclass
class ArchiveResult:
    action: ArchiveAction
    workspace: Workspace | None = None
    dirty: bool = False
    archive_script: str = ""
    warnings: list[str] = field(default_factory=list)


@dataclass
class RenameResult:
    old_name: str
    new_name: str
    path: str
    warnings: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class LifecycleCoordinator:
    """Runs workspace lifecycle operations against one set of collaborators."""

    def __init__(
        self,
        git: Git,
        workspaces: WorkspaceManager,
        repos: RepoManager,
        sessions: SessionBackend,
        settings: BerthSettings,
        *,
        probe: PortProbe | None = None,
        sync: FileSync = sync_included_files,
        script_runner: ScriptRunner = run_script,
    ) -> None:
        self._git = git
        self._workspaces = workspaces
        self._repos = repos
        self._sessions = sessions
        self._settings = settings
        self._probe = probe or functools.partial(is_free, timeout=settings.probe_timeout)
        self._sync = sync
        self._run_script = script_runner

    # -- Create ----------------------------------------------------------------

    def create(
        self,
        ctx: RepoContext,
        name: str | None = None,
        branch: str | None = None,
        *,
        track_remote: bool = False,
        run_setup: bool = True,
        if_not_exists: bool = False,
    ) -> CreateResult:
        """Create a workspace.

        Without *name* an unused ``adjective-noun`` name is generated.  Without
        *branch* a new branch named after the workspace is created from
        ``origin/<default>`` (when that ref exists).  With *track_remote* the
        branch must exist on ``origin`` and a local tracking branch is created
        if needed.

        Raises ``WorkspaceExistsError`` (unless *if_not_exists*),
        ``ExhaustedPortSpaceError``, ``ConfigError`` or
        ``ExternalOperationError`` from required steps.
        """
        cfg = load_repo_config(ctx.root_path)
        state = self._workspaces.load(ctx)

        if name:
            existing = state.find(name)
            if existing is not None:
                if if_not_exists:
                    logger.info("Workspace '{}' already exists, nothing to create", name)
                    return CreateResult(workspace=existing, created=False, block_size=cfg.port_range)
                raise WorkspaceExistsError(name)
        else:
            name = names.generate(state.names())

        warnings: list[str] = []
        default_branch = self.default_branch(ctx)
        upstream = self._fetch_upstream(ctx, default_branch, warnings)
        branch, new_branch, start_point = self._select_branch(ctx, name, branch, track_remote, upstream)

        excluded = self._workspaces.allocated_ports_everywhere(self._repos, extra=state.allocated_ports())
        port = allocate(
            excluded,
            cfg.base_port,
            cfg.port_range,
            probe=self._probe,
            max_attempts=self._settings.max_port_attempts,
        )

        base = cfg.worktree_base(ctx.root_path)
        path = base / name
        workspace = Workspace(name=name, path=str(path), branch=branch, port=port)
        logger.info("Creating workspace '{}' at {} (branch {}, port {})", name, path, branch, port)

        def add_worktree() -> None:
            try:
                base.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise ExternalOperationError("create worktree directory", str(exc)) from exc
            self._git.worktree_add(ctx.root_path, path, branch, new_branch=new_branch, start_point=start_point)

        def commit(st: WorkspaceState) -> None:
            st.add(workspace)

        run_steps([
            Step("create worktree", add_worktree, lambda: self._git.worktree_remove(ctx.root_path, path)),
            Step("save workspace registry", lambda: self._workspaces.update(ctx, commit)),
        ])

        # Advisory steps: the workspace is usable even if these fail.
        self._repos.auto_register(ctx.root_path)

        synced: list[str] = []
        try:
            synced = self._sync(ctx.root_path, path)
        except OSError as exc:
            _warn(warnings, f"file sync failed: {exc}")

        if run_setup and cfg.scripts.setup:
            env = build_env(workspace, ctx.root_path, default_branch)
            try:
                self._run_script(cfg.scripts.setup, path, env, label="setup")
            except BerthError as exc:
                _warn(warnings, f"{exc} (re-run with: cd {path} && {cfg.scripts.setup})")

        return CreateResult(
            workspace=workspace,
            created=True,
            block_size=cfg.port_range,
            warnings=warnings,
            synced_files=synced,
        )

    def default_branch(self, ctx: RepoContext) -> str:
        return self._git.default_branch(ctx.root_path) or FALLBACK_DEFAULT_BRANCH

    def _fetch_upstream(self, ctx: RepoContext, default_branch: str, warnings: list[str]) -> str | None:
        """Fetch ``origin`` and return ``origin/<default>`` if it exists."""
        if self._settings.fetch_on_create:
            try:
                self._git.fetch(ctx.root_path)
            except BerthError as exc:
                _warn(warnings, f"git fetch failed: {exc}")
        remote_ref = f"origin/{default_branch}"
        return remote_ref if self._git.remote_ref_exists(ctx.root_path, remote_ref) else None

    def _select_branch(
        self,
        ctx: RepoContext,
        name: str,
        branch: str | None,
        track_remote: bool,
        upstream: str | None,
    ) -> tuple[str, bool, str | None]:
        """Return ``(branch, create_new_branch, start_point)`` for the new worktree."""
        root = ctx.root_path
        if not branch:
            return name, True, upstream

        if track_remote:
            remote_branch = f"origin/{branch}"
            if not self._git.remote_ref_exists(root, remote_branch):
                raise ExternalOperationError(
                    "track remote branch", f"{remote_branch} not found (did you forget to push?)"
                )
            if not self._git.branch_exists(root, branch):
                logger.info("Creating local branch {} tracking {}", branch, remote_branch)
                self._git.create_tracking_branch(root, branch, remote_branch)
            return branch, False, None

        if self._git.branch_exists(root, branch):
            return branch, False, None
        return branch, True, upstream

    # -- Archive ---------------------------------------------------------------

    def archive(
        self,
        ctx: RepoContext,
        name: str,
        *,
        force: bool = False,
        if_exists: bool = False,
        dry_run: bool = False,
    ) -> ArchiveResult:
        """Tear a workspace down and drop it from the registry.

        Raises ``WorkspaceNotFoundError`` (unless *if_exists*) and
        ``DirtyWorkspaceError`` when the worktree has uncommitted changes and
        *force* is not set.  With *dry_run* nothing is changed.
        """
        workspace = self._workspaces.load(ctx).find(name)
        if workspace is None:
            if if_exists:
                logger.info("Workspace '{}' not found, treating as already archived", name)
                return ArchiveResult(action=ArchiveAction.NOT_FOUND)
            raise WorkspaceNotFoundError(name)

        cfg = load_repo_config(ctx.root_path)

        if dry_run:
            return ArchiveResult(
                action=ArchiveAction.DRY_RUN,
                workspace=workspace,
                dirty=self._is_dirty(workspace),
                archive_script=cfg.scripts.archive,
            )

        dirty = False
        if not force:
            dirty = self._is_dirty(workspace)
            if dirty:
                raise DirtyWorkspaceError(name)

        warnings: list[str] = []
        self._stop_session(ctx, workspace, warnings)

        if cfg.scripts.archive:
            env = build_env(workspace, ctx.root_path, self.default_branch(ctx))
            try:
                self._run_script(cfg.scripts.archive, Path(workspace.path), env, label="archive")
            except BerthError as exc:
                _warn(warnings, str(exc))

        try:
            self._git.worktree_remove(ctx.root_path, Path(workspace.path))
        except BerthError as exc:
            _warn(warnings, f"{exc} (remove it manually: git worktree remove {workspace.path})")

        def forget(st: WorkspaceState) -> None:
            # Reconciliation may already have dropped it.
            if st.find(name) is not None:
                st.remove(name)

        self._workspaces.update(ctx, forget)
        logger.info("Archived workspace '{}'", name)
        return ArchiveResult(
            action=ArchiveAction.ARCHIVED,
            workspace=workspace,
            dirty=dirty,
            archive_script=cfg.scripts.archive,
            warnings=warnings,
        )

    def _is_dirty(self, workspace: Workspace) -> bool:
        try:
            return self._git.has_uncommitted_changes(Path(workspace.path))
        except BerthError as exc:
            logger.debug("Cannot read status of '{}': {}", workspace.name, exc)
            return False

    def _stop_session(self, ctx: RepoContext, workspace: Workspace, warnings: list[str]) -> None:
        if not self._sessions.available():
            return
        session = self.session_name(ctx, workspace.name)
        try:
            if self._sessions.is_running(session):
                logger.info("Stopping background session {}", session)
                self._sessions.stop(session)
        except BerthError as exc:
            _warn(warnings, f"failed to stop session {session}: {exc}")

    # -- Rename ----------------------------------------------------------------

    def rename(self, ctx: RepoContext, old_name: str, new_name: str) -> RenameResult:
        """Rename a workspace and move its worktree to a sibling directory.

        Raises ``InvalidRenameError``, ``WorkspaceNotFoundError``,
        ``WorkspaceExistsError`` or ``ExternalOperationError`` (worktree move).
        """
        if old_name == new_name:
            raise InvalidRenameError(old_name)
        state = self._workspaces.load(ctx)
        workspace = state.find(old_name)
        if workspace is None:
            raise WorkspaceNotFoundError(old_name)
        if state.find(new_name) is not None:
            raise WorkspaceExistsError(new_name)

        old_path = Path(workspace.path)
        new_path = old_path.parent / new_name
        root = ctx.root_path

        def commit(st: WorkspaceState) -> None:
            st.rename(old_name, new_name, new_path=str(new_path))

        run_steps([
            Step(
                "move worktree",
                lambda: self._git.worktree_move(root, old_path, new_path),
                lambda: self._git.worktree_move(root, new_path, old_path),
            ),
            Step("save workspace registry", lambda: self._workspaces.update(ctx, commit, reconcile=False)),
        ])
        logger.info("Renamed workspace '{}' to '{}'", old_name, new_name)

        warnings: list[str] = []
        if self._sessions.available():
            old_session = self.session_name(ctx, old_name)
            try:
                if self._sessions.is_running(old_session):
                    self._sessions.rename(old_session, self.session_name(ctx, new_name))
            except BerthError as exc:
                _warn(warnings, f"failed to rename session {old_session}: {exc}")

        return RenameResult(old_name=old_name, new_name=new_name, path=str(new_path), warnings=warnings)

    # -- Sessions --------------------------------------------------------------

    def session_name(self, ctx: RepoContext, workspace_name: str) -> str:
        return session_name(self._settings.session_prefix, ctx.root_path, workspace_name)

    def session_env(self, ctx: RepoContext, workspace: Workspace) -> dict[str, str]:
        return workspace_variables(workspace, ctx.root_path, self.default_branch(ctx))


def _warn(warnings: list[str], message: str) -> None:
    logger.warning(message)
    warnings.append(message)
