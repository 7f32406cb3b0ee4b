"""Tests for the lifecycle coordinator (create / archive / rename) against fakes."""

from __future__ import annotations

from pathlib import Path

import pytest

from berth.runtime.context import RepoContext
from berth.runtime.errors import (
    DirtyWorkspaceError,
    ExhaustedPortSpaceError,
    ExternalOperationError,
    InvalidRenameError,
    WorkspaceExistsError,
    WorkspaceNotFoundError,
)
from berth.runtime.execution.coordinator import LifecycleCoordinator
from berth.runtime.integrations.filesync import INCLUDE_FILE
from berth.runtime.managers.repos import RepoManager
from berth.runtime.managers.workspaces import WorkspaceManager
from berth.runtime.models.enums import ArchiveAction


def _fail_saves(monkeypatch: pytest.MonkeyPatch, workspaces: WorkspaceManager) -> None:
    def boom(ctx, state) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(workspaces, "save", boom)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


def test_create_allocates_and_persists(
    coordinator: LifecycleCoordinator,
    git,
    workspaces: WorkspaceManager,
    repos: RepoManager,
    repo_ctx: RepoContext,
    tmp_path: Path,
) -> None:
    git.remote_refs.add("origin/main")

    result = coordinator.create(repo_ctx, "alpha")

    ws = result.workspace
    assert result.created is True
    assert result.block_size == 10
    assert ws.port == 61000
    assert ws.branch == "alpha"
    assert Path(ws.path) == tmp_path / "worktrees" / "myapp" / "alpha"
    assert Path(ws.path).is_dir()
    assert ("worktree_add", Path(ws.path), "alpha", True, "origin/main") in git.calls
    assert workspaces.load(repo_ctx).names() == ["alpha"]
    assert repos.load().find("myapp").path == str(repo_ctx.root_path)


def test_create_generates_name(coordinator: LifecycleCoordinator, repo_ctx: RepoContext) -> None:
    result = coordinator.create(repo_ctx)

    assert "-" in result.workspace.name
    assert result.workspace.branch == result.workspace.name


def test_second_create_gets_next_block(coordinator: LifecycleCoordinator, repo_ctx: RepoContext) -> None:
    coordinator.create(repo_ctx, "alpha")
    assert coordinator.create(repo_ctx, "beta").workspace.port == 61010


def test_create_excludes_ports_of_other_repos(
    coordinator: LifecycleCoordinator, make_repo
) -> None:
    app = make_repo("app", basePort=61000)
    lib = make_repo("lib", basePort=61000)

    coordinator.create(app, "one")  # auto-registers app
    assert coordinator.create(lib, "two").workspace.port == 61010


def test_create_existing_name_fails(coordinator: LifecycleCoordinator, git, repo_ctx: RepoContext) -> None:
    coordinator.create(repo_ctx, "alpha")
    adds = [c for c in git.calls if c[0] == "worktree_add"]

    with pytest.raises(WorkspaceExistsError):
        coordinator.create(repo_ctx, "alpha")
    assert [c for c in git.calls if c[0] == "worktree_add"] == adds


def test_create_if_not_exists_returns_existing(coordinator: LifecycleCoordinator, repo_ctx: RepoContext) -> None:
    first = coordinator.create(repo_ctx, "alpha").workspace

    again = coordinator.create(repo_ctx, "alpha", if_not_exists=True)

    assert again.created is False
    assert again.workspace == first


def test_fetch_failure_is_a_warning(coordinator: LifecycleCoordinator, git, repo_ctx: RepoContext) -> None:
    git.failures["fetch"] = ExternalOperationError("git fetch", "no network")

    result = coordinator.create(repo_ctx, "alpha")

    assert result.created is True
    assert any("fetch" in w for w in result.warnings)


def test_save_failure_removes_worktree(
    coordinator: LifecycleCoordinator,
    git,
    workspaces: WorkspaceManager,
    repos: RepoManager,
    repo_ctx: RepoContext,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _fail_saves(monkeypatch, workspaces)

    with pytest.raises(OSError, match="disk full"):
        coordinator.create(repo_ctx, "alpha")

    path = git.calls[[c[0] for c in git.calls].index("worktree_add")][1]
    assert ("worktree_remove", path) in git.calls
    assert git.worktrees[repo_ctx.root_path] == [repo_ctx.root_path]
    assert repos.load().repos == []


def test_failed_rollback_keeps_original_error(
    coordinator: LifecycleCoordinator,
    git,
    workspaces: WorkspaceManager,
    repo_ctx: RepoContext,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _fail_saves(monkeypatch, workspaces)
    git.failures["worktree_remove"] = ExternalOperationError("git worktree remove", "locked")

    with pytest.raises(OSError, match="disk full") as exc_info:
        coordinator.create(repo_ctx, "alpha")
    assert any("locked" in note for note in exc_info.value.__notes__)


def test_worktree_failure_leaves_registry_empty(
    coordinator: LifecycleCoordinator, git, workspaces: WorkspaceManager, repo_ctx: RepoContext
) -> None:
    git.failures["worktree_add"] = ExternalOperationError("git worktree add", "branch checked out elsewhere")

    with pytest.raises(ExternalOperationError):
        coordinator.create(repo_ctx, "alpha")
    assert workspaces.load(repo_ctx).workspaces == []


def test_exhausted_ports_create_nothing(
    coordinator: LifecycleCoordinator, git, workspaces: WorkspaceManager, make_repo
) -> None:
    ctx = make_repo("edge", basePort=65530, portRange=10)

    with pytest.raises(ExhaustedPortSpaceError):
        coordinator.create(ctx, "alpha")
    assert not any(c[0] == "worktree_add" for c in git.calls)
    assert workspaces.load(ctx).workspaces == []


def test_setup_script_runs_with_workspace_env(
    coordinator: LifecycleCoordinator, scripts, make_repo
) -> None:
    ctx = make_repo("app", scripts={"setup": "make deps"})

    result = coordinator.create(ctx, "alpha")

    ((script, cwd, env, label),) = scripts.calls
    assert script == "make deps"
    assert label == "setup"
    assert cwd == Path(result.workspace.path)
    assert env["BERTH_PORT"] == str(result.workspace.port)
    assert env["CONDUCTOR_WORKSPACE_NAME"] == "alpha"


def test_setup_failure_keeps_workspace(
    coordinator: LifecycleCoordinator, scripts, workspaces: WorkspaceManager, make_repo
) -> None:
    ctx = make_repo("app", scripts={"setup": "false"})
    scripts.fail = True

    result = coordinator.create(ctx, "alpha")

    assert result.created is True
    assert any("setup" in w for w in result.warnings)
    assert workspaces.load(ctx).names() == ["alpha"]


def test_no_setup_skips_script(coordinator: LifecycleCoordinator, scripts, make_repo) -> None:
    ctx = make_repo("app", scripts={"setup": "make deps"})

    coordinator.create(ctx, "alpha", run_setup=False)

    assert scripts.calls == []


def test_create_syncs_included_files(coordinator: LifecycleCoordinator, repo_ctx: RepoContext) -> None:
    (repo_ctx.root_path / ".env").write_text("TOKEN=x\n")
    (repo_ctx.root_path / INCLUDE_FILE).write_text(".env\n")

    result = coordinator.create(repo_ctx, "alpha")

    assert result.synced_files == [".env"]
    assert (Path(result.workspace.path) / ".env").read_text() == "TOKEN=x\n"


def test_existing_local_branch_is_checked_out(coordinator: LifecycleCoordinator, git, repo_ctx: RepoContext) -> None:
    git.branches.add("feature/login")

    result = coordinator.create(repo_ctx, "alpha", "feature/login")

    assert result.workspace.branch == "feature/login"
    assert ("worktree_add", Path(result.workspace.path), "feature/login", False, None) in git.calls


def test_track_remote_creates_tracking_branch(coordinator: LifecycleCoordinator, git, repo_ctx: RepoContext) -> None:
    git.remote_refs.add("origin/feature/api")

    result = coordinator.create(repo_ctx, "api", "feature/api", track_remote=True)

    assert ("create_tracking_branch", "feature/api", "origin/feature/api") in git.calls
    assert result.workspace.branch == "feature/api"


def test_track_remote_requires_remote_branch(coordinator: LifecycleCoordinator, repo_ctx: RepoContext) -> None:
    with pytest.raises(ExternalOperationError, match="origin/feature/api not found"):
        coordinator.create(repo_ctx, "api", "feature/api", track_remote=True)


# ---------------------------------------------------------------------------
# Archive
# ---------------------------------------------------------------------------


def test_archive_removes_worktree_and_entry(
    coordinator: LifecycleCoordinator, git, workspaces: WorkspaceManager, repo_ctx: RepoContext
) -> None:
    ws = coordinator.create(repo_ctx, "alpha").workspace

    result = coordinator.archive(repo_ctx, "alpha")

    assert result.action is ArchiveAction.ARCHIVED
    assert ("worktree_remove", Path(ws.path)) in git.calls
    assert workspaces.load(repo_ctx).workspaces == []


def test_archive_frees_port_block(coordinator: LifecycleCoordinator, repo_ctx: RepoContext) -> None:
    coordinator.create(repo_ctx, "alpha")
    coordinator.archive(repo_ctx, "alpha")

    assert coordinator.create(repo_ctx, "beta").workspace.port == 61000


def test_archive_dirty_requires_force(
    coordinator: LifecycleCoordinator, git, workspaces: WorkspaceManager, repo_ctx: RepoContext
) -> None:
    ws = coordinator.create(repo_ctx, "alpha").workspace
    git.dirty.add(Path(ws.path))

    with pytest.raises(DirtyWorkspaceError):
        coordinator.archive(repo_ctx, "alpha")
    assert workspaces.load(repo_ctx).names() == ["alpha"]

    result = coordinator.archive(repo_ctx, "alpha", force=True)
    assert result.action is ArchiveAction.ARCHIVED
    assert workspaces.load(repo_ctx).workspaces == []


def test_archive_missing(coordinator: LifecycleCoordinator, repo_ctx: RepoContext) -> None:
    with pytest.raises(WorkspaceNotFoundError):
        coordinator.archive(repo_ctx, "ghost")

    assert coordinator.archive(repo_ctx, "ghost", if_exists=True).action is ArchiveAction.NOT_FOUND


def test_archive_dry_run_changes_nothing(
    coordinator: LifecycleCoordinator, git, scripts, workspaces: WorkspaceManager, make_repo
) -> None:
    ctx = make_repo("app", scripts={"archive": "make clean"})
    ws = coordinator.create(ctx, "alpha").workspace
    git.dirty.add(Path(ws.path))

    result = coordinator.archive(ctx, "alpha", dry_run=True)

    assert result.action is ArchiveAction.DRY_RUN
    assert result.dirty is True
    assert result.archive_script == "make clean"
    assert scripts.calls == []
    assert workspaces.load(ctx).names() == ["alpha"]


def test_archive_worktree_removal_failure_still_forgets(
    coordinator: LifecycleCoordinator, git, workspaces: WorkspaceManager, repo_ctx: RepoContext
) -> None:
    coordinator.create(repo_ctx, "alpha")
    git.failures["worktree_remove"] = ExternalOperationError("git worktree remove", "permission denied")

    result = coordinator.archive(repo_ctx, "alpha")

    assert result.action is ArchiveAction.ARCHIVED
    assert any("remove it manually" in w for w in result.warnings)
    assert workspaces.load(repo_ctx).workspaces == []


def test_archive_stops_session_and_runs_script(
    coordinator: LifecycleCoordinator, sessions, scripts, make_repo
) -> None:
    ctx = make_repo("app", scripts={"archive": "make clean"})
    ws = coordinator.create(ctx, "alpha").workspace
    session = coordinator.session_name(ctx, "alpha")
    sessions.start(session, Path(ws.path), "make dev", {})

    coordinator.archive(ctx, "alpha")

    assert session not in sessions.running
    assert scripts.calls[-1][0] == "make clean"
    assert scripts.calls[-1][3] == "archive"


def test_archive_advisory_failures_do_not_abort(
    coordinator: LifecycleCoordinator, sessions, scripts, workspaces: WorkspaceManager, make_repo
) -> None:
    ctx = make_repo("app", scripts={"archive": "make clean"})
    ws = coordinator.create(ctx, "alpha").workspace
    sessions.start(coordinator.session_name(ctx, "alpha"), Path(ws.path), "make dev", {})
    sessions.failures["stop"] = ExternalOperationError("tmux kill-session", "no server")
    scripts.fail = True

    result = coordinator.archive(ctx, "alpha")

    assert result.action is ArchiveAction.ARCHIVED
    assert len(result.warnings) == 2
    assert workspaces.load(ctx).workspaces == []


# ---------------------------------------------------------------------------
# Rename
# ---------------------------------------------------------------------------


def test_rename_moves_worktree_and_entry(
    coordinator: LifecycleCoordinator, workspaces: WorkspaceManager, repo_ctx: RepoContext
) -> None:
    old = coordinator.create(repo_ctx, "alpha").workspace

    result = coordinator.rename(repo_ctx, "alpha", "omega")

    assert result.path == str(Path(old.path).parent / "omega")
    state = workspaces.load(repo_ctx)
    assert state.find("alpha") is None
    renamed = state.find("omega")
    assert renamed.path == result.path
    assert renamed.port == old.port
    assert Path(result.path).is_dir()


def test_rename_move_failure_leaves_registry_unchanged(
    coordinator: LifecycleCoordinator, git, workspaces: WorkspaceManager, repo_ctx: RepoContext
) -> None:
    old = coordinator.create(repo_ctx, "alpha").workspace
    git.failures["worktree_move"] = ExternalOperationError("git worktree move", "locked")

    with pytest.raises(ExternalOperationError):
        coordinator.rename(repo_ctx, "alpha", "omega")

    state = workspaces.load(repo_ctx)
    assert state.find("alpha") == old
    assert state.find("omega") is None


def test_rename_save_failure_moves_worktree_back(
    coordinator: LifecycleCoordinator,
    git,
    workspaces: WorkspaceManager,
    repo_ctx: RepoContext,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    old = coordinator.create(repo_ctx, "alpha").workspace
    _fail_saves(monkeypatch, workspaces)

    with pytest.raises(OSError, match="disk full"):
        coordinator.rename(repo_ctx, "alpha", "omega")

    new_path = Path(old.path).parent / "omega"
    assert git.calls[-1] == ("worktree_move", new_path, Path(old.path))
    assert Path(old.path) in git.worktrees[repo_ctx.root_path]


def test_rename_rejections(coordinator: LifecycleCoordinator, git, repo_ctx: RepoContext) -> None:
    coordinator.create(repo_ctx, "alpha")
    coordinator.create(repo_ctx, "beta")

    with pytest.raises(InvalidRenameError):
        coordinator.rename(repo_ctx, "alpha", "alpha")
    with pytest.raises(WorkspaceNotFoundError):
        coordinator.rename(repo_ctx, "ghost", "omega")
    with pytest.raises(WorkspaceExistsError):
        coordinator.rename(repo_ctx, "alpha", "beta")
    assert not any(c[0] == "worktree_move" for c in git.calls)


def test_rename_renames_running_session(coordinator: LifecycleCoordinator, sessions, repo_ctx: RepoContext) -> None:
    ws = coordinator.create(repo_ctx, "alpha").workspace
    sessions.start(coordinator.session_name(repo_ctx, "alpha"), Path(ws.path), "make dev", {})

    coordinator.rename(repo_ctx, "alpha", "omega")

    assert list(sessions.running) == ["berth/myapp/omega"]


def test_rename_session_failure_is_a_warning(
    coordinator: LifecycleCoordinator, sessions, workspaces: WorkspaceManager, repo_ctx: RepoContext
) -> None:
    ws = coordinator.create(repo_ctx, "alpha").workspace
    sessions.start(coordinator.session_name(repo_ctx, "alpha"), Path(ws.path), "make dev", {})
    sessions.failures["rename"] = ExternalOperationError("tmux rename-session", "no server")

    result = coordinator.rename(repo_ctx, "alpha", "omega")

    assert result.warnings
    assert workspaces.load(repo_ctx).names() == ["omega"]
