"""Shared fixtures for workspace runtime tests.

Git and tmux are replaced by in-memory fakes; registries are real files under
``tmp_path``.  Nothing here needs a git or tmux binary.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from berth.runtime.context import RepoContext
from berth.runtime.errors import ExternalOperationError
from berth.runtime.execution.coordinator import LifecycleCoordinator
from berth.runtime.execution.resolver import WorkspaceResolver
from berth.runtime.integrations.git import Worktree
from berth.runtime.integrations.sessions import SessionInfo, parse_session_name
from berth.runtime.managers.repos import RepoManager
from berth.runtime.managers.workspaces import WorkspaceManager
from berth.runtime.settings import BerthSettings, _get_settings_cached, get_settings

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeGit:
    """In-memory stand-in for ``GitCli`` covering any number of repositories.

    ``failures`` maps an operation name (``"worktree_add"``, ``"fetch"``, ...)
    to the exception that operation should raise.
    """

    def __init__(self) -> None:
        self.worktrees: dict[Path, list[Path]] = {}
        self.branches: set[str] = {"main"}
        self.remote_refs: set[str] = set()
        self.dirty: set[Path] = set()
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple] = []

    def init_repo(self, root: Path) -> RepoContext:
        (root / ".git").mkdir(parents=True, exist_ok=True)
        self.worktrees[root] = [root]
        return RepoContext(root_path=root, common_dir=root / ".git")

    def _record(self, op: str, *args: object) -> None:
        self.calls.append((op, *args))
        if op in self.failures:
            raise self.failures[op]

    def _root(self, directory: Path) -> Path:
        directory = Path(directory)
        for root, trees in self.worktrees.items():
            for tree in trees:
                if directory == tree or tree in directory.parents:
                    return root
        raise ExternalOperationError("git rev-parse", f"not a git repository: {directory}")

    # -- Worktrees --

    def worktree_list(self, directory: Path) -> list[Worktree]:
        self._record("worktree_list", directory)
        return [Worktree(path=str(tree)) for tree in self.worktrees[self._root(directory)]]

    def worktree_add(self, directory, path, branch, *, new_branch=False, start_point=None) -> None:
        self._record("worktree_add", Path(path), branch, new_branch, start_point)
        Path(path).mkdir(parents=True, exist_ok=True)
        self.worktrees[self._root(directory)].append(Path(path))
        if new_branch:
            self.branches.add(branch)

    def worktree_remove(self, directory, path) -> None:
        self._record("worktree_remove", Path(path))
        trees = self.worktrees[self._root(directory)]
        if Path(path) in trees:
            trees.remove(Path(path))

    def worktree_move(self, directory, old_path, new_path) -> None:
        self._record("worktree_move", Path(old_path), Path(new_path))
        trees = self.worktrees[self._root(directory)]
        trees[trees.index(Path(old_path))] = Path(new_path)
        if Path(old_path).exists():
            Path(old_path).rename(new_path)

    # -- Layout --

    def common_dir(self, directory: Path) -> Path:
        return self._root(directory) / ".git"

    def root_worktree_path(self, directory: Path) -> Path:
        return self._root(directory)

    def is_inside_work_tree(self, directory: Path) -> bool:
        try:
            self._root(directory)
        except ExternalOperationError:
            return False
        return True

    # -- Branches --

    def default_branch(self, directory: Path) -> str | None:
        for branch in ("main", "master"):
            if branch in self.branches:
                return branch
        return None

    def current_branch(self, directory: Path) -> str:
        return "main"

    def has_uncommitted_changes(self, directory: Path) -> bool:
        self._record("has_uncommitted_changes", Path(directory))
        return Path(directory) in self.dirty

    def is_merged(self, directory: Path, branch: str, target: str) -> bool:
        return False

    def branch_exists(self, directory: Path, branch: str) -> bool:
        return branch in self.branches

    def remote_ref_exists(self, directory: Path, ref: str) -> bool:
        return ref in self.remote_refs

    def fetch(self, directory: Path, remote: str = "origin") -> None:
        self._record("fetch", remote)

    def create_tracking_branch(self, directory: Path, branch: str, remote_branch: str) -> None:
        self._record("create_tracking_branch", branch, remote_branch)
        self.branches.add(branch)


class FakeSessions:
    """In-memory stand-in for ``TmuxSessions``."""

    def __init__(self, available: bool = True) -> None:
        self.is_available = available
        self.running: dict[str, dict[str, object]] = {}
        self.failures: dict[str, Exception] = {}

    def _check(self, op: str) -> None:
        if op in self.failures:
            raise self.failures[op]

    def available(self) -> bool:
        return self.is_available

    def start(self, name: str, directory: Path, command: str, env: dict[str, str]) -> None:
        self._check("start")
        if name in self.running:
            raise ExternalOperationError("tmux new-session", f"session '{name}' is already running")
        self.running[name] = {"directory": directory, "command": command, "env": env}

    def stop(self, name: str) -> None:
        self._check("stop")
        self.running.pop(name, None)

    def is_running(self, name: str) -> bool:
        return name in self.running

    def capture(self, name: str, lines: int = 100) -> str:
        if name not in self.running:
            raise ExternalOperationError("tmux capture-pane", f"session '{name}' is not running")
        return f"output of {name}\n"

    def rename(self, old_name: str, new_name: str) -> None:
        self._check("rename")
        self.running[new_name] = self.running.pop(old_name)

    def list_sessions(self, prefix: str) -> list[SessionInfo]:
        found = (parse_session_name(prefix, name) for name in self.running)
        return [info for info in found if info is not None]


class ScriptRecorder:
    """Replacement for ``run_script`` that records calls and can be told to fail."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Path, dict[str, str], str]] = []
        self.fail = False

    def __call__(self, script: str, cwd: Path, env: dict[str, str], *, label: str = "script") -> None:
        self.calls.append((script, Path(cwd), env, label))
        if self.fail:
            raise ExternalOperationError(f"{label} script", "exit status 1")


class CommandRecorder:
    """Replacement for ``run_command`` that records calls and returns a fixed exit status."""

    def __init__(self, status: int = 0) -> None:
        self.calls: list[tuple[list[str], Path, dict[str, str]]] = []
        self.status = status

    def __call__(self, command: list[str], cwd: Path, env: dict[str, str]) -> int:
        self.calls.append((list(command), Path(cwd), env))
        return self.status


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _write_config(root: Path, **overrides: object) -> None:
    (root / "berth.json").write_text(json.dumps(overrides), encoding="utf-8")


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[BerthSettings]:
    monkeypatch.setenv("BERTH_STATE_DIR", str(tmp_path / "state"))
    _get_settings_cached.cache_clear()
    yield get_settings()
    _get_settings_cached.cache_clear()


@pytest.fixture
def git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def sessions() -> FakeSessions:
    return FakeSessions()


@pytest.fixture
def scripts() -> ScriptRecorder:
    return ScriptRecorder()


@pytest.fixture
def commands() -> CommandRecorder:
    return CommandRecorder()


@pytest.fixture
def make_repo(tmp_path: Path, git: FakeGit) -> Callable[..., RepoContext]:
    """Create a fake repository under ``tmp_path``; keyword arguments go into its berth.json."""

    def _make(name: str, **config: object) -> RepoContext:
        ctx = git.init_repo(tmp_path / name)
        config.setdefault("worktreePath", str(tmp_path / "worktrees"))
        _write_config(ctx.root_path, **config)
        return ctx

    return _make


@pytest.fixture
def repo_ctx(make_repo: Callable[..., RepoContext]) -> RepoContext:
    """Repository ``myapp`` with ports from 61000 in blocks of 10."""
    return make_repo("myapp", basePort=61000, portRange=10)


@pytest.fixture
def workspaces(git: FakeGit) -> WorkspaceManager:
    return WorkspaceManager(git)


@pytest.fixture
def repos(settings: BerthSettings) -> RepoManager:
    return RepoManager(settings.registry_path)


@pytest.fixture
def resolver(git: FakeGit, workspaces: WorkspaceManager, repos: RepoManager) -> WorkspaceResolver:
    return WorkspaceResolver(git, workspaces, repos)


@pytest.fixture
def coordinator(
    git: FakeGit,
    workspaces: WorkspaceManager,
    repos: RepoManager,
    sessions: FakeSessions,
    settings: BerthSettings,
    scripts: ScriptRecorder,
) -> LifecycleCoordinator:
    return LifecycleCoordinator(
        git,
        workspaces,
        repos,
        sessions,
        settings,
        probe=lambda port: True,
        script_runner=scripts,
    )
