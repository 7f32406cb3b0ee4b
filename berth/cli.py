from __future__ import annotations

import json
import os
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
from loguru import logger

from berth.runtime.errors import BerthError, NotFoundError, NotInWorkspaceError
from berth.runtime.integrations.scripts import run_command
from berth.runtime.models.enums import ArchiveAction

if TYPE_CHECKING:
    from berth.runtime.execution.coordinator import LifecycleCoordinator
    from berth.runtime.execution.resolver import WorkspaceResolver
    from berth.runtime.integrations.git import Git
    from berth.runtime.integrations.sessions import SessionBackend
    from berth.runtime.managers.repos import RepoManager
    from berth.runtime.managers.workspaces import WorkspaceManager
    from berth.runtime.settings import BerthSettings


@dataclass
class Services:
    """Collaborators wired together for one CLI invocation."""

    settings: BerthSettings
    git: Git
    sessions: SessionBackend
    workspaces: WorkspaceManager
    repos: RepoManager
    resolver: WorkspaceResolver
    coordinator: LifecycleCoordinator
    command_runner: Callable[[list[str], Path, dict[str, str]], int] = run_command


def build_services() -> Services:
    """Wire the production collaborators (git and tmux executables, files under BERTH_STATE_DIR)."""
    from berth.runtime.execution.coordinator import LifecycleCoordinator
    from berth.runtime.execution.resolver import WorkspaceResolver
    from berth.runtime.integrations.git import GitCli
    from berth.runtime.integrations.sessions import TmuxSessions
    from berth.runtime.managers.repos import RepoManager
    from berth.runtime.managers.workspaces import WorkspaceManager
    from berth.runtime.settings import get_settings

    settings = get_settings()
    git = GitCli()
    sessions = TmuxSessions()
    workspaces = WorkspaceManager(git)
    repos = RepoManager(settings.registry_path)
    return Services(
        settings=settings,
        git=git,
        sessions=sessions,
        workspaces=workspaces,
        repos=repos,
        resolver=WorkspaceResolver(git, workspaces, repos),
        coordinator=LifecycleCoordinator(git, workspaces, repos, sessions, settings),
    )


@dataclass
class CliState:
    json_output: bool = False
    _services: Services | None = field(default=None, repr=False)

    @property
    def services(self) -> Services:
        if self._services is None:
            self._services = build_services()
        return self._services


pass_state = click.make_pass_decorator(CliState)

repo_option = click.option(
    "--repo", "repo_name", default=None, help="Target a registered repo by name instead of the current directory."
)


def _emit(state: CliState, payload: Any, text: str) -> None:
    if state.json_output:
        click.echo(json.dumps(payload, indent=2, default=str))
    else:
        click.echo(text)


def _workspace_payload(workspace, **extra: Any) -> dict[str, Any]:
    return {**workspace.model_dump(mode="json"), **extra}


def _shorten_home(path: str) -> str:
    home = os.path.expanduser("~")
    if home and (path == home or path.startswith(home + os.sep)):
        return "~" + path[len(home) :]
    return path


class BerthGroup(click.Group):
    """Top-level group that turns domain errors into exit codes."""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except BerthError as exc:
            state = ctx.find_object(CliState)
            if state is not None and state.json_output:
                click.echo(
                    json.dumps({"error": exc.message, "code": str(exc.kind), "exit_code": int(exc.exit_code)}, indent=2)
                )
            else:
                click.echo(f"Error: {exc.message}", err=True)
                for note in getattr(exc, "__notes__", ()):
                    click.echo(f"  {note}", err=True)
            ctx.exit(int(exc.exit_code))


@click.group(cls=BerthGroup)
@click.option("--json", "json_output", is_flag=True, default=False, help="Emit machine-readable JSON on stdout.")
@click.option("--log-level", default=None, help="Log level (default: from BERTH_LOG_LEVEL or WARNING).")
@click.version_option(package_name="berth")
@click.pass_context
def main(ctx: click.Context, json_output: bool, log_level: str | None) -> None:
    """Berth - isolated git-worktree workspaces with their own port blocks."""
    from berth.runtime.log import setup_logging
    from berth.runtime.settings import get_settings

    setup_logging(log_level or get_settings().log_level)
    ctx.obj = CliState(json_output=json_output)


# ---------------------------------------------------------------------------
# Workspaces
# ---------------------------------------------------------------------------


@main.group()
def ws() -> None:
    """Create, inspect and tear down workspaces."""


@ws.command("new")
@click.argument("name", required=False)
@click.option("-b", "--branch", default=None, help="Branch to check out (created if it does not exist).")
@click.option("-r", "--remote", "remote_branch", default=None, help="Track an existing branch on origin.")
@click.option("--no-setup", is_flag=True, default=False, help="Skip the setup script.")
@click.option("--if-not-exists", is_flag=True, default=False, help="Succeed if the workspace already exists.")
@repo_option
@pass_state
def ws_new(
    state: CliState,
    name: str | None,
    branch: str | None,
    remote_branch: str | None,
    no_setup: bool,
    if_not_exists: bool,
    repo_name: str | None,
) -> None:
    """Create a workspace: worktree, port block, file sync and setup script."""
    if branch and remote_branch:
        raise click.UsageError("--branch and --remote are mutually exclusive")

    svc = state.services
    ctx = svc.resolver.repo_context_for(Path.cwd(), repo_name)
    result = svc.coordinator.create(
        ctx,
        name,
        remote_branch or branch,
        track_remote=remote_branch is not None,
        run_setup=not no_setup,
        if_not_exists=if_not_exists,
    )
    workspace = result.workspace
    first, last = workspace.port_range(result.block_size)
    action = "created" if result.created else "exists"
    text = (
        f"Workspace {action}:\n"
        f"  Name:   {workspace.name}\n"
        f"  Branch: {workspace.branch}\n"
        f"  Ports:  {first}-{last} ({result.block_size} ports)\n"
        f"  Path:   {_shorten_home(workspace.path)}"
    )
    payload = {
        "action": action,
        "workspace": _workspace_payload(workspace, repo=ctx.name),
        "port_range": [first, last],
        "synced_files": result.synced_files,
        "warnings": result.warnings,
    }
    _emit(state, payload, text)


@ws.command("list")
@click.option("--all", "all_repos", is_flag=True, default=False, help="List workspaces of every registered repo.")
@repo_option
@pass_state
def ws_list(state: CliState, all_repos: bool, repo_name: str | None) -> None:
    """List workspaces of the current repo."""
    svc = state.services
    if all_repos:
        contexts = []
        for entry in svc.repos.load().repos:
            try:
                contexts.append(svc.resolver.repo_context(entry.name))
            except BerthError as exc:
                logger.warning("Skipping repo '{}': {}", entry.name, exc)
    else:
        contexts = [svc.resolver.repo_context_for(Path.cwd(), repo_name)]

    rows: list[dict[str, Any]] = []
    for ctx in contexts:
        try:
            workspaces = svc.workspaces.load(ctx).workspaces
        except BerthError as exc:
            if not all_repos:
                raise
            logger.warning("Skipping repo '{}': {}", ctx.name, exc)
            continue
        rows.extend(_workspace_payload(w, repo=ctx.name) for w in workspaces)

    if not rows:
        _emit(state, [], "No workspaces.")
        return
    lines = [
        f"{row['repo'] + '/' if all_repos else ''}{row['name']:<24} {row['branch']:<32} {row['port']:<6} "
        f"{_shorten_home(row['path'])}"
        for row in rows
    ]
    _emit(state, rows, "\n".join(lines))


@ws.command("archive")
@click.argument("name", required=False)
@click.option("-f", "--force", is_flag=True, default=False, help="Archive even with uncommitted changes.")
@click.option("--if-exists", is_flag=True, default=False, help="Succeed if the workspace does not exist.")
@click.option("--dry-run", is_flag=True, default=False, help="Show what would be done without doing it.")
@repo_option
@pass_state
def ws_archive(
    state: CliState,
    name: str | None,
    force: bool,
    if_exists: bool,
    dry_run: bool,
    repo_name: str | None,
) -> None:
    """Run the archive script, remove the worktree and free the port block."""
    svc = state.services
    try:
        resolved = svc.resolver.resolve(name, Path.cwd(), repo_name)
    except (NotFoundError, NotInWorkspaceError):
        if not if_exists:
            raise
        _emit(state, {"action": "not_found"}, f"Workspace '{name}' not found, nothing to archive.")
        return

    result = svc.coordinator.archive(
        resolved.repo, resolved.workspace.name, force=force, if_exists=if_exists, dry_run=dry_run
    )
    payload: dict[str, Any] = {"action": str(result.action)}
    if result.workspace is not None:
        payload["workspace"] = _workspace_payload(result.workspace, repo=resolved.repo.name)
    if result.action == ArchiveAction.DRY_RUN:
        payload["dirty"] = result.dirty
        payload["has_archive_script"] = bool(result.archive_script)
        payload["archive_script"] = result.archive_script
        workspace = resolved.workspace
        text = [
            f"Dry run - would archive workspace '{workspace.name}':",
            f"  Path:     {workspace.path}",
            f"  Branch:   {workspace.branch}",
            f"  Port:     {workspace.port}",
        ]
        if result.dirty:
            text.append("  Status:   dirty (uncommitted changes)")
        if result.archive_script:
            text.append(f"  Script:   {result.archive_script}")
        _emit(state, payload, "\n".join(text))
        return
    if result.action == ArchiveAction.NOT_FOUND:
        _emit(state, payload, f"Workspace '{resolved.workspace.name}' not found, nothing to archive.")
        return
    payload["warnings"] = result.warnings
    _emit(state, payload, f"Workspace '{resolved.workspace.name}' archived.")


@ws.command("rename")
@click.argument("old_name")
@click.argument("new_name")
@repo_option
@pass_state
def ws_rename(state: CliState, old_name: str, new_name: str, repo_name: str | None) -> None:
    """Rename a workspace and move its worktree."""
    svc = state.services
    resolved = svc.resolver.resolve(old_name, Path.cwd(), repo_name)
    result = svc.coordinator.rename(resolved.repo, old_name, new_name)
    payload = {
        "action": "renamed",
        "old_name": result.old_name,
        "new_name": result.new_name,
        "path": result.path,
        "warnings": result.warnings,
    }
    _emit(state, payload, f"Renamed '{old_name}' -> '{new_name}'\n  Path: {_shorten_home(result.path)}")


@ws.command("status")
@click.argument("name", required=False)
@repo_option
@pass_state
def ws_status(state: CliState, name: str | None, repo_name: str | None) -> None:
    """Show a workspace's branch, ports, dirty state and session."""
    from berth.runtime.models.config import load_repo_config

    svc = state.services
    resolved = svc.resolver.resolve(name, Path.cwd(), repo_name)
    workspace = resolved.workspace
    cfg = load_repo_config(resolved.repo.root_path)
    first, last = workspace.port_range(cfg.port_range)
    try:
        dirty: bool | None = svc.git.has_uncommitted_changes(Path(workspace.path))
    except BerthError:
        dirty = None
    session = svc.coordinator.session_name(resolved.repo, workspace.name)
    running = svc.sessions.is_running(session)

    payload = _workspace_payload(
        workspace,
        repo=resolved.repo.name,
        port_range=[first, last],
        dirty=dirty,
        session=session,
        running=running,
        resolution=str(resolved.mode),
    )
    status = {True: "dirty", False: "clean", None: "unknown"}[dirty]
    text = (
        f"Workspace: {workspace.name} ({resolved.repo.name})\n"
        f"  Branch:  {workspace.branch}\n"
        f"  Ports:   {first}-{last}\n"
        f"  Path:    {_shorten_home(workspace.path)}\n"
        f"  Status:  {status}\n"
        f"  Session: {session} ({'running' if running else 'stopped'})"
    )
    _emit(state, payload, text)


@ws.command("env")
@click.argument("name", required=False)
@repo_option
@pass_state
def ws_env(state: CliState, name: str | None, repo_name: str | None) -> None:
    """Print the workspace environment as shell exports."""
    import shlex

    svc = state.services
    resolved = svc.resolver.resolve(name, Path.cwd(), repo_name)
    variables = svc.coordinator.session_env(resolved.repo, resolved.workspace)
    text = "\n".join(f"export {key}={shlex.quote(value)}" for key, value in sorted(variables.items()))
    _emit(state, variables, text)


@ws.command("run")
@click.argument("name", required=False)
@repo_option
@pass_state
def ws_run(state: CliState, name: str | None, repo_name: str | None) -> None:
    """Start the configured run script in a background session."""
    from berth.runtime.errors import ConfigError
    from berth.runtime.models.config import load_repo_config

    svc = state.services
    resolved = svc.resolver.resolve(name, Path.cwd(), repo_name)
    cfg = load_repo_config(resolved.repo.root_path)
    if not cfg.scripts.run:
        msg = "No run script configured (set scripts.run in berth.json)"
        raise ConfigError(msg)

    workspace = resolved.workspace
    session = svc.coordinator.session_name(resolved.repo, workspace.name)
    env = svc.coordinator.session_env(resolved.repo, workspace)
    svc.sessions.start(session, Path(workspace.path), cfg.scripts.run, env)
    _emit(state, {"action": "started", "session": session}, f"Started {session}")


@ws.command("stop")
@click.argument("name", required=False)
@repo_option
@pass_state
def ws_stop(state: CliState, name: str | None, repo_name: str | None) -> None:
    """Stop the workspace's background session."""
    from berth.runtime.errors import SessionUnavailableError

    svc = state.services
    if not svc.sessions.available():
        raise SessionUnavailableError
    resolved = svc.resolver.resolve(name, Path.cwd(), repo_name)
    session = svc.coordinator.session_name(resolved.repo, resolved.workspace.name)
    if not svc.sessions.is_running(session):
        _emit(state, {"action": "not_running", "session": session}, f"{session} is not running")
        return
    svc.sessions.stop(session)
    _emit(state, {"action": "stopped", "session": session}, f"Stopped {session}")


@ws.command("logs")
@click.argument("name", required=False)
@click.option("-n", "--lines", default=100, show_default=True, help="Number of lines to capture.")
@repo_option
@pass_state
def ws_logs(state: CliState, name: str | None, lines: int, repo_name: str | None) -> None:
    """Show recent output of the workspace's background session."""
    svc = state.services
    resolved = svc.resolver.resolve(name, Path.cwd(), repo_name)
    session = svc.coordinator.session_name(resolved.repo, resolved.workspace.name)
    output = svc.sessions.capture(session, lines)
    _emit(state, {"session": session, "output": output}, output.rstrip("\n"))


@ws.command("ps")
@pass_state
def ws_ps(state: CliState) -> None:
    """List running workspace sessions across all repos."""
    from berth.runtime.errors import SessionUnavailableError

    svc = state.services
    if not svc.sessions.available():
        raise SessionUnavailableError
    running = svc.sessions.list_sessions(svc.settings.session_prefix)
    if not running:
        _emit(state, [], "No running workspaces.")
        return
    lines = [f"{'REPO':<24} {'WORKSPACE':<24} SESSION"]
    lines.extend(f"{info.repo:<24} {info.workspace:<24} {info.name}" for info in running)
    _emit(state, [asdict(info) for info in running], "\n".join(lines))


class _ExecCommand(click.Command):
    """Splits ``[NAME] -- COMMAND...`` so the command line reaches the shell untouched."""

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        if "--" in args:
            split = args.index("--")
            ctx.meta["berth.exec_command"] = args[split + 1 :]
            args = args[:split]
        return super().parse_args(ctx, args)


@ws.command("exec", cls=_ExecCommand)
@click.argument("name", required=False)
@repo_option
@pass_state
def ws_exec(state: CliState, name: str | None, repo_name: str | None) -> None:
    """Run a command in the workspace directory with its environment.

    \b
    Usage: berth ws exec [NAME] -- COMMAND...
    Exits with the command's exit status.
    """
    from berth.runtime.errors import InteractiveOnlyError
    from berth.runtime.execution.environment import build_env

    ctx = click.get_current_context()
    command = ctx.meta.get("berth.exec_command", [])
    if not command:
        raise click.UsageError("no command given (usage: berth ws exec [NAME] -- COMMAND...)", ctx)
    if state.json_output:
        raise InteractiveOnlyError("ws exec")

    svc = state.services
    resolved = svc.resolver.resolve(name, Path.cwd(), repo_name)
    workspace = resolved.workspace
    env = build_env(workspace, resolved.repo.root_path, svc.coordinator.default_branch(resolved.repo))
    ctx.exit(svc.command_runner(command, Path(workspace.path), env))


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


@main.group()
def repo() -> None:
    """Manage the global repo registry."""


@repo.command("add")
@click.argument("path", required=False, type=click.Path(file_okay=False, path_type=Path))
@click.option("--name", default=None, help="Registry name (default: directory name).")
@pass_state
def repo_add(state: CliState, path: Path | None, name: str | None) -> None:
    """Register a repository (default: the one containing the current directory)."""
    from berth.runtime.errors import NotInRepoError

    svc = state.services
    target = (path or Path.cwd()).resolve()
    if not svc.git.is_inside_work_tree(target):
        raise NotInRepoError(target)
    added = svc.repos.add(svc.git.root_worktree_path(target), name)
    _emit(state, added.model_dump(mode="json"), f"Registered '{added.name}' at {_shorten_home(added.path)}")


@repo.command("list")
@click.option("--workspaces", "with_workspaces", is_flag=True, default=False, help="Include each repo's workspaces.")
@pass_state
def repo_list(state: CliState, with_workspaces: bool) -> None:
    """List registered repositories."""
    svc = state.services
    rows: list[dict[str, Any]] = []
    lines: list[str] = []
    for entry in svc.repos.load().repos:
        row: dict[str, Any] = entry.model_dump(mode="json")
        lines.append(f"{entry.name:<24} {_shorten_home(entry.path)}")
        if with_workspaces:
            try:
                workspaces = svc.workspaces.load(svc.resolver.repo_context(entry.name)).workspaces
            except BerthError as exc:
                row["error"] = exc.message
                lines.append(f"  ! {exc.message}")
            else:
                row["workspaces"] = [w.model_dump(mode="json") for w in workspaces]
                lines.extend(f"  {w.name:<22} {w.branch:<32} {w.port}" for w in workspaces)
        rows.append(row)
    _emit(state, rows, "\n".join(lines) if lines else "No repos registered.")


@repo.command("remove")
@click.argument("name")
@pass_state
def repo_remove(state: CliState, name: str) -> None:
    """Forget a repository (its worktrees are left alone)."""
    removed = state.services.repos.remove(name)
    _emit(state, {"action": "removed", "repo": removed.model_dump(mode="json")}, f"Removed '{removed.name}'")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@main.group()
def config() -> None:
    """Inspect repository configuration."""


@config.command("show")
@repo_option
@pass_state
def config_show(state: CliState, repo_name: str | None) -> None:
    """Print the effective berth.json of the current repo."""
    from berth.runtime.models.config import load_repo_config

    svc = state.services
    ctx = svc.resolver.repo_context_for(Path.cwd(), repo_name)
    cfg = load_repo_config(ctx.root_path)
    payload = {
        **cfg.model_dump(mode="json", by_alias=True),
        "source": cfg.source,
        "worktree_base": str(cfg.worktree_base(ctx.root_path)),
    }
    text = (
        f"Source:        {cfg.source or '(defaults)'}\n"
        f"Base port:     {cfg.base_port}\n"
        f"Port range:    {cfg.port_range}\n"
        f"Worktree base: {_shorten_home(str(cfg.worktree_base(ctx.root_path)))}\n"
        f"Setup script:  {cfg.scripts.setup or '-'}\n"
        f"Run script:    {cfg.scripts.run or '-'}\n"
        f"Archive:       {cfg.scripts.archive or '-'}"
    )
    _emit(state, payload, text)


if __name__ == "__main__":
    main()
