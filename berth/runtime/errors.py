"""Error taxonomy for the workspace runtime.

Every error carries a stable :class:`ErrorKind` and an :class:`ExitCode` so the
CLI (and any other structured caller) can report failures without parsing
messages.  Lookup failures also subclass ``LookupError`` and collisions
``ValueError`` so plain ``except`` clauses keep working.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum
from pathlib import Path

# -- Codes -------------------------------------------------------------------


class ErrorKind(StrEnum):
    """Stable machine-readable error codes reported to structured callers."""

    GENERAL = "error"
    WORKSPACE_NOT_FOUND = "workspace_not_found"
    REPO_NOT_FOUND = "repo_not_found"
    NOT_FOUND_ANYWHERE = "not_found_anywhere"
    ALREADY_EXISTS = "already_exists"
    INVALID_ARGUMENT = "invalid_argument"
    CORRUPT_DOCUMENT = "corrupt_document"
    EXHAUSTED_PORT_SPACE = "exhausted_port_space"
    NOT_IN_WORKSPACE = "not_in_workspace"
    NOT_IN_REPO = "not_in_repo"
    DIRTY_WORKSPACE = "dirty_workspace"
    EXTERNAL_OPERATION_FAILED = "external_operation_failed"
    SESSION_UNAVAILABLE = "session_unavailable"
    CONFIG_ERROR = "config_error"
    INTERACTIVE_ONLY = "interactive_only"


class ExitCode(IntEnum):
    """Process exit status for each error family."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    NOT_FOUND = 2
    ALREADY_EXISTS = 3
    NOT_IN_REPO = 4
    DIRTY_WORKSPACE = 5
    INTERACTIVE_ONLY = 6
    SESSION_UNAVAILABLE = 7
    CONFIG_ERROR = 8
    CORRUPT_STATE = 9
    PORTS_EXHAUSTED = 10
    EXTERNAL_FAILURE = 11


# -- Base --------------------------------------------------------------------


class BerthError(Exception):
    """Base class for all domain errors."""

    kind: ErrorKind = ErrorKind.GENERAL
    exit_code: ExitCode = ExitCode.GENERAL_ERROR

    @property
    def message(self) -> str:
        return str(self)


# -- Not found ---------------------------------------------------------------


class NotFoundError(BerthError, LookupError):
    exit_code = ExitCode.NOT_FOUND


class WorkspaceNotFoundError(NotFoundError):
    """Named workspace is not in the registry being searched."""

    kind = ErrorKind.WORKSPACE_NOT_FOUND

    def __init__(self, name: str, repo_name: str | None = None) -> None:
        self.name = name
        self.repo_name = repo_name
        if repo_name:
            super().__init__(f"Workspace '{name}' not found in repo '{repo_name}' (see: berth ws list --repo {repo_name})")
        else:
            super().__init__(f"Workspace '{name}' not found (see: berth ws list)")


class RepoNotFoundError(NotFoundError):
    """Named repository is not registered."""

    kind = ErrorKind.REPO_NOT_FOUND

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Repo '{name}' not found in registry (see: berth repo list)")


class NotFoundAnywhereError(NotFoundError):
    """Global resolution found no registered repository holding the workspace."""

    kind = ErrorKind.NOT_FOUND_ANYWHERE

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Workspace '{name}' not found in any registered repo (see: berth repo list)")


# -- Collisions --------------------------------------------------------------


class AlreadyExistsError(BerthError, ValueError):
    kind = ErrorKind.ALREADY_EXISTS
    exit_code = ExitCode.ALREADY_EXISTS


class WorkspaceExistsError(AlreadyExistsError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Workspace '{name}' already exists")


class RepoNameTakenError(AlreadyExistsError):
    """Another repository is already registered under this name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Repo '{name}' already registered (use: berth repo remove {name} first to re-register)")


class RepoPathTakenError(AlreadyExistsError):
    """The repository path is already registered (under any name)."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Path '{path}' already registered")


class InvalidRenameError(BerthError, ValueError):
    kind = ErrorKind.INVALID_ARGUMENT

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Cannot rename workspace '{name}' to itself")


# -- Persistence -------------------------------------------------------------


class CorruptDocumentError(BerthError):
    """Persisted state exists but cannot be parsed."""

    kind = ErrorKind.CORRUPT_DOCUMENT
    exit_code = ExitCode.CORRUPT_STATE

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        super().__init__(f"Cannot parse {path}: {reason}")


class ConfigError(BerthError):
    kind = ErrorKind.CONFIG_ERROR
    exit_code = ExitCode.CONFIG_ERROR


# -- Ports -------------------------------------------------------------------


class ExhaustedPortSpaceError(BerthError):
    kind = ErrorKind.EXHAUSTED_PORT_SPACE
    exit_code = ExitCode.PORTS_EXHAUSTED

    def __init__(self, base_port: int, block_size: int, attempts: int) -> None:
        self.base_port = base_port
        super().__init__(
            f"No free port block found (tried {base_port}-{base_port + attempts * block_size - 1}); "
            "try archiving unused workspaces with: berth ws archive"
        )


# -- Resolution --------------------------------------------------------------


class NotInWorkspaceError(BerthError, LookupError):
    kind = ErrorKind.NOT_IN_WORKSPACE
    exit_code = ExitCode.NOT_IN_REPO

    def __init__(self, cwd: Path | str) -> None:
        self.cwd = cwd
        super().__init__(
            f"Not inside a managed workspace: {cwd} (run from a workspace directory or specify a name)"
        )


class NotInRepoError(BerthError):
    kind = ErrorKind.NOT_IN_REPO
    exit_code = ExitCode.NOT_IN_REPO

    def __init__(self, cwd: Path | str) -> None:
        self.cwd = cwd
        super().__init__(f"Not inside a git repository: {cwd} (specify a workspace name or use --repo)")


# -- Lifecycle ---------------------------------------------------------------


class DirtyWorkspaceError(BerthError):
    kind = ErrorKind.DIRTY_WORKSPACE
    exit_code = ExitCode.DIRTY_WORKSPACE

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Workspace '{name}' has uncommitted changes (use --force to override)")


class ExternalOperationError(BerthError):
    """A git, session, or script collaborator failed."""

    kind = ErrorKind.EXTERNAL_OPERATION_FAILED
    exit_code = ExitCode.EXTERNAL_FAILURE

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed: {detail}" if detail else f"{operation} failed")


class SessionUnavailableError(ExternalOperationError):
    kind = ErrorKind.SESSION_UNAVAILABLE
    exit_code = ExitCode.SESSION_UNAVAILABLE

    def __init__(self, detail: str = "tmux is not installed (brew install tmux / apt install tmux)") -> None:
        super().__init__("background session", detail)


class InteractiveOnlyError(BerthError):
    """The command hands the terminal to a child process and has no structured output."""

    kind = ErrorKind.INTERACTIVE_ONLY
    exit_code = ExitCode.INTERACTIVE_ONLY

    def __init__(self, command: str) -> None:
        self.command = command
        super().__init__(f"{command} requires an interactive terminal and cannot be used with --json")
