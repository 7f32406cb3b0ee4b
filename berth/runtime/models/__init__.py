"""Data models for the workspace runtime."""

from berth.runtime.models.config import RepoConfig, Scripts, load_repo_config
from berth.runtime.models.enums import ArchiveAction, ResolutionMode
from berth.runtime.models.repo import Repo, RepoRegistry
from berth.runtime.models.workspace import Workspace, WorkspaceState

__all__ = [
    # Enums
    "ArchiveAction",
    # Repositories
    "Repo",
    # Config
    "RepoConfig",
    "RepoRegistry",
    "ResolutionMode",
    "Scripts",
    # Workspaces
    "Workspace",
    "WorkspaceState",
    "load_repo_config",
]
