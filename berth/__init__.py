"""berth - git worktrees as isolated development workspaces."""

__version__ = "0.1.0"
