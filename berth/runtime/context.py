"""Repository context.

Identifies one source repository the way the lifecycle core needs it: the
primary worktree (where config lives and git commands run) and the shared git
directory (where the workspace registry lives, common to every worktree).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from berth.runtime.integrations.git import Git


@dataclass(frozen=True)
class RepoContext:
    root_path: Path
    common_dir: Path
    name: str = ""
    """Registered repo name, or the root directory name for unregistered repos."""

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", self.root_path.name)

    @classmethod
    def from_directory(cls, git: Git, directory: Path, name: str = "") -> RepoContext:
        """Build the context for the repository containing *directory*.

        Raises ``ExternalOperationError`` if *directory* is not inside a git
        repository.
        """
        return cls(
            root_path=git.root_worktree_path(directory),
            common_dir=git.common_dir(directory),
            name=name,
        )
