"""Workspace data model.

A workspace is one git worktree managed by berth: a unique name, the worktree
directory, the checked-out branch and the first port of its reserved block.
All workspaces of a repository live in a single :class:`WorkspaceState`
document stored in the repository's shared git directory, so every worktree
of that repository sees the same registry.
"""

from __future__ import annotations

import os
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from berth.runtime.errors import InvalidRenameError, WorkspaceExistsError, WorkspaceNotFoundError


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Workspace(BaseModel):
    """One managed worktree."""

    name: str
    path: str = Field(description="Absolute path to the worktree root")
    branch: str
    port: int = Field(description="First port of the reserved block")
    created_at: datetime = Field(default_factory=_utcnow)

    def port_range(self, block_size: int) -> tuple[int, int]:
        """Inclusive ``(first, last)`` ports of this workspace's block."""
        return self.port, self.port + block_size - 1


class WorkspaceState(BaseModel):
    """Ordered workspace registry for one repository (``berth.json``)."""

    workspaces: list[Workspace] = Field(default_factory=list)

    # -- Query -----------------------------------------------------------------

    def find(self, name: str) -> Workspace | None:
        for ws in self.workspaces:
            if ws.name == name:
                return ws
        return None

    def find_by_path(self, directory: str | os.PathLike[str]) -> Workspace | None:
        """Return the workspace whose root is *directory* or one of its ancestors.

        The comparison respects path separators: ``/r/ws1`` matches ``/r/ws1``
        and ``/r/ws1/sub`` but never ``/r/ws10``.
        """
        target = os.path.normpath(os.fspath(directory))
        for ws in self.workspaces:
            root = os.path.normpath(ws.path)
            if target == root or target.startswith(root.rstrip(os.sep) + os.sep):
                return ws
        return None

    def names(self) -> list[str]:
        return [ws.name for ws in self.workspaces]

    def allocated_ports(self) -> list[int]:
        """Starting port of every workspace, used to exclude blocks during allocation."""
        return [ws.port for ws in self.workspaces]

    # -- Mutation --------------------------------------------------------------

    def add(self, workspace: Workspace) -> None:
        """Append a workspace.  Raises ``WorkspaceExistsError`` on a name collision."""
        if self.find(workspace.name) is not None:
            raise WorkspaceExistsError(workspace.name)
        self.workspaces.append(workspace)

    def remove(self, name: str) -> Workspace:
        """Remove and return a workspace.  Raises ``WorkspaceNotFoundError`` if absent."""
        for i, ws in enumerate(self.workspaces):
            if ws.name == name:
                return self.workspaces.pop(i)
        raise WorkspaceNotFoundError(name)

    def rename(self, old_name: str, new_name: str, *, new_path: str | None = None) -> Workspace:
        """Rename a workspace in place, optionally moving its recorded path.

        Raises ``InvalidRenameError`` when the names are equal,
        ``WorkspaceNotFoundError`` when *old_name* is absent and
        ``WorkspaceExistsError`` when *new_name* is taken.
        """
        if old_name == new_name:
            raise InvalidRenameError(old_name)
        ws = self.find(old_name)
        if ws is None:
            raise WorkspaceNotFoundError(old_name)
        if self.find(new_name) is not None:
            raise WorkspaceExistsError(new_name)
        ws.name = new_name
        if new_path is not None:
            ws.path = new_path
        return ws
