"""Repository registry data model.

The registry is the global, per-user list of source repositories berth knows
about.  It is the join point for cross-repository operations: listing every
workspace, global name lookup and global port allocation.
"""

from __future__ import annotations

import os

from pydantic import BaseModel, Field

from berth.runtime.errors import RepoNameTakenError, RepoNotFoundError, RepoPathTakenError


class Repo(BaseModel):
    """A registered source repository."""

    name: str
    path: str = Field(description="Absolute path to the root (primary) worktree")


class RepoRegistry(BaseModel):
    """Ordered repository registry (``repos.json``)."""

    repos: list[Repo] = Field(default_factory=list)

    def find(self, name: str) -> Repo | None:
        for repo in self.repos:
            if repo.name == name:
                return repo
        return None

    def find_by_path(self, path: str | os.PathLike[str]) -> Repo | None:
        target = os.path.normpath(os.fspath(path))
        for repo in self.repos:
            if os.path.normpath(repo.path) == target:
                return repo
        return None

    def names(self) -> list[str]:
        return [repo.name for repo in self.repos]

    def add(self, repo: Repo) -> None:
        """Register a repository.

        Name and path are checked independently: ``RepoNameTakenError`` and
        ``RepoPathTakenError`` let auto-registration tell "already known" apart
        from "name taken by another repository".
        """
        if self.find(repo.name) is not None:
            raise RepoNameTakenError(repo.name)
        if self.find_by_path(repo.path) is not None:
            raise RepoPathTakenError(repo.path)
        self.repos.append(repo)

    def remove(self, name: str) -> Repo:
        for i, repo in enumerate(self.repos):
            if repo.name == name:
                return self.repos.pop(i)
        raise RepoNotFoundError(name)
