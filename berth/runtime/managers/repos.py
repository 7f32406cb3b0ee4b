"""Global repository registry access.

One document per user at ``{BERTH_STATE_DIR}/repos.json``.  Removing a
repository only forgets it for global lookups; its worktrees and workspace
registry are left alone.
"""

from __future__ import annotations

import os
from pathlib import Path

from loguru import logger

from berth.runtime.errors import BerthError
from berth.runtime.models.repo import Repo, RepoRegistry
from berth.runtime.store.base import DocumentStore
from berth.runtime.store.local import LockedDocumentStore


class RepoManager:
    """Loads and saves the repository registry at a fixed path."""

    def __init__(self, path: Path, store: DocumentStore[RepoRegistry] | None = None) -> None:
        self.path = path
        self._store: DocumentStore[RepoRegistry] = store or LockedDocumentStore(RepoRegistry)

    def load(self) -> RepoRegistry:
        return self._store.load(self.path)

    def save(self, registry: RepoRegistry) -> None:
        self._store.save(self.path, registry)

    # -- CRUD ------------------------------------------------------------------

    def add(self, path: Path | str, name: str | None = None) -> Repo:
        """Register the repository rooted at *path*.

        *name* defaults to the directory's base name.  Raises
        ``RepoNameTakenError`` or ``RepoPathTakenError`` on collision.
        """
        root = os.path.normpath(os.path.abspath(path))
        repo = Repo(name=name or Path(root).name, path=root)
        self._store.update(self.path, lambda registry: registry.add(repo))
        logger.info("Registered repo '{}' at {}", repo.name, repo.path)
        return repo

    def remove(self, name: str) -> Repo:
        """Forget a repository.  Raises ``RepoNotFoundError`` if absent."""
        removed: list[Repo] = []
        self._store.update(self.path, lambda registry: removed.append(registry.remove(name)))
        logger.info("Unregistered repo '{}'", name)
        return removed[0]

    def find(self, name: str) -> Repo | None:
        return self.load().find(name)

    # -- Auto-registration -----------------------------------------------------

    def auto_register(self, root_path: Path | str) -> bool:
        """Register *root_path* under its directory name if it is not known yet.

        Never raises: an already-registered path, a name taken by another
        repository, or an I/O failure all result in ``False``.
        """
        root = os.path.normpath(os.path.abspath(root_path))
        try:
            registry = self.load()
            if registry.find_by_path(root) is not None:
                return False
            name = Path(root).name
            if registry.find(name) is not None:
                logger.debug("Not auto-registering {}: name '{}' is taken", root, name)
                return False
            registry.add(Repo(name=name, path=root))
            self.save(registry)
        except (BerthError, OSError) as exc:
            logger.warning("Failed to auto-register repo at {}: {}", root, exc)
            return False
        logger.info("Auto-registered repo '{}' at {}", Path(root).name, root)
        return True
