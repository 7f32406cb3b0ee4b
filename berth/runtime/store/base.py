"""Document store interface for registry persistence.

Both registries (workspaces per repository, repositories per user) are small
JSON documents that are always read and written whole.  A store loads a
document into a pydantic model and saves the full model back; there are no
partial updates and no diffs.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel


@runtime_checkable
class DocumentStore[T: BaseModel](Protocol):
    """Protocol for loading and saving whole JSON documents."""

    def load(self, path: Path) -> T:
        """Read the document.  Returns an empty document if *path* does not exist."""
        ...

    def save(self, path: Path, document: T) -> None:
        """Write the full document, replacing whatever is on disk."""
        ...

    def update(self, path: Path, mutate: Callable[[T], None]) -> T:
        """Load, apply *mutate* in place, save, and return the saved document."""
        ...
