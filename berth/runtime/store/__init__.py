"""Document store implementations for registry persistence."""

from berth.runtime.store.base import DocumentStore
from berth.runtime.store.local import LockedDocumentStore, file_lock

__all__ = ["DocumentStore", "LockedDocumentStore", "file_lock"]
