"""Local filesystem document store with advisory locking.

Layout: each document lives at a caller-chosen path with a companion lock
file next to it::

    {path}              the JSON document
    {path}.lock         created for the duration of a save, removed afterwards

Saves are exclusive across processes: the writer takes ``flock(LOCK_EX)`` on
the lock file, serialises the full document, writes it to a temporary file in
the same directory and renames it over the target.  The lock is released on
every exit path, including serialisation errors.

Loads take no lock.  A reader may see a slightly stale document, and two
processes that load the same snapshot and both save will end with the second
writer's state (last write wins).  The lock is held on the open descriptor,
so a leftover ``.lock`` file from an interrupted process is simply reopened
and reused.

On platforms without ``fcntl`` the store runs unlocked and provides no mutual
exclusion at all.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from collections.abc import Callable, Iterator
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, ValidationError

from berth.runtime.errors import CorruptDocumentError

try:
    import fcntl  # POSIX

    HAVE_FCNTL = True
except ImportError:
    HAVE_FCNTL = False


class LockedDocumentStore[T: BaseModel]:
    """Filesystem implementation of the DocumentStore protocol for one model type."""

    def __init__(self, model: type[T]) -> None:
        self._model = model

    # -- Read ------------------------------------------------------------------

    def load(self, path: Path) -> T:
        """Read and validate the document at *path*.

        Returns ``model()`` when the file does not exist.  Raises
        ``CorruptDocumentError`` when it exists but does not parse.
        """
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return self._model()
        try:
            return self._model.model_validate_json(raw)
        except ValidationError as exc:
            raise CorruptDocumentError(path, _first_error(exc)) from exc

    # -- Write -----------------------------------------------------------------

    def save(self, path: Path, document: T) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with file_lock(lock_path_for(path)):
            data = document.model_dump_json(indent=2) + "\n"
            _atomic_write(path, data)
        logger.debug("Saved {} ({} bytes)", path, len(data))

    def update(self, path: Path, mutate: Callable[[T], None]) -> T:
        """Full read-modify-write cycle starting from a fresh load."""
        document = self.load(path)
        mutate(document)
        self.save(path, document)
        return document


# -- Locking -------------------------------------------------------------------


def lock_path_for(path: Path) -> Path:
    return path.with_name(path.name + ".lock")


@contextlib.contextmanager
def file_lock(lock_path: Path) -> Iterator[None]:
    """Hold an exclusive advisory lock on *lock_path* for the ``with`` body.

    Blocks without timeout until the lock is available.  The lock file is
    removed on exit; its presence alone carries no meaning.
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_path, "a+") as fh:
        try:
            if HAVE_FCNTL:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
            else:
                logger.debug("File locking unavailable, writing {} unlocked", lock_path)
            yield
        finally:
            if HAVE_FCNTL:
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
            with contextlib.suppress(FileNotFoundError):
                lock_path.unlink()


# -- Sync helpers --------------------------------------------------------------


def _atomic_write(path: Path, data: str) -> None:
    """Write data atomically: temp file + rename.

    Ensures readers never see a partially-written file.  The temp file is
    created in the same directory so ``os.replace`` is atomic on POSIX.
    """
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    err = errors[0]
    loc = ".".join(str(part) for part in err.get("loc", ()))
    return f"{loc}: {err['msg']}" if loc else err["msg"]
