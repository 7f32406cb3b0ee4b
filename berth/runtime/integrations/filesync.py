"""Copy untracked-but-needed files into a new worktree.

Patterns come from ``.worktreeinclude`` (looked up in the worktree first, then
the root worktree): one glob per line, ``**`` allowed, blank lines and ``#``
comments ignored.  Matching files are copied from the root worktree when the
destination is missing or differs.
"""

from __future__ import annotations

import filecmp
import shutil
from pathlib import Path

from loguru import logger

INCLUDE_FILE = ".worktreeinclude"


def read_patterns(include_file: Path) -> list[str]:
    patterns = []
    for line in include_file.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            patterns.append(line)
    return patterns


def sync_included_files(root_path: Path, worktree_path: Path) -> list[str]:
    """Copy included files from *root_path* to *worktree_path*.

    Returns the relative paths that were copied.  Raises ``OSError`` on copy
    failures; invalid patterns are skipped with a warning.
    """
    include_file = next(
        (base / INCLUDE_FILE for base in (worktree_path, root_path) if (base / INCLUDE_FILE).is_file()),
        None,
    )
    if include_file is None:
        return []

    copied: list[str] = []
    for pattern in read_patterns(include_file):
        try:
            matches = sorted(root_path.glob(pattern))
        except (ValueError, NotImplementedError) as exc:
            logger.warning("Invalid pattern {!r} in {}: {}", pattern, include_file, exc)
            continue

        for src in matches:
            if not src.is_file():
                continue
            rel = src.relative_to(root_path)
            dst = worktree_path / rel
            if dst.is_file() and filecmp.cmp(src, dst, shallow=False):
                continue
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, dst)
            copied.append(rel.as_posix())
            logger.debug("Copied {}", rel)
    return copied
