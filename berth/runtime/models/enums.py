"""Shared enumerations used across the workspace runtime."""

from __future__ import annotations

from enum import StrEnum

# -- Lifecycle ---------------------------------------------------------------


class ArchiveAction(StrEnum):
    """Outcome of an archive request."""

    ARCHIVED = "archived"
    NOT_FOUND = "not_found"
    DRY_RUN = "dry_run"


# -- Resolution --------------------------------------------------------------


class ResolutionMode(StrEnum):
    """How a workspace was located."""

    LOCAL = "local"
    GLOBAL = "global"
