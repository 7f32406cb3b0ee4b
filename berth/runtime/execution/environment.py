"""Workspace environment variables.

Scripts and background sessions learn about their workspace through
``BERTH_*`` variables, mirrored as ``CONDUCTOR_*`` for scripts written for
conductor.json-based tooling.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from berth.runtime.models.workspace import Workspace

PREFIXES = ("BERTH", "CONDUCTOR")


def workspace_variables(workspace: Workspace, root_path: Path | str, default_branch: str) -> dict[str, str]:
    """Only the workspace variables (used for background sessions)."""
    values = {
        "WORKSPACE_NAME": workspace.name,
        "WORKSPACE_PATH": workspace.path,
        "ROOT_PATH": os.fspath(root_path),
        "DEFAULT_BRANCH": default_branch,
        "PORT": str(workspace.port),
    }
    return {f"{prefix}_{key}": value for prefix in PREFIXES for key, value in values.items()}


def build_env(
    workspace: Workspace,
    root_path: Path | str,
    default_branch: str,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Process environment (or *base*) overlaid with the workspace variables."""
    env = dict(os.environ if base is None else base)
    env.update(workspace_variables(workspace, root_path, default_branch))
    return env
