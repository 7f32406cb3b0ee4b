"""Per-repository configuration (``berth.json``).

Loaded from the repository root, falling back to ``conductor.json`` for
compatibility.  Missing files yield the defaults; the core only reads this
configuration and never writes it back.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from berth.runtime.errors import ConfigError

CONFIG_FILENAMES = ("berth.json", "conductor.json")

DEFAULT_BASE_PORT = 5000
DEFAULT_PORT_RANGE = 10
DEFAULT_WORKTREE_PATH = "~/berth"

_DEFAULTED_KEYS = frozenset({"basePort", "portRange", "worktreePath"})


class Scripts(BaseModel):
    """Lifecycle shell commands.  Empty string means "not configured"."""

    setup: str = ""
    run: str = ""
    archive: str = ""


class RepoConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    scripts: Scripts = Field(default_factory=Scripts)
    base_port: int = Field(default=DEFAULT_BASE_PORT, alias="basePort", ge=1, le=65535)
    port_range: int = Field(default=DEFAULT_PORT_RANGE, alias="portRange", ge=1)
    worktree_path: str = Field(default=DEFAULT_WORKTREE_PATH, alias="worktreePath")
    source: str | None = Field(default=None, exclude=True)
    """File the config was read from, ``None`` when defaults are in effect."""

    def worktree_base(self, root_path: str | os.PathLike[str]) -> Path:
        """Directory new worktrees are created in: ``{worktreePath}/{repo dir name}``.

        ``~`` is expanded; relative paths are taken relative to *root_path*.
        """
        root = Path(root_path)
        base = Path(self.worktree_path).expanduser()
        if not base.is_absolute():
            base = root / base
        return Path(os.path.normpath(base / root.name))


def load_repo_config(root_path: str | os.PathLike[str]) -> RepoConfig:
    """Read the repository config, returning defaults when no file exists.

    Raises ``ConfigError`` if a config file exists but is unreadable or invalid.
    Zero values for ``basePort`` / ``portRange`` fall back to the defaults.
    """
    root = Path(root_path)
    for filename in CONFIG_FILENAMES:
        path = root / filename
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            continue
        except OSError as exc:
            msg = f"Reading {path}: {exc}"
            raise ConfigError(msg) from exc

        try:
            data = json.loads(raw)
            if isinstance(data, dict):
                # Zero or empty means "use the default".
                data = {k: v for k, v in data.items() if k not in _DEFAULTED_KEYS or v}
            cfg = RepoConfig.model_validate(data)
        except (ValidationError, ValueError) as exc:
            msg = f"Parsing {path}: {exc}"
            raise ConfigError(msg) from exc
        cfg.source = str(path)
        return cfg

    return RepoConfig()
