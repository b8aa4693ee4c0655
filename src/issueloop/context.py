from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .util import CommandError, run_capture

STATE_DIR_NAME = ".issueloop"
STATE_DIR_ENV = "ISSUELOOP_STATE_DIR"


@dataclass(frozen=True)
class ProjectContext:
    """Where this project's durable state lives.

    Resolved once at startup and passed to whatever needs it; nothing in the
    package caches a repository root behind the caller's back.
    """

    repo_root: Path
    state_dir: Path

    @property
    def issues_dir(self) -> Path:
        return self.state_dir / "issues"

    @property
    def config_path(self) -> Path:
        return self.state_dir / "config.toml"

    @classmethod
    def for_root(cls, repo_root: Path) -> ProjectContext:
        root = repo_root.resolve()
        return cls(repo_root=root, state_dir=root / STATE_DIR_NAME)


def find_repo_root(cwd: Path | None = None) -> Path:
    """Return the git top-level for *cwd*, or *cwd* itself outside a repo."""
    start = (cwd or Path.cwd()).resolve()
    try:
        out = run_capture(["git", "rev-parse", "--show-toplevel"], cwd=start)
    except CommandError:
        return start
    top = out.strip()
    return Path(top) if top else start


def resolve_project_context(cwd: Path | None = None) -> ProjectContext:
    """Resolve the project context.

    Resolution order:
    1. ISSUELOOP_STATE_DIR (repo root is still looked up from cwd)
    2. <git top-level>/.issueloop
    3. <cwd>/.issueloop
    """
    repo_root = find_repo_root(cwd)
    raw = os.environ.get(STATE_DIR_ENV, "").strip()
    if raw:
        return ProjectContext(
            repo_root=repo_root,
            state_dir=Path(raw).expanduser().resolve(),
        )
    return ProjectContext(repo_root=repo_root, state_dir=repo_root / STATE_DIR_NAME)
