from __future__ import annotations

from pathlib import Path

import pytest

from issueloop.context import (
    STATE_DIR_ENV,
    ProjectContext,
    find_repo_root,
    resolve_project_context,
)
from issueloop.util import CommandError


def _no_git(argv: list[str], *, cwd: Path | None = None) -> str:
    raise CommandError(argv, 128, "", "fatal: not a git repository")


def test_for_root_layout(tmp_path: Path) -> None:
    ctx = ProjectContext.for_root(tmp_path)

    assert ctx.repo_root == tmp_path.resolve()
    assert ctx.state_dir == tmp_path.resolve() / ".issueloop"
    assert ctx.issues_dir == ctx.state_dir / "issues"
    assert ctx.config_path == ctx.state_dir / "config.toml"


def test_find_repo_root_falls_back_to_cwd(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr("issueloop.context.run_capture", _no_git)

    assert find_repo_root(tmp_path) == tmp_path.resolve()


def test_find_repo_root_uses_git_toplevel(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    calls: list[tuple[list[str], Path | None]] = []

    def fake(argv: list[str], *, cwd: Path | None = None) -> str:
        calls.append((argv, cwd))
        return f"{tmp_path}\n"

    monkeypatch.setattr("issueloop.context.run_capture", fake)
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)

    assert find_repo_root(nested) == tmp_path
    assert calls == [(["git", "rev-parse", "--show-toplevel"], nested.resolve())]


def test_resolve_project_context_default(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv(STATE_DIR_ENV, raising=False)
    monkeypatch.setattr("issueloop.context.run_capture", _no_git)

    ctx = resolve_project_context(tmp_path)

    assert ctx.repo_root == tmp_path.resolve()
    assert ctx.state_dir == tmp_path.resolve() / ".issueloop"


def test_resolve_project_context_env_override(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr("issueloop.context.run_capture", _no_git)
    monkeypatch.setenv(STATE_DIR_ENV, str(tmp_path / "elsewhere"))

    ctx = resolve_project_context(tmp_path / "repo")

    assert ctx.state_dir == (tmp_path / "elsewhere").resolve()
    assert ctx.repo_root == (tmp_path / "repo").resolve()
