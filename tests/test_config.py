from __future__ import annotations

from pathlib import Path

import pytest

from issueloop.config import BACKEND_ENV, load_config
from issueloop.context import ProjectContext


@pytest.fixture(autouse=True)
def _clear_backend_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(BACKEND_ENV, raising=False)


def _write_config(ctx: ProjectContext, body: str) -> None:
    ctx.config_path.parent.mkdir(parents=True, exist_ok=True)
    ctx.config_path.write_text(body.strip() + "\n", encoding="utf-8")


def test_load_config_defaults_without_file(ctx: ProjectContext) -> None:
    cfg = load_config(ctx)

    assert cfg.backend == "linear"
    assert cfg.local_id_prefix == "LOC"
    assert cfg.error is None
    assert cfg.path == ctx.config_path


def test_load_config_reads_section(ctx: ProjectContext) -> None:
    _write_config(
        ctx,
        """
[issueloop]
backend = "Local"
local_id_prefix = "WRK"
""",
    )

    cfg = load_config(ctx)

    assert cfg.error is None
    assert cfg.backend == "local"
    assert cfg.local_id_prefix == "WRK"


def test_load_config_without_section_uses_defaults(ctx: ProjectContext) -> None:
    _write_config(ctx, '[other]\nkey = "value"')

    cfg = load_config(ctx)

    assert cfg.error is None
    assert cfg.backend == "linear"


def test_load_config_reports_invalid_toml(ctx: ProjectContext) -> None:
    _write_config(ctx, "[issueloop\nbackend = ")

    cfg = load_config(ctx)

    assert cfg.error is not None
    assert "invalid TOML in .issueloop/config.toml" in cfg.error
    assert cfg.backend == "linear"


def test_load_config_reports_unknown_backend(ctx: ProjectContext) -> None:
    _write_config(ctx, '[issueloop]\nbackend = "github"')

    cfg = load_config(ctx)

    assert cfg.error is not None
    assert "[issueloop].backend" in cfg.error
    assert "'github'" in cfg.error
    assert cfg.backend == "linear"


def test_load_config_reports_bad_prefix(ctx: ProjectContext) -> None:
    _write_config(ctx, '[issueloop]\nlocal_id_prefix = "1-x"')

    cfg = load_config(ctx)

    assert cfg.error is not None
    assert "[issueloop].local_id_prefix" in cfg.error
    assert cfg.local_id_prefix == "LOC"


def test_load_config_reports_non_table_section(ctx: ProjectContext) -> None:
    _write_config(ctx, 'issueloop = "local"')

    cfg = load_config(ctx)

    assert cfg.error is not None
    assert "[issueloop] must be a table" in cfg.error


def test_backend_env_overrides_file(
    ctx: ProjectContext, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write_config(ctx, '[issueloop]\nbackend = "linear"')
    monkeypatch.setenv(BACKEND_ENV, "JIRA")

    cfg = load_config(ctx)

    assert cfg.error is None
    assert cfg.backend == "jira"


def test_invalid_backend_env_is_reported(
    ctx: ProjectContext, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv(BACKEND_ENV, "trello")

    cfg = load_config(ctx)

    assert cfg.backend == "linear"
    assert cfg.error is not None
    assert BACKEND_ENV in cfg.error


def test_config_outside_repo_root_keeps_absolute_path(tmp_path: Path) -> None:
    ctx = ProjectContext(repo_root=tmp_path / "repo", state_dir=tmp_path / "state")
    _write_config(ctx, "not toml [")

    cfg = load_config(ctx)

    assert cfg.error is not None
    assert str(tmp_path / "state" / "config.toml") in cfg.error
