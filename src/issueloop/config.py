from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import tomllib

from .context import ProjectContext

BACKENDS = ("linear", "jira", "local")
DEFAULT_BACKEND = "linear"
DEFAULT_LOCAL_ID_PREFIX = "LOC"
BACKEND_ENV = "ISSUELOOP_BACKEND"

_PREFIX_RE = re.compile(r"^[A-Za-z][A-Za-z0-9]*$")


@dataclass(frozen=True)
class IssueloopConfig:
    path: Path
    backend: str = DEFAULT_BACKEND
    local_id_prefix: str = DEFAULT_LOCAL_ID_PREFIX
    error: str | None = None


class ConfigValidationError(ValueError):
    pass


def _as_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    if not stripped:
        return None
    return stripped


def _normalize_backend(value: object, *, field: str) -> str:
    text = _as_str(value)
    if text is None:
        raise ConfigValidationError(f"{field} must be a non-empty string")
    lowered = text.lower()
    if lowered not in BACKENDS:
        expected = ", ".join(BACKENDS)
        raise ConfigValidationError(
            f"invalid {field}: {text!r} (expected one of: {expected})"
        )
    return lowered


def _parse_section(raw: object) -> tuple[str, str]:
    if raw is None:
        return DEFAULT_BACKEND, DEFAULT_LOCAL_ID_PREFIX
    if not isinstance(raw, dict):
        raise ConfigValidationError("[issueloop] must be a table")

    backend = DEFAULT_BACKEND
    if "backend" in raw:
        backend = _normalize_backend(raw["backend"], field="[issueloop].backend")

    prefix = DEFAULT_LOCAL_ID_PREFIX
    if "local_id_prefix" in raw:
        text = _as_str(raw["local_id_prefix"])
        if text is None or not _PREFIX_RE.match(text):
            raise ConfigValidationError(
                "[issueloop].local_id_prefix must be alphanumeric and start with a letter"
            )
        prefix = text
    return backend, prefix


def _format_path(path: Path, repo_root: Path) -> str:
    try:
        return str(path.resolve().relative_to(repo_root.resolve()))
    except ValueError:
        return str(path)


def load_config(ctx: ProjectContext) -> IssueloopConfig:
    """Load ``config.toml`` from the state dir.

    A missing file yields defaults. Problems are reported through ``error``
    with defaults filled in, so callers can still run in a degraded mode.
    """
    path = ctx.config_path
    backend, prefix = DEFAULT_BACKEND, DEFAULT_LOCAL_ID_PREFIX
    error: str | None = None

    if path.exists():
        raw: dict[str, Any] | None = None
        try:
            raw = tomllib.loads(path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            error = f"invalid TOML in {_format_path(path, ctx.repo_root)}: {exc}"
        if raw is not None:
            try:
                backend, prefix = _parse_section(raw.get("issueloop"))
            except ConfigValidationError as exc:
                error = f"{_format_path(path, ctx.repo_root)}: {exc}"

    env_backend = os.environ.get(BACKEND_ENV, "").strip()
    if env_backend:
        try:
            backend = _normalize_backend(env_backend, field=BACKEND_ENV)
        except ConfigValidationError as exc:
            error = error or str(exc)

    return IssueloopConfig(
        path=path,
        backend=backend,
        local_id_prefix=prefix,
        error=error,
    )
