from __future__ import annotations

import io
from pathlib import Path

import pytest
from rich.console import Console

from issueloop.context import ProjectContext
from issueloop.local_state import LocalStateStore


@pytest.fixture
def stdout() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def console(stdout: io.StringIO) -> Console:
    return Console(file=stdout, width=160, color_system=None, force_terminal=False)


@pytest.fixture
def ctx(tmp_path: Path) -> ProjectContext:
    return ProjectContext.for_root(tmp_path)


@pytest.fixture
def store(ctx: ProjectContext) -> LocalStateStore:
    return LocalStateStore(ctx)
