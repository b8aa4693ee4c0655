from __future__ import annotations

from typing import TYPE_CHECKING

__all__ = [
    "__version__",
    "LocalStateStore",
    "Outcome",
    "ProjectContext",
    "SyncResult",
    "TaskGraph",
    "build_task_graph",
    "parse_outcome",
    "sync_backend_statuses",
]

__version__ = "0.1.0"

if TYPE_CHECKING:
    from .context import ProjectContext
    from .graph import TaskGraph, build_task_graph
    from .local_state import LocalStateStore
    from .outcome import Outcome, parse_outcome
    from .reconcile import SyncResult, sync_backend_statuses


def __getattr__(name: str):
    if name in {"TaskGraph", "build_task_graph"}:
        from .graph import TaskGraph, build_task_graph

        return {"TaskGraph": TaskGraph, "build_task_graph": build_task_graph}[name]
    if name == "LocalStateStore":
        from .local_state import LocalStateStore

        return LocalStateStore
    if name == "ProjectContext":
        from .context import ProjectContext

        return ProjectContext
    if name in {"Outcome", "parse_outcome"}:
        from .outcome import Outcome, parse_outcome

        return {"Outcome": Outcome, "parse_outcome": parse_outcome}[name]
    if name in {"SyncResult", "sync_backend_statuses"}:
        from .reconcile import SyncResult, sync_backend_statuses

        return {
            "SyncResult": SyncResult,
            "sync_backend_statuses": sync_backend_statuses,
        }[name]
    raise AttributeError(f"module 'issueloop' has no attribute {name!r}")
