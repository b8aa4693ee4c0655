"""File-backed state for issues under ``<state_dir>/issues``.

Layout per issue::

    issues/
      counter.json                # {"next": N} for locally minted ids
      <issue-id>/
        parent.json
        tasks/<identifier>.json
        execution/iterations.json
        pending-updates.json
        summary.json

Each file is replaced atomically on write. Reads never raise on missing or
corrupt files; they fall back to ``None`` or an empty list so one bad record
does not take the rest of the store down with it.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any, TypedDict

from .context import ProjectContext
from .graph import TaskGraph
from .jsonfile import read_json_list, read_json_object, write_json_atomic
from .util import new_update_id, utc_now_iso

COUNTER_FILE = "counter.json"
ITERATION_STATUSES = ("success", "failed", "partial")

# Higher wins when the same sub-task id appears in more than one file.
_STATUS_PRIORITY = {"pending": 0, "ready": 1, "in_progress": 2, "done": 3}


class ParentSpec(TypedDict, total=False):
    id: str
    identifier: str
    title: str
    description: str
    status: str
    branch: str
    labels: list[str]
    url: str


class SubTaskSpec(TypedDict, total=False):
    id: str
    identifier: str
    title: str
    description: str
    status: str
    branch: str
    blocked_by: list[Any]
    blocks: list[Any]


class IterationLogEntry(TypedDict, total=False):
    subtask_id: str
    attempt: int
    started_at: str
    completed_at: str
    status: str
    error: str
    files_modified: list[str]
    commit_hash: str


class PendingUpdate(TypedDict):
    id: str
    created_at: str
    type: str
    payload: dict[str, Any]


class TaskOutcomeSummary(TypedDict):
    id: str
    status: str
    iterations: int


class CompletionSummary(TypedDict):
    parent_id: str
    completed_at: str
    total_tasks: int
    completed_tasks: int
    failed_tasks: int
    total_iterations: int
    task_outcomes: list[TaskOutcomeSummary]


def format_local_id(prefix: str, number: int) -> str:
    return f"{prefix}-{number:03d}"


def _valid_counter(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value if value > 0 else None


class LocalStateStore:
    """Durable per-issue records for one project."""

    def __init__(self, ctx: ProjectContext, *, id_prefix: str = "LOC") -> None:
        self.ctx = ctx
        self.id_prefix = id_prefix
        self._local_dir_re = re.compile(rf"^{re.escape(id_prefix)}-(\d+)$")

    @property
    def issues_dir(self) -> Path:
        return self.ctx.issues_dir

    def issue_dir(self, issue_id: str) -> Path:
        return self.issues_dir / issue_id

    def _parent_path(self, issue_id: str) -> Path:
        return self.issue_dir(issue_id) / "parent.json"

    def _task_path(self, issue_id: str, task_key: str) -> Path:
        return self.issue_dir(issue_id) / "tasks" / f"{task_key}.json"

    def _iterations_path(self, issue_id: str) -> Path:
        return self.issue_dir(issue_id) / "execution" / "iterations.json"

    def _pending_path(self, issue_id: str) -> Path:
        return self.issue_dir(issue_id) / "pending-updates.json"

    def _summary_path(self, issue_id: str) -> Path:
        return self.issue_dir(issue_id) / "summary.json"

    def ensure_state_dir(self) -> None:
        """Create the state dir and a .gitignore that keeps runtime state out of git."""
        self.ctx.state_dir.mkdir(parents=True, exist_ok=True)
        gitignore = self.ctx.state_dir / ".gitignore"
        if not gitignore.exists():
            gitignore.write_text("state/\n", encoding="utf-8")

    def ensure_issue_dir(self, issue_id: str) -> Path:
        self.ensure_state_dir()
        path = self.issue_dir(issue_id)
        (path / "tasks").mkdir(parents=True, exist_ok=True)
        (path / "execution").mkdir(parents=True, exist_ok=True)
        return path

    def list_issue_ids(self) -> list[str]:
        try:
            entries = list(self.issues_dir.iterdir())
        except OSError:
            return []
        return sorted(entry.name for entry in entries if entry.is_dir())

    # -- local ids --

    def _scan_next_number(self) -> int:
        highest = 0
        for name in self.list_issue_ids():
            match = self._local_dir_re.match(name)
            if match:
                highest = max(highest, int(match.group(1)))
        return highest + 1

    def allocate_next_id(self) -> str:
        """Mint the next ``PREFIX-NNN`` id.

        A missing or invalid counter is rebuilt from the highest existing
        ``PREFIX-N`` issue directory.
        """
        self.ensure_state_dir()
        self.issues_dir.mkdir(parents=True, exist_ok=True)
        counter_path = self.issues_dir / COUNTER_FILE

        counter = read_json_object(counter_path)
        current = _valid_counter(counter.get("next")) if counter else None
        if current is None:
            current = self._scan_next_number()

        write_json_atomic(counter_path, {"next": current + 1})
        return format_local_id(self.id_prefix, current)

    # -- parent / sub-task specs --

    def write_parent_spec(self, issue_id: str, spec: ParentSpec) -> None:
        self.ensure_issue_dir(issue_id)
        write_json_atomic(self._parent_path(issue_id), dict(spec))

    def read_parent_spec(self, issue_id: str) -> ParentSpec | None:
        return read_json_object(self._parent_path(issue_id))  # type: ignore[return-value]

    def write_subtask_spec(self, issue_id: str, task: SubTaskSpec) -> None:
        key = task.get("identifier") or task.get("id")
        if not key:
            raise ValueError("sub-task spec needs an identifier or id")
        self.ensure_issue_dir(issue_id)
        write_json_atomic(self._task_path(issue_id, key), dict(task))

    def read_subtask_spec(self, issue_id: str, identifier: str) -> SubTaskSpec | None:
        return read_json_object(self._task_path(issue_id, identifier))  # type: ignore[return-value]

    def read_subtasks(self, issue_id: str) -> list[SubTaskSpec]:
        tasks_dir = self.issue_dir(issue_id) / "tasks"
        try:
            paths = sorted(tasks_dir.glob("*.json"))
        except OSError:
            return []
        out: list[SubTaskSpec] = []
        for path in paths:
            task = read_json_object(path)
            if task is None:
                continue
            if not task.get("identifier"):
                task["identifier"] = path.stem
            if not task.get("id"):
                task["id"] = task["identifier"]
            out.append(task)  # type: ignore[arg-type]
        return out

    def read_local_items(self, issue_id: str) -> list[SubTaskSpec]:
        """Sub-tasks as graph input, one per id, most advanced status kept."""
        by_id: dict[str, SubTaskSpec] = {}
        for task in self.read_subtasks(issue_id):
            task_id = task.get("id")
            if not isinstance(task_id, str) or not task_id.strip():
                continue
            existing = by_id.get(task_id)
            if existing is None or _STATUS_PRIORITY.get(
                str(task.get("status")), 0
            ) > _STATUS_PRIORITY.get(str(existing.get("status")), 0):
                by_id[task_id] = task
        return [by_id[task_id] for task_id in sorted(by_id)]

    def _patch_status(self, path: Path, status: str) -> bool:
        record = read_json_object(path)
        if record is None:
            return False
        record["status"] = status
        write_json_atomic(path, record)
        return True

    def update_parent_status(self, issue_id: str, status: str) -> bool:
        """Patch only ``status`` in parent.json. False if there is no record."""
        return self._patch_status(self._parent_path(issue_id), status)

    def update_subtask_status(self, issue_id: str, identifier: str, status: str) -> bool:
        """Patch only ``status`` in a sub-task file. False if there is no record."""
        return self._patch_status(self._task_path(issue_id, identifier), status)

    # -- iteration log --

    def read_iteration_log(self, issue_id: str) -> list[IterationLogEntry]:
        return read_json_list(self._iterations_path(issue_id))

    def append_iteration_log_entry(self, issue_id: str, entry: IterationLogEntry) -> None:
        status = entry.get("status")
        if status not in ITERATION_STATUSES:
            raise ValueError(f"invalid iteration status: {status!r}")
        self.ensure_issue_dir(issue_id)
        entries = self.read_iteration_log(issue_id)
        entries.append(dict(entry))  # type: ignore[arg-type]
        write_json_atomic(self._iterations_path(issue_id), entries)

    # -- pending updates --

    def read_pending_updates(self, issue_id: str) -> list[PendingUpdate]:
        return read_json_list(self._pending_path(issue_id))

    def enqueue_pending_update(
        self,
        issue_id: str,
        update_type: str,
        payload: dict[str, Any],
    ) -> PendingUpdate:
        self.ensure_issue_dir(issue_id)
        update: PendingUpdate = {
            "id": new_update_id(),
            "created_at": utc_now_iso(),
            "type": update_type,
            "payload": dict(payload),
        }
        updates = self.read_pending_updates(issue_id)
        updates.append(update)
        write_json_atomic(self._pending_path(issue_id), updates)
        return update

    def write_pending_updates(self, issue_id: str, updates: Iterable[PendingUpdate]) -> None:
        """Replace the queue; used by whatever pushes updates to the backend."""
        self.ensure_issue_dir(issue_id)
        write_json_atomic(self._pending_path(issue_id), list(updates))

    # -- completion summary --

    def write_completion_summary(self, issue_id: str, summary: CompletionSummary) -> None:
        self.ensure_issue_dir(issue_id)
        write_json_atomic(self._summary_path(issue_id), dict(summary))

    def read_completion_summary(self, issue_id: str) -> CompletionSummary | None:
        return read_json_object(self._summary_path(issue_id))  # type: ignore[return-value]


def build_completion_summary(
    graph: TaskGraph,
    iterations: Iterable[IterationLogEntry],
    *,
    completed_at: str | None = None,
) -> CompletionSummary:
    attempts: dict[str, int] = {}
    total_iterations = 0
    for entry in iterations:
        total_iterations += 1
        subtask_id = entry.get("subtask_id")
        if subtask_id:
            attempts[subtask_id] = attempts.get(subtask_id, 0) + 1

    outcomes: list[TaskOutcomeSummary] = []
    for task in sorted(graph.tasks.values(), key=lambda t: t.identifier):
        count = attempts.get(task.identifier, 0) + (
            attempts.get(task.id, 0) if task.id != task.identifier else 0
        )
        outcomes.append({"id": task.identifier, "status": task.status, "iterations": count})

    return {
        "parent_id": graph.parent_identifier,
        "completed_at": completed_at or utc_now_iso(),
        "total_tasks": len(graph.tasks),
        "completed_tasks": sum(1 for t in graph.tasks.values() if t.status == "done"),
        "failed_tasks": sum(1 for t in graph.tasks.values() if t.status == "failed"),
        "total_iterations": total_iterations,
        "task_outcomes": outcomes,
    }
