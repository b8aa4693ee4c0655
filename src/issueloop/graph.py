"""Task dependency graph built from a parent issue's sub-tasks.

The graph itself is tracker-agnostic: only the item shape accepted by
``build_task_graph`` knows about relation payloads, and that shape is
normalized once at construction.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

TASK_STATUSES = (
    "pending",
    "ready",
    "blocked",
    "in_progress",
    "done",
    "failed",
)
# Persisted statuses that are never recomputed from blockers.
AUTHORITATIVE_STATUSES = frozenset({"done", "in_progress", "failed"})

_DONE_NAMES = {"done", "completed", "complete", "cancelled", "canceled", "closed"}
_IN_PROGRESS_NAMES = {"in progress", "in_progress", "in review", "started"}
_FAILED_NAMES = {"failed"}


@dataclass(frozen=True)
class Relation:
    id: str
    identifier: str


@dataclass(frozen=True)
class Task:
    id: str
    identifier: str
    title: str
    status: str
    blocked_by: frozenset[str] = frozenset()
    blocks: frozenset[str] = frozenset()
    branch: str = ""


@dataclass(frozen=True)
class TaskGraph:
    parent_id: str
    parent_identifier: str
    tasks: dict[str, Task] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.tasks)

    def get(self, task_id: str) -> Task | None:
        return self.tasks.get(task_id)


@dataclass(frozen=True)
class GraphStats:
    total: int = 0
    done: int = 0
    ready: int = 0
    blocked: int = 0
    in_progress: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "done": self.done,
            "ready": self.ready,
            "blocked": self.blocked,
            "in_progress": self.in_progress,
            "failed": self.failed,
        }


def _as_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def map_backend_status(raw: object) -> str:
    """Map a tracker state name onto the internal status vocabulary.

    Anything that is not clearly finished, started or failed becomes
    ``pending`` and is resolved to ready/blocked from the graph.
    """
    text = _as_text(raw)
    if text is None:
        return "pending"
    lowered = text.lower()
    if lowered in _DONE_NAMES:
        return "done"
    if lowered in _IN_PROGRESS_NAMES:
        return "in_progress"
    if lowered in _FAILED_NAMES:
        return "failed"
    return "pending"


def normalize_relations(raw: object) -> list[Relation]:
    """Accept bare ids or ``{id, identifier}`` mappings; drop anything else."""
    if not isinstance(raw, (list, tuple)):
        return []
    out: list[Relation] = []
    for entry in raw:
        if isinstance(entry, str):
            text = _as_text(entry)
            if text:
                out.append(Relation(id=text, identifier=text))
            continue
        if isinstance(entry, Mapping):
            rel_id = _as_text(entry.get("id"))
            if rel_id is None:
                continue
            identifier = _as_text(entry.get("identifier")) or rel_id
            out.append(Relation(id=rel_id, identifier=identifier))
    return out


def _raw_relations(item: Mapping[str, Any], kind: str) -> object:
    camel = "blockedBy" if kind == "blocked_by" else kind
    relations = item.get("relations")
    if isinstance(relations, Mapping):
        value = relations.get(camel, relations.get(kind))
        if value is not None:
            return value
    return item.get(kind, item.get(camel))


def build_task_graph(
    parent_id: str,
    parent_identifier: str,
    items: Iterable[Mapping[str, Any]],
) -> TaskGraph:
    """Build a graph from flat tracker items and derive ready/blocked statuses.

    ``blocked_by`` and ``blocks`` are made symmetric for every pair of ids that
    are both present; references to unknown ids are kept but never resolve to
    a task.
    """
    entries: dict[str, dict[str, Any]] = {}
    for item in items:
        task_id = _as_text(item.get("id"))
        if task_id is None:
            continue
        blocked_by = {rel.id for rel in normalize_relations(_raw_relations(item, "blocked_by"))}
        blocks = {rel.id for rel in normalize_relations(_raw_relations(item, "blocks"))}
        blocked_by.discard(task_id)
        blocks.discard(task_id)
        entries[task_id] = {
            "identifier": _as_text(item.get("identifier")) or task_id,
            "title": item.get("title") if isinstance(item.get("title"), str) else "",
            "status": map_backend_status(item.get("status")),
            "branch": _as_text(item.get("branch") or item.get("gitBranchName")) or "",
            "blocked_by": blocked_by,
            "blocks": blocks,
        }

    for task_id, entry in entries.items():
        for blocker_id in tuple(entry["blocked_by"]):
            if blocker_id in entries:
                entries[blocker_id]["blocks"].add(task_id)
        for dependent_id in tuple(entry["blocks"]):
            if dependent_id in entries:
                entries[dependent_id]["blocked_by"].add(task_id)

    tasks = {
        task_id: Task(
            id=task_id,
            identifier=entry["identifier"],
            title=entry["title"],
            status=entry["status"],
            blocked_by=frozenset(entry["blocked_by"]),
            blocks=frozenset(entry["blocks"]),
            branch=entry["branch"],
        )
        for task_id, entry in entries.items()
    }
    base = TaskGraph(parent_id=parent_id, parent_identifier=parent_identifier, tasks=tasks)
    return _rederive(base, None)


def _blockers_of(task: Task, graph: TaskGraph) -> list[Task]:
    out: list[Task] = []
    for blocker_id in sorted(task.blocked_by):
        blocker = graph.tasks.get(blocker_id)
        if blocker is not None:
            out.append(blocker)
    return out


def get_blockers(graph: TaskGraph, task_id: str) -> list[Task]:
    task = graph.tasks.get(task_id)
    if task is None:
        return []
    return _blockers_of(task, graph)


def get_blocked_by(graph: TaskGraph, task_id: str) -> list[Task]:
    """Return the tasks that ``task_id`` blocks."""
    task = graph.tasks.get(task_id)
    if task is None:
        return []
    return [graph.tasks[dep] for dep in sorted(task.blocks) if dep in graph.tasks]


def effective_status(task: Task, overrides: Mapping[str, str] | None = None) -> str:
    if overrides and task.id in overrides:
        return overrides[task.id]
    return task.status


def derive_status(
    task: Task,
    graph: TaskGraph,
    overrides: Mapping[str, str] | None = None,
) -> str:
    """Return the status a task should be shown with.

    ``overrides`` (live statuses from the current run) win for the task itself
    and for every blocker it is checked against, so a blocker finished during
    the run unblocks its dependents before the backend catches up.
    """
    if overrides and task.id in overrides:
        return overrides[task.id]
    if task.status in AUTHORITATIVE_STATUSES:
        return task.status
    for blocker in _blockers_of(task, graph):
        if effective_status(blocker, overrides) != "done":
            return "blocked"
    return "ready"


def _rederive(graph: TaskGraph, overrides: Mapping[str, str] | None) -> TaskGraph:
    tasks: dict[str, Task] = {}
    for task_id, task in graph.tasks.items():
        status = derive_status(task, graph, overrides)
        tasks[task_id] = task if status == task.status else replace(task, status=status)
    return TaskGraph(
        parent_id=graph.parent_id,
        parent_identifier=graph.parent_identifier,
        tasks=tasks,
    )


def apply_overrides(graph: TaskGraph, overrides: Mapping[str, str]) -> TaskGraph:
    """Return a snapshot with every status re-derived under ``overrides``."""
    return _rederive(graph, overrides)


def update_task_status(graph: TaskGraph, task_id: str, status: str) -> TaskGraph:
    task = graph.tasks.get(task_id)
    if task is None:
        return graph
    if status not in TASK_STATUSES:
        raise ValueError(f"invalid task status: {status!r}")
    tasks = dict(graph.tasks)
    tasks[task_id] = replace(task, status=status)
    updated = TaskGraph(
        parent_id=graph.parent_id,
        parent_identifier=graph.parent_identifier,
        tasks=tasks,
    )
    # Pin the updated task so a "ready"/"blocked" assignment is not recomputed.
    return _rederive(updated, {task_id: status})


def get_task_by_identifier(graph: TaskGraph, identifier: str) -> Task | None:
    for task in graph.tasks.values():
        if task.identifier == identifier:
            return task
    return None


def _with_status(graph: TaskGraph, *statuses: str) -> list[Task]:
    wanted = set(statuses)
    return sorted(
        (task for task in graph.tasks.values() if task.status in wanted),
        key=lambda task: task.identifier,
    )


def ready_tasks(graph: TaskGraph) -> list[Task]:
    """Ready tasks plus in-progress ones, which a restarted loop resumes."""
    return _with_status(graph, "ready", "in_progress")


def blocked_tasks(graph: TaskGraph) -> list[Task]:
    return _with_status(graph, "blocked")


def completed_tasks(graph: TaskGraph) -> list[Task]:
    return _with_status(graph, "done")


def in_progress_tasks(graph: TaskGraph) -> list[Task]:
    return _with_status(graph, "in_progress")


def failed_tasks(graph: TaskGraph) -> list[Task]:
    return _with_status(graph, "failed")


def graph_stats(
    graph: TaskGraph,
    overrides: Mapping[str, str] | None = None,
) -> GraphStats:
    counts = {"done": 0, "ready": 0, "blocked": 0, "in_progress": 0, "failed": 0}
    for task in graph.tasks.values():
        status = derive_status(task, graph, overrides) if overrides else task.status
        if status in counts:
            counts[status] += 1
    return GraphStats(total=len(graph.tasks), **counts)


def _normalize_cycle(cycle: list[str]) -> tuple[str, ...]:
    path = cycle[:-1]
    if not path:
        return tuple(cycle)
    return min(tuple(path[index:] + path[:index]) for index in range(len(path)))


def find_cycles(graph: TaskGraph) -> list[tuple[str, ...]]:
    """Return blocking cycles, each as a rotation-normalized tuple of ids.

    Tasks on a cycle can never become ready; building the graph does not
    reject them, this is for callers that want to report it.
    """
    state: dict[str, int] = {}
    stack: list[str] = []
    index_by_id: dict[str, int] = {}
    seen: set[tuple[str, ...]] = set()
    cycles: list[tuple[str, ...]] = []

    def walk(task_id: str) -> None:
        state[task_id] = 1
        index_by_id[task_id] = len(stack)
        stack.append(task_id)
        for blocker_id in sorted(graph.tasks[task_id].blocked_by):
            if blocker_id not in graph.tasks:
                continue
            blocker_state = state.get(blocker_id, 0)
            if blocker_state == 0:
                walk(blocker_id)
                continue
            if blocker_state != 1:
                continue
            cycle_path = stack[index_by_id[blocker_id]:] + [blocker_id]
            normalized = _normalize_cycle(cycle_path)
            if normalized not in seen:
                seen.add(normalized)
                cycles.append(normalized)
        stack.pop()
        index_by_id.pop(task_id, None)
        state[task_id] = 2

    for task_id in sorted(graph.tasks):
        if state.get(task_id, 0) == 0:
            walk(task_id)
    return cycles
