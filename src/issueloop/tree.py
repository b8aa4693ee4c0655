"""Read-only rendering of a task graph for summaries."""

from __future__ import annotations

from collections.abc import Mapping

from rich.console import Console, Group
from rich.text import Text
from rich.tree import Tree

from .graph import (
    Task,
    TaskGraph,
    apply_overrides,
    get_blockers,
    graph_stats,
    ready_tasks,
)

STATUS_ICONS = {
    "done": "[✓]",
    "ready": "[→]",
    "blocked": "[·]",
    "in_progress": "[!]",
    "pending": "[·]",
    "failed": "[✗]",
}
STATUS_STYLES = {
    "done": "green",
    "ready": "cyan",
    "blocked": "yellow",
    "in_progress": "dark_orange",
    "pending": "dim",
    "failed": "red",
}
_DEPTH_STYLES = ("bold cyan", "bold dark_cyan", "bold blue", "bold purple")


def _task_label(task: Task, graph: TaskGraph, depth: int) -> Text:
    label = Text()
    label.append(STATUS_ICONS.get(task.status, "[?]"), style=STATUS_STYLES.get(task.status, "dim"))
    label.append(" ")
    label.append(task.identifier, style=_DEPTH_STYLES[depth % len(_DEPTH_STYLES)])
    label.append(f": {task.title}")
    unresolved = [
        blocker.identifier
        for blocker in get_blockers(graph, task.id)
        if blocker.status != "done"
    ]
    if unresolved:
        label.append(" (blocked by: ", style="dim")
        label.append(", ".join(unresolved), style="red")
        label.append(")", style="dim")
    return label


def build_task_tree(graph: TaskGraph) -> Tree:
    """Tree of tasks, each nested under its first in-graph blocker."""
    tree = Tree(Text(f"Task Tree for {graph.parent_identifier}:", style="bold"))
    tasks = sorted(graph.tasks.values(), key=lambda task: task.identifier)

    children: dict[str, list[Task]] = {}
    roots: list[Task] = []
    for task in tasks:
        blockers = get_blockers(graph, task.id)
        if blockers:
            children.setdefault(blockers[0].id, []).append(task)
        else:
            roots.append(task)

    def add(node: Tree, task: Task, depth: int, seen: frozenset[str]) -> None:
        branch = node.add(_task_label(task, graph, depth))
        for child in children.get(task.id, []):
            if child.id not in seen:
                add(branch, child, depth + 1, seen | {child.id})

    for task in roots or tasks:
        add(tree, task, 0, frozenset({task.id}))
    return tree


def legend() -> Text:
    text = Text("Legend: ")
    for status, name in (
        ("done", "Done"),
        ("ready", "Ready"),
        ("blocked", "Blocked"),
        ("in_progress", "In Progress"),
        ("failed", "Failed"),
    ):
        text.append(f"{STATUS_ICONS[status]} {name}", style=STATUS_STYLES[status])
        text.append("  ")
    return text


def ready_summary(graph: TaskGraph) -> Text:
    ready = ready_tasks(graph)
    if not ready:
        return Text("No tasks ready for execution", style="yellow")
    agents = "1 agent" if len(ready) == 1 else f"{len(ready)} agents"
    text = Text("Ready for parallel execution: ")
    text.append(", ".join(task.identifier for task in ready), style="bold cyan")
    text.append(f" ({agents})", style="dim")
    return text


def stats_line(graph: TaskGraph) -> str:
    stats = graph_stats(graph)
    return (
        f"{stats.done}/{stats.total} done, {stats.ready} ready, "
        f"{stats.blocked} blocked, {stats.in_progress} in progress, "
        f"{stats.failed} failed"
    )


def render_task_tree(
    console: Console,
    graph: TaskGraph,
    overrides: Mapping[str, str] | None = None,
) -> None:
    """Print the tree, legend and counts, with live ``overrides`` applied."""
    snapshot = apply_overrides(graph, overrides) if overrides else graph
    console.print(
        Group(
            build_task_tree(snapshot),
            Text(""),
            legend(),
            ready_summary(snapshot),
            Text(stats_line(snapshot), style="dim"),
        )
    )
