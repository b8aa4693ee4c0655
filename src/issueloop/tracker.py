"""Contract for remote issue-tracker clients and graph loading helpers."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol, TypedDict

from .graph import TaskGraph, build_task_graph
from .local_state import LocalStateStore


class ParentIssue(TypedDict, total=False):
    id: str
    identifier: str
    title: str
    branch: str
    status: str


class RemoteTracker(Protocol):
    """What the core needs from a Linear/Jira client.

    Every method returns ``None`` when the data is unavailable; timeouts and
    retries are the client's business.
    """

    def fetch_parent_issue(self, issue_id: str) -> ParentIssue | None:
        ...

    def fetch_sub_tasks(self, parent_ref: str) -> Sequence[Mapping[str, Any]] | None:
        ...

    def fetch_issue_status(self, issue_id: str) -> str | None:
        ...


def fetch_task_graph(tracker: RemoteTracker, issue_id: str) -> TaskGraph | None:
    parent = tracker.fetch_parent_issue(issue_id)
    if parent is None:
        return None
    parent_id = parent.get("id") or issue_id
    items = tracker.fetch_sub_tasks(parent_id)
    if items is None:
        return None
    return build_task_graph(parent_id, parent.get("identifier") or issue_id, items)


def load_local_task_graph(store: LocalStateStore, issue_id: str) -> TaskGraph | None:
    """Build the graph from on-disk records (local-only mode or offline)."""
    parent = store.read_parent_spec(issue_id)
    if parent is None:
        return None
    return build_task_graph(
        parent.get("id") or issue_id,
        parent.get("identifier") or issue_id,
        store.read_local_items(issue_id),
    )
