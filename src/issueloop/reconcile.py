"""Pull current parent-issue statuses from the tracker into local records."""

from __future__ import annotations

import re
from dataclasses import dataclass

from rich.console import Console

from .local_state import LocalStateStore
from .tracker import RemoteTracker


@dataclass
class SyncResult:
    synced: int = 0
    failed: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"synced": self.synced, "failed": self.failed, "skipped": self.skipped}


def local_id_pattern(prefix: str = "LOC") -> re.Pattern[str]:
    """Ids minted locally (``LOC-12``) or by task refinement (``task-3``)."""
    return re.compile(rf"^({re.escape(prefix)}-\d+|task-\d+)$")


def is_local_id(issue_id: str, pattern: re.Pattern[str] | None = None) -> bool:
    return bool((pattern or local_id_pattern()).match(issue_id))


def sync_backend_statuses(
    store: LocalStateStore,
    tracker: RemoteTracker | None,
    *,
    local_pattern: re.Pattern[str] | None = None,
    console: Console | None = None,
) -> SyncResult:
    """Refresh every non-local issue's parent status from ``tracker``.

    Issues are visited one at a time and each gets exactly one fetch. A failed
    fetch or a failed write counts as ``failed`` and the loop moves on; an
    unchanged status is not rewritten. Every other fetched issue counts as
    ``synced``.
    """
    result = SyncResult()
    if tracker is None:
        return result

    local = local_pattern or local_id_pattern(store.id_prefix)
    for issue_id in store.list_issue_ids():
        if local.match(issue_id):
            result.skipped += 1
            continue

        spec = store.read_parent_spec(issue_id)
        if spec is None:
            result.skipped += 1
            continue

        try:
            status = tracker.fetch_issue_status(issue_id)
        except Exception as exc:
            status = None
            if console is not None:
                console.print(f"  [yellow]{issue_id}: status fetch failed ({exc})[/yellow]")
        if status is None:
            result.failed += 1
            continue

        if spec.get("status") != status:
            try:
                store.update_parent_status(issue_id, status)
            except OSError as exc:
                result.failed += 1
                if console is not None:
                    console.print(f"  [yellow]{issue_id}: status write failed ({exc})[/yellow]")
                continue
            if console is not None:
                console.print(
                    f"  [dim]{issue_id}: {spec.get('status') or '-'} -> {status}[/dim]"
                )
        result.synced += 1

    return result
