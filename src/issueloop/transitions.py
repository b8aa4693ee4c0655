"""Turn validated outcomes into local state changes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .local_state import IterationLogEntry, LocalStateStore, PendingUpdate
from .outcome import (
    FAIL,
    NEEDS_WORK,
    PASS,
    SUBTASK_COMPLETE,
    SUBTASK_PARTIAL,
    VERIFICATION_FAILED,
    NeedsWork,
    Outcome,
    SubtaskComplete,
    VerificationFailed,
)
from .util import utc_now_iso

_ERROR_OUTPUT_LIMIT = 500
_FOOTER = ["", "---", "*Generated by issueloop*"]


@dataclass(frozen=True)
class Transition:
    task_status: str | None
    iteration_status: str | None


_TRANSITIONS: dict[str, Transition] = {
    SUBTASK_COMPLETE: Transition("done", "success"),
    SUBTASK_PARTIAL: Transition("in_progress", "partial"),
    VERIFICATION_FAILED: Transition("failed", "failed"),
    NEEDS_WORK: Transition("in_progress", "partial"),
    PASS: Transition(None, "success"),
    FAIL: Transition(None, "failed"),
}
_NO_TRANSITION = Transition(None, None)


def transition_for(outcome: Outcome) -> Transition:
    """Sub-task status and iteration status implied by an outcome.

    Parent-level kinds (ALL_COMPLETE, ALL_BLOCKED, NO_SUBTASKS) touch neither.
    """
    return _TRANSITIONS.get(outcome.status, _NO_TRANSITION)


def iteration_entry_for(
    outcome: Outcome,
    *,
    attempt: int,
    started_at: str,
    completed_at: str | None = None,
) -> IterationLogEntry | None:
    transition = transition_for(outcome)
    if transition.iteration_status is None or not outcome.subtask_id:
        return None
    entry: IterationLogEntry = {
        "subtask_id": outcome.subtask_id,
        "attempt": attempt,
        "started_at": started_at,
        "completed_at": completed_at or utc_now_iso(),
        "status": transition.iteration_status,
    }
    if isinstance(outcome, SubtaskComplete):
        entry["files_modified"] = list(outcome.files_modified)
        entry["commit_hash"] = outcome.commit_hash
    elif isinstance(outcome, VerificationFailed):
        entry["error"] = f"{outcome.error_type}: {outcome.error_output[:_ERROR_OUTPUT_LIMIT]}"
    return entry


def completion_comment(outcome: SubtaskComplete) -> str:
    results = outcome.verification_results
    lines = [
        "## Subtask Completed",
        "",
        f"**Commit**: `{outcome.commit_hash}`",
        "",
        "### Files Modified",
        *(f"- `{path}`" for path in outcome.files_modified),
        "",
        "### Verification Results",
        *(f"- {key}: {value}" for key, value in results.items()),
    ]
    return "\n".join(lines + _FOOTER)


def failure_comment(outcome: VerificationFailed) -> str:
    lines = [
        "## Verification Failed",
        "",
        f"**Error Type**: {outcome.error_type}",
        "",
        "### Error Output",
        "```",
        outcome.error_output[:_ERROR_OUTPUT_LIMIT],
        "```",
        "",
        "### Attempted Fixes",
        *(f"- {fix}" for fix in outcome.attempted_fixes),
        "",
        "### Uncommitted Files",
        *(f"- `{path}`" for path in outcome.uncommitted_files),
    ]
    return "\n".join(lines + _FOOTER)


def needs_work_comment(outcome: NeedsWork) -> str:
    lines = [
        "## Needs Rework",
        "",
        "### Issues Found",
        *(f"- {issue}" for issue in outcome.issues),
        "",
        "### Suggested Fixes",
        *(f"- {fix}" for fix in outcome.suggested_fixes),
    ]
    return "\n".join(lines + _FOOTER)


def pending_updates_for(outcome: Outcome) -> list[tuple[str, dict[str, Any]]]:
    """Backend mutations to queue for an outcome, as ``(type, payload)`` pairs."""
    subtask_id = outcome.subtask_id
    if not subtask_id:
        return []
    target = {"issue_id": subtask_id, "identifier": subtask_id}
    if isinstance(outcome, SubtaskComplete):
        return [
            ("status_change", {**target, "old_status": "In Progress", "new_status": "Done"}),
            ("add_comment", {**target, "body": completion_comment(outcome)}),
        ]
    if isinstance(outcome, VerificationFailed):
        return [("add_comment", {**target, "body": failure_comment(outcome)})]
    if isinstance(outcome, NeedsWork):
        return [("add_comment", {**target, "body": needs_work_comment(outcome)})]
    return []


def record_outcome(
    store: LocalStateStore,
    issue_id: str,
    outcome: Outcome,
    *,
    attempt: int,
    started_at: str,
) -> list[PendingUpdate]:
    """Log the attempt, patch the sub-task status and queue backend updates.

    Each write is atomic on its own; a crash between them can leave the log
    ahead of the status until the next reconciliation.
    """
    entry = iteration_entry_for(outcome, attempt=attempt, started_at=started_at)
    if entry is not None:
        store.append_iteration_log_entry(issue_id, entry)

    transition = transition_for(outcome)
    if transition.task_status is not None and outcome.subtask_id:
        store.update_subtask_status(issue_id, outcome.subtask_id, transition.task_status)

    return [
        store.enqueue_pending_update(issue_id, update_type, payload)
        for update_type, payload in pending_updates_for(outcome)
    ]
