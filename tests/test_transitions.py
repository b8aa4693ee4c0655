from __future__ import annotations

from issueloop.local_state import LocalStateStore
from issueloop.outcome import (
    AllComplete,
    NeedsWork,
    Pass,
    SubtaskComplete,
    SubtaskPartial,
    VerificationFailed,
)
from issueloop.transitions import (
    Transition,
    iteration_entry_for,
    pending_updates_for,
    record_outcome,
    transition_for,
)

TS = "2026-03-01T12:00:00Z"


def _complete() -> SubtaskComplete:
    return SubtaskComplete(
        timestamp=TS,
        subtask_id="ENG-2",
        parent_id="ENG-1",
        commit_hash="abc123",
        files_modified=["src/a.py"],
        verification_results={"tests": "PASS"},
    )


def _failed(output: str = "AssertionError: 1 != 2") -> VerificationFailed:
    return VerificationFailed(
        timestamp=TS,
        subtask_id="ENG-2",
        error_type="tests",
        error_output=output,
        attempted_fixes=["reran flaky test"],
        uncommitted_files=["src/a.py"],
    )


def _seed(store: LocalStateStore) -> None:
    store.write_parent_spec("ENG-1", {"id": "ENG-1", "identifier": "ENG-1", "status": "In Progress"})
    store.write_subtask_spec(
        "ENG-1", {"id": "ENG-2", "identifier": "ENG-2", "title": "child", "status": "in_progress"}
    )


def test_transition_table() -> None:
    assert transition_for(_complete()) == Transition("done", "success")
    assert transition_for(_failed()) == Transition("failed", "failed")
    assert transition_for(
        SubtaskPartial(timestamp=TS, subtask_id="ENG-2", progress_made=[], remaining_work=[])
    ) == Transition("in_progress", "partial")
    assert transition_for(AllComplete(timestamp=TS, parent_id="ENG-1", completed_count=3)) == (
        Transition(None, None)
    )
    assert transition_for(Pass(timestamp=TS)) == Transition(None, "success")


def test_iteration_entry_for_complete() -> None:
    entry = iteration_entry_for(
        _complete(), attempt=2, started_at="2026-03-01T11:00:00Z", completed_at=TS
    )

    assert entry == {
        "subtask_id": "ENG-2",
        "attempt": 2,
        "started_at": "2026-03-01T11:00:00Z",
        "completed_at": TS,
        "status": "success",
        "files_modified": ["src/a.py"],
        "commit_hash": "abc123",
    }


def test_iteration_entry_truncates_error_output() -> None:
    entry = iteration_entry_for(_failed("x" * 800), attempt=1, started_at=TS)

    assert entry is not None
    assert entry["status"] == "failed"
    assert entry["error"] == "tests: " + "x" * 500


def test_iteration_entry_needs_a_subtask() -> None:
    assert iteration_entry_for(Pass(timestamp=TS), attempt=1, started_at=TS) is None


def test_pending_updates_for_complete() -> None:
    updates = pending_updates_for(_complete())

    assert [kind for kind, _ in updates] == ["status_change", "add_comment"]
    status_change = updates[0][1]
    assert status_change == {
        "issue_id": "ENG-2",
        "identifier": "ENG-2",
        "old_status": "In Progress",
        "new_status": "Done",
    }
    body = updates[1][1]["body"]
    assert "## Subtask Completed" in body
    assert "**Commit**: `abc123`" in body
    assert "- `src/a.py`" in body
    assert "- tests: PASS" in body
    assert body.endswith("*Generated by issueloop*")


def test_pending_updates_for_rework() -> None:
    updates = pending_updates_for(
        NeedsWork(timestamp=TS, subtask_id="ENG-2", issues=["off by one"], suggested_fixes=["use <="])
    )

    assert len(updates) == 1
    kind, payload = updates[0]
    assert kind == "add_comment"
    assert "- off by one" in payload["body"]
    assert "- use <=" in payload["body"]


def test_pending_updates_skip_parent_level_outcomes() -> None:
    assert pending_updates_for(AllComplete(timestamp=TS, parent_id="ENG-1", completed_count=1)) == []
    assert pending_updates_for(NeedsWork(timestamp=TS, failing_subtasks=["ENG-2"])) == []


def test_record_outcome_complete(store: LocalStateStore) -> None:
    _seed(store)

    queued = record_outcome(store, "ENG-1", _complete(), attempt=1, started_at=TS)

    spec = store.read_subtask_spec("ENG-1", "ENG-2")
    assert spec is not None and spec["status"] == "done"
    assert spec["title"] == "child"

    log = store.read_iteration_log("ENG-1")
    assert len(log) == 1
    assert log[0]["commit_hash"] == "abc123"

    assert [update["type"] for update in queued] == ["status_change", "add_comment"]
    assert store.read_pending_updates("ENG-1") == queued


def test_record_outcome_verification_failed(store: LocalStateStore) -> None:
    _seed(store)

    record_outcome(store, "ENG-1", _failed(), attempt=3, started_at=TS)

    assert store.read_subtask_spec("ENG-1", "ENG-2")["status"] == "failed"
    entry = store.read_iteration_log("ENG-1")[0]
    assert entry["attempt"] == 3
    assert entry["error"] == "tests: AssertionError: 1 != 2"
    body = store.read_pending_updates("ENG-1")[0]["payload"]["body"]
    assert "## Verification Failed" in body
    assert "- reran flaky test" in body


def test_record_outcome_parent_level_changes_nothing(store: LocalStateStore) -> None:
    _seed(store)

    queued = record_outcome(
        store,
        "ENG-1",
        AllComplete(timestamp=TS, parent_id="ENG-1", completed_count=1),
        attempt=1,
        started_at=TS,
    )

    assert queued == []
    assert store.read_iteration_log("ENG-1") == []
    assert store.read_pending_updates("ENG-1") == []
    assert store.read_subtask_spec("ENG-1", "ENG-2")["status"] == "in_progress"
