"""Structured completion reports emitted by execution sessions.

A session ends its turn with a small JSON or YAML document whose ``status``
says what happened (``SUBTASK_COMPLETE``, ``ALL_BLOCKED``, ...). The document
is usually embedded in a longer transcript, so parsing first looks for the
last delimited block that carries a status, then validates the fields that
status requires.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar, NamedTuple

import yaml

SUBTASK_COMPLETE = "SUBTASK_COMPLETE"
SUBTASK_PARTIAL = "SUBTASK_PARTIAL"
ALL_COMPLETE = "ALL_COMPLETE"
ALL_BLOCKED = "ALL_BLOCKED"
NO_SUBTASKS = "NO_SUBTASKS"
VERIFICATION_FAILED = "VERIFICATION_FAILED"
NEEDS_WORK = "NEEDS_WORK"
PASS = "PASS"
FAIL = "FAIL"

OUTCOME_STATUSES = (
    SUBTASK_COMPLETE,
    SUBTASK_PARTIAL,
    ALL_COMPLETE,
    ALL_BLOCKED,
    NO_SUBTASKS,
    VERIFICATION_FAILED,
    NEEDS_WORK,
    PASS,
    FAIL,
)
TERMINAL_STATUSES = frozenset(
    {
        SUBTASK_COMPLETE,
        ALL_COMPLETE,
        ALL_BLOCKED,
        NO_SUBTASKS,
        VERIFICATION_FAILED,
        PASS,
        FAIL,
    }
)
SUCCESS_STATUSES = frozenset({SUBTASK_COMPLETE, ALL_COMPLETE, PASS})
FAILURE_STATUSES = frozenset({VERIFICATION_FAILED, FAIL})


class OutcomeParseError(ValueError):
    """A report could not be read; ``raw_output`` holds the original text."""

    def __init__(self, message: str, raw_output: str) -> None:
        super().__init__(message)
        self.raw_output = raw_output


class OutcomeValidationError(OutcomeParseError):
    """A report parsed but is missing or mistyping required fields."""

    def __init__(self, status: str, errors: list[str], raw_output: str) -> None:
        super().__init__(
            f"invalid {status} report: {'; '.join(errors)}",
            raw_output,
        )
        self.status = status
        self.errors = tuple(errors)


@dataclass(frozen=True, kw_only=True)
class Outcome:
    status: ClassVar[str] = ""

    timestamp: str
    subtask_id: str | None = None
    parent_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_success(self) -> bool:
        return self.status in SUCCESS_STATUSES

    @property
    def is_failure(self) -> bool:
        return self.status in FAILURE_STATUSES


@dataclass(frozen=True, kw_only=True)
class SubtaskComplete(Outcome):
    status: ClassVar[str] = SUBTASK_COMPLETE

    subtask_id: str
    commit_hash: str
    files_modified: list[str]
    verification_results: dict[str, Any]


@dataclass(frozen=True, kw_only=True)
class SubtaskPartial(Outcome):
    status: ClassVar[str] = SUBTASK_PARTIAL

    subtask_id: str
    progress_made: list[Any]
    remaining_work: list[Any]


@dataclass(frozen=True, kw_only=True)
class AllComplete(Outcome):
    status: ClassVar[str] = ALL_COMPLETE

    parent_id: str
    completed_count: int | float


@dataclass(frozen=True, kw_only=True)
class AllBlocked(Outcome):
    status: ClassVar[str] = ALL_BLOCKED

    parent_id: str
    blocked_count: int | float
    waiting_on: list[Any]


@dataclass(frozen=True, kw_only=True)
class NoSubtasks(Outcome):
    status: ClassVar[str] = NO_SUBTASKS

    parent_id: str


@dataclass(frozen=True, kw_only=True)
class VerificationFailed(Outcome):
    status: ClassVar[str] = VERIFICATION_FAILED

    subtask_id: str
    error_type: str
    error_output: str
    attempted_fixes: list[Any]
    uncommitted_files: list[Any]


@dataclass(frozen=True, kw_only=True)
class NeedsWork(Outcome):
    """Rework request, either from an executor (``subtask_id``) or a verifier
    (``failing_subtasks``)."""

    status: ClassVar[str] = NEEDS_WORK

    issues: list[Any] = field(default_factory=list)
    suggested_fixes: list[Any] = field(default_factory=list)
    failing_subtasks: list[Any] = field(default_factory=list)


@dataclass(frozen=True, kw_only=True)
class Pass(Outcome):
    status: ClassVar[str] = PASS


@dataclass(frozen=True, kw_only=True)
class Fail(Outcome):
    status: ClassVar[str] = FAIL

    reason: str


# -- field checks --


def _is_string(value: object) -> bool:
    return isinstance(value, str)


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_list(value: object) -> bool:
    return isinstance(value, list)


def _is_object(value: object) -> bool:
    return isinstance(value, dict)


_TYPE_CHECKS: dict[str, Callable[[object], bool]] = {
    "string": _is_string,
    "number": _is_number,
    "array": _is_list,
    "object": _is_object,
}


def _check_fields(
    status: str,
    data: Mapping[str, Any],
    fields: tuple[tuple[str, str], ...],
) -> list[str]:
    errors: list[str] = []
    for key, kind in fields:
        if not _TYPE_CHECKS[kind](data.get(key)):
            errors.append(f"{status} requires {key} ({kind})")
    return errors


def _validate_subtask_complete(data: Mapping[str, Any]) -> list[str]:
    return _check_fields(
        SUBTASK_COMPLETE,
        data,
        (
            ("subtaskId", "string"),
            ("commitHash", "string"),
            ("filesModified", "array"),
            ("verificationResults", "object"),
        ),
    )


def _validate_subtask_partial(data: Mapping[str, Any]) -> list[str]:
    return _check_fields(
        SUBTASK_PARTIAL,
        data,
        (
            ("subtaskId", "string"),
            ("progressMade", "array"),
            ("remainingWork", "array"),
        ),
    )


def _validate_all_complete(data: Mapping[str, Any]) -> list[str]:
    return _check_fields(
        ALL_COMPLETE, data, (("parentId", "string"), ("completedCount", "number"))
    )


def _validate_all_blocked(data: Mapping[str, Any]) -> list[str]:
    return _check_fields(
        ALL_BLOCKED,
        data,
        (
            ("parentId", "string"),
            ("blockedCount", "number"),
            ("waitingOn", "array"),
        ),
    )


def _validate_no_subtasks(data: Mapping[str, Any]) -> list[str]:
    return _check_fields(NO_SUBTASKS, data, (("parentId", "string"),))


def _validate_verification_failed(data: Mapping[str, Any]) -> list[str]:
    return _check_fields(
        VERIFICATION_FAILED,
        data,
        (
            ("subtaskId", "string"),
            ("errorType", "string"),
            ("errorOutput", "string"),
            ("attemptedFixes", "array"),
            ("uncommittedFiles", "array"),
        ),
    )


def _validate_needs_work(data: Mapping[str, Any]) -> list[str]:
    executor_form = _is_string(data.get("subtaskId"))
    failing = data.get("failingSubtasks")
    verifier_form = _is_list(failing) and len(failing) > 0
    if not executor_form and not verifier_form:
        return [
            f"{NEEDS_WORK} requires either subtaskId (string) "
            "or failingSubtasks (non-empty array)"
        ]
    if executor_form and not verifier_form:
        return _check_fields(
            NEEDS_WORK, data, (("issues", "array"), ("suggestedFixes", "array"))
        )
    return []


def _validate_pass(data: Mapping[str, Any]) -> list[str]:
    return []


def _validate_fail(data: Mapping[str, Any]) -> list[str]:
    return _check_fields(FAIL, data, (("reason", "string"),))


# -- builders --


def _common(data: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {"timestamp": data["timestamp"], "data": data}
    if _is_string(data.get("subtaskId")):
        out["subtask_id"] = data["subtaskId"]
    if _is_string(data.get("parentId")):
        out["parent_id"] = data["parentId"]
    return out


def _build_subtask_complete(data: dict[str, Any]) -> Outcome:
    return SubtaskComplete(
        **_common(data),
        commit_hash=data["commitHash"],
        files_modified=data["filesModified"],
        verification_results=data["verificationResults"],
    )


def _build_subtask_partial(data: dict[str, Any]) -> Outcome:
    return SubtaskPartial(
        **_common(data),
        progress_made=data["progressMade"],
        remaining_work=data["remainingWork"],
    )


def _build_all_complete(data: dict[str, Any]) -> Outcome:
    return AllComplete(**_common(data), completed_count=data["completedCount"])


def _build_all_blocked(data: dict[str, Any]) -> Outcome:
    return AllBlocked(
        **_common(data),
        blocked_count=data["blockedCount"],
        waiting_on=data["waitingOn"],
    )


def _build_no_subtasks(data: dict[str, Any]) -> Outcome:
    return NoSubtasks(**_common(data))


def _build_verification_failed(data: dict[str, Any]) -> Outcome:
    return VerificationFailed(
        **_common(data),
        error_type=data["errorType"],
        error_output=data["errorOutput"],
        attempted_fixes=data["attemptedFixes"],
        uncommitted_files=data["uncommittedFiles"],
    )


def _list_or_empty(value: object) -> list[Any]:
    return value if isinstance(value, list) else []


def _build_needs_work(data: dict[str, Any]) -> Outcome:
    return NeedsWork(
        **_common(data),
        issues=_list_or_empty(data.get("issues")),
        suggested_fixes=_list_or_empty(data.get("suggestedFixes")),
        failing_subtasks=_list_or_empty(data.get("failingSubtasks")),
    )


def _build_pass(data: dict[str, Any]) -> Outcome:
    return Pass(**_common(data))


def _build_fail(data: dict[str, Any]) -> Outcome:
    return Fail(**_common(data), reason=data["reason"])


class _OutcomeKind(NamedTuple):
    validate: Callable[[Mapping[str, Any]], list[str]]
    build: Callable[[dict[str, Any]], Outcome]


_KINDS: dict[str, _OutcomeKind] = {
    SUBTASK_COMPLETE: _OutcomeKind(_validate_subtask_complete, _build_subtask_complete),
    SUBTASK_PARTIAL: _OutcomeKind(_validate_subtask_partial, _build_subtask_partial),
    ALL_COMPLETE: _OutcomeKind(_validate_all_complete, _build_all_complete),
    ALL_BLOCKED: _OutcomeKind(_validate_all_blocked, _build_all_blocked),
    NO_SUBTASKS: _OutcomeKind(_validate_no_subtasks, _build_no_subtasks),
    VERIFICATION_FAILED: _OutcomeKind(
        _validate_verification_failed, _build_verification_failed
    ),
    NEEDS_WORK: _OutcomeKind(_validate_needs_work, _build_needs_work),
    PASS: _OutcomeKind(_validate_pass, _build_pass),
    FAIL: _OutcomeKind(_validate_fail, _build_fail),
}


def validate_outcome_fields(data: Mapping[str, Any]) -> list[str]:
    """Return every problem with ``data``; an empty list means it is valid."""
    status = data.get("status")
    if "status" not in data:
        return ["missing required field: status"]
    if not isinstance(status, str) or status not in _KINDS:
        return [
            f"invalid status value {status!r}; expected one of: "
            + ", ".join(OUTCOME_STATUSES)
        ]
    errors: list[str] = []
    if not _is_string(data.get("timestamp")):
        errors.append("missing required field: timestamp (ISO-8601 string)")
    errors.extend(_KINDS[status].validate(data))
    return errors


# -- text extraction --


class _ReportLoader(yaml.SafeLoader):
    """SafeLoader that leaves ISO timestamps as strings."""


_ReportLoader.yaml_implicit_resolvers = {
    key: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for key, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

_DASHED_BLOCK_RE = re.compile(r"---[ \t]*\n(.*?)\n---", re.DOTALL)
_FENCED_YAML_RE = re.compile(r"```ya?ml[ \t]*\n(.*?)\n```", re.DOTALL)
_FENCED_JSON_RE = re.compile(r"```json[ \t]*\n(.*?)\n```", re.DOTALL)
_JSON_STATUS_RE = re.compile(r"\{[^{}]*\"status\"\s*:\s*\"[A-Z_]+\"")


def _last_containing(pattern: re.Pattern[str], text: str, marker: str) -> str | None:
    for block in reversed(pattern.findall(text)):
        content = block.strip()
        if marker in content:
            return content
    return None


def extract_structured_block(text: str) -> str | None:
    """Return the last status-bearing block in a transcript, if any.

    Tried in order: ``---`` delimited YAML, fenced YAML, fenced JSON, then a
    bare JSON object containing ``"status"``.
    """
    for pattern, marker in (
        (_DASHED_BLOCK_RE, "status:"),
        (_FENCED_YAML_RE, "status:"),
        (_FENCED_JSON_RE, '"status"'),
    ):
        found = _last_containing(pattern, text, marker)
        if found is not None:
            return found

    decoder = json.JSONDecoder()
    for match in reversed(list(_JSON_STATUS_RE.finditer(text))):
        try:
            obj, end = decoder.raw_decode(text, match.start())
        except (ValueError, RecursionError):
            continue
        if isinstance(obj, dict) and "status" in obj:
            return text[match.start() : end]
    return None


def _load_document(text: str) -> Any:
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        pass
    try:
        return yaml.load(text, Loader=_ReportLoader)
    except (yaml.YAMLError, RecursionError):
        return None


def _load_report(raw_output: str) -> Any:
    trimmed = raw_output.strip()
    block = extract_structured_block(trimmed)
    return _load_document(block if block is not None else trimmed)


def parse_outcome(raw_output: str) -> Outcome:
    """Parse and validate a completion report.

    Raises ``OutcomeParseError`` when no document can be read, and
    ``OutcomeValidationError`` listing every missing or mistyped field.
    """
    if not isinstance(raw_output, str) or not raw_output.strip():
        raise OutcomeParseError("report is empty", raw_output or "")

    data = _load_report(raw_output)
    if data is None:
        raise OutcomeParseError(
            "could not parse report as JSON or YAML; "
            "expected a structured block with a status field",
            raw_output,
        )
    if not isinstance(data, dict):
        kind = "array" if isinstance(data, list) else type(data).__name__
        raise OutcomeParseError(f"report must be an object, got {kind}", raw_output)

    if "status" not in data:
        raise OutcomeParseError("report missing required field: status", raw_output)
    status = data["status"]
    if not isinstance(status, str) or status not in _KINDS:
        raise OutcomeParseError(
            f"invalid status value {status!r}; expected one of: "
            + ", ".join(OUTCOME_STATUSES),
            raw_output,
        )

    errors = validate_outcome_fields(data)
    if errors:
        raise OutcomeValidationError(status, errors, raw_output)
    return _KINDS[status].build(data)


def extract_status(raw_output: str) -> str | None:
    """Best-effort status lookup without field validation. Never raises."""
    if not isinstance(raw_output, str) or not raw_output.strip():
        return None
    data = _load_report(raw_output)
    if not isinstance(data, dict):
        return None
    status = data.get("status")
    if isinstance(status, str) and status in _KINDS:
        return status
    return None


def is_terminal_status(status: str) -> bool:
    return status in TERMINAL_STATUSES


def is_success_status(status: str) -> bool:
    return status in SUCCESS_STATUSES


def is_failure_status(status: str) -> bool:
    return status in FAILURE_STATUSES
