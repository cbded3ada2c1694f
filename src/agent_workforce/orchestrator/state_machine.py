"""Task lifecycle state machine.

`plan_transition` is pure: given the current task view, an action and its
payload it either raises or returns the exact column updates. `TaskStore`
applies the plan as one conditional UPDATE guarded on the current status.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from agent_workforce.orchestrator.errors import InvalidTransition
from agent_workforce.orchestrator.models import TaskAction, TaskStatus, TaskView

ALLOWED_SOURCES: dict[TaskAction, frozenset[TaskStatus]] = {
    TaskAction.APPROVE: frozenset({TaskStatus.SUGGESTED}),
    TaskAction.REJECT: frozenset({TaskStatus.SUGGESTED}),
    TaskAction.START: frozenset({TaskStatus.APPROVED}),
    TaskAction.BLOCK: frozenset({TaskStatus.IN_PROGRESS}),
    TaskAction.RESUME: frozenset({TaskStatus.WAITING, TaskStatus.BLOCKED}),
    TaskAction.COMPLETE: frozenset({TaskStatus.IN_PROGRESS}),
    TaskAction.FAIL: frozenset({TaskStatus.IN_PROGRESS}),
}

# Timestamp column stamped on first entry into the target status.
_STAMP_COLUMNS: dict[TaskStatus, str] = {
    TaskStatus.APPROVED: "approved_at",
    TaskStatus.IN_PROGRESS: "started_at",
    TaskStatus.WAITING: "blocked_at",
    TaskStatus.BLOCKED: "blocked_at",
    TaskStatus.COMPLETED: "completed_at",
}

_BLOCK_TARGETS = frozenset({TaskStatus.WAITING, TaskStatus.BLOCKED})


@dataclass(slots=True)
class TransitionPayload:
    """Arguments of one transition; each action reads only the fields it owns."""

    actor: str | None = None
    approval_reasoning: str | None = None
    rejection_reasoning: str | None = None
    assign_to_module_id: int | None = None
    assign_to_agent_id: int | None = None
    reason: str | None = None
    block_status: TaskStatus = TaskStatus.WAITING
    note: str | None = None
    completion_summary: str | None = None
    error_message: str | None = None
    execution_id: int | None = None


@dataclass(slots=True)
class TransitionPlan:
    """Column updates for one accepted transition."""

    action: TaskAction
    status_from: TaskStatus
    status_to: TaskStatus
    actor: str | None
    values: dict[str, Any]
    stamp_column: str | None
    stamped_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


def is_allowed(current: TaskStatus, action: TaskAction) -> bool:
    return current in ALLOWED_SOURCES[action]


def plan_transition(  # noqa: C901, PLR0912
    task: TaskView,
    action: TaskAction,
    payload: TransitionPayload,
    now: datetime,
) -> TransitionPlan:
    """Validate a transition and compute its column updates without touching storage."""

    if not is_allowed(task.status, action):
        raise InvalidTransition(
            current=task.status.value,
            action=action.value,
            task_id=task.task_id,
        )

    actor = _clean(payload.actor)
    values: dict[str, Any] = {}
    details: dict[str, Any] = {}

    if action == TaskAction.APPROVE:
        values["approval_reasoning"] = _require(payload.approval_reasoning, "approval_reasoning")
        if payload.assign_to_agent_id is not None:
            values["assigned_to_agent_id"] = payload.assign_to_agent_id
            values["assigned_to_module_id"] = None
            details["assigned_to_agent_id"] = payload.assign_to_agent_id
        elif payload.assign_to_module_id is not None:
            values["assigned_to_module_id"] = payload.assign_to_module_id
            values["assigned_to_agent_id"] = None
            details["assigned_to_module_id"] = payload.assign_to_module_id
        status_to = TaskStatus.APPROVED
    elif action == TaskAction.REJECT:
        values["rejection_reasoning"] = _require(
            payload.rejection_reasoning,
            "rejection_reasoning",
        )
        status_to = TaskStatus.REJECTED
    elif action == TaskAction.START:
        actor = _require(actor, "actor")
        status_to = TaskStatus.IN_PROGRESS
    elif action == TaskAction.BLOCK:
        reason = _require(payload.reason, "reason")
        actor = _require(actor, "actor")
        if payload.block_status not in _BLOCK_TARGETS:
            raise ValueError(
                f"block status must be waiting or blocked, got {payload.block_status.value!r}.",
            )
        values["blocked_reason"] = reason
        status_to = payload.block_status
    elif action == TaskAction.RESUME:
        note = _clean(payload.note)
        values["blocked_reason"] = f"Resumed: {note}" if note else None
        status_to = TaskStatus.IN_PROGRESS
    elif action == TaskAction.COMPLETE:
        values["completion_summary"] = _require(
            payload.completion_summary,
            "completion_summary",
        )
        values["blocked_reason"] = None
        status_to = TaskStatus.COMPLETED
    else:
        error_message = _require(payload.error_message, "error_message")
        values["completion_summary"] = f"Failed: {error_message}"
        details["error_message"] = error_message
        status_to = TaskStatus.FAILED

    if payload.execution_id is not None and action in {
        TaskAction.START,
        TaskAction.RESUME,
        TaskAction.COMPLETE,
        TaskAction.FAIL,
    }:
        values["execution_id"] = payload.execution_id
        details["execution_id"] = payload.execution_id

    return TransitionPlan(
        action=action,
        status_from=task.status,
        status_to=status_to,
        actor=actor,
        values=values,
        stamp_column=_STAMP_COLUMNS.get(status_to),
        stamped_at=now,
        details=details,
    )


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _require(value: str | None, name: str) -> str:
    cleaned = _clean(value)
    if cleaned is None:
        raise ValueError(f"{name} is required.")
    return cleaned
