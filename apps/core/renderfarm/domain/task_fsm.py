"""Render task and attempt lifecycle transition rules."""

from renderfarm.errors import ConflictError
from renderfarm.schemas.task import AttemptStatus, ReportKind, TaskStatus

_TERMINAL_ATTEMPT_STATES: set[AttemptStatus] = {
    AttemptStatus.FAILED,
    AttemptStatus.DONE,
}

_ALLOWED_ATTEMPT_TRANSITIONS: dict[AttemptStatus, set[AttemptStatus]] = {
    AttemptStatus.PROCESSING: {AttemptStatus.DONE, AttemptStatus.FAILED},
    AttemptStatus.DONE: set(),
    AttemptStatus.FAILED: set(),
}

# A failed task re-enters processing on a fresh start; a done task never does.
_ALLOWED_TASK_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.QUEUED: {TaskStatus.PROCESSING},
    TaskStatus.PROCESSING: {TaskStatus.PROCESSING, TaskStatus.DONE, TaskStatus.FAILED},
    TaskStatus.FAILED: {TaskStatus.PROCESSING},
    TaskStatus.DONE: set(),
}


def terminal_statuses_for(kind: ReportKind) -> tuple[AttemptStatus, TaskStatus]:
    """Map a finish report kind to the terminal (attempt, task) status pair."""
    if kind is ReportKind.ERROR:
        return AttemptStatus.FAILED, TaskStatus.FAILED
    return AttemptStatus.DONE, TaskStatus.DONE


def is_terminal_attempt_status(status: AttemptStatus) -> bool:
    return status in _TERMINAL_ATTEMPT_STATES


def allowed_next_attempt_statuses(status: AttemptStatus) -> list[AttemptStatus]:
    """Return deterministically ordered allowed successors for an attempt status."""
    return sorted(_ALLOWED_ATTEMPT_TRANSITIONS.get(status, set()), key=lambda s: s.value)


def allowed_next_task_statuses(status: TaskStatus) -> list[TaskStatus]:
    """Return deterministically ordered allowed successors for a task status."""
    return sorted(_ALLOWED_TASK_TRANSITIONS.get(status, set()), key=lambda s: s.value)


def ensure_attempt_transition(old_status: AttemptStatus, new_status: AttemptStatus) -> None:
    """Validate an attempt transition according to lifecycle rules."""
    if old_status in _TERMINAL_ATTEMPT_STATES:
        raise ConflictError(
            "Terminal attempt state cannot be mutated",
            details={
                "current_status": old_status,
                "attempted_status": new_status,
                "allowed_next_statuses": [],
            },
            code="FSM_TERMINAL_IMMUTABLE",
        )

    if new_status not in _ALLOWED_ATTEMPT_TRANSITIONS.get(old_status, set()):
        raise ConflictError(
            "Invalid attempt status transition",
            details={
                "current_status": old_status,
                "attempted_status": new_status,
                "allowed_next_statuses": allowed_next_attempt_statuses(old_status),
            },
            code="FSM_TRANSITION_INVALID",
        )


def ensure_task_transition(old_status: TaskStatus, new_status: TaskStatus) -> None:
    """Validate a task transition according to lifecycle rules."""
    if old_status is TaskStatus.DONE:
        raise ConflictError(
            "Completed task cannot be mutated",
            details={
                "current_status": old_status,
                "attempted_status": new_status,
                "allowed_next_statuses": [],
            },
            code="FSM_TERMINAL_IMMUTABLE",
        )

    if new_status not in _ALLOWED_TASK_TRANSITIONS.get(old_status, set()):
        raise ConflictError(
            "Invalid task status transition",
            details={
                "current_status": old_status,
                "attempted_status": new_status,
                "allowed_next_statuses": allowed_next_task_statuses(old_status),
            },
            code="FSM_TRANSITION_INVALID",
        )
