"""
Project lifecycle state machine.

``TRANSITIONS`` is the only source of truth for which status may follow
which. Every status write, whether requested explicitly or caused by an
estimation/quotation event, goes through :func:`ensure_transition`, except
for the two named overrides at the bottom of this module.
"""
from types import MappingProxyType
from typing import Optional

from models.project import ProjectStatus
from services.exceptions import ConflictError, ValidationError

S = ProjectStatus

TRANSITIONS = MappingProxyType({
    S.DRAFT: frozenset({S.ESTIMATION_PREPARED}),
    S.ESTIMATION_PREPARED: frozenset({S.QUOTATION_SENT, S.ON_HOLD, S.CANCELLED}),
    S.QUOTATION_SENT: frozenset({S.QUOTATION_APPROVED, S.QUOTATION_REJECTED, S.ON_HOLD, S.CANCELLED}),
    S.QUOTATION_APPROVED: frozenset({S.CONTRACT_SIGNED, S.ON_HOLD, S.CANCELLED}),
    # Left only by withdrawing the quotation
    S.QUOTATION_REJECTED: frozenset(),
    S.CONTRACT_SIGNED: frozenset({S.WORK_STARTED, S.ON_HOLD, S.CANCELLED}),
    S.WORK_STARTED: frozenset({S.IN_PROGRESS, S.ON_HOLD, S.CANCELLED}),
    S.IN_PROGRESS: frozenset({S.WORK_COMPLETED, S.ON_HOLD, S.CANCELLED}),
    S.WORK_COMPLETED: frozenset({S.QUALITY_CHECK, S.ON_HOLD}),
    S.QUALITY_CHECK: frozenset({S.CLIENT_HANDOVER, S.WORK_COMPLETED}),
    S.CLIENT_HANDOVER: frozenset({S.FINAL_INVOICE_SENT, S.ON_HOLD}),
    S.FINAL_INVOICE_SENT: frozenset({S.PAYMENT_RECEIVED, S.ON_HOLD}),
    S.PAYMENT_RECEIVED: frozenset({S.PROJECT_CLOSED}),
    S.ON_HOLD: frozenset({S.IN_PROGRESS, S.WORK_STARTED, S.CANCELLED}),
    S.CANCELLED: frozenset(),
    S.PROJECT_CLOSED: frozenset(),
})

TERMINAL_STATUSES = frozenset({S.CANCELLED, S.PROJECT_CLOSED})

# Privileged overrides: source statuses each one may move away from
PROGRESS_COMPLETION_SOURCES = frozenset({
    S.DRAFT,
    S.ESTIMATION_PREPARED,
    S.QUOTATION_SENT,
    S.QUOTATION_APPROVED,
    S.QUOTATION_REJECTED,
    S.CONTRACT_SIGNED,
    S.WORK_STARTED,
    S.IN_PROGRESS,
    S.ON_HOLD,
})
QUOTATION_WITHDRAWAL_SOURCES = frozenset({S.QUOTATION_SENT, S.QUOTATION_REJECTED})

PROGRESS_COMPLETION = "progress_completion"
QUOTATION_WITHDRAWAL = "quotation_withdrawal"
OVERRIDES = MappingProxyType({
    PROGRESS_COMPLETION: (PROGRESS_COMPLETION_SOURCES, S.WORK_COMPLETED),
    QUOTATION_WITHDRAWAL: (QUOTATION_WITHDRAWAL_SOURCES, S.ESTIMATION_PREPARED),
})


def as_status(value) -> ProjectStatus:
    try:
        return ProjectStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid project status: {value}")


def is_terminal(status) -> bool:
    return as_status(status) in TERMINAL_STATUSES


def is_valid_transition(current, requested) -> bool:
    return as_status(requested) in TRANSITIONS[as_status(current)]


def ensure_transition(current, requested) -> ProjectStatus:
    """Return ``requested`` as a status if the edge exists, raise ConflictError otherwise."""
    current, requested = as_status(current), as_status(requested)
    if requested not in TRANSITIONS[current]:
        raise ConflictError(
            f"Invalid status transition from {current.value} to {requested.value}"
        )
    return requested


def ensure_override(name: str, current) -> ProjectStatus:
    """Return the target of a privileged override, raise ConflictError if it does not apply."""
    sources, target = OVERRIDES[name]
    current = as_status(current)
    if current not in sources:
        raise ConflictError(
            f"Cannot apply {name.replace('_', ' ')} to a project in status {current.value}"
        )
    return target


def status_for_progress(current, progress: int) -> Optional[ProjectStatus]:
    """
    Validate a progress value against the project's status.

    Returns the status the project must move to (via the progress
    completion override) or None when the status stays as it is.
    """
    if isinstance(progress, bool) or not isinstance(progress, int):
        raise ValidationError("Progress must be an integer")
    if progress < 0 or progress > 100:
        raise ValidationError("Progress must be between 0 and 100")
    current = as_status(current)
    if current in TERMINAL_STATUSES:
        raise ConflictError(f"Cannot update progress of a project in status {current.value}")
    if progress == 100 and current in PROGRESS_COMPLETION_SOURCES:
        return S.WORK_COMPLETED
    return None
