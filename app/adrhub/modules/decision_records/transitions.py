from __future__ import annotations

from app.adrhub.constants import DecisionStatus
from app.adrhub.errors import InvalidTransition, ValidationFailed

# Valid status transitions. Deprecated and superseded are terminal.
STATUS_TRANSITIONS: dict[DecisionStatus, frozenset[DecisionStatus]] = {
    DecisionStatus.DRAFT: frozenset({DecisionStatus.PROPOSED, DecisionStatus.DEPRECATED}),
    DecisionStatus.PROPOSED: frozenset({DecisionStatus.IN_REVIEW, DecisionStatus.DEPRECATED}),
    DecisionStatus.IN_REVIEW: frozenset({DecisionStatus.ACCEPTED, DecisionStatus.DEPRECATED}),
    DecisionStatus.ACCEPTED: frozenset({DecisionStatus.DEPRECATED, DecisionStatus.SUPERSEDED}),
    DecisionStatus.DEPRECATED: frozenset(),
    DecisionStatus.SUPERSEDED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in STATUS_TRANSITIONS.items() if not targets)


def parse_status(value: str | DecisionStatus | None, *, field: str = "status") -> DecisionStatus:
    if isinstance(value, DecisionStatus):
        return value
    try:
        return DecisionStatus(value.strip() if isinstance(value, str) else "")
    except ValueError:
        allowed = ", ".join(s.value for s in DecisionStatus)
        raise ValidationFailed(
            "validation failed",
            field_errors={field: f"Invalid status. Must be one of: {allowed}"},
        ) from None


def allowed_transitions(from_status: DecisionStatus) -> frozenset[DecisionStatus]:
    return STATUS_TRANSITIONS[from_status]


def can_transition(from_status: DecisionStatus, to_status: DecisionStatus) -> bool:
    return to_status in STATUS_TRANSITIONS[from_status]


def validate_transition(from_status: str | DecisionStatus, to_status: str | DecisionStatus) -> None:
    """
    Raise InvalidTransition unless `to_status` is a direct successor of
    `from_status`. Self-transitions and skipped states are rejected.
    """
    src = parse_status(from_status, field="from")
    dst = parse_status(to_status)
    if not can_transition(src, dst):
        raise InvalidTransition(src.value, dst.value)
