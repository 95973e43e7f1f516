"""
Transition service - the single table of legal task status changes.

Both the store (before persisting) and the viewer (before issuing a request,
and to decide which buttons to show) consult this module, so an edge that is
not in the table cannot be taken anywhere.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    REVIEW = "review"
    COMPLETED = "completed"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ActorRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"
    CLIENT = "client"


class ReviewDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING = "pending"


REVIEWER_ROLES: FrozenSet[ActorRole] = frozenset({ActorRole.ADMIN, ActorRole.MANAGER})

# Who may take an edge
ASSIGNEE = "assignee"
REVIEWER = "reviewer"


@dataclass(frozen=True)
class Edge:
    actor: str
    requires_evidence: bool = False
    requires_decision: Optional[ReviewDecision] = None
    requires_no_review: bool = False


# ============ TABLES ============

TRANSITIONS: Dict[Tuple[TaskStatus, TaskStatus], Edge] = {
    (TaskStatus.TODO, TaskStatus.IN_PROGRESS): Edge(ASSIGNEE),
    (TaskStatus.IN_PROGRESS, TaskStatus.REVIEW): Edge(ASSIGNEE, requires_evidence=True),
    (TaskStatus.REVIEW, TaskStatus.COMPLETED): Edge(REVIEWER, requires_decision=ReviewDecision.APPROVED),
    # seul retour en arrière possible
    (TaskStatus.REVIEW, TaskStatus.IN_PROGRESS): Edge(REVIEWER, requires_decision=ReviewDecision.REJECTED),
}

# "Quick status" buttons: forward moves that skip the formal review path
QUICK_TRANSITIONS: Dict[Tuple[TaskStatus, TaskStatus], Edge] = {
    (TaskStatus.TODO, TaskStatus.IN_PROGRESS): Edge(ASSIGNEE),
    (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED): Edge(REVIEWER, requires_no_review=True),
}

DECISION_TARGETS: Dict[ReviewDecision, Optional[TaskStatus]] = {
    ReviewDecision.APPROVED: TaskStatus.COMPLETED,
    ReviewDecision.REJECTED: TaskStatus.IN_PROGRESS,
    ReviewDecision.PENDING: None,
}


@dataclass(frozen=True)
class TransitionDecision:
    allowed: bool
    reason: Optional[str] = None
    message: str = ""

    def __bool__(self) -> bool:
        return self.allowed


def _deny(reason: str, message: str) -> TransitionDecision:
    logger.info("transition denied: %s (%s)", reason, message)
    return TransitionDecision(False, reason, message)


def _coerce(value, enum_cls):
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _actor_matches(edge: Edge, role: Optional[ActorRole], is_assignee: bool) -> bool:
    if edge.actor == ASSIGNEE:
        return is_assignee
    return role in REVIEWER_ROLES


def can_transition(
    task,
    from_status,
    to_status,
    actor_role,
    is_assignee: bool,
    *,
    has_evidence: bool = False,
    review_decision=None,
    quick: bool = False,
    has_review_in_cycle: bool = False,
) -> TransitionDecision:
    """
    Decide whether ``from_status -> to_status`` is legal for this actor.

    ``task`` may be None; when given, its current status must still be
    ``from_status`` or the request is stale (``conflict``).
    ``review_decision`` is the decision of the review driving the change, if
    any. ``quick`` selects the quick-status table instead of the formal one.

    Pure: never touches the store, never mutates ``task``.
    """
    source = _coerce(from_status, TaskStatus)
    target = _coerce(to_status, TaskStatus)
    role = _coerce(actor_role, ActorRole)
    decision = _coerce(review_decision, ReviewDecision) if review_decision is not None else None

    if source is None or target is None:
        return _deny("illegal-transition", f"Unknown status: {from_status!r} -> {to_status!r}")

    if task is not None and getattr(task, "status", None) is not None:
        current = _coerce(task.status, TaskStatus)
        if current != source:
            return _deny(
                "conflict",
                f"Task is '{task.status}', not '{source.value}'; reload before retrying",
            )

    table = QUICK_TRANSITIONS if quick else TRANSITIONS
    edge = table.get((source, target))
    if edge is None:
        return _deny("illegal-transition", f"Cannot move a task from '{source.value}' to '{target.value}'")

    if not _actor_matches(edge, role, is_assignee):
        who = "the assignee" if edge.actor == ASSIGNEE else "an admin or manager"
        return _deny("forbidden", f"Only {who} can move a task from '{source.value}' to '{target.value}'")

    if edge.requires_evidence and not has_evidence:
        return _deny(
            "insufficient-evidence",
            "Add a work update, a deliverable or a checklist before submitting for review",
        )

    if edge.requires_decision is not None and decision != edge.requires_decision:
        return _deny(
            "illegal-transition",
            f"'{source.value}' -> '{target.value}' needs an {edge.requires_decision.value} review",
        )

    if edge.requires_no_review and has_review_in_cycle:
        return _deny(
            "illegal-transition",
            "A review already exists for this cycle; use the review workflow",
        )

    return TransitionDecision(True)


def allowed_transitions(status, actor_role, is_assignee: bool, quick: bool = False) -> List[TaskStatus]:
    """Targets the table lets this actor pick from ``status`` (gates not evaluated)."""
    source = _coerce(status, TaskStatus)
    role = _coerce(actor_role, ActorRole)
    table = QUICK_TRANSITIONS if quick else TRANSITIONS
    return [
        target
        for (origin, target), edge in table.items()
        if origin == source
        and edge.requires_decision is None
        and _actor_matches(edge, role, is_assignee)
    ]


def target_for_decision(decision) -> Optional[TaskStatus]:
    return DECISION_TARGETS[ReviewDecision(decision)]
