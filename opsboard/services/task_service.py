"""Task service - store-side reads and guarded writes"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from opsboard.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    NotProjectMemberError,
    InvalidRequestError,
    error_for_reason,
)
from opsboard.models.project import Project, ProjectMember
from opsboard.models.review import TaskReview, WorkUpdate, Deliverable, QualityChecklistItem
from opsboard.models.task import Task
from opsboard.models.user import User
from opsboard.services.assignment_guard import MembershipIndex, check_assignee
from opsboard.services.review_ledger import EvidenceSummary, has_evidence
from opsboard.services.transition_service import (
    TaskStatus,
    ReviewDecision,
    can_transition,
    target_for_decision,
)

logger = logging.getLogger(__name__)

LEDGER_MODELS = (TaskReview, WorkUpdate, Deliverable, QualityChecklistItem)


def get_task_or_404(db: Session, task_id: int) -> Task:
    task = db.query(Task).filter(Task.id == task_id).first()
    if not task:
        raise NotFoundError(f"Task {task_id} not found")
    return task


def list_tasks(
    db: Session,
    user: User,
    statuses: Optional[List[str]] = None,
    priorities: Optional[List[str]] = None,
    project_id: Optional[int] = None,
    assignee_id: Optional[int] = None,
) -> List[Task]:
    query = db.query(Task)

    # Employees see tasks of their projects plus tasks assigned to them
    if user.role == "employee":
        project_ids = [
            row.project_id
            for row in db.query(ProjectMember.project_id).filter(ProjectMember.user_id == user.id)
        ]
        if project_ids:
            query = query.filter(or_(Task.project_id.in_(project_ids), Task.assignee_id == user.id))
        else:
            query = query.filter(Task.assignee_id == user.id)

    if statuses:
        query = query.filter(Task.status.in_(statuses))
    if priorities:
        query = query.filter(Task.priority.in_(priorities))
    if project_id is not None:
        query = query.filter(Task.project_id == project_id)
    if assignee_id is not None:
        query = query.filter(Task.assignee_id == assignee_id)

    return query.order_by(Task.created_at.desc(), Task.id.desc()).all()


def evidence_for(db: Session, task_id: int) -> EvidenceSummary:
    def count(model):
        return db.query(func.count(model.id)).filter(model.task_id == task_id).scalar() or 0

    return EvidenceSummary(
        work_updates=count(WorkUpdate),
        deliverables=count(Deliverable),
        checklist_items=count(QualityChecklistItem),
    )


def membership_index_for(db: Session, project_id: Optional[int]) -> MembershipIndex:
    index = MembershipIndex()
    if project_id is not None:
        rows = db.query(ProjectMember.user_id).filter(ProjectMember.project_id == project_id).all()
        index.load(project_id, [r.user_id for r in rows])
    return index


def ensure_assignable(db: Session, task, assignee_id: Optional[int]) -> None:
    """Raise unless ``assignee_id`` may hold ``task`` (membership read now, never revalidated later)."""
    if assignee_id is None:
        return
    if task.project_id is not None and not db.query(Project.id).filter(Project.id == task.project_id).first():
        raise NotFoundError(f"Project {task.project_id} not found")
    actors = [row.id for row in db.query(User.id).all()]
    decision = check_assignee(task, assignee_id, actors, membership_index_for(db, task.project_id))
    if not decision:
        if decision.reason == "not-a-project-member":
            raise NotProjectMemberError(decision.message)
        raise InvalidRequestError(decision.message)


def change_status(
    db: Session,
    task: Task,
    actor: User,
    to_status: str,
    expected_status: Optional[str] = None,
    quick: bool = False,
    review_id: Optional[int] = None,
    progress: Optional[int] = None,
    actual_hours: Optional[float] = None,
) -> Task:
    """
    Apply a status change after checking it against the transition table.

    ``expected_status`` is the status the caller validated against; if the
    task moved since, the request is rejected with ``conflict`` so the caller
    refetches before retrying. ``review_id`` names the review driving a
    ``review -> completed`` / ``review -> in-progress`` edge.
    """
    if expected_status is not None and task.status != expected_status:
        raise ConflictError(f"Task {task.id} is '{task.status}', expected '{expected_status}'")

    decision_value = None
    if review_id is not None:
        review = db.query(TaskReview).filter(TaskReview.id == review_id, TaskReview.task_id == task.id).first()
        if not review:
            raise NotFoundError(f"Review {review_id} not found for task {task.id}")
        if review.cycle != task.review_cycle:
            raise ConflictError(f"Review {review_id} belongs to an earlier review cycle")
        decision_value = review.decision

    reviews_in_cycle = db.query(func.count(TaskReview.id)).filter(
        TaskReview.task_id == task.id,
        TaskReview.cycle == task.review_cycle,
    ).scalar() or 0

    decision = can_transition(
        task,
        task.status,
        to_status,
        actor.role,
        task.assignee_id == actor.id,
        has_evidence=has_evidence(evidence_for(db, task.id)) if to_status == TaskStatus.REVIEW.value else False,
        review_decision=decision_value,
        quick=quick,
        has_review_in_cycle=reviews_in_cycle > 0,
    )
    if not decision:
        raise error_for_reason(decision.reason, decision.message)

    now = datetime.utcnow()
    previous = task.status
    task.status = to_status
    task.updated_at = now
    if to_status == TaskStatus.COMPLETED.value:
        task.completed_at = now
    if previous == TaskStatus.REVIEW.value and to_status == TaskStatus.IN_PROGRESS.value:
        # rejet : on ouvre un nouveau cycle de revue
        task.review_cycle = (task.review_cycle or 0) + 1
    if progress is not None:
        task.progress = progress
    if actual_hours is not None:
        task.actual_hours = actual_hours

    db.commit()
    db.refresh(task)
    logger.info("task %s: %s -> %s by user %s%s", task.id, previous, to_status, actor.id, " (quick)" if quick else "")
    return task


def change_assignee(db: Session, task: Task, actor: User, assignee_id: Optional[int]) -> Task:
    if not actor.is_reviewer:
        raise ForbiddenError("Only admins and managers can reassign tasks")
    ensure_assignable(db, task, assignee_id)
    task.assignee_id = assignee_id
    task.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(task)
    logger.info("task %s assigned to %s by user %s", task.id, assignee_id, actor.id)
    return task


def record_review(db: Session, task: Task, reviewer: User, decision: str, comment: str) -> TaskReview:
    """Append a review. Approve/reject only make sense while the task is in review."""
    if not reviewer.is_reviewer:
        raise ForbiddenError("Only admins and managers can review tasks")
    if decision != ReviewDecision.PENDING.value and task.status != TaskStatus.REVIEW.value:
        raise ConflictError(f"Task {task.id} is '{task.status}', not under review")

    if not comment or not comment.strip():
        target = target_for_decision(decision)
        comment = (
            f"Task {decision} and moved to {target.value}" if target is not None else "Review pending"
        )

    review = TaskReview(
        task_id=task.id,
        reviewer_id=reviewer.id,
        comment=comment.strip(),
        decision=decision,
        cycle=task.review_cycle or 0,
    )
    db.add(review)
    db.commit()
    db.refresh(review)
    return review


def delete_task(db: Session, task: Task) -> None:
    # La tâche possède son ledger : tout part dans la même transaction
    for model in LEDGER_MODELS:
        for row in db.query(model).filter(model.task_id == task.id).all():
            db.delete(row)
    db.delete(task)
    db.commit()
