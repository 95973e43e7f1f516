"""
Router du ledger de revue d'une tâche : reviews, work updates, livrables,
checklist qualité et résumé des preuves.
"""

from datetime import datetime
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List

from opsboard.core.database import get_db
from opsboard.core.deps import get_staff_user, get_reviewer_user
from opsboard.core.errors import ForbiddenError, InvalidRequestError, NotFoundError, error_for_reason
from opsboard.models.user import User
from opsboard.models.task import Task
from opsboard.models.review import TaskReview, WorkUpdate, Deliverable, QualityChecklistItem
from opsboard.schemas.review import (
    ReviewCreate,
    ReviewResponse,
    WorkUpdateCreate,
    WorkUpdateResponse,
    DeliverableCreate,
    DeliverableResponse,
    ChecklistCreate,
    ChecklistToggle,
    ChecklistItemResponse,
    EvidenceResponse,
)
from opsboard.services import task_service
from opsboard.services.review_ledger import checklist_initialization, has_evidence

router = APIRouter(prefix="/tasks/{task_id}", tags=["task-ledger"])


def ensure_assignee_or_reviewer(task: Task, user: User, what: str) -> None:
    # Les employés ne peuvent écrire que sur leurs propres tâches
    if not user.is_reviewer and task.assignee_id != user.id:
        raise ForbiddenError(f"You can only {what} for tasks assigned to you")


# ============ REVIEWS ============

@router.get("/reviews", response_model=List[ReviewResponse])
def list_reviews(task_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_staff_user)):
    task_service.get_task_or_404(db, task_id)
    return db.query(TaskReview).filter(TaskReview.task_id == task_id).order_by(
        TaskReview.created_at.desc(), TaskReview.id.desc()
    ).all()


@router.post("/reviews", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
def create_review(
    task_id: int,
    review_data: ReviewCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_reviewer_user)
):
    """
    Ajoute une revue (immuable). Ne change PAS le statut : le client enchaîne
    avec POST /tasks/{id}/status en passant review_id.
    """
    task = task_service.get_task_or_404(db, task_id)
    return task_service.record_review(db, task, current_user, review_data.decision.value, review_data.comment)


# ============ WORK UPDATES ============

@router.get("/work-updates", response_model=List[WorkUpdateResponse])
def list_work_updates(task_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_staff_user)):
    task_service.get_task_or_404(db, task_id)
    # plus récent en premier
    return db.query(WorkUpdate).filter(WorkUpdate.task_id == task_id).order_by(
        WorkUpdate.created_at.desc(), WorkUpdate.id.desc()
    ).all()


@router.post("/work-updates", response_model=WorkUpdateResponse, status_code=status.HTTP_201_CREATED)
def create_work_update(
    task_id: int,
    update_data: WorkUpdateCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_staff_user)
):
    task = task_service.get_task_or_404(db, task_id)
    ensure_assignee_or_reviewer(task, current_user, "post work updates")

    if not update_data.comment or not update_data.comment.strip():
        raise InvalidRequestError("Comment is required")

    work_update = WorkUpdate(task_id=task.id, author_id=current_user.id, comment=update_data.comment.strip())
    db.add(work_update)
    db.commit()
    db.refresh(work_update)
    return work_update


# ============ DELIVERABLES ============

@router.get("/deliverables", response_model=List[DeliverableResponse])
def list_deliverables(task_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_staff_user)):
    task_service.get_task_or_404(db, task_id)
    return db.query(Deliverable).filter(Deliverable.task_id == task_id).order_by(
        Deliverable.created_at.desc(), Deliverable.id.desc()
    ).all()


@router.post("/deliverables", response_model=DeliverableResponse, status_code=status.HTTP_201_CREATED)
def create_deliverable(
    task_id: int,
    deliverable_data: DeliverableCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_staff_user)
):
    task = task_service.get_task_or_404(db, task_id)
    ensure_assignee_or_reviewer(task, current_user, "add deliverables")

    deliverable = Deliverable(task_id=task.id, created_by=current_user.id, **deliverable_data.model_dump())
    db.add(deliverable)
    db.commit()
    db.refresh(deliverable)
    return deliverable


@router.delete("/deliverables/{deliverable_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_deliverable(
    task_id: int,
    deliverable_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_staff_user)
):
    task = task_service.get_task_or_404(db, task_id)
    ensure_assignee_or_reviewer(task, current_user, "delete deliverables")

    deliverable = db.query(Deliverable).filter(
        Deliverable.id == deliverable_id,
        Deliverable.task_id == task_id
    ).first()
    if not deliverable:
        raise NotFoundError(f"Deliverable {deliverable_id} not found")

    db.delete(deliverable)
    db.commit()


# ============ QUALITY CHECKLIST ============

@router.get("/quality-checklist", response_model=List[ChecklistItemResponse])
def list_checklist(task_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_staff_user)):
    task_service.get_task_or_404(db, task_id)
    return db.query(QualityChecklistItem).filter(QualityChecklistItem.task_id == task_id).order_by(
        QualityChecklistItem.created_at.asc(), QualityChecklistItem.id.asc()
    ).all()


@router.post("/quality-checklist", response_model=List[ChecklistItemResponse], status_code=status.HTTP_201_CREATED)
def create_checklist(
    task_id: int,
    checklist_data: ChecklistCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_staff_user)
):
    """
    Crée LA checklist de la tâche (une seule par tâche).

    - admin/manager : items explicites
    - assigné : items explicites, ou template par défaut (use_default_template)
    - déjà initialisée → 409 already-initialized, rien n'est modifié
    """
    task = task_service.get_task_or_404(db, task_id)
    existing = db.query(QualityChecklistItem).filter(QualityChecklistItem.task_id == task_id).count()

    plan = checklist_initialization(
        existing,
        checklist_data.items,
        current_user.role,
        task.assignee_id == current_user.id,
        use_default_template=checklist_data.use_default_template,
    )
    if not plan.allowed:
        raise error_for_reason(plan.reason, plan.message)

    items = [
        QualityChecklistItem(task_id=task.id, item=text, checked=False, created_by=current_user.id)
        for text in plan.items
    ]
    db.add_all(items)
    db.commit()
    for item in items:
        db.refresh(item)
    return items


@router.put("/quality-checklist/{item_id}", response_model=ChecklistItemResponse)
def toggle_checklist_item(
    task_id: int,
    item_id: int,
    toggle: ChecklistToggle,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_staff_user)
):
    task = task_service.get_task_or_404(db, task_id)
    ensure_assignee_or_reviewer(task, current_user, "update the quality checklist")

    item = db.query(QualityChecklistItem).filter(
        QualityChecklistItem.id == item_id,
        QualityChecklistItem.task_id == task_id
    ).first()
    if not item:
        raise NotFoundError(f"Checklist item {item_id} not found")

    # seul le flag checked bouge
    item.checked = toggle.checked
    item.checked_at = datetime.utcnow() if toggle.checked else None
    item.checked_by = current_user.id if toggle.checked else None
    db.commit()
    db.refresh(item)
    return item


# ============ EVIDENCE ============

@router.get("/evidence", response_model=EvidenceResponse)
def get_evidence(task_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_staff_user)):
    task_service.get_task_or_404(db, task_id)
    summary = task_service.evidence_for(db, task_id)
    return EvidenceResponse(
        task_id=task_id,
        work_updates=summary.work_updates,
        deliverables=summary.deliverables,
        checklist_items=summary.checklist_items,
        has_evidence=has_evidence(summary),
    )
