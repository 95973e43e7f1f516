from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from opsboard.core.database import get_db
from opsboard.core.deps import get_staff_user, get_reviewer_user
from opsboard.core.errors import ForbiddenError
from opsboard.models.user import User
from opsboard.models.task import Task
from opsboard.schemas.task import TaskCreate, TaskUpdate, TaskResponse, StatusChange, AssigneeChange
from opsboard.services import task_service

router = APIRouter(prefix="/tasks", tags=["tasks"])


def _split(value: Optional[str]) -> Optional[List[str]]:
    # "todo,review" -> ["todo", "review"]
    if not value:
        return None
    return [v.strip() for v in value.split(",") if v.strip()]


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
def create_task(
    task_data: TaskCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_reviewer_user)
):
    """
    Crée une tâche (admin/manager).

    La tâche démarre toujours en 'todo'. Si un assigné est donné et que la
    tâche appartient à un projet, il doit être membre du projet.
    """
    task_service.ensure_assignable(db, task_data, task_data.assignee_id)

    new_task = Task(
        title=task_data.title,
        description=task_data.description,
        project_id=task_data.project_id,
        assignee_id=task_data.assignee_id,
        due_date=task_data.due_date,
        priority=task_data.priority.value,
        estimated_hours=task_data.estimated_hours,
        status="todo",
        created_by=current_user.id,
    )
    db.add(new_task)
    db.commit()
    db.refresh(new_task)
    return new_task


@router.get("", response_model=List[TaskResponse])
def list_tasks(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_staff_user),
    status_filter: Optional[str] = Query(None, alias="status"),
    priority_filter: Optional[str] = Query(None, alias="priority"),
    project_id: Optional[int] = Query(None),
    assignee_id: Optional[int] = Query(None)
):
    return task_service.list_tasks(
        db,
        current_user,
        statuses=_split(status_filter),
        priorities=_split(priority_filter),
        project_id=project_id,
        assignee_id=assignee_id,
    )


@router.get("/{task_id}", response_model=TaskResponse)
def get_task(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_staff_user)
):
    return task_service.get_task_or_404(db, task_id)


@router.put("/{task_id}", response_model=TaskResponse)
def update_task(
    task_id: int,
    task_data: TaskUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_staff_user)
):
    """Édite les métadonnées. L'assigné peut mettre à jour sa progression et ses heures."""
    task = task_service.get_task_or_404(db, task_id)

    update_data = task_data.model_dump(exclude_unset=True)
    if not current_user.is_reviewer:
        if task.assignee_id != current_user.id:
            raise ForbiddenError("You can only update tasks assigned to you")
        if set(update_data) - {"progress", "actual_hours"}:
            raise ForbiddenError("Assignees can only update progress and actual hours")

    for field, value in update_data.items():
        if hasattr(value, "value"):
            value = value.value
        setattr(task, field, value)

    db.commit()
    db.refresh(task)
    return task


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_reviewer_user)
):
    task = task_service.get_task_or_404(db, task_id)
    task_service.delete_task(db, task)


@router.post("/{task_id}/status", response_model=TaskResponse)
def update_status(
    task_id: int,
    change: StatusChange,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_staff_user)
):
    """
    Change le statut d'une tâche.

    - expected_status: statut vu par le client → 409 si la tâche a bougé
    - quick: boutons de statut rapide (todo → in-progress, in-progress → completed)
    - review_id: revue qui justifie review → completed / review → in-progress
    """
    task = task_service.get_task_or_404(db, task_id)
    return task_service.change_status(
        db,
        task,
        current_user,
        change.status.value,
        expected_status=change.expected_status.value if change.expected_status else None,
        quick=change.quick,
        review_id=change.review_id,
        progress=change.progress,
        actual_hours=change.actual_hours,
    )


@router.put("/{task_id}/assignee", response_model=TaskResponse)
def update_assignee(
    task_id: int,
    change: AssigneeChange,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_staff_user)
):
    task = task_service.get_task_or_404(db, task_id)
    return task_service.change_assignee(db, task, current_user, change.assignee_id)
