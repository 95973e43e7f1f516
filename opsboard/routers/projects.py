from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List

from opsboard.core.database import get_db
from opsboard.core.deps import get_staff_user, get_reviewer_user
from opsboard.core.errors import ConflictError, NotFoundError
from opsboard.models.user import User
from opsboard.models.project import Project, ProjectMember
from opsboard.schemas.project import ProjectCreate, ProjectResponse, MemberAdd, MembersResponse

router = APIRouter(prefix="/projects", tags=["projects"])


def get_project_or_404(db: Session, project_id: int) -> Project:
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise NotFoundError(f"Project {project_id} not found")
    return project


@router.get("", response_model=List[ProjectResponse])
def list_projects(db: Session = Depends(get_db), current_user: User = Depends(get_staff_user)):
    return db.query(Project).order_by(Project.name).all()


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
def create_project(
    project_data: ProjectCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_reviewer_user)
):
    project = Project(
        name=project_data.name,
        description=project_data.description,
        status=project_data.status,
        created_by=current_user.id
    )
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


@router.get("/{project_id}/members", response_model=MembersResponse)
def list_members(project_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_staff_user)):
    get_project_or_404(db, project_id)
    rows = db.query(ProjectMember.user_id).filter(ProjectMember.project_id == project_id).order_by(
        ProjectMember.user_id
    ).all()
    return MembersResponse(project_id=project_id, member_ids=[r.user_id for r in rows])


@router.post("/{project_id}/members", response_model=MembersResponse, status_code=status.HTTP_201_CREATED)
def add_member(
    project_id: int,
    member: MemberAdd,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_reviewer_user)
):
    """Ajoute un membre au projet. 409 si déjà membre."""
    get_project_or_404(db, project_id)

    if not db.query(User).filter(User.id == member.user_id).first():
        raise NotFoundError(f"User {member.user_id} not found")

    existing = db.query(ProjectMember).filter(
        ProjectMember.project_id == project_id,
        ProjectMember.user_id == member.user_id
    ).first()
    if existing:
        raise ConflictError("Member already assigned to this project")

    db.add(ProjectMember(project_id=project_id, user_id=member.user_id))
    db.commit()
    return list_members(project_id, db, current_user)


@router.delete("/{project_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_member(
    project_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_reviewer_user)
):
    # Les tâches déjà assignées ne sont pas revalidées
    membership = db.query(ProjectMember).filter(
        ProjectMember.project_id == project_id,
        ProjectMember.user_id == user_id
    ).first()
    if not membership:
        raise NotFoundError(f"User {user_id} is not a member of project {project_id}")
    db.delete(membership)
    db.commit()
