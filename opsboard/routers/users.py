from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from opsboard.core.database import get_db
from opsboard.core.deps import get_staff_user
from opsboard.models.user import User
from opsboard.schemas.user import UserResponse

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=List[UserResponse])
def list_users(db: Session = Depends(get_db), current_user: User = Depends(get_staff_user)):
    """Tous les acteurs : sert de liste de candidats pour l'assignation"""
    return db.query(User).order_by(User.name).all()
