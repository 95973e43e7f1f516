from fastapi import Depends, HTTPException, status, Header
from sqlalchemy.orm import Session
from typing import Optional

from opsboard.core.database import get_db
from opsboard.core.errors import ForbiddenError
from opsboard.core.security import decode_token
from opsboard.models.user import User

STAFF_ROLES = ("admin", "manager", "employee")
REVIEWER_ROLES = ("admin", "manager")


def get_current_user(
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(None)
) -> User:
    """
    Récupère l'utilisateur depuis le JWT token.

    Le rôle vient de la table users, pas du token.
    """
    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")

    token = authorization.replace("Bearer ", "")
    user_id = decode_token(token)

    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    return user


def require_roles(*roles: str):
    def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise ForbiddenError(f"Role '{current_user.role}' cannot perform this action")
        return current_user

    return checker


get_staff_user = require_roles(*STAFF_ROLES)
get_reviewer_user = require_roles(*REVIEWER_ROLES)
