from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..core.database import get_db
from ..core.security import oauth2_scheme
from ..services.auth_service import AuthService
from ..models.user import User, ROLE_ADMIN, ROLE_FACULTY, ROLE_STUDENT


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> User:
    auth_service = AuthService(db)
    user = auth_service.get_current_user(token)

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user


def get_current_active_user(
    current_user: User = Depends(get_current_user)
) -> User:
    if not current_user.is_active:
        raise HTTPException(status_code=403, detail="Account is deactivated")
    return current_user


def require_roles(*roles: str):
    def dependency(current_user: User = Depends(get_current_active_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=403, detail="The user doesn't have enough privileges"
            )
        return current_user
    return dependency


get_current_student = require_roles(ROLE_STUDENT)
get_current_staff = require_roles(ROLE_FACULTY, ROLE_ADMIN)
get_current_admin = require_roles(ROLE_ADMIN)
