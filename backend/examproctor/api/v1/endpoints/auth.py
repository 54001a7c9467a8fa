from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from ....core.database import get_db
from ....core.security import oauth2_scheme
from ....models.user import ROLE_FACULTY, ROLE_STUDENT, User as UserModel
from ....services.auth_service import AuthService
from ....services.user_service import UserService
from ....schemas.auth import FaceDescriptorUpdate, Token
from ....schemas.user import User, UserCreate
from ...deps import get_current_active_user

router = APIRouter()


@router.post("/token", response_model=Token)
async def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
):
    auth_service = AuthService(db)
    token = auth_service.authenticate_and_create_token(
        form_data.username, form_data.password
    )

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return token


@router.post("/refresh-token", response_model=Token)
async def refresh_access_token(
    refresh_token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
):
    new_token_data = AuthService(db).refresh_token(refresh_token)

    if not new_token_data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token or user not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return new_token_data


@router.post("/register", response_model=User)
async def register_user(
    user_data: UserCreate,
    db: Session = Depends(get_db)
):
    user_service = UserService(db)

    if user_service.get_user_by_email(user_data.email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    try:
        return user_service.create_user(user_data, allowed_roles=(ROLE_STUDENT, ROLE_FACULTY))
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )


@router.get("/me", response_model=User)
async def read_current_user(current_user: UserModel = Depends(get_current_active_user)):
    return current_user


@router.put("/face-descriptor", response_model=User)
async def update_face_descriptor(
    payload: FaceDescriptorUpdate,
    current_user: UserModel = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    return UserService(db).set_face_descriptor(current_user, payload.descriptor)


@router.get("/face-descriptor")
async def read_face_descriptor(current_user: UserModel = Depends(get_current_active_user)):
    return {"descriptor": current_user.face_descriptor}
