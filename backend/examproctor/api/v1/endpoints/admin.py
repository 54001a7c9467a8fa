from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional

from ....core.database import get_db
from ....models.user import User
from ....schemas.user import BulkUserCreate, User as UserSchema, UserCreate, UserUpdate
from ....services.report_service import ReportService
from ....services.session_service import SessionService
from ....services.user_service import UserService
from ....api.deps import get_current_admin

router = APIRouter()


@router.get("/users", response_model=List[UserSchema])
async def list_users(
    role: Optional[str] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return UserService(db).list_users(role=role, search=search, skip=skip, limit=limit)


@router.post("/users", response_model=UserSchema, status_code=201)
async def create_user(
    user_in: UserCreate,
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Create an account with any role, admins included."""
    try:
        return UserService(db).create_user(user_in)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )


@router.post("/users/bulk", status_code=201)
async def bulk_create_users(
    payload: BulkUserCreate,
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    results = UserService(db).bulk_create_users(payload.users)
    return {
        "success": True,
        "message": f"Created {len(results['created'])} users, {len(results['failed'])} failed",
        "results": results,
    }


@router.put("/users/{user_id}", response_model=UserSchema)
async def update_user(
    user_id: int,
    user_in: UserUpdate,
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return UserService(db).update_user(user_id, user_in)


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: int,
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    UserService(db).delete_user(user_id, current_user)
    return {"success": True, "message": "User deleted successfully"}


@router.put("/users/{user_id}/toggle", response_model=UserSchema)
async def toggle_user_status(
    user_id: int,
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return UserService(db).toggle_active(user_id, current_user)


@router.get("/stats")
async def get_system_stats(
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return {"success": True, "stats": ReportService(db).system_stats()}


@router.get("/exams")
async def get_all_exams(
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    exams = ReportService(db).all_exams()
    return {"success": True, "count": len(exams), "exams": exams}


@router.delete("/sessions/{session_id}")
async def delete_session(
    session_id: int,
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    SessionService(db).delete_session(session_id)
    return {"success": True, "message": "Exam session deleted"}
