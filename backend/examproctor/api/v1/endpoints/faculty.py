from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional

from ....core.database import get_db
from ....models.user import User
from ....schemas.exam import Exam, ExamCreate, ExamSummary, ExamUpdate
from ....schemas.session import ExamSession, SessionTerminate
from ....schemas.user import User as UserSchema
from ....services.exam_catalog import ExamCatalog
from ....services.realtime_notifier import manager
from ....services.report_service import ReportService
from ....services.session_service import SessionService
from ....services.user_service import UserService
from ....api.deps import get_current_staff

router = APIRouter()


@router.post("/exams", response_model=Exam, status_code=201)
async def create_exam(
    exam_in: ExamCreate,
    current_user: User = Depends(get_current_staff),
    db: Session = Depends(get_db)
):
    return ExamCatalog(db).create_exam(exam_in, current_user)


@router.get("/exams", response_model=List[ExamSummary])
async def list_exams(
    current_user: User = Depends(get_current_staff),
    db: Session = Depends(get_db)
):
    return ExamCatalog(db).list_managed_exams(current_user)


@router.get("/exams/{exam_id}", response_model=Exam)
async def get_exam(
    exam_id: int,
    current_user: User = Depends(get_current_staff),
    db: Session = Depends(get_db)
):
    return ExamCatalog(db).get_managed_exam(exam_id, current_user)


@router.put("/exams/{exam_id}", response_model=Exam)
async def update_exam(
    exam_id: int,
    exam_in: ExamUpdate,
    current_user: User = Depends(get_current_staff),
    db: Session = Depends(get_db)
):
    return ExamCatalog(db).update_exam(exam_id, exam_in, current_user)


@router.put("/exams/{exam_id}/toggle", response_model=ExamSummary)
async def toggle_exam_status(
    exam_id: int,
    current_user: User = Depends(get_current_staff),
    db: Session = Depends(get_db)
):
    return ExamCatalog(db).toggle_status(exam_id, current_user)


@router.delete("/exams/{exam_id}")
async def delete_exam(
    exam_id: int,
    current_user: User = Depends(get_current_staff),
    db: Session = Depends(get_db)
):
    ExamCatalog(db).delete_exam(exam_id, current_user)
    return {"success": True, "message": "Exam deleted successfully"}


@router.get("/exams/{exam_id}/sessions")
async def get_exam_sessions(
    exam_id: int,
    current_user: User = Depends(get_current_staff),
    db: Session = Depends(get_db)
):
    return ReportService(db).exam_sessions(exam_id, current_user)


@router.get("/sessions/{session_id}")
async def get_session_details(
    session_id: int,
    current_user: User = Depends(get_current_staff),
    db: Session = Depends(get_db)
):
    return ReportService(db).session_details(session_id, current_user)


@router.post("/sessions/{session_id}/terminate", response_model=ExamSession)
async def terminate_session(
    session_id: int,
    payload: Optional[SessionTerminate] = None,
    current_user: User = Depends(get_current_staff),
    db: Session = Depends(get_db)
):
    """Force-stop an attempt: the session is graded as terminated and the student is told to stop."""
    reason = payload.reason if payload else None
    session = SessionService(db).terminate_session(session_id, current_user, reason)
    await manager.force_submit(session.id, reason)
    await manager.exam_submission(session)
    return session


@router.get("/students", response_model=List[UserSchema])
async def list_students(
    search: Optional[str] = None,
    current_user: User = Depends(get_current_staff),
    db: Session = Depends(get_db)
):
    return UserService(db).list_active_students(search)
