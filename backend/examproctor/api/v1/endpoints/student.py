from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ....core.cache import cache
from ....core.database import get_db
from ....models.user import User
from ....services.exam_catalog import ExamCatalog
from ....services.session_service import SessionService
from ....tasks.notifications import notification_key
from ....api.deps import get_current_student

router = APIRouter()


@router.get("/exams")
async def get_available_exams(
    current_user: User = Depends(get_current_student),
    db: Session = Depends(get_db)
):
    exams = ExamCatalog(db).list_available_exams(current_user)
    return {"success": True, "count": len(exams), "exams": exams}


@router.get("/exams/{exam_id}")
async def get_exam_details(
    exam_id: int,
    current_user: User = Depends(get_current_student),
    db: Session = Depends(get_db)
):
    return {"success": True, "exam": ExamCatalog(db).get_exam_for_student(exam_id, current_user)}


@router.get("/history")
async def get_exam_history(
    current_user: User = Depends(get_current_student),
    db: Session = Depends(get_db)
):
    history = SessionService(db).get_history(current_user)
    return {"success": True, "count": len(history), "sessions": history}


@router.get("/notifications")
async def get_notifications(current_user: User = Depends(get_current_student)):
    notifications = await cache.aget(notification_key(current_user.id)) or []
    return {"success": True, "notifications": list(reversed(notifications))}
