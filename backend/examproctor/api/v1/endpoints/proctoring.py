import logging
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from typing import List, Optional

from ....core.config import settings
from ....core.database import get_db
from ....models.user import User
from ....schemas.session import AnswerSubmit, ExamSubmit, Violation, ViolationCreate
from ....services.realtime_notifier import manager
from ....services.session_service import SessionService
from ....services.violation_ledger import ViolationLedger
from ....api.deps import get_current_active_user, get_current_student

logger = logging.getLogger(__name__)

router = APIRouter()


def _session_summary(session) -> dict:
    return {
        "id": session.id,
        "exam_id": session.exam_id,
        "status": session.status,
        "start_time": session.start_time,
        "total_questions": session.total_questions,
        "warning_count": session.warning_count,
    }


def _queue_result_notification(session):
    if not settings.enable_result_notifications:
        return
    from ....tasks.notifications import send_result_notification
    try:
        send_result_notification.delay(session.student_id, session.id)
    except Exception as e:
        logger.warning(f"Could not queue result notification for session {session.id}: {e}")


@router.post("/start/{exam_id}")
async def start_exam_session(
    exam_id: int,
    request: Request,
    current_user: User = Depends(get_current_student),
    db: Session = Depends(get_db)
):
    """Start an exam attempt, or resume the one already in progress."""
    session, resumed = SessionService(db).start_session(
        exam_id,
        current_user,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return {
        "success": True,
        "resumed": resumed,
        "message": "Exam session resumed" if resumed else "Exam session started",
        "session": _session_summary(session),
    }


@router.get("/session/{session_id}/questions")
async def get_session_questions(
    session_id: int,
    current_user: User = Depends(get_current_student),
    db: Session = Depends(get_db)
):
    return SessionService(db).get_questions(session_id, current_user)


@router.post("/answer/{session_id}")
async def submit_answer(
    session_id: int,
    answer: AnswerSubmit,
    current_user: User = Depends(get_current_student),
    db: Session = Depends(get_db)
):
    progress = SessionService(db).submit_answer(
        session_id,
        current_user,
        question_id=answer.question_id,
        selected_option=answer.selected_option,
        time_spent=answer.time_spent,
    )
    return {"success": True, "message": "Answer saved", **progress}


@router.post("/submit/{session_id}")
async def submit_exam(
    session_id: int,
    payload: Optional[ExamSubmit] = None,
    current_user: User = Depends(get_current_student),
    db: Session = Depends(get_db)
):
    reason = payload.reason if payload else "manual"
    session = SessionService(db).submit_exam(session_id, current_user, reason=reason)

    await manager.exam_submission(session)
    _queue_result_notification(session)

    response = {
        "success": True,
        "message": "Exam submitted successfully",
        "session_id": session.id,
        "status": session.status,
        "can_view_answers": session.can_view_answers,
    }
    if session.exam.show_results_immediately:
        response["results"] = {
            "score": session.score,
            "total_marks": session.exam.total_marks,
            "percentage": f"{session.percentage:.2f}",
            "result": session.result,
            "correct_answers": session.correct_answers,
            "wrong_answers": session.wrong_answers,
            "unanswered_questions": session.unanswered_questions,
        }
    return response


@router.post("/violation/{session_id}")
async def log_violation(
    session_id: int,
    violation: ViolationCreate,
    current_user: User = Depends(get_current_student),
    db: Session = Depends(get_db)
):
    """Record a proctoring violation; reaching the exam's threshold auto-submits the attempt."""
    outcome = SessionService(db).log_violation(
        session_id,
        current_user,
        violation_type=violation.violation_type,
        severity=violation.severity,
        snapshot=violation.snapshot,
        metadata=violation.metadata,
        description=violation.description,
    )

    await manager.violation_alert(outcome)
    if outcome.auto_submitted:
        await manager.exam_submission(outcome.session)
        _queue_result_notification(outcome.session)

    return {
        "success": True,
        "violation": {
            "id": outcome.violation.id,
            "type": outcome.violation.violation_type,
            "severity": outcome.violation.severity,
            "timestamp": outcome.violation.timestamp,
        },
        "warning_count": outcome.warning_count,
        "threshold": outcome.threshold,
        "auto_submitted": outcome.auto_submitted,
        "message": (
            "Exam auto-submitted due to repeated violations"
            if outcome.auto_submitted
            else f"Warning {outcome.warning_count} of {outcome.threshold}"
        ),
    }


@router.get("/results/{session_id}")
async def get_results(
    session_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    return SessionService(db).get_results(session_id, current_user)


@router.get("/violations/{session_id}", response_model=List[Violation])
async def get_session_violations(
    session_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    session = SessionService(db).get_session(session_id)
    ledger = ViolationLedger(db)
    ledger.ensure_can_view(session, current_user)
    return ledger.list_for_session(session.id)


@router.get("/statistics/{session_id}")
async def get_violation_statistics(
    session_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    session = SessionService(db).get_session(session_id)
    ledger = ViolationLedger(db)
    ledger.ensure_can_view(session, current_user)
    return ledger.statistics(session.id)
