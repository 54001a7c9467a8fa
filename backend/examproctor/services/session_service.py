"""
Exam session lifecycle.

A session is created once per (exam, student) and moves from ``in-progress``
to exactly one terminal status. Every terminal transition goes through
``_finalize``, which grades the attempt and commits status and score with a
conditional update so that no caller can observe a terminal session with a
stale score, or grade the same session twice.
"""
import logging
import random
from dataclasses import dataclass
from datetime import timedelta
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from typing import List, Optional, Tuple

from ..core.config import settings
from ..core.exceptions import (
    AlreadySubmittedError, ExamValidationError, ForbiddenError, InvalidStateError,
    LedgerWriteError, NotFoundError,
)
from ..models.exam_session import (
    ExamSession, SessionAnswer, STATUS_AUTO_SUBMITTED, STATUS_COMPLETED, STATUS_IN_PROGRESS,
    STATUS_TERMINATED,
)
from ..models.user import User
from ..models.violation import Violation
from ..utils.proctor_log import log_session_end, log_session_start, log_violation
from ..utils.timezone import utcnow
from .exam_catalog import ExamCatalog
from .grading import grade_session
from .question_projection import (
    build_question_order, project_questions, to_canonical_option, to_display_option,
)
from .violation_ledger import ViolationLedger

logger = logging.getLogger(__name__)

REASON_MANUAL = "manual"
REASON_TIME_EXPIRY = "time-expiry"
REASON_VIOLATION_THRESHOLD = "violation-threshold"
REASON_FORCE_STOP = "force-stop"


@dataclass
class ViolationOutcome:
    session: ExamSession
    violation: Violation
    warning_count: int
    threshold: int
    auto_submitted: bool


class SessionService:
    def __init__(self, db: Session, rng: Optional[random.Random] = None):
        self.db = db
        self.rng = rng or random.SystemRandom()
        self.catalog = ExamCatalog(db)
        self.ledger = ViolationLedger(db)

    # lookups

    def _find_session(self, exam_id: int, student_id: int) -> Optional[ExamSession]:
        return self.db.query(ExamSession).filter(
            ExamSession.exam_id == exam_id,
            ExamSession.student_id == student_id,
        ).first()

    def get_session(self, session_id: int, lock: bool = False) -> ExamSession:
        query = self.db.query(ExamSession).filter(ExamSession.id == session_id)
        if lock:
            query = query.with_for_update()
        session = query.first()
        if not session:
            raise NotFoundError("Exam session not found")
        return session

    def _get_owned_session(self, session_id: int, student: User, lock: bool = False) -> ExamSession:
        session = self.get_session(session_id, lock=lock)
        if session.student_id != student.id:
            raise ForbiddenError("This exam session belongs to another student")
        return session

    def _get_managed_session(self, session_id: int, actor: User, lock: bool = False) -> ExamSession:
        session = self.get_session(session_id, lock=lock)
        if not actor.is_admin and session.exam.created_by != actor.id:
            raise ForbiddenError("Not authorized to manage this exam session")
        return session

    @staticmethod
    def _require_in_progress(session: ExamSession):
        if session.status != STATUS_IN_PROGRESS:
            raise InvalidStateError("Exam session is not active", status=session.status)

    # lifecycle

    def start_session(self, exam_id: int, student: User,
                      ip_address: Optional[str] = None,
                      user_agent: Optional[str] = None) -> Tuple[ExamSession, bool]:
        """Create or resume the student's session. Returns ``(session, resumed)``."""
        exam = self.catalog.get_exam(exam_id)

        if not exam.is_active:
            raise InvalidStateError("Exam is not active")
        now = utcnow()
        if now < exam.scheduled_date:
            raise InvalidStateError("Exam has not started yet", scheduled_date=exam.scheduled_date.isoformat())
        if now > exam.end_date:
            raise InvalidStateError("Exam has ended")
        if not exam.is_allowed(student.id):
            raise InvalidStateError("You are not allowed to take this exam")

        existing = self._find_session(exam.id, student.id)
        if existing is not None:
            return self._resume(existing), True

        session = ExamSession(
            exam_id=exam.id,
            student_id=student.id,
            status=STATUS_IN_PROGRESS,
            start_time=now,
            question_order=build_question_order(len(exam.questions), exam.shuffle_questions, self.rng),
            total_questions=len(exam.questions),
            ip_address=ip_address,
            user_agent=(user_agent or "")[:255] or None,
        )
        self.db.add(session)
        try:
            self.db.commit()
        except IntegrityError:
            # another request created the session first; hand back the winner
            self.db.rollback()
            existing = self._find_session(exam.id, student.id)
            if existing is None:
                raise
            logger.info(f"Concurrent start for exam {exam.id} student {student.id} resolved to session {existing.id}")
            return self._resume(existing), True

        self.db.refresh(session)
        log_session_start(session.id, exam.id, student.id)
        return session, False

    def _resume(self, session: ExamSession) -> ExamSession:
        if session.is_terminal:
            raise AlreadySubmittedError("You have already submitted this exam", session_id=session.id)
        log_session_start(session.id, session.exam_id, session.student_id, resumed=True)
        return session

    def get_questions(self, session_id: int, student: User) -> dict:
        session = self._get_owned_session(session_id, student)
        self._require_in_progress(session)
        exam = session.exam

        projected = project_questions(exam.questions, session.question_order, exam.shuffle_options, self.rng)
        if exam.shuffle_options:
            session.option_maps = projected.option_maps
            self.db.commit()

        elapsed = (utcnow() - session.start_time).total_seconds()
        return {
            "session_id": session.id,
            "exam": {
                "id": exam.id,
                "title": exam.title,
                "description": exam.description,
                "duration": exam.duration,
                "total_marks": exam.total_marks,
                "total_questions": session.total_questions,
                "proctoring_settings": exam.proctoring_settings,
            },
            "questions": projected.questions,
            "answers": [
                {
                    "question_id": answer.question_id,
                    "selected_option": to_display_option(projected.option_maps, answer.question_id,
                                                         answer.selected_option),
                    "time_spent": answer.time_spent,
                }
                for answer in session.answers
            ],
            "start_time": session.start_time,
            "time_remaining_seconds": max(0, int(exam.duration * 60 - elapsed)),
            "warning_count": session.warning_count,
        }

    def submit_answer(self, session_id: int, student: User, question_id: int,
                      selected_option: int, time_spent: int = 0) -> dict:
        session = self._get_owned_session(session_id, student, lock=True)
        self._require_in_progress(session)

        if selected_option < 0:
            raise ExamValidationError("Selected option must be a non-negative index")

        question = next((q for q in session.exam.questions if q.id == question_id), None)
        if question is None:
            raise NotFoundError("Question not found in this exam")

        try:
            canonical = to_canonical_option(session.option_maps, question_id, selected_option)
        except IndexError:
            canonical = len(question.options)
        if canonical >= len(question.options):
            raise ExamValidationError("Selected option is out of range")

        answer = next((a for a in session.answers if a.question_id == question_id), None)
        if answer is None:
            answer = SessionAnswer(question_id=question_id, selected_option=canonical,
                                   time_spent=max(0, time_spent))
            session.answers.append(answer)
        else:
            answer.selected_option = canonical
            answer.time_spent = max(0, time_spent)

        self.db.commit()
        return {
            "answered_count": len(session.answers),
            "total_questions": session.total_questions,
        }

    def log_violation(self, session_id: int, student: User, violation_type: str,
                      severity: str = "medium", snapshot: Optional[str] = None,
                      metadata: Optional[dict] = None,
                      description: Optional[str] = None) -> ViolationOutcome:
        session = self._get_owned_session(session_id, student, lock=True)
        self._require_in_progress(session)

        threshold = session.exam.warning_threshold or settings.default_warning_threshold
        try:
            violation = self.ledger.append(session, violation_type, severity, snapshot, metadata, description)
            session.warning_count += 1
            self.db.flush()

            auto_submitted = session.warning_count >= threshold
            if auto_submitted:
                self._finalize(session, STATUS_AUTO_SUBMITTED, REASON_VIOLATION_THRESHOLD, reveal_answers=False)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to record violation for session {session_id}: {e}", exc_info=True)
            raise LedgerWriteError("Violation could not be recorded, please retry")

        self.db.refresh(session)
        log_violation(session.id, violation_type, session.warning_count, threshold)
        if auto_submitted:
            log_session_end(session.id, session.status, session.score, session.result)

        return ViolationOutcome(
            session=session,
            violation=violation,
            warning_count=session.warning_count,
            threshold=threshold,
            auto_submitted=auto_submitted,
        )

    def submit_exam(self, session_id: int, student: User, reason: str = REASON_MANUAL) -> ExamSession:
        session = self._get_owned_session(session_id, student, lock=True)
        if session.is_terminal:
            raise AlreadySubmittedError("Exam already submitted", session_id=session.id)

        status = STATUS_COMPLETED if reason == REASON_MANUAL else STATUS_AUTO_SUBMITTED
        self._finalize(session, status, reason, reveal_answers=True)
        self.db.commit()
        self.db.refresh(session)
        log_session_end(session.id, session.status, session.score, session.result)
        return session

    def terminate_session(self, session_id: int, actor: User, reason: Optional[str] = None) -> ExamSession:
        session = self._get_managed_session(session_id, actor, lock=True)
        if session.is_terminal:
            raise AlreadySubmittedError("Exam session already ended", session_id=session.id)

        self._finalize(session, STATUS_TERMINATED, reason or REASON_FORCE_STOP, reveal_answers=False)
        self.db.commit()
        self.db.refresh(session)
        log_session_end(session.id, session.status, session.score, session.result)
        logger.info(f"Session {session.id} terminated by user {actor.id}")
        return session

    def expire_overdue_sessions(self, now=None) -> List[ExamSession]:
        """Auto-submit in-progress sessions whose time allowance has run out."""
        now = now or utcnow()
        grace = timedelta(minutes=settings.expiry_grace_minutes)
        expired = []

        candidates = self.db.query(ExamSession.id).filter(ExamSession.status == STATUS_IN_PROGRESS).all()
        for (session_id,) in candidates:
            session = self.get_session(session_id, lock=True)
            deadline = session.start_time + timedelta(minutes=session.exam.duration) + grace
            if session.is_terminal or deadline > now:
                self.db.rollback()
                continue
            try:
                self._finalize(session, STATUS_AUTO_SUBMITTED, REASON_TIME_EXPIRY, reveal_answers=True)
            except AlreadySubmittedError:
                continue
            self.db.commit()
            self.db.refresh(session)
            log_session_end(session.id, session.status, session.score, session.result)
            expired.append(session)
        return expired

    def _finalize(self, session: ExamSession, status: str, reason: str, reveal_answers: bool) -> None:
        """Grade the session and move it to ``status`` within the caller's transaction.

        The caller commits. Raises AlreadySubmittedError when another
        transaction reached a terminal status first.
        """
        exam = session.exam
        report = grade_session(session)

        for answer, graded in zip(session.answers, report.answers):
            answer.is_correct = graded.is_correct
            answer.marks_awarded = graded.marks_awarded
        self.db.flush()

        now = utcnow()
        result = self.db.execute(
            update(ExamSession)
            .where(ExamSession.id == session.id, ExamSession.status == STATUS_IN_PROGRESS)
            .values(
                status=status,
                score=report.score,
                percentage=report.percentage,
                result=report.result,
                correct_answers=report.correct_count,
                wrong_answers=report.wrong_count,
                unanswered_questions=report.unanswered_count,
                end_time=now,
                graded_at=now,
                can_view_answers=bool(exam.show_results_immediately) if reveal_answers else False,
                submission_reason=reason,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise AlreadySubmittedError("Exam already submitted", session_id=session.id)

    # reads

    def get_results(self, session_id: int, user: User) -> dict:
        session = self.get_session(session_id)
        if session.student_id != user.id and not user.is_admin and session.exam.created_by != user.id:
            raise ForbiddenError("Access denied")
        if not session.is_terminal:
            raise InvalidStateError("Exam has not been submitted yet")

        exam = session.exam
        results = {
            "session_id": session.id,
            "exam": {
                "id": exam.id,
                "title": exam.title,
                "course": exam.course,
                "total_marks": exam.total_marks,
                "passing_marks": exam.passing_marks,
            },
            "status": session.status,
            "score": session.score,
            "total_marks": exam.total_marks,
            "percentage": f"{session.percentage:.2f}",
            "result": session.result,
            "passing_marks": exam.passing_marks,
            "correct_answers": session.correct_answers,
            "wrong_answers": session.wrong_answers,
            "unanswered_questions": session.unanswered_questions,
            "total_questions": session.total_questions,
            "warning_count": session.warning_count,
            "violation_count": self.ledger.count_for_session(session.id),
            "start_time": session.start_time,
            "end_time": session.end_time,
            "time_taken_minutes": self._minutes_between(session.start_time, session.end_time),
            "submission_reason": session.submission_reason,
            "can_view_answers": session.can_view_answers,
        }
        if session.can_view_answers:
            results["answers"] = self._answer_review(session)
        return results

    @staticmethod
    def _minutes_between(start, end) -> Optional[int]:
        if not start or not end:
            return None
        return round((end - start).total_seconds() / 60)

    @staticmethod
    def _answer_review(session: ExamSession) -> List[dict]:
        questions = {question.id: question for question in session.exam.questions}
        review = []
        for answer in session.answers:
            question = questions.get(answer.question_id)
            if question is None:
                review.append({
                    "question_id": answer.question_id,
                    "question_text": "Question not found",
                    "selected_answer": None,
                    "correct_answer": None,
                    "is_correct": answer.is_correct,
                    "marks_awarded": answer.marks_awarded,
                    "explanation": None,
                })
                continue
            selected = question.options[answer.selected_option] if answer.selected_option < len(question.options) else None
            review.append({
                "question_id": question.id,
                "question_text": question.question_text,
                "selected_answer": selected,
                "correct_answer": question.options[question.correct_answer],
                "is_correct": answer.is_correct,
                "marks_awarded": answer.marks_awarded,
                "explanation": question.explanation,
            })
        return review

    def get_history(self, student: User) -> List[dict]:
        sessions = self.db.query(ExamSession).filter(
            ExamSession.student_id == student.id
        ).order_by(ExamSession.start_time.desc(), ExamSession.id.desc()).all()
        return [
            {
                "session_id": session.id,
                "exam_id": session.exam_id,
                "exam_title": session.exam.title,
                "course": session.exam.course,
                "status": session.status,
                "start_time": session.start_time,
                "end_time": session.end_time,
                "score": session.score if session.is_terminal else None,
                "total_marks": session.exam.total_marks,
                "percentage": round(session.percentage, 2) if session.is_terminal else None,
                "result": session.result,
                "warning_count": session.warning_count,
            }
            for session in sessions
        ]

    def delete_session(self, session_id: int) -> None:
        session = self.get_session(session_id)
        if not session.is_terminal:
            raise InvalidStateError("Only submitted sessions can be deleted")
        violations = self.ledger.count_for_session(session.id)
        if violations:
            raise InvalidStateError(f"Cannot delete session with {violations} recorded violation(s)")
        self.db.delete(session)
        self.db.commit()
        logger.info(f"Session {session_id} deleted")
