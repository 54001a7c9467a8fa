from sqlalchemy import func
from sqlalchemy.orm import Session
from typing import List

from ..core.exceptions import NotFoundError
from ..models.exam import Exam
from ..models.exam_session import (
    ExamSession, RESULT_FAIL, RESULT_PASS, STATUS_AUTO_SUBMITTED, STATUS_COMPLETED,
    STATUS_IN_PROGRESS, STATUS_TERMINATED, TERMINAL_STATUSES,
)
from ..models.user import User, ROLE_ADMIN, ROLE_FACULTY, ROLE_STUDENT
from ..models.violation import Violation
from .exam_catalog import ExamCatalog
from .violation_ledger import ViolationLedger


def summarize_sessions(sessions: List[ExamSession]) -> dict:
    graded = [session for session in sessions if session.is_terminal]
    passed = sum(1 for session in graded if session.result == RESULT_PASS)
    return {
        "total_sessions": len(sessions),
        "completed": sum(1 for s in sessions if s.status == STATUS_COMPLETED),
        "in_progress": sum(1 for s in sessions if s.status == STATUS_IN_PROGRESS),
        "auto_submitted": sum(1 for s in sessions if s.status == STATUS_AUTO_SUBMITTED),
        "terminated": sum(1 for s in sessions if s.status == STATUS_TERMINATED),
        "average_score": round(sum(s.score for s in graded) / len(graded), 2) if graded else 0,
        "pass_rate": round(passed / len(graded) * 100, 2) if graded else 0,
    }


def session_row(session: ExamSession, violation_count: int) -> dict:
    student = session.student
    return {
        "session_id": session.id,
        "student": {
            "id": student.id,
            "full_name": student.full_name,
            "email": student.email,
            "student_code": student.student_code,
        },
        "status": session.status,
        "start_time": session.start_time,
        "end_time": session.end_time,
        "score": session.score,
        "percentage": round(session.percentage, 2),
        "result": session.result,
        "warning_count": session.warning_count,
        "violation_count": violation_count,
        "submission_reason": session.submission_reason,
    }


class ReportService:
    """Read-only views for faculty and administrators."""

    def __init__(self, db: Session):
        self.db = db
        self.catalog = ExamCatalog(db)
        self.ledger = ViolationLedger(db)

    def _violation_counts(self, session_ids: List[int]) -> dict:
        if not session_ids:
            return {}
        rows = self.db.query(Violation.session_id, func.count(Violation.id)).filter(
            Violation.session_id.in_(session_ids)
        ).group_by(Violation.session_id).all()
        return dict(rows)

    def exam_sessions(self, exam_id: int, actor: User) -> dict:
        exam = self.catalog.get_managed_exam(exam_id, actor)
        sessions = self.db.query(ExamSession).filter(
            ExamSession.exam_id == exam.id
        ).order_by(ExamSession.start_time.desc()).all()
        counts = self._violation_counts([s.id for s in sessions])

        return {
            "exam": {"id": exam.id, "title": exam.title, "course": exam.course},
            "stats": summarize_sessions(sessions),
            "sessions": [session_row(s, counts.get(s.id, 0)) for s in sessions],
        }

    def session_details(self, session_id: int, actor: User) -> dict:
        session = self.db.query(ExamSession).filter(ExamSession.id == session_id).first()
        if session is None:
            raise NotFoundError("Exam session not found")
        exam = self.catalog.get_managed_exam(session.exam_id, actor)

        questions = {q.id: q for q in exam.questions}
        answers = []
        for answer in session.answers:
            question = questions.get(answer.question_id)
            answers.append({
                "question_id": answer.question_id,
                "question_text": question.question_text if question else "Question not found",
                "selected_option": answer.selected_option,
                "correct_answer": question.correct_answer if question else None,
                "is_correct": answer.is_correct,
                "marks_awarded": answer.marks_awarded,
                "time_spent": answer.time_spent,
            })

        violations = self.ledger.list_for_session(session.id)
        details = session_row(session, len(violations))
        details.update({
            "exam": {
                "id": exam.id,
                "title": exam.title,
                "total_marks": exam.total_marks,
                "passing_marks": exam.passing_marks,
            },
            "total_questions": session.total_questions,
            "correct_answers": session.correct_answers,
            "wrong_answers": session.wrong_answers,
            "unanswered_questions": session.unanswered_questions,
            "answers": answers,
            "violations": [
                {
                    "id": v.id,
                    "type": v.violation_type,
                    "severity": v.severity,
                    "description": v.description,
                    "metadata": v.violation_metadata,
                    "snapshot": v.snapshot,
                    "timestamp": v.timestamp,
                }
                for v in violations
            ],
            "ip_address": session.ip_address,
            "user_agent": session.user_agent,
        })
        return details

    def system_stats(self) -> dict:
        role_counts = dict(self.db.query(User.role, func.count(User.id)).group_by(User.role).all())
        status_counts = dict(
            self.db.query(ExamSession.status, func.count(ExamSession.id)).group_by(ExamSession.status).all()
        )
        result_counts = dict(
            self.db.query(ExamSession.result, func.count(ExamSession.id)).group_by(ExamSession.result).all()
        )
        average_score = self.db.query(func.avg(ExamSession.score)).filter(
            ExamSession.status.in_(TERMINAL_STATUSES)
        ).scalar()

        graded = sum(status_counts.get(status, 0) for status in TERMINAL_STATUSES)
        passed = result_counts.get(RESULT_PASS, 0)
        violations_by_type = sorted(self.ledger.counts_by_type().items(), key=lambda item: -item[1])

        recent = self.db.query(ExamSession).order_by(ExamSession.start_time.desc()).limit(10).all()

        return {
            "users": {
                "total": sum(role_counts.values()),
                "students": role_counts.get(ROLE_STUDENT, 0),
                "faculty": role_counts.get(ROLE_FACULTY, 0),
                "admins": role_counts.get(ROLE_ADMIN, 0),
                "active": self.db.query(func.count(User.id)).filter(User.is_active.is_(True)).scalar() or 0,
            },
            "exams": {
                "total": self.db.query(func.count(Exam.id)).scalar() or 0,
                "active": self.db.query(func.count(Exam.id)).filter(Exam.is_active.is_(True)).scalar() or 0,
            },
            "sessions": {
                "total": sum(status_counts.values()),
                "completed": graded,
                "in_progress": status_counts.get(STATUS_IN_PROGRESS, 0),
                "passed": passed,
                "failed": result_counts.get(RESULT_FAIL, 0),
                "pass_rate": round(passed / graded * 100, 2) if graded else 0,
                "average_score": round(average_score or 0, 2),
            },
            "violations": {
                "total": sum(count for _, count in violations_by_type),
                "by_type": [{"type": t, "count": c} for t, c in violations_by_type],
            },
            "recent_activity": [
                {
                    "session_id": s.id,
                    "student_name": s.student.full_name,
                    "exam_title": s.exam.title,
                    "status": s.status,
                    "start_time": s.start_time,
                    "score": s.score if s.is_terminal else None,
                }
                for s in recent
            ],
        }

    def all_exams(self) -> List[dict]:
        """Every exam with its author and session count; answer keys are left out."""
        exams = self.db.query(Exam).order_by(Exam.created_at.desc()).all()
        session_counts = dict(
            self.db.query(ExamSession.exam_id, func.count(ExamSession.id)).group_by(ExamSession.exam_id).all()
        )
        return [
            {
                "id": exam.id,
                "title": exam.title,
                "course": exam.course,
                "duration": exam.duration,
                "total_marks": exam.total_marks,
                "passing_marks": exam.passing_marks,
                "total_questions": len(exam.questions),
                "scheduled_date": exam.scheduled_date,
                "end_date": exam.end_date,
                "is_active": exam.is_active,
                "created_by": {"id": exam.creator.id, "full_name": exam.creator.full_name},
                "session_count": session_counts.get(exam.id, 0),
            }
            for exam in exams
        ]
