import logging
from sqlalchemy import func
from sqlalchemy.orm import Session
from typing import List, Optional, Union

from ..core.config import settings
from ..core.exceptions import ExamValidationError, ForbiddenError, InvalidStateError, NotFoundError
from ..models.exam import Exam, Question
from ..models.exam_session import ExamSession
from ..models.user import User, ROLE_STUDENT
from ..schemas.exam import ExamCreate, ExamUpdate, QuestionCreate
from ..utils.timezone import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

EXAM_UPCOMING = "upcoming"
EXAM_ONGOING = "ongoing"
EXAM_ENDED = "ended"


def normalize_marks(marks: Optional[int]) -> int:
    """Missing or invalid marks fall back to a single mark."""
    if marks is None or marks < 1:
        return 1
    return int(marks)


def validate_questions(questions: List[QuestionCreate]) -> List[str]:
    errors = []
    if not questions:
        errors.append("At least one question is required")

    for index, question in enumerate(questions, start=1):
        if not question.question_text or not question.question_text.strip():
            errors.append(f"Question {index}: Question text is required")
        if len(question.options) < 2:
            errors.append(f"Question {index}: At least 2 options are required")
        elif len(question.options) > settings.max_options_per_question:
            errors.append(f"Question {index}: Maximum {settings.max_options_per_question} options allowed")
        if not 0 <= question.correct_answer < len(question.options):
            errors.append(f"Question {index}: Correct answer must be a valid option index")
    return errors


def validate_exam(merged: dict) -> None:
    """Raise ExamValidationError listing every problem with an exam definition.

    ``merged`` carries the effective values (stored values overlaid with the update).
    """
    errors = []

    if not merged.get("title"):
        errors.append("Exam title is required")
    if not merged.get("course"):
        errors.append("Course is required")
    if not merged.get("duration") or merged["duration"] < 1:
        errors.append("Duration must be at least 1 minute")

    questions = merged.get("questions")
    if questions is not None:
        errors.extend(validate_questions(questions))

    scheduled, end = merged.get("scheduled_date"), merged.get("end_date")
    if scheduled and end and end <= scheduled:
        errors.append("End date must be after scheduled date")

    total_marks = merged.get("total_marks", 0)
    passing_marks = merged.get("passing_marks")
    if passing_marks is None or passing_marks < 0:
        errors.append("Passing marks must be zero or more")
    elif passing_marks > total_marks:
        errors.append(f"Passing marks ({passing_marks}) cannot exceed total marks ({total_marks})")

    proctoring = merged.get("proctoring_settings")
    if proctoring is not None and not 1 <= proctoring.warning_threshold <= 10:
        errors.append("Warning threshold must be between 1 and 10")

    exam_settings = merged.get("exam_settings")
    if exam_settings is not None and exam_settings.negative_marking.deduction < 0:
        errors.append("Negative marking deduction cannot be negative")

    if errors:
        raise ExamValidationError(errors[0], errors)


class ExamCatalog:
    def __init__(self, db: Session):
        self.db = db

    def get_exam(self, exam_id: int) -> Exam:
        exam = self.db.query(Exam).filter(Exam.id == exam_id).first()
        if not exam:
            raise NotFoundError("Exam not found")
        return exam

    def get_managed_exam(self, exam_id: int, actor: User) -> Exam:
        """Exam lookup for faculty (own exams only) and admins (any exam)."""
        exam = self.get_exam(exam_id)
        if not actor.is_admin and exam.created_by != actor.id:
            raise ForbiddenError("Not authorized to manage this exam")
        return exam

    def list_managed_exams(self, actor: User) -> List[Exam]:
        query = self.db.query(Exam)
        if not actor.is_admin:
            query = query.filter(Exam.created_by == actor.id)
        return query.order_by(Exam.created_at.desc()).all()

    def session_count(self, exam_id: int) -> int:
        return self.db.query(func.count(ExamSession.id)).filter(ExamSession.exam_id == exam_id).scalar() or 0

    def _load_students(self, student_ids: List[int]) -> List[User]:
        if not student_ids:
            return []
        unique_ids = set(student_ids)
        students = self.db.query(User).filter(
            User.id.in_(unique_ids),
            User.role == ROLE_STUDENT,
            User.is_active.is_(True),
        ).all()
        if len(students) != len(unique_ids):
            missing = sorted(unique_ids - {student.id for student in students})
            raise ExamValidationError(
                "Some students are invalid or inactive",
                [f"Student {student_id} is not an active student" for student_id in missing],
            )
        return students

    def _build_questions(self, questions: List[QuestionCreate]) -> List[Question]:
        return [
            Question(
                position=position,
                question_text=question.question_text.strip(),
                options=list(question.options),
                correct_answer=question.correct_answer,
                marks=normalize_marks(question.marks),
                explanation=question.explanation,
                image_url=question.image_url,
            )
            for position, question in enumerate(questions)
        ]

    def _apply_settings(self, exam: Exam, data: Union[ExamCreate, ExamUpdate]):
        if data.proctoring_settings is not None:
            proctoring = data.proctoring_settings
            exam.face_detection_enabled = proctoring.face_detection_enabled
            exam.multi_face_detection = proctoring.multi_face_detection
            exam.head_movement_detection = proctoring.head_movement_detection
            exam.tab_switch_detection = proctoring.tab_switch_detection
            exam.warning_threshold = proctoring.warning_threshold

        if data.exam_settings is not None:
            options = data.exam_settings
            exam.shuffle_questions = options.shuffle_questions
            exam.shuffle_options = options.shuffle_options
            exam.show_results_immediately = options.show_results_immediately
            exam.allow_review_answers = options.allow_review_answers
            exam.negative_marking_enabled = options.negative_marking.enabled
            exam.negative_marking_deduction = options.negative_marking.deduction

    def create_exam(self, data: ExamCreate, creator: User) -> Exam:
        scheduled, end = to_naive_utc(data.scheduled_date), to_naive_utc(data.end_date)
        total_marks = sum(normalize_marks(q.marks) for q in data.questions)

        validate_exam({
            **data.model_dump(exclude={"questions", "proctoring_settings", "exam_settings"}),
            "questions": data.questions,
            "proctoring_settings": data.proctoring_settings,
            "exam_settings": data.exam_settings,
            "scheduled_date": scheduled,
            "end_date": end,
            "total_marks": total_marks,
        })

        exam = Exam(
            title=data.title.strip(),
            description=data.description,
            course=data.course.strip(),
            duration=data.duration,
            total_marks=total_marks,
            passing_marks=data.passing_marks,
            scheduled_date=scheduled,
            end_date=end,
            is_active=data.is_active,
            created_by=creator.id,
        )
        self._apply_settings(exam, data)
        exam.questions = self._build_questions(data.questions)
        exam.allowed_students = self._load_students(data.allowed_students)

        self.db.add(exam)
        self.db.commit()
        self.db.refresh(exam)
        logger.info(f"Exam {exam.id} created by user {creator.id} with {len(exam.questions)} questions")
        return exam

    def update_exam(self, exam_id: int, data: ExamUpdate, actor: User) -> Exam:
        exam = self.get_managed_exam(exam_id, actor)
        if self.session_count(exam.id):
            raise InvalidStateError("Exam cannot be modified after sessions have started")

        update = data.model_dump(exclude_unset=True, exclude={"questions", "proctoring_settings", "exam_settings"})
        for key in ("scheduled_date", "end_date"):
            if key in update:
                update[key] = to_naive_utc(update[key])

        if data.questions is not None:
            total_marks = sum(normalize_marks(q.marks) for q in data.questions)
        else:
            total_marks = exam.total_marks

        merged = {
            "title": exam.title,
            "course": exam.course,
            "duration": exam.duration,
            "passing_marks": exam.passing_marks,
            "scheduled_date": exam.scheduled_date,
            "end_date": exam.end_date,
            **update,
            "questions": data.questions,
            "proctoring_settings": data.proctoring_settings,
            "exam_settings": data.exam_settings,
            "total_marks": total_marks,
        }
        validate_exam(merged)

        allowed_students = update.pop("allowed_students", None)
        for field, value in update.items():
            setattr(exam, field, value)
        self._apply_settings(exam, data)

        if data.questions is not None:
            exam.questions = self._build_questions(data.questions)
            exam.total_marks = total_marks
        if allowed_students is not None:
            exam.allowed_students = self._load_students(allowed_students)

        self.db.commit()
        self.db.refresh(exam)
        logger.info(f"Exam {exam.id} updated by user {actor.id}")
        return exam

    def toggle_status(self, exam_id: int, actor: User) -> Exam:
        exam = self.get_managed_exam(exam_id, actor)
        exam.is_active = not exam.is_active
        self.db.commit()
        self.db.refresh(exam)
        logger.info(f"Exam {exam.id} is_active={exam.is_active}")
        return exam

    def delete_exam(self, exam_id: int, actor: User) -> None:
        exam = self.get_managed_exam(exam_id, actor)
        sessions = self.session_count(exam.id)
        if sessions:
            raise InvalidStateError(f"Cannot delete exam with {sessions} existing session(s)")
        self.db.delete(exam)
        self.db.commit()
        logger.info(f"Exam {exam_id} deleted by user {actor.id}")

    @staticmethod
    def schedule_status(exam: Exam, now=None) -> str:
        now = now or utcnow()
        if now < exam.scheduled_date:
            return EXAM_UPCOMING
        if now > exam.end_date:
            return EXAM_ENDED
        return EXAM_ONGOING

    def list_available_exams(self, student: User) -> List[dict]:
        exams = self.db.query(Exam).filter(
            Exam.is_active.is_(True),
            Exam.allowed_students.any(User.id == student.id),
        ).order_by(Exam.scheduled_date).all()

        sessions = {
            session.exam_id: session
            for session in self.db.query(ExamSession).filter(ExamSession.student_id == student.id).all()
        }

        now = utcnow()
        available = []
        for exam in exams:
            session = sessions.get(exam.id)
            available.append({
                "id": exam.id,
                "title": exam.title,
                "description": exam.description,
                "course": exam.course,
                "duration": exam.duration,
                "total_marks": exam.total_marks,
                "passing_marks": exam.passing_marks,
                "total_questions": len(exam.questions),
                "scheduled_date": exam.scheduled_date,
                "end_date": exam.end_date,
                "status": self.schedule_status(exam, now),
                "attempted": session is not None,
                "session_id": session.id if session else None,
                "session_status": session.status if session else None,
                "score": session.score if session is not None and session.is_terminal else None,
            })
        return available

    def get_exam_for_student(self, exam_id: int, student: User) -> dict:
        exam = self.get_exam(exam_id)
        if not exam.is_allowed(student.id):
            raise ForbiddenError("You are not allowed to take this exam")

        session = self.db.query(ExamSession).filter(
            ExamSession.exam_id == exam.id,
            ExamSession.student_id == student.id,
        ).first()

        return {
            "id": exam.id,
            "title": exam.title,
            "description": exam.description,
            "course": exam.course,
            "duration": exam.duration,
            "total_marks": exam.total_marks,
            "passing_marks": exam.passing_marks,
            "total_questions": len(exam.questions),
            "scheduled_date": exam.scheduled_date,
            "end_date": exam.end_date,
            "is_active": exam.is_active,
            "status": self.schedule_status(exam),
            "proctoring_settings": exam.proctoring_settings,
            "negative_marking": exam.exam_settings["negative_marking"],
            "has_face_descriptor": student.has_face_descriptor,
            "session_id": session.id if session else None,
            "session_status": session.status if session else None,
        }
