from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, String, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ..utils.timezone import utcnow
from .base import BaseModel

STATUS_IN_PROGRESS = "in-progress"
STATUS_COMPLETED = "completed"
STATUS_AUTO_SUBMITTED = "auto-submitted"
STATUS_TERMINATED = "terminated"
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_AUTO_SUBMITTED, STATUS_TERMINATED)

RESULT_PENDING = "pending"
RESULT_PASS = "pass"
RESULT_FAIL = "fail"


class ExamSession(BaseModel):
    __tablename__ = "exam_sessions"
    __table_args__ = (
        UniqueConstraint("exam_id", "student_id", name="uq_exam_sessions_exam_student"),
    )

    exam_id = Column(Integer, ForeignKey("exams.id"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String, default=STATUS_IN_PROGRESS, nullable=False, index=True)
    start_time = Column(DateTime, default=utcnow, nullable=False)
    end_time = Column(DateTime, nullable=True)

    question_order = Column(JSON, nullable=False, default=list)
    # display position -> canonical option index, per question id, from the last projection
    option_maps = Column(JSON, nullable=True)
    total_questions = Column(Integer, nullable=False, default=0)

    warning_count = Column(Integer, nullable=False, default=0)
    score = Column(Float, nullable=False, default=0.0)
    correct_answers = Column(Integer, nullable=False, default=0)
    wrong_answers = Column(Integer, nullable=False, default=0)
    unanswered_questions = Column(Integer, nullable=False, default=0)
    percentage = Column(Float, nullable=False, default=0.0)
    result = Column(String, nullable=False, default=RESULT_PENDING)
    graded_at = Column(DateTime, nullable=True)
    can_view_answers = Column(Boolean, nullable=False, default=False)
    submission_reason = Column(String, nullable=True)

    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)

    exam = relationship("Exam", back_populates="sessions")
    student = relationship("User", back_populates="exam_sessions")
    answers = relationship(
        "SessionAnswer",
        back_populates="session",
        order_by="SessionAnswer.id",
        cascade="all, delete-orphan",
    )
    violations = relationship("Violation", back_populates="session", order_by="Violation.timestamp")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self):
        return f"<ExamSession {self.id} exam={self.exam_id} student={self.student_id} {self.status}>"


class SessionAnswer(BaseModel):
    __tablename__ = "session_answers"
    __table_args__ = (
        UniqueConstraint("session_id", "question_id", name="uq_session_answers_question"),
    )

    session_id = Column(Integer, ForeignKey("exam_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    # plain id: grading must cope with questions that no longer exist
    question_id = Column(Integer, nullable=False)
    selected_option = Column(Integer, nullable=False)
    time_spent = Column(Integer, nullable=False, default=0)
    is_correct = Column(Boolean, nullable=True)
    marks_awarded = Column(Float, nullable=False, default=0.0)

    session = relationship("ExamSession", back_populates="answers")
