from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, String, Table, Text,
)
from sqlalchemy.orm import relationship

from ..core.database import Base
from .base import BaseModel

exam_allowed_students = Table(
    "exam_allowed_students",
    Base.metadata,
    Column("exam_id", Integer, ForeignKey("exams.id", ondelete="CASCADE"), primary_key=True),
    Column("student_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Exam(BaseModel):
    __tablename__ = "exams"

    title = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    course = Column(String, nullable=False)
    duration = Column(Integer, nullable=False)  # minutes
    total_marks = Column(Integer, nullable=False, default=0)
    passing_marks = Column(Integer, nullable=False, default=0)
    scheduled_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    face_detection_enabled = Column(Boolean, default=True, nullable=False)
    multi_face_detection = Column(Boolean, default=True, nullable=False)
    head_movement_detection = Column(Boolean, default=True, nullable=False)
    tab_switch_detection = Column(Boolean, default=True, nullable=False)
    warning_threshold = Column(Integer, default=3, nullable=False)

    shuffle_questions = Column(Boolean, default=False, nullable=False)
    shuffle_options = Column(Boolean, default=False, nullable=False)
    show_results_immediately = Column(Boolean, default=False, nullable=False)
    allow_review_answers = Column(Boolean, default=False, nullable=False)
    negative_marking_enabled = Column(Boolean, default=False, nullable=False)
    negative_marking_deduction = Column(Float, default=0.0, nullable=False)

    creator = relationship("User", back_populates="created_exams")
    questions = relationship(
        "Question",
        back_populates="exam",
        order_by="Question.position",
        cascade="all, delete-orphan",
    )
    allowed_students = relationship("User", secondary=exam_allowed_students, lazy="selectin")
    sessions = relationship("ExamSession", back_populates="exam")

    @property
    def proctoring_settings(self) -> dict:
        return {
            "face_detection_enabled": self.face_detection_enabled,
            "multi_face_detection": self.multi_face_detection,
            "head_movement_detection": self.head_movement_detection,
            "tab_switch_detection": self.tab_switch_detection,
            "warning_threshold": self.warning_threshold,
        }

    @property
    def exam_settings(self) -> dict:
        return {
            "shuffle_questions": self.shuffle_questions,
            "shuffle_options": self.shuffle_options,
            "show_results_immediately": self.show_results_immediately,
            "allow_review_answers": self.allow_review_answers,
            "negative_marking": {
                "enabled": self.negative_marking_enabled,
                "deduction": self.negative_marking_deduction,
            },
        }

    @property
    def allowed_student_ids(self) -> list:
        return sorted(student.id for student in self.allowed_students)

    @property
    def question_count(self) -> int:
        return len(self.questions)

    def is_allowed(self, student_id: int) -> bool:
        return any(student.id == student_id for student in self.allowed_students)

    def __repr__(self):
        return f"<Exam {self.id} {self.title}>"


class Question(BaseModel):
    __tablename__ = "questions"

    exam_id = Column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    question_text = Column(Text, nullable=False)
    options = Column(JSON, nullable=False)
    correct_answer = Column(Integer, nullable=False)
    marks = Column(Integer, nullable=False, default=1)
    explanation = Column(Text, nullable=True)
    image_url = Column(String, nullable=True)

    exam = relationship("Exam", back_populates="questions")
