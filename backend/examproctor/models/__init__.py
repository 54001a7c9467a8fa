from .base import BaseModel
from .user import User
from .exam import Exam, Question, exam_allowed_students
from .exam_session import ExamSession, SessionAnswer
from .violation import Violation

__all__ = [
    "BaseModel",
    "User",
    "Exam",
    "Question",
    "exam_allowed_students",
    "ExamSession",
    "SessionAnswer",
    "Violation",
]
