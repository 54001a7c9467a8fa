from .auth import Token, FaceDescriptorUpdate
from .user import BulkUserCreate, User, UserCreate, UserUpdate
from .exam import (
    Exam, ExamCreate, ExamSettings, ExamSummary, ExamUpdate, NegativeMarking,
    ProctoringSettings, Question, QuestionCreate,
)
from .session import (
    AnswerSubmit, ExamSession, ExamSubmit, SessionTerminate, Violation, ViolationCreate,
)

__all__ = [
    "Token",
    "FaceDescriptorUpdate",
    "User",
    "UserCreate",
    "UserUpdate",
    "BulkUserCreate",
    "Exam",
    "ExamCreate",
    "ExamSettings",
    "ExamSummary",
    "ExamUpdate",
    "NegativeMarking",
    "ProctoringSettings",
    "Question",
    "QuestionCreate",
    "AnswerSubmit",
    "ExamSession",
    "ExamSubmit",
    "SessionTerminate",
    "Violation",
    "ViolationCreate",
]
