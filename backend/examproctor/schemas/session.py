from datetime import datetime
from pydantic import BaseModel
from typing import Dict, Literal, Optional

ViolationType = Literal[
    "no-face-detected",
    "multiple-faces",
    "face-not-matching",
    "excessive-head-movement",
    "tab-switch",
    "fullscreen-exit",
    "window-blur",
    "suspicious-object",
    "other",
]


class AnswerSubmit(BaseModel):
    question_id: int
    selected_option: int
    time_spent: int = 0


class ExamSubmit(BaseModel):
    reason: Literal["manual", "time-expiry"] = "manual"


class SessionTerminate(BaseModel):
    reason: Optional[str] = None


class ViolationCreate(BaseModel):
    violation_type: ViolationType
    severity: Literal["low", "medium", "high"] = "medium"
    description: Optional[str] = None
    snapshot: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None


class Violation(BaseModel):
    id: int
    session_id: int
    violation_type: str
    severity: str
    description: Optional[str] = None
    violation_metadata: Optional[Dict[str, str]] = None
    snapshot: Optional[str] = None
    timestamp: datetime

    class Config:
        from_attributes = True


class ExamSession(BaseModel):
    id: int
    exam_id: int
    student_id: int
    status: str
    start_time: datetime
    end_time: Optional[datetime] = None
    total_questions: int
    warning_count: int
    score: float
    correct_answers: int
    wrong_answers: int
    unanswered_questions: int
    percentage: float
    result: str
    can_view_answers: bool
    submission_reason: Optional[str] = None

    class Config:
        from_attributes = True
