from datetime import datetime
from pydantic import BaseModel
from typing import List, Optional


class QuestionCreate(BaseModel):
    question_text: str
    options: List[str]
    correct_answer: int
    marks: Optional[int] = None
    explanation: Optional[str] = None
    image_url: Optional[str] = None


class ProctoringSettings(BaseModel):
    face_detection_enabled: bool = True
    multi_face_detection: bool = True
    head_movement_detection: bool = True
    tab_switch_detection: bool = True
    warning_threshold: int = 3


class NegativeMarking(BaseModel):
    enabled: bool = False
    deduction: float = 0.0


class ExamSettings(BaseModel):
    shuffle_questions: bool = False
    shuffle_options: bool = False
    show_results_immediately: bool = False
    allow_review_answers: bool = False
    negative_marking: NegativeMarking = NegativeMarking()


class ExamCreate(BaseModel):
    title: str
    description: Optional[str] = None
    course: str
    duration: int
    passing_marks: int
    scheduled_date: datetime
    end_date: datetime
    questions: List[QuestionCreate]
    allowed_students: List[int] = []
    proctoring_settings: ProctoringSettings = ProctoringSettings()
    exam_settings: ExamSettings = ExamSettings()
    is_active: bool = True


class ExamUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    course: Optional[str] = None
    duration: Optional[int] = None
    passing_marks: Optional[int] = None
    scheduled_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    questions: Optional[List[QuestionCreate]] = None
    allowed_students: Optional[List[int]] = None
    proctoring_settings: Optional[ProctoringSettings] = None
    exam_settings: Optional[ExamSettings] = None


class Question(BaseModel):
    id: int
    position: int
    question_text: str
    options: List[str]
    correct_answer: int
    marks: int
    explanation: Optional[str] = None
    image_url: Optional[str] = None

    class Config:
        from_attributes = True


class ExamSummary(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    course: str
    duration: int
    total_marks: int
    passing_marks: int
    scheduled_date: datetime
    end_date: datetime
    is_active: bool
    created_by: int
    question_count: int

    class Config:
        from_attributes = True


class Exam(ExamSummary):
    questions: List[Question]
    allowed_student_ids: List[int]
    proctoring_settings: ProctoringSettings
    exam_settings: ExamSettings
