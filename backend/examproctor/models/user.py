from sqlalchemy import Column, String, Boolean, DateTime, JSON
from sqlalchemy.orm import relationship

from .base import BaseModel

ROLE_ADMIN = "admin"
ROLE_FACULTY = "faculty"
ROLE_STUDENT = "student"
ROLES = (ROLE_ADMIN, ROLE_FACULTY, ROLE_STUDENT)


class User(BaseModel):
    __tablename__ = "users"

    full_name = Column(String, index=True, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(String, default=ROLE_STUDENT, nullable=False, index=True)
    student_code = Column(String, unique=True, nullable=True)
    faculty_code = Column(String, unique=True, nullable=True)
    department = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    # 128-d reference descriptor captured at face setup
    face_descriptor = Column(JSON, nullable=True)
    last_login = Column(DateTime, nullable=True)

    exam_sessions = relationship("ExamSession", back_populates="student")
    created_exams = relationship("Exam", back_populates="creator")

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def has_face_descriptor(self) -> bool:
        return bool(self.face_descriptor)

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"
