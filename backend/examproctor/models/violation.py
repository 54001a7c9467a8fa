from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from ..utils.timezone import utcnow
from .base import BaseModel

VIOLATION_TYPES = (
    "no-face-detected",
    "multiple-faces",
    "face-not-matching",
    "excessive-head-movement",
    "tab-switch",
    "fullscreen-exit",
    "window-blur",
    "suspicious-object",
    "other",
)

SEVERITIES = ("low", "medium", "high")


class Violation(BaseModel):
    __tablename__ = "violations"

    # no ondelete: sessions with violations cannot be removed
    session_id = Column(Integer, ForeignKey("exam_sessions.id"), nullable=False, index=True)
    violation_type = Column(String, nullable=False, index=True)
    severity = Column(String, default="medium", nullable=False)
    description = Column(Text, nullable=True)
    snapshot = Column(Text, nullable=True)
    violation_metadata = Column(JSON, nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)

    session = relationship("ExamSession", back_populates="violations")

    def __repr__(self):
        return f"<Violation {self.violation_type} for session {self.session_id}>"
