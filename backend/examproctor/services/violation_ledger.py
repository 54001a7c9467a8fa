import logging
from sqlalchemy import func
from sqlalchemy.orm import Session
from typing import Dict, List, Optional

from ..core.exceptions import ExamValidationError, ForbiddenError
from ..models.exam_session import ExamSession
from ..models.user import User
from ..models.violation import Violation, VIOLATION_TYPES, SEVERITIES

logger = logging.getLogger(__name__)


class ViolationLedger:
    """Append-only store of proctoring incidents.

    Rows are written once and afterwards only read or aggregated.
    """

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        session: ExamSession,
        violation_type: str,
        severity: str = "medium",
        snapshot: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        description: Optional[str] = None,
    ) -> Violation:
        if violation_type not in VIOLATION_TYPES:
            raise ExamValidationError(f"Unknown violation type '{violation_type}'")
        if severity not in SEVERITIES:
            raise ExamValidationError(f"Unknown severity '{severity}'")

        violation = Violation(
            session_id=session.id,
            violation_type=violation_type,
            severity=severity,
            snapshot=snapshot,
            violation_metadata={str(k): str(v) for k, v in (metadata or {}).items()},
            description=description,
        )
        self.db.add(violation)
        self.db.flush()
        return violation

    def count_for_session(self, session_id: int) -> int:
        return self.db.query(func.count(Violation.id)).filter(Violation.session_id == session_id).scalar() or 0

    def list_for_session(self, session_id: int) -> List[Violation]:
        return self.db.query(Violation).filter(
            Violation.session_id == session_id
        ).order_by(Violation.timestamp.desc(), Violation.id.desc()).all()

    @staticmethod
    def ensure_can_view(session: ExamSession, user: User) -> None:
        """The owning student, the exam's author and admins may read a session's violations."""
        if user.is_admin or session.student_id == user.id or session.exam.created_by == user.id:
            return
        raise ForbiddenError("Access denied")

    def statistics(self, session_id: int) -> dict:
        violations = self.db.query(Violation).filter(
            Violation.session_id == session_id
        ).order_by(Violation.timestamp, Violation.id).all()

        stats = {
            "total_violations": len(violations),
            "by_type": {},
            "by_severity": {severity: 0 for severity in SEVERITIES},
            "timeline": []
        }

        for violation in violations:
            stats["by_type"][violation.violation_type] = stats["by_type"].get(violation.violation_type, 0) + 1
            stats["by_severity"][violation.severity] += 1
            stats["timeline"].append({
                "timestamp": violation.timestamp,
                "type": violation.violation_type,
                "severity": violation.severity
            })

        return stats

    def counts_by_type(self) -> Dict[str, int]:
        rows = self.db.query(Violation.violation_type, func.count(Violation.id)).group_by(
            Violation.violation_type
        ).all()
        return {violation_type: count for violation_type, count in rows}
