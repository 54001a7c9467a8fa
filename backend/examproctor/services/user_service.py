import logging
from pydantic import ValidationError
from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import Any, Dict, List, Optional

from ..core.exceptions import ExamValidationError, InvalidStateError, NotFoundError
from ..models.exam import Exam, exam_allowed_students
from ..models.exam_session import ExamSession
from ..models.user import User, ROLES, ROLE_STUDENT
from ..schemas.user import UserCreate, UserUpdate
from ..core.security import get_password_hash, verify_password
from ..utils.timezone import utcnow

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email).first()

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def create_user(self, user_data: UserCreate, allowed_roles=ROLES) -> User:
        if user_data.role not in allowed_roles:
            raise ValueError(f"Role '{user_data.role}' cannot be assigned here")
        if len(user_data.password) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

        db_user = User(
            full_name=user_data.full_name,
            email=user_data.email,
            hashed_password=get_password_hash(user_data.password),
            role=user_data.role,
            student_code=user_data.student_code,
            faculty_code=user_data.faculty_code,
            department=user_data.department,
        )
        self.db.add(db_user)
        try:
            self.db.commit()
            self.db.refresh(db_user)
            return db_user
        except IntegrityError as e:
            self.db.rollback()
            if "email" in str(e.orig).lower():
                raise ValueError("Email already registered")
            raise ValueError("Student or faculty code already in use")

    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        user = self.get_user_by_email(email)
        if not user or not verify_password(password, user.hashed_password):
            return None
        if not user.is_active:
            return None
        user.last_login = utcnow()
        self.db.commit()
        return user

    def set_face_descriptor(self, user: User, descriptor: List[float]) -> User:
        user.face_descriptor = [float(value) for value in descriptor]
        self.db.commit()
        self.db.refresh(user)
        return user

    def toggle_active(self, user_id: int, actor: User) -> User:
        user = self.get_user_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        if user.id == actor.id:
            raise ExamValidationError("You cannot deactivate your own account")

        user.is_active = not user.is_active
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"User {user.id} active={user.is_active} (changed by {actor.id})")
        return user

    def list_users(self, role: Optional[str] = None, search: Optional[str] = None,
                   skip: int = 0, limit: int = 100) -> List[User]:
        query = self.db.query(User)
        if role:
            query = query.filter(User.role == role)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                User.full_name.ilike(pattern),
                User.email.ilike(pattern),
                User.student_code.ilike(pattern),
            ))
        return query.order_by(User.created_at.desc()).offset(skip).limit(limit).all()

    def list_active_students(self, search: Optional[str] = None) -> List[User]:
        query = self.db.query(User).filter(User.role == ROLE_STUDENT, User.is_active.is_(True))
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                User.full_name.ilike(pattern),
                User.email.ilike(pattern),
                User.student_code.ilike(pattern),
            ))
        return query.order_by(User.full_name).all()

    def update_user(self, user_id: int, user_data: UserUpdate) -> User:
        """Admin edit of profile fields; passwords are not changed here."""
        user = self.get_user_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")

        update_data = user_data.model_dump(exclude_unset=True)
        if "role" in update_data and update_data["role"] not in ROLES:
            raise ExamValidationError(f"Unknown role '{update_data['role']}'")
        for field, value in update_data.items():
            setattr(user, field, value)

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ExamValidationError("Email, student code or faculty code already in use")
        self.db.refresh(user)
        logger.info(f"User {user.id} updated: {sorted(update_data)}")
        return user

    def delete_user(self, user_id: int, actor: User) -> None:
        user = self.get_user_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        if user.id == actor.id:
            raise InvalidStateError("You cannot delete your own account")

        sessions = self.db.query(func.count(ExamSession.id)).filter(ExamSession.student_id == user.id).scalar()
        if sessions:
            raise InvalidStateError("Cannot delete student with existing exam sessions. Delete the sessions first")
        exams = self.db.query(func.count(Exam.id)).filter(Exam.created_by == user.id).scalar()
        if exams:
            raise InvalidStateError("Cannot delete a user who owns exams. Reassign or delete the exams first")

        self.db.execute(exam_allowed_students.delete().where(exam_allowed_students.c.student_id == user.id))
        self.db.delete(user)
        self.db.commit()
        logger.info(f"User {user_id} deleted by {actor.id}")

    def bulk_create_users(self, entries: List[Dict[str, Any]]) -> dict:
        """Create users one entry at a time; failures are reported per entry, not raised."""
        results = {"created": [], "failed": []}
        for entry in entries:
            email = entry.get("email") or "N/A"
            try:
                user_data = UserCreate.model_validate(entry)
            except ValidationError as e:
                fields = sorted({".".join(str(part) for part in error["loc"]) for error in e.errors()})
                results["failed"].append({"email": email, "reason": f"Missing or invalid fields: {', '.join(fields)}"})
                continue

            try:
                user = self.create_user(user_data)
            except ValueError as e:
                results["failed"].append({"email": email, "reason": str(e)})
                continue
            results["created"].append({"id": user.id, "full_name": user.full_name,
                                       "email": user.email, "role": user.role})

        logger.info(f"Bulk user import: {len(results['created'])} created, {len(results['failed'])} failed")
        return results
