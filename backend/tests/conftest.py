"""
Pytest configuration for the exam proctoring backend.

Settings are read at import time, so the environment is prepared before any
``examproctor`` module is imported: an in-memory SQLite database, no Celery
broker and no Redis fan-out.
"""
import os
import itertools
from datetime import timedelta

os.environ.setdefault("SECRET_KEY", "test-secret-key-with-at-least-32-characters")
os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite://"
os.environ["ENABLE_RESULT_NOTIFICATIONS"] = "false"
os.environ["REALTIME_REDIS_FANOUT"] = "false"
os.environ["ENABLE_EXPIRY_SWEEP"] = "false"

import pytest
from fastapi.testclient import TestClient

from examproctor.core.database import Base, SessionLocal, engine
from examproctor.core.security import create_access_token, get_password_hash
from examproctor.models import Exam, Question, User
from examproctor.models.user import ROLE_ADMIN, ROLE_FACULTY, ROLE_STUDENT
from examproctor.utils.timezone import utcnow

PASSWORD = "password123"

_user_ids = itertools.count(1)


@pytest.fixture(scope='function')
def db():
    """Fresh schema per test."""
    Base.metadata.create_all(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)


@pytest.fixture(scope='function')
def client(db):
    """FastAPI test client; startup hooks are skipped so Redis is never contacted."""
    from examproctor.main import app
    return TestClient(app)


def make_user(db, role=ROLE_STUDENT, email=None, full_name=None, **extra):
    user = User(
        full_name=full_name or f"{role.title()} User",
        email=email or f"{role}{next(_user_ids)}@example.com",
        hashed_password=get_password_hash(PASSWORD),
        role=role,
        is_active=extra.pop("is_active", True),
        **extra,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_exam(db, creator, students=(), questions=None, **overrides):
    """Create an exam that is open right now.

    ``questions`` is a list of ``(correct_answer, marks)`` pairs; each question
    gets four options. Defaults to ten single-mark questions.
    """
    questions = questions if questions is not None else [(0, 1)] * 10
    now = utcnow()
    values = dict(
        title="Data Structures Midterm",
        course="CS201",
        duration=60,
        total_marks=sum(marks for _, marks in questions),
        passing_marks=6,
        scheduled_date=now - timedelta(hours=1),
        end_date=now + timedelta(hours=1),
        is_active=True,
        created_by=creator.id,
        warning_threshold=3,
    )
    values.update(overrides)
    exam = Exam(**values)
    exam.questions = [
        Question(
            position=index,
            question_text=f"Question {index + 1}",
            options=["A", "B", "C", "D"],
            correct_answer=correct,
            marks=marks,
            explanation=f"Explanation {index + 1}",
        )
        for index, (correct, marks) in enumerate(questions)
    ]
    exam.allowed_students = list(students)
    db.add(exam)
    db.commit()
    db.refresh(exam)
    return exam


def auth_headers(user):
    token = create_access_token(data={"sub": user.email, "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def student(db):
    return make_user(db, ROLE_STUDENT, email="student@example.com", full_name="Aigerim Student")


@pytest.fixture
def other_student(db):
    return make_user(db, ROLE_STUDENT, email="other@example.com", full_name="Other Student")


@pytest.fixture
def faculty(db):
    return make_user(db, ROLE_FACULTY, email="faculty@example.com", full_name="Faculty Member")


@pytest.fixture
def other_faculty(db):
    return make_user(db, ROLE_FACULTY, email="faculty2@example.com", full_name="Another Faculty")


@pytest.fixture
def admin(db):
    return make_user(db, ROLE_ADMIN, email="admin@example.com", full_name="Admin User")


@pytest.fixture
def exam(db, faculty, student):
    return make_exam(db, faculty, students=[student])
