"""
Tests for the exam session lifecycle
"""
import random
from datetime import timedelta

import pytest

from examproctor.core.database import SessionLocal
from examproctor.core.exceptions import (
    AlreadySubmittedError, ExamValidationError, ForbiddenError, InvalidStateError, NotFoundError,
)
from examproctor.models import ExamSession, Question, User, Violation
from examproctor.services.session_service import REASON_TIME_EXPIRY, SessionService
from examproctor.utils.timezone import utcnow

from conftest import make_exam


def start(db, exam, student, **kwargs):
    session, _ = SessionService(db, **kwargs).start_session(exam.id, student)
    return session


def answer_all(db, session, student, correct=6, total=10):
    service = SessionService(db)
    questions = session.exam.questions
    for index, question in enumerate(questions[:total]):
        option = question.correct_answer if index < correct else (question.correct_answer + 1) % 4
        service.submit_answer(session.id, student, question.id, option)


class TestStartSession:

    def test_creates_in_progress_session(self, db, exam, student):
        session, resumed = SessionService(db).start_session(exam.id, student, ip_address="10.0.0.5")

        assert resumed is False
        assert session.status == "in-progress"
        assert session.total_questions == 10
        assert session.question_order == list(range(10))
        assert session.warning_count == 0
        assert session.ip_address == "10.0.0.5"

    def test_second_start_resumes_the_same_session(self, db, exam, student):
        first = start(db, exam, student)

        second, resumed = SessionService(db).start_session(exam.id, student)

        assert resumed is True
        assert second.id == first.id
        assert db.query(ExamSession).count() == 1

    def test_concurrent_start_resolves_to_the_winner(self, db, exam, student, monkeypatch):
        """A start that loses the insert race resumes the session created by the other request"""
        winner = start(db, exam, student)

        racer_db = SessionLocal()
        try:
            racer = SessionService(racer_db)
            real_find = racer._find_session
            calls = []

            def find_after_race(exam_id, student_id):
                # the first lookup runs before the other request's insert became visible
                calls.append((exam_id, student_id))
                return None if len(calls) == 1 else real_find(exam_id, student_id)

            monkeypatch.setattr(racer, "_find_session", find_after_race)
            racing_student = racer_db.get(User, student.id)

            session, resumed = racer.start_session(exam.id, racing_student)

            assert resumed is True
            assert session.id == winner.id
            assert len(calls) == 2
        finally:
            racer_db.close()

        db.expire_all()
        assert db.query(ExamSession).filter(
            ExamSession.exam_id == exam.id, ExamSession.student_id == student.id
        ).count() == 1

    def test_shuffled_question_order_is_a_permutation(self, db, faculty, student):
        exam = make_exam(db, faculty, students=[student], shuffle_questions=True)

        session = start(db, exam, student, rng=random.Random(5))

        assert sorted(session.question_order) == list(range(10))

    def test_terminal_session_cannot_be_restarted(self, db, exam, student):
        session = start(db, exam, student)
        SessionService(db).submit_exam(session.id, student)

        with pytest.raises(AlreadySubmittedError) as exc_info:
            SessionService(db).start_session(exam.id, student)

        assert exc_info.value.results_url == f"/api/v1/proctoring/results/{session.id}"

    def test_inactive_exam_is_rejected(self, db, faculty, student):
        exam = make_exam(db, faculty, students=[student], is_active=False)

        with pytest.raises(InvalidStateError):
            SessionService(db).start_session(exam.id, student)

    def test_exam_not_started_yet(self, db, faculty, student):
        exam = make_exam(
            db, faculty, students=[student],
            scheduled_date=utcnow() + timedelta(hours=1), end_date=utcnow() + timedelta(hours=2),
        )

        with pytest.raises(InvalidStateError, match="not started"):
            SessionService(db).start_session(exam.id, student)

    def test_exam_already_ended(self, db, faculty, student):
        exam = make_exam(
            db, faculty, students=[student],
            scheduled_date=utcnow() - timedelta(hours=3), end_date=utcnow() - timedelta(hours=1),
        )

        with pytest.raises(InvalidStateError, match="ended"):
            SessionService(db).start_session(exam.id, student)

    def test_student_outside_roster_is_rejected(self, db, exam, other_student):
        with pytest.raises(InvalidStateError, match="not allowed"):
            SessionService(db).start_session(exam.id, other_student)

        assert db.query(ExamSession).count() == 0

    def test_unknown_exam(self, db, student):
        with pytest.raises(NotFoundError):
            SessionService(db).start_session(12345, student)


class TestAnswers:

    def test_answer_is_upserted(self, db, exam, student):
        session = start(db, exam, student)
        question = exam.questions[0]
        service = SessionService(db)

        service.submit_answer(session.id, student, question.id, 2, time_spent=10)
        progress = service.submit_answer(session.id, student, question.id, 3, time_spent=25)

        assert progress == {"answered_count": 1, "total_questions": 10}
        assert len(session.answers) == 1
        assert session.answers[0].selected_option == 3
        assert session.answers[0].time_spent == 25
        assert session.answers[0].is_correct is None

    def test_negative_option_is_rejected(self, db, exam, student):
        session = start(db, exam, student)

        with pytest.raises(ExamValidationError):
            SessionService(db).submit_answer(session.id, student, exam.questions[0].id, -1)

    def test_option_out_of_range_is_rejected(self, db, exam, student):
        session = start(db, exam, student)

        with pytest.raises(ExamValidationError):
            SessionService(db).submit_answer(session.id, student, exam.questions[0].id, 4)

    def test_unknown_question(self, db, exam, student):
        session = start(db, exam, student)

        with pytest.raises(NotFoundError):
            SessionService(db).submit_answer(session.id, student, 99999, 0)

    def test_other_students_session_is_forbidden(self, db, exam, student, other_student):
        session = start(db, exam, student)

        with pytest.raises(ForbiddenError):
            SessionService(db).submit_answer(session.id, other_student, exam.questions[0].id, 0)

    def test_answers_do_not_touch_warning_count(self, db, exam, student):
        session = start(db, exam, student)
        answer_all(db, session, student)

        assert session.warning_count == 0

    def test_shuffled_options_are_mapped_back_before_grading(self, db, faculty, student):
        exam = make_exam(
            db, faculty, students=[student], shuffle_options=True, show_results_immediately=True,
        )
        session = start(db, exam, student, rng=random.Random(2))
        service = SessionService(db, rng=random.Random(9))

        payload = service.get_questions(session.id, student)
        for question in payload["questions"]:
            # every question's correct option is "A"
            service.submit_answer(session.id, student, question["question_id"], question["options"].index("A"))

        submitted = service.submit_exam(session.id, student)

        assert submitted.correct_answers == 10
        assert submitted.score == 10

    def test_saved_answers_come_back_as_display_indices(self, db, faculty, student):
        exam = make_exam(db, faculty, students=[student], shuffle_options=True)
        session = start(db, exam, student)
        service = SessionService(db, rng=random.Random(4))

        first = service.get_questions(session.id, student)["questions"][0]
        display_index = first["options"].index("C")
        service.submit_answer(session.id, student, first["question_id"], display_index)

        resumed = service.get_questions(session.id, student)
        shown = next(q for q in resumed["questions"] if q["question_id"] == first["question_id"])
        saved = next(a for a in resumed["answers"] if a["question_id"] == first["question_id"])
        assert shown["options"][saved["selected_option"]] == "C"


class TestGetQuestions:

    def test_payload_hides_the_answer_key(self, db, exam, student):
        session = start(db, exam, student)

        payload = SessionService(db).get_questions(session.id, student)

        assert payload["exam"]["title"] == exam.title
        assert payload["exam"]["total_marks"] == 10
        assert payload["exam"]["proctoring_settings"]["warning_threshold"] == 3
        assert [q["number"] for q in payload["questions"]] == list(range(1, 11))
        for question in payload["questions"]:
            assert "correct_answer" not in question
            assert "explanation" not in question
        assert 0 < payload["time_remaining_seconds"] <= 3600

    def test_not_available_after_submission(self, db, exam, student):
        session = start(db, exam, student)
        SessionService(db).submit_exam(session.id, student)

        with pytest.raises(InvalidStateError):
            SessionService(db).get_questions(session.id, student)


class TestViolations:

    def test_third_violation_auto_submits(self, db, exam, student):
        session = start(db, exam, student)
        answer_all(db, session, student, correct=7)
        service = SessionService(db)

        first = service.log_violation(session.id, student, "tab-switch")
        second = service.log_violation(session.id, student, "no-face-detected", severity="high")
        assert (first.auto_submitted, second.auto_submitted) == (False, False)
        assert second.session.status == "in-progress"

        third = service.log_violation(session.id, student, "multiple-faces", metadata={"face_count": "2"})

        assert third.auto_submitted is True
        assert third.warning_count == 3
        assert third.threshold == 3
        assert third.session.status == "auto-submitted"
        assert third.session.submission_reason == "violation-threshold"
        assert third.session.score == 7
        assert third.session.result == "pass"
        assert third.session.can_view_answers is False
        assert db.query(Violation).filter(Violation.session_id == session.id).count() == 3

    def test_each_call_adds_exactly_one_warning(self, db, faculty, student):
        exam = make_exam(db, faculty, students=[student], warning_threshold=10)
        session = start(db, exam, student)
        service = SessionService(db)

        for expected in range(1, 5):
            outcome = service.log_violation(session.id, student, "window-blur")
            assert outcome.warning_count == expected

    def test_unknown_violation_type_is_rejected(self, db, exam, student):
        session = start(db, exam, student)

        with pytest.raises(ExamValidationError):
            SessionService(db).log_violation(session.id, student, "looked-at-phone")


class TestSubmission:

    def test_six_of_ten_passes(self, db, exam, student):
        session = start(db, exam, student)
        answer_all(db, session, student, correct=6)

        submitted = SessionService(db).submit_exam(session.id, student)

        assert submitted.status == "completed"
        assert submitted.score == 6
        assert f"{submitted.percentage:.2f}" == "60.00"
        assert submitted.result == "pass"
        assert submitted.unanswered_questions == 0
        assert submitted.end_time is not None
        assert submitted.graded_at is not None
        assert [a.is_correct for a in submitted.answers].count(True) == 6

    def test_submitting_nothing_fails(self, db, exam, student):
        session = start(db, exam, student)

        submitted = SessionService(db).submit_exam(session.id, student)

        assert submitted.score == 0
        assert submitted.unanswered_questions == 10
        assert submitted.result == "fail"

    def test_resubmission_is_rejected_and_changes_nothing(self, db, exam, student):
        session = start(db, exam, student)
        answer_all(db, session, student, correct=8)
        service = SessionService(db)
        submitted = service.submit_exam(session.id, student)
        end_time = submitted.end_time

        with pytest.raises(AlreadySubmittedError):
            service.submit_exam(session.id, student)

        db.expire_all()
        again = service.get_session(session.id)
        assert again.status == "completed"
        assert again.score == 8
        assert again.end_time == end_time

    def test_manual_submit_reveals_answers_when_exam_allows(self, db, faculty, student):
        exam = make_exam(db, faculty, students=[student], show_results_immediately=True)
        session = start(db, exam, student)

        submitted = SessionService(db).submit_exam(session.id, student)

        assert submitted.can_view_answers is True

    def test_time_expiry_auto_submits(self, db, faculty, student):
        exam = make_exam(db, faculty, students=[student], show_results_immediately=True)
        session = start(db, exam, student)

        submitted = SessionService(db).submit_exam(session.id, student, reason=REASON_TIME_EXPIRY)

        assert submitted.status == "auto-submitted"
        assert submitted.submission_reason == "time-expiry"
        assert submitted.can_view_answers is True

    def test_missing_question_does_not_break_grading(self, db, exam, student):
        session = start(db, exam, student)
        answer_all(db, session, student, correct=10, total=3)
        removed_id = exam.questions[0].id
        db.query(Question).filter(Question.id == removed_id).delete()
        db.commit()
        db.expire_all()

        submitted = SessionService(db).submit_exam(session.id, student)

        ungraded = next(a for a in submitted.answers if a.question_id == removed_id)
        assert ungraded.is_correct is None
        assert ungraded.marks_awarded == 0
        assert submitted.correct_answers == 2
        assert submitted.score == 2


class TestTerminalImmutability:

    @pytest.fixture
    def submitted(self, db, exam, student):
        session = start(db, exam, student)
        answer_all(db, session, student, correct=5, total=5)
        SessionService(db).log_violation(session.id, student, "tab-switch")
        return SessionService(db).submit_exam(session.id, student)

    def test_answers_are_rejected(self, db, exam, student, submitted):
        answers_before = [(a.question_id, a.selected_option) for a in submitted.answers]

        with pytest.raises(InvalidStateError):
            SessionService(db).submit_answer(submitted.id, student, exam.questions[9].id, 0)

        db.expire_all()
        session = SessionService(db).get_session(submitted.id)
        assert [(a.question_id, a.selected_option) for a in session.answers] == answers_before
        assert session.score == 5

    def test_violations_are_rejected(self, db, student, submitted):
        with pytest.raises(InvalidStateError):
            SessionService(db).log_violation(submitted.id, student, "tab-switch")

        db.expire_all()
        session = SessionService(db).get_session(submitted.id)
        assert session.warning_count == 1
        assert db.query(Violation).filter(Violation.session_id == submitted.id).count() == 1


class TestTerminate:

    def test_faculty_owner_terminates_and_grades(self, db, exam, student, faculty):
        session = start(db, exam, student)
        answer_all(db, session, student, correct=4, total=4)

        terminated = SessionService(db).terminate_session(session.id, faculty, reason="Caught cheating")

        assert terminated.status == "terminated"
        assert terminated.submission_reason == "Caught cheating"
        assert terminated.score == 4
        assert terminated.result == "fail"
        assert terminated.can_view_answers is False

    def test_other_faculty_cannot_terminate(self, db, exam, student, other_faculty):
        session = start(db, exam, student)

        with pytest.raises(ForbiddenError):
            SessionService(db).terminate_session(session.id, other_faculty)

    def test_admin_can_terminate_any_session(self, db, exam, student, admin):
        session = start(db, exam, student)

        terminated = SessionService(db).terminate_session(session.id, admin)

        assert terminated.submission_reason == "force-stop"

    def test_terminating_twice(self, db, exam, student, faculty):
        session = start(db, exam, student)
        SessionService(db).terminate_session(session.id, faculty)

        with pytest.raises(AlreadySubmittedError):
            SessionService(db).terminate_session(session.id, faculty)


class TestExpirySweep:

    def test_overdue_sessions_are_auto_submitted(self, db, exam, student, other_student):
        exam.allowed_students.append(other_student)
        db.commit()
        overdue = start(db, exam, student)
        fresh = start(db, exam, other_student)
        overdue.start_time = utcnow() - timedelta(hours=2)
        db.commit()

        expired = SessionService(db).expire_overdue_sessions()

        assert [s.id for s in expired] == [overdue.id]
        db.expire_all()
        assert SessionService(db).get_session(overdue.id).status == "auto-submitted"
        assert SessionService(db).get_session(overdue.id).submission_reason == "time-expiry"
        assert SessionService(db).get_session(fresh.id).status == "in-progress"


class TestResults:

    def test_owner_sees_results_after_submission(self, db, faculty, student):
        exam = make_exam(db, faculty, students=[student], show_results_immediately=True)
        session = start(db, exam, student)
        answer_all(db, session, student, correct=6)
        SessionService(db).submit_exam(session.id, student)

        results = SessionService(db).get_results(session.id, student)

        assert results["score"] == 6
        assert results["percentage"] == "60.00"
        assert results["result"] == "pass"
        assert results["violation_count"] == 0
        assert len(results["answers"]) == 10
        assert results["answers"][0]["correct_answer"] == "A"

    def test_answers_hidden_unless_exam_reveals_them(self, db, exam, student):
        session = start(db, exam, student)
        SessionService(db).submit_exam(session.id, student)

        results = SessionService(db).get_results(session.id, student)

        assert results["can_view_answers"] is False
        assert "answers" not in results

    def test_results_need_a_terminal_session(self, db, exam, student):
        session = start(db, exam, student)

        with pytest.raises(InvalidStateError):
            SessionService(db).get_results(session.id, student)

    def test_access_control(self, db, exam, student, other_student, faculty, other_faculty, admin):
        session = start(db, exam, student)
        SessionService(db).submit_exam(session.id, student)
        service = SessionService(db)

        assert service.get_results(session.id, faculty)["session_id"] == session.id
        assert service.get_results(session.id, admin)["session_id"] == session.id
        with pytest.raises(ForbiddenError):
            service.get_results(session.id, other_student)
        with pytest.raises(ForbiddenError):
            service.get_results(session.id, other_faculty)

    def test_history_lists_own_sessions(self, db, exam, student):
        session = start(db, exam, student)

        history = SessionService(db).get_history(student)

        assert [h["session_id"] for h in history] == [session.id]
        assert history[0]["score"] is None


class TestDeleteSession:

    def test_in_progress_session_cannot_be_deleted(self, db, exam, student):
        session = start(db, exam, student)

        with pytest.raises(InvalidStateError):
            SessionService(db).delete_session(session.id)

    def test_session_with_violations_is_kept(self, db, exam, student):
        session = start(db, exam, student)
        SessionService(db).log_violation(session.id, student, "tab-switch")
        SessionService(db).submit_exam(session.id, student)

        with pytest.raises(InvalidStateError, match="violation"):
            SessionService(db).delete_session(session.id)

    def test_clean_submitted_session_is_deleted(self, db, exam, student):
        session = start(db, exam, student)
        SessionService(db).submit_exam(session.id, student)

        SessionService(db).delete_session(session.id)

        assert db.query(ExamSession).count() == 0
