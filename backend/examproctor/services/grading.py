"""
Exam grading.

``grade_answers`` is a pure function of the stored answers, the exam's answer
key and its marking policy. It never raises for answers whose question has
disappeared from the exam; those are carried through ungraded so the rest of
the attempt still scores.
"""
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Tuple

from ..models.exam_session import RESULT_FAIL, RESULT_PASS


@dataclass(frozen=True)
class GradedAnswer:
    question_id: int
    selected_option: int
    is_correct: Optional[bool]
    marks_awarded: float


@dataclass(frozen=True)
class GradeReport:
    score: float
    percentage: float
    result: str
    correct_count: int
    wrong_count: int
    unanswered_count: int
    answers: Tuple[GradedAnswer, ...]

    @property
    def passed(self) -> bool:
        return self.result == RESULT_PASS


def grade_answers(
    answers: Iterable[Any],
    questions: Iterable[Any],
    *,
    negative_marking_enabled: bool,
    negative_marking_deduction: float,
    total_questions: int,
    total_marks: float,
    passing_marks: float,
) -> GradeReport:
    """Score a set of answers.

    ``answers`` items expose ``question_id`` and ``selected_option``;
    ``questions`` items expose ``id``, ``correct_answer`` and ``marks``.
    """
    answer_key = {question.id: question for question in questions}
    deduction = -float(negative_marking_deduction) if negative_marking_enabled else 0.0

    graded = []
    correct = wrong = 0
    raw_score = 0.0

    for answer in answers:
        question = answer_key.get(answer.question_id)
        if question is None:
            graded.append(GradedAnswer(answer.question_id, answer.selected_option, None, 0.0))
            continue

        is_correct = answer.selected_option == question.correct_answer
        if is_correct:
            marks = float(question.marks)
            correct += 1
        else:
            marks = deduction
            wrong += 1

        raw_score += marks
        graded.append(GradedAnswer(answer.question_id, answer.selected_option, is_correct, marks))

    # only the final sum is clamped; per-question deductions stay negative
    score = max(0.0, raw_score)
    percentage = max(0.0, score / total_marks * 100) if total_marks else 0.0

    return GradeReport(
        score=score,
        percentage=percentage,
        result=RESULT_PASS if score >= passing_marks else RESULT_FAIL,
        correct_count=correct,
        wrong_count=wrong,
        unanswered_count=max(0, total_questions - len(graded)),
        answers=tuple(graded),
    )


def grade_session(session) -> GradeReport:
    """Grade an ExamSession against its exam's current answer key."""
    exam = session.exam
    return grade_answers(
        session.answers,
        exam.questions,
        negative_marking_enabled=exam.negative_marking_enabled,
        negative_marking_deduction=exam.negative_marking_deduction,
        total_questions=session.total_questions,
        total_marks=exam.total_marks,
        passing_marks=exam.passing_marks,
    )
