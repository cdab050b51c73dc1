"""
Quiz submission: attempt-limit guard and attempt recorder.

An attempt and its answer records are written in one transaction. The
unique key on (quiz_id, student_id, attempt_number) makes the limit check
and the insert atomic: two concurrent submissions that both saw room for
one more attempt collide on the same attempt number, and the loser is
re-checked against the limit.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Mapping, Optional
import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from coursegrade.core import config
from coursegrade.core.errors import AttemptLimitExceededError, NotFoundError, StorageError
from coursegrade.models.orm import AttemptStatus, Lesson, Quiz, QuizAttempt, QuizAttemptAnswer, QuizQuestion, utcnow
from coursegrade.services import notifications
from coursegrade.services.grading import Question, grade_submission, question_from_row
from coursegrade.services.progress import ProgressResult, apply_quiz_pass, refresh_course_progress

logger = logging.getLogger(__name__)

@dataclass
class AttemptOutcome:
    attempt_id: str
    attempt_number: int
    score_percent: int
    passed: bool
    status: AttemptStatus
    total_questions: int
    correct_count: int
    attempts_remaining: int
    progress: Optional[ProgressResult] = None
    warnings: List[str] = field(default_factory=list)

def get_quiz(db: Session, quiz_id: str) -> Quiz:
    quiz = db.get(Quiz, quiz_id)
    if quiz is None:
        raise NotFoundError("Quiz not found")
    return quiz

def load_questions(db: Session, quiz_id: str) -> List[Question]:
    rows = db.scalars(select(QuizQuestion).where(QuizQuestion.quiz_id == quiz_id).order_by(QuizQuestion.order_index, QuizQuestion.id))
    return [question_from_row(r) for r in rows]

def count_attempts(db: Session, quiz_id: str, student_id: str) -> int:
    return db.scalar(select(func.count()).select_from(QuizAttempt).where(
        QuizAttempt.quiz_id == quiz_id, QuizAttempt.student_id == student_id)) or 0

def ensure_attempts_remaining(db: Session, quiz_id: str, student_id: str, max_attempts: int) -> int:
    """Return the number of prior attempts, or raise once the limit is used up."""
    used = count_attempts(db, quiz_id, student_id)
    if used >= max_attempts:
        raise AttemptLimitExceededError(f"You have used all {max_attempts} attempts for this quiz",
                                        detail={"attempts_used": used, "max_attempts": max_attempts})
    return used

def list_attempts(db: Session, quiz_id: str, student_id: str) -> List[QuizAttempt]:
    stmt = select(QuizAttempt).where(QuizAttempt.quiz_id == quiz_id, QuizAttempt.student_id == student_id).order_by(QuizAttempt.attempt_number)
    return list(db.scalars(stmt))

def submit_attempt(db: Session, quiz_id: str, student_id: str, answers: Mapping[str, Any], *,
                   max_attempts: Optional[int] = None, now: Optional[datetime] = None) -> AttemptOutcome:
    max_attempts = config.MAX_QUIZ_ATTEMPTS if max_attempts is None else max_attempts
    now = now or utcnow()
    quiz = get_quiz(db, quiz_id)
    used = ensure_attempts_remaining(db, quiz_id, student_id, max_attempts)
    result = grade_submission(load_questions(db, quiz_id), answers, quiz.passing_score)

    attempt = QuizAttempt(quiz_id=quiz_id, student_id=student_id, score=result.score_percent, passed=result.passed,
                          total_questions=result.total_questions, attempt_number=used + 1, status=result.status,
                          completed_at=now, created_at=now)
    completes_lesson = result.status == AttemptStatus.AUTO_GRADED and result.passed and quiz.lesson_id is not None
    try:
        db.add(attempt)
        db.flush()
        for graded in result.answers:
            db.add(QuizAttemptAnswer(quiz_attempt_id=attempt.id, question_id=graded.question_id,
                                     selected_index=graded.selected_index, answer_text=graded.answer_text,
                                     is_correct=graded.is_correct, requires_review=graded.requires_review))
        if completes_lesson:
            apply_quiz_pass(db, student_id, quiz.lesson_id, now)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        if count_attempts(db, quiz_id, student_id) >= max_attempts:
            raise AttemptLimitExceededError(f"You have used all {max_attempts} attempts for this quiz",
                                            detail={"max_attempts": max_attempts}) from e
        raise StorageError("Submission conflicted with another one, please resubmit") from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Storing attempt for quiz %s by %s failed: %s", quiz_id, student_id, e)
        raise StorageError("Your submission could not be saved, please retry") from e

    logger.info("Attempt %s #%d on quiz %s by %s: %d%% (%s)", attempt.id, attempt.attempt_number, quiz_id,
                student_id, result.score_percent, result.status.value)
    outcome = AttemptOutcome(attempt_id=attempt.id, attempt_number=used + 1, score_percent=result.score_percent,
                             passed=result.passed, status=result.status, total_questions=result.total_questions,
                             correct_count=result.correct_count, attempts_remaining=max(max_attempts - used - 1, 0))
    if result.status == AttemptStatus.AUTO_GRADED:
        lesson = db.get(Lesson, quiz.lesson_id) if quiz.lesson_id else None
        if completes_lesson and lesson is not None:
            outcome.progress, warnings = refresh_course_progress(db, student_id, lesson.course_id, now)
            outcome.warnings.extend(warnings)
            if outcome.progress:
                outcome.warnings.extend(outcome.progress.warnings)
        warning = notifications.notify(
            db, user_id=student_id, title="Quiz Graded", type=notifications.QUIZ_GRADED,
            message=notifications.quiz_graded_message(quiz.title, result.score_percent, result.passed),
            link=notifications.course_link(lesson.course_id if lesson else None))
        if warning:
            outcome.warnings.append(warning)
    return outcome
