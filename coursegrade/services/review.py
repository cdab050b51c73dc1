"""
Manual review of free-text answers.

The reviewer marks each QA answer correct or incorrect; the final score
combines those decisions with the auto-graded MCQ answers. The attempt,
its QA answer records and (on a pass) the lesson progress row are
updated in one transaction. A reviewed attempt is final: repeating the
same decisions returns it unchanged and different ones are refused.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Mapping, Optional, Tuple
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coursegrade.core.errors import DegenerateQuizError, NotFoundError, StorageError, ValidationError
from coursegrade.models.orm import AttemptStatus, Lesson, Quiz, QuizAttempt, QuizAttemptAnswer, QuizQuestion, utcnow
from coursegrade.services import notifications
from coursegrade.services.grading import review_score
from coursegrade.services.progress import ProgressResult, apply_quiz_pass, refresh_course_progress

logger = logging.getLogger(__name__)

PENDING_LIMIT = 100

@dataclass
class ReviewOutcome:
    attempt_id: str
    score_percent: int
    passed: bool
    status: AttemptStatus
    total_questions: int
    auto_correct: int
    qa_marked_correct: int
    progress: Optional[ProgressResult] = None
    warnings: List[str] = field(default_factory=list)

def list_pending_reviews(db: Session, limit: int = PENDING_LIMIT) -> List[QuizAttempt]:
    stmt = (select(QuizAttempt).where(QuizAttempt.status == AttemptStatus.PENDING_REVIEW)
            .order_by(QuizAttempt.created_at.desc()).limit(limit))
    return list(db.scalars(stmt))

def get_attempt(db: Session, attempt_id: str) -> QuizAttempt:
    attempt = db.get(QuizAttempt, attempt_id)
    if attempt is None:
        raise NotFoundError("Attempt not found")
    return attempt

def attempt_answers(db: Session, attempt_id: str) -> List[Tuple[QuizAttemptAnswer, Optional[QuizQuestion]]]:
    stmt = (select(QuizAttemptAnswer, QuizQuestion)
            .outerjoin(QuizQuestion, QuizQuestion.id == QuizAttemptAnswer.question_id)
            .where(QuizAttemptAnswer.quiz_attempt_id == attempt_id)
            .order_by(QuizQuestion.order_index))
    return [(a, q) for a, q in db.execute(stmt).all()]

def _repeat_review(attempt: QuizAttempt, answers: List[QuizAttemptAnswer], decisions: Mapping[str, bool]) -> ReviewOutcome:
    """A reviewed attempt is final: the same decisions return it unchanged, others are refused."""
    qa = [a for a in answers if a.requires_review]
    if any(a.is_correct != (decisions.get(a.id) is True) for a in qa):
        raise ValidationError("Attempt has already been reviewed",
                              detail={"reviewed_by": attempt.reviewed_by, "score_percent": attempt.score})
    logger.info("Attempt %s already reviewed with the same decisions; nothing to do", attempt.id)
    return ReviewOutcome(attempt_id=attempt.id, score_percent=attempt.score, passed=attempt.passed,
                         status=AttemptStatus.REVIEWED, total_questions=attempt.total_questions,
                         auto_correct=sum(1 for a in answers if not a.requires_review and a.is_correct),
                         qa_marked_correct=sum(1 for a in qa if a.is_correct))

def review_attempt(db: Session, attempt_id: str, decisions: Mapping[str, bool], reviewer_id: str, *,
                   feedback: Optional[str] = None, now: Optional[datetime] = None) -> ReviewOutcome:
    """
    Finalize an attempt from the reviewer's QA decisions.

    ``decisions`` maps answer-record ids to correct / incorrect. QA answers
    without a decision count as incorrect.
    """
    now = now or utcnow()
    attempt = get_attempt(db, attempt_id)
    quiz = db.get(Quiz, attempt.quiz_id)
    if quiz is None:
        raise NotFoundError("Quiz for this attempt no longer exists; cannot determine passing score")
    if attempt.total_questions <= 0:
        raise DegenerateQuizError("Attempt has no questions")
    answers = list(db.scalars(select(QuizAttemptAnswer).where(QuizAttemptAnswer.quiz_attempt_id == attempt_id)))
    review_ids = {a.id for a in answers if a.requires_review}
    if not review_ids:
        raise ValidationError("Attempt has no answers awaiting manual review")
    stray = sorted(set(decisions) - review_ids)
    if stray:
        raise ValidationError("Decisions reference answers that are not under review", detail={"answer_ids": stray})
    if attempt.status == AttemptStatus.REVIEWED:
        return _repeat_review(attempt, answers, decisions)

    score, passed, auto_correct, qa_correct = review_score(
        [(a.id, a.requires_review, a.is_correct) for a in answers], dict(decisions),
        attempt.total_questions, quiz.passing_score)
    student_id = attempt.student_id
    try:
        for a in answers:
            if a.requires_review:
                a.is_correct = decisions.get(a.id) is True
        attempt.score = score
        attempt.passed = passed
        attempt.status = AttemptStatus.REVIEWED
        attempt.reviewed_by = reviewer_id
        attempt.reviewed_at = now
        if feedback is not None:
            attempt.feedback = feedback
        if passed and quiz.lesson_id:
            apply_quiz_pass(db, student_id, quiz.lesson_id, now)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Review of attempt %s failed: %s", attempt_id, e)
        raise StorageError("Review could not be saved, please retry") from e

    logger.info("Attempt %s reviewed by %s: %d%% (%s)", attempt_id, reviewer_id, score, "passed" if passed else "failed")
    outcome = ReviewOutcome(attempt_id=attempt_id, score_percent=score, passed=passed, status=AttemptStatus.REVIEWED,
                            total_questions=attempt.total_questions, auto_correct=auto_correct, qa_marked_correct=qa_correct)
    lesson = db.get(Lesson, quiz.lesson_id) if quiz.lesson_id else None
    if passed and lesson is not None:
        outcome.progress, warnings = refresh_course_progress(db, student_id, lesson.course_id, now)
        outcome.warnings.extend(warnings)
        if outcome.progress:
            outcome.warnings.extend(outcome.progress.warnings)
    warning = notifications.notify(
        db, user_id=student_id, title="Quiz Graded", type=notifications.QUIZ_GRADED,
        message=notifications.quiz_graded_message(quiz.title, score, passed),
        link=notifications.course_link(lesson.course_id if lesson else None))
    if warning:
        outcome.warnings.append(warning)
    return outcome
