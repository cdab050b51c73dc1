"""
Quiz grading rules.

Questions are handled as a tagged variant: a multiple-choice question
carries its options and the index of the correct one, a free-text (QA)
question carries an advisory expected answer. Nothing here touches the
database; the attempt recorder and the review engine feed rows in and
persist what comes out.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from coursegrade.core.errors import DegenerateQuizError, ValidationError
from coursegrade.models.orm import AttemptStatus, QuestionKind, QuizQuestion


@dataclass(frozen=True)
class McqQuestion:
    """Multiple-choice question with exactly one correct option."""
    id: str
    prompt: str
    options: Tuple[str, ...]
    correct_index: int
    order_index: int = 0
    kind: QuestionKind = field(default=QuestionKind.MCQ, init=False)

    def __post_init__(self):
        if not self.options:
            raise ValidationError(f"Question {self.id} has no options")
        if not 0 <= self.correct_index < len(self.options):
            raise ValidationError(f"Question {self.id} has no valid correct option")

@dataclass(frozen=True)
class QaQuestion:
    """Free-text question; expected_answer is only a grading hint."""
    id: str
    prompt: str
    expected_answer: Optional[str] = None
    order_index: int = 0
    kind: QuestionKind = field(default=QuestionKind.QA, init=False)

Question = Union[McqQuestion, QaQuestion]

def question_from_row(row: QuizQuestion) -> Question:
    if row.type == QuestionKind.QA:
        if row.options:
            raise ValidationError(f"Question {row.id} is free-text but has options")
        return QaQuestion(id=row.id, prompt=row.question, expected_answer=row.expected_answer, order_index=row.order_index)
    options = row.options or []
    if not isinstance(options, list) or not all(isinstance(o, str) for o in options):
        raise ValidationError(f"Question {row.id} has malformed options")
    if row.correct_answer is None:
        raise ValidationError(f"Question {row.id} has no correct option")
    return McqQuestion(id=row.id, prompt=row.question, options=tuple(options),
                       correct_index=row.correct_answer, order_index=row.order_index)

def round_percent(numerator: int, denominator: int) -> int:
    """100 * numerator / denominator rounded half up, in integer arithmetic."""
    if denominator <= 0:
        raise DegenerateQuizError("Quiz has no questions")
    return (200 * numerator + denominator) // (2 * denominator)

def is_passing(score_percent: int, passing_score: int) -> bool:
    return score_percent >= passing_score

def normalize_answer_text(text: str) -> str:
    return text.strip().lower()

@dataclass
class GradedAnswer:
    question_id: str
    kind: QuestionKind
    selected_index: Optional[int] = None
    answer_text: Optional[str] = None
    provisional_correct: bool = False

    @property
    def requires_review(self) -> bool:
        return self.kind == QuestionKind.QA

    @property
    def is_correct(self) -> Optional[bool]:
        # QA correctness is only trusted once a reviewer confirms it
        return None if self.requires_review else self.provisional_correct

@dataclass
class GradeResult:
    answers: List[GradedAnswer]
    correct_count: int
    total_questions: int
    score_percent: int
    passed: bool

    @property
    def needs_review(self) -> bool:
        return any(a.requires_review for a in self.answers)

    @property
    def status(self) -> AttemptStatus:
        return AttemptStatus.PENDING_REVIEW if self.needs_review else AttemptStatus.AUTO_GRADED

def grade_answer(question: Question, answer: Any) -> GradedAnswer:
    if isinstance(question, McqQuestion):
        # bool is an int subclass; true/false is not an option index
        if isinstance(answer, bool) or not isinstance(answer, int):
            raise ValidationError(f"Question {question.id} expects an option index", detail={"question_id": question.id})
        if not 0 <= answer < len(question.options):
            raise ValidationError(f"Option {answer} is out of range for question {question.id}", detail={"question_id": question.id})
        return GradedAnswer(question_id=question.id, kind=QuestionKind.MCQ, selected_index=answer,
                            provisional_correct=answer == question.correct_index)
    if not isinstance(answer, str):
        raise ValidationError(f"Question {question.id} expects a text answer", detail={"question_id": question.id})
    if not answer.strip():
        raise ValidationError(f"Answer for question {question.id} is empty", detail={"question_id": question.id})
    provisional = (question.expected_answer is not None
                   and normalize_answer_text(answer) == normalize_answer_text(question.expected_answer))
    return GradedAnswer(question_id=question.id, kind=QuestionKind.QA, answer_text=answer,
                        provisional_correct=provisional)

def grade_submission(questions: List[Question], answers: Mapping[str, Any], passing_score: int) -> GradeResult:
    """Grade a complete answer set. Raises before anything is persisted."""
    if not questions:
        raise DegenerateQuizError("Quiz has no questions")
    known = {q.id for q in questions}
    missing = [q.id for q in questions if answers.get(q.id) is None]
    if missing:
        raise ValidationError("Every question must be answered before submitting", detail={"missing": missing})
    unknown = sorted(set(answers) - known)
    if unknown:
        raise ValidationError("Answers reference questions outside this quiz", detail={"unknown": unknown})
    graded = [grade_answer(q, answers[q.id]) for q in sorted(questions, key=lambda q: q.order_index)]
    correct = sum(1 for g in graded if g.provisional_correct)
    score = round_percent(correct, len(graded))
    return GradeResult(answers=graded, correct_count=correct, total_questions=len(graded),
                       score_percent=score, passed=is_passing(score, passing_score))

def review_score(answers: List[Tuple[str, bool, Optional[bool]]], decisions: Dict[str, bool],
                 total_questions: int, passing_score: int) -> Tuple[int, bool, int, int]:
    """
    Final score of a reviewed attempt.

    ``answers`` holds ``(answer_id, requires_review, is_correct)`` per stored
    answer record. Auto-graded answers count when marked correct; review
    answers count when the reviewer marked them correct in ``decisions``.
    Returns ``(score_percent, passed, auto_correct, qa_marked_correct)``.
    """
    auto_correct = sum(1 for _, review, correct in answers if not review and correct)
    qa_correct = sum(1 for answer_id, review, _ in answers if review and decisions.get(answer_id) is True)
    score = round_percent(auto_correct + qa_correct, total_questions)
    return score, is_passing(score, passing_score), auto_correct, qa_correct
