from fastapi import APIRouter, Depends
from pydantic import BaseModel, StrictInt, StrictStr
from typing import Dict, List, Literal, Optional, Union
from datetime import datetime
from sqlalchemy.orm import Session
from coursegrade.core import config
from coursegrade.core.database import get_db
from coursegrade.core.auth import require_roles, TokenData
from coursegrade.models.orm import AttemptStatus, QuizAttempt
from coursegrade.services.attempts import get_quiz, list_attempts, load_questions, submit_attempt
from coursegrade.services.grading import McqQuestion

router = APIRouter()

class QuestionOut(BaseModel):
    id: str
    kind: Literal["mcq", "qa"]
    prompt: str
    options: List[str] = []
    order_index: int

class QuizOut(BaseModel):
    id: str
    title: str
    passing_score: int
    lesson_id: Optional[str]
    questions: List[QuestionOut]

class AttemptSubmit(BaseModel):
    answers: Dict[str, Union[StrictInt, StrictStr]]

class ProgressOut(BaseModel):
    course_id: str
    progress_percent: int
    completed_at: Optional[datetime] = None
    certificate_number: Optional[str] = None

class AttemptResult(BaseModel):
    attempt_id: str
    attempt_number: int
    status: str
    score_percent: Optional[int]
    passed: Optional[bool]
    total_questions: int
    attempts_remaining: int
    progress: Optional[ProgressOut] = None
    warnings: List[str] = []

class AttemptRow(BaseModel):
    attempt_id: str
    attempt_number: int
    status: str
    score_percent: Optional[int]
    passed: Optional[bool]
    feedback: Optional[str] = None
    completed_at: datetime

class AttemptHistory(BaseModel):
    attempts: List[AttemptRow]
    max_attempts: int
    attempts_remaining: int

def _visible(status: AttemptStatus, score: int, passed: bool):
    # the provisional score of an unreviewed attempt stays internal
    if status == AttemptStatus.PENDING_REVIEW:
        return None, None
    return score, passed

@router.get("/{quiz_id}", response_model=QuizOut)
def get_quiz_for_student(quiz_id: str, user: TokenData = Depends(require_roles("student","admin")), db: Session = Depends(get_db)):
    quiz = get_quiz(db, quiz_id)
    questions = [
        QuestionOut(id=q.id, kind=q.kind.value, prompt=q.prompt, order_index=q.order_index,
                    options=list(q.options) if isinstance(q, McqQuestion) else [])
        for q in load_questions(db, quiz_id)
    ]
    return QuizOut(id=quiz.id, title=quiz.title, passing_score=quiz.passing_score, lesson_id=quiz.lesson_id, questions=questions)

@router.post("/{quiz_id}/attempts", response_model=AttemptResult, status_code=201)
def submit(quiz_id: str, payload: AttemptSubmit, user: TokenData = Depends(require_roles("student","admin")), db: Session = Depends(get_db)):
    out = submit_attempt(db, quiz_id, user.sub, payload.answers)
    score, passed = _visible(out.status, out.score_percent, out.passed)
    progress = None
    if out.progress:
        progress = ProgressOut(course_id=out.progress.course_id, progress_percent=out.progress.progress_percent,
                               completed_at=out.progress.completed_at, certificate_number=out.progress.certificate_number)
    return AttemptResult(attempt_id=out.attempt_id, attempt_number=out.attempt_number, status=out.status.value,
                         score_percent=score, passed=passed, total_questions=out.total_questions,
                         attempts_remaining=out.attempts_remaining, progress=progress, warnings=out.warnings)

@router.get("/{quiz_id}/attempts", response_model=AttemptHistory)
def history(quiz_id: str, user: TokenData = Depends(require_roles("student","admin")), db: Session = Depends(get_db)):
    get_quiz(db, quiz_id)
    rows: List[QuizAttempt] = list_attempts(db, quiz_id, user.sub)
    out = []
    for a in rows:
        score, passed = _visible(a.status, a.score, a.passed)
        out.append(AttemptRow(attempt_id=a.id, attempt_number=a.attempt_number, status=a.status.value,
                              score_percent=score, passed=passed, feedback=a.feedback, completed_at=a.completed_at))
    limit = config.MAX_QUIZ_ATTEMPTS
    return AttemptHistory(attempts=out, max_attempts=limit, attempts_remaining=max(limit - len(rows), 0))
