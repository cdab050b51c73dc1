from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from typing import Dict, List, Optional
from datetime import datetime
from sqlalchemy import select
from sqlalchemy.orm import Session
from coursegrade.core.database import get_db
from coursegrade.core.auth import require_roles, TokenData
from coursegrade.models.orm import Lesson, Quiz
from coursegrade.services.review import PENDING_LIMIT, attempt_answers, get_attempt, list_pending_reviews, review_attempt

router = APIRouter()

class PendingRow(BaseModel):
    attempt_id: str
    quiz_id: str
    quiz_title: Optional[str] = None
    course_id: Optional[str] = None
    student_id: str
    attempt_number: int
    created_at: datetime

class AnswerOut(BaseModel):
    answer_id: str
    question_id: str
    question: Optional[str] = None
    options: List[str] = []
    selected_index: Optional[int] = None
    answer_text: Optional[str] = None
    expected_answer: Optional[str] = None
    is_correct: Optional[bool] = None
    requires_review: bool

class AttemptDetail(BaseModel):
    attempt_id: str
    quiz_id: str
    student_id: str
    status: str
    score_percent: int
    passed: bool
    attempt_number: int
    total_questions: int
    answers: List[AnswerOut]

class ReviewSubmit(BaseModel):
    decisions: Dict[str, bool] = {}
    feedback: Optional[str] = None

class ReviewResult(BaseModel):
    attempt_id: str
    status: str
    score_percent: int
    passed: bool
    auto_correct: int
    qa_marked_correct: int
    total_questions: int
    course_progress: Optional[int] = None
    warnings: List[str] = []

@router.get("/pending", response_model=List[PendingRow])
def pending(limit: int = Query(PENDING_LIMIT, ge=1, le=PENDING_LIMIT), user: TokenData = Depends(require_roles("instructor","admin")), db: Session = Depends(get_db)):
    attempts = list_pending_reviews(db, limit)
    quiz_ids = {a.quiz_id for a in attempts}
    quizzes = {q.id: q for q in db.scalars(select(Quiz).where(Quiz.id.in_(quiz_ids)))} if quiz_ids else {}
    lesson_ids = {q.lesson_id for q in quizzes.values() if q.lesson_id}
    lessons = {l.id: l for l in db.scalars(select(Lesson).where(Lesson.id.in_(lesson_ids)))} if lesson_ids else {}
    rows = []
    for a in attempts:
        quiz = quizzes.get(a.quiz_id)
        lesson = lessons.get(quiz.lesson_id) if quiz and quiz.lesson_id else None
        rows.append(PendingRow(attempt_id=a.id, quiz_id=a.quiz_id, quiz_title=quiz.title if quiz else None,
                               course_id=lesson.course_id if lesson else None, student_id=a.student_id,
                               attempt_number=a.attempt_number, created_at=a.created_at))
    return rows

@router.get("/attempts/{attempt_id}", response_model=AttemptDetail)
def detail(attempt_id: str, user: TokenData = Depends(require_roles("instructor","admin")), db: Session = Depends(get_db)):
    a = get_attempt(db, attempt_id)
    answers = [
        AnswerOut(answer_id=ans.id, question_id=ans.question_id, question=q.question if q else None,
                  options=(q.options or []) if q else [], selected_index=ans.selected_index, answer_text=ans.answer_text,
                  expected_answer=q.expected_answer if q else None, is_correct=ans.is_correct,
                  requires_review=ans.requires_review)
        for ans, q in attempt_answers(db, attempt_id)
    ]
    return AttemptDetail(attempt_id=a.id, quiz_id=a.quiz_id, student_id=a.student_id, status=a.status.value,
                         score_percent=a.score, passed=a.passed, attempt_number=a.attempt_number,
                         total_questions=a.total_questions, answers=answers)

@router.post("/attempts/{attempt_id}", response_model=ReviewResult)
def finalize(attempt_id: str, payload: ReviewSubmit, user: TokenData = Depends(require_roles("instructor","admin")), db: Session = Depends(get_db)):
    out = review_attempt(db, attempt_id, payload.decisions, user.sub, feedback=payload.feedback)
    return ReviewResult(attempt_id=out.attempt_id, status=out.status.value, score_percent=out.score_percent,
                        passed=out.passed, auto_correct=out.auto_correct, qa_marked_correct=out.qa_marked_correct,
                        total_questions=out.total_questions,
                        course_progress=out.progress.progress_percent if out.progress else None,
                        warnings=out.warnings)
