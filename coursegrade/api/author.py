from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, model_validator
from typing import List, Literal, Optional
from sqlalchemy.orm import Session
from sqlalchemy import select, func
from coursegrade.core.database import get_db
from coursegrade.core.auth import require_roles, TokenData
from coursegrade.models.orm import Course, Lesson, LessonType, Quiz, QuizQuestion, QuestionKind

router = APIRouter()

class CourseCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)

class LessonCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    type: Literal["video", "text", "pdf", "quiz"] = "text"
    order_index: Optional[int] = None
    duration: Optional[int] = None
    video_url: Optional[str] = None
    is_published: bool = True

class QuizCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    passing_score: int = Field(ge=0, le=100, default=70)

class QuestionCreate(BaseModel):
    question: str = Field(min_length=1)
    type: Literal["mcq", "qa"] = "mcq"
    options: List[str] = []
    correct_answer: Optional[int] = None
    expected_answer: Optional[str] = None
    explanation: Optional[str] = None
    order_index: Optional[int] = None

    @model_validator(mode="after")
    def check_shape(self):
        if self.type == "mcq":
            if not self.options:
                raise ValueError("multiple-choice questions need at least one option")
            if self.correct_answer is None or not 0 <= self.correct_answer < len(self.options):
                raise ValueError("correct_answer must index one of the options")
        else:
            if self.options:
                raise ValueError("free-text questions take no options")
            if self.correct_answer is not None:
                raise ValueError("free-text questions take no correct_answer")
        return self

def _owned_course(db: Session, course_id: str, user: TokenData) -> Course:
    course = db.get(Course, course_id)
    if not course: raise HTTPException(404, "Course not found")
    if course.instructor_id != user.sub and not user.has_role("admin"):
        raise HTTPException(403, "Not your course")
    return course

@router.post("/courses", status_code=201)
def create_course(payload: CourseCreate, user: TokenData = Depends(require_roles("instructor","admin")), db: Session = Depends(get_db)):
    c = Course(title=payload.title, instructor_id=user.sub)
    db.add(c); db.commit()
    return {"course_id": c.id}

@router.post("/courses/{course_id}/lessons", status_code=201)
def create_lesson(course_id: str, payload: LessonCreate, user: TokenData = Depends(require_roles("instructor","admin")), db: Session = Depends(get_db)):
    _owned_course(db, course_id, user)
    order = payload.order_index
    if order is None:
        order = (db.scalar(select(func.coalesce(func.max(Lesson.order_index), -1)).where(Lesson.course_id == course_id)) or 0) + 1
    l = Lesson(course_id=course_id, title=payload.title, type=LessonType(payload.type), order_index=order,
               duration=payload.duration, video_url=payload.video_url, is_published=payload.is_published)
    db.add(l); db.commit()
    return {"lesson_id": l.id, "order_index": order}

@router.post("/lessons/{lesson_id}/quiz", status_code=201)
def create_quiz(lesson_id: str, payload: QuizCreate, user: TokenData = Depends(require_roles("instructor","admin")), db: Session = Depends(get_db)):
    lesson = db.get(Lesson, lesson_id)
    if not lesson: raise HTTPException(404, "Lesson not found")
    _owned_course(db, lesson.course_id, user)
    if db.scalar(select(Quiz).where(Quiz.lesson_id == lesson_id)):
        raise HTTPException(409, "Lesson already has a quiz")
    q = Quiz(lesson_id=lesson_id, title=payload.title, description=payload.description, passing_score=payload.passing_score)
    db.add(q); db.commit()
    return {"quiz_id": q.id}

@router.post("/quizzes/{quiz_id}/questions", status_code=201)
def create_question(quiz_id: str, payload: QuestionCreate, user: TokenData = Depends(require_roles("instructor","admin")), db: Session = Depends(get_db)):
    quiz = db.get(Quiz, quiz_id)
    if not quiz: raise HTTPException(404, "Quiz not found")
    lesson = db.get(Lesson, quiz.lesson_id) if quiz.lesson_id else None
    if lesson:
        _owned_course(db, lesson.course_id, user)
    elif not user.has_role("admin"):
        # detached quizzes have no owning course
        raise HTTPException(403, "Quiz is not attached to a lesson; only an admin can edit it")
    order = payload.order_index
    if order is None:
        order = (db.scalar(select(func.coalesce(func.max(QuizQuestion.order_index), -1)).where(QuizQuestion.quiz_id == quiz_id)) or 0) + 1
    qq = QuizQuestion(quiz_id=quiz_id, question=payload.question, type=QuestionKind(payload.type),
                      options=payload.options if payload.type == "mcq" else [],
                      correct_answer=payload.correct_answer, expected_answer=payload.expected_answer,
                      explanation=payload.explanation, order_index=order)
    db.add(qq); db.commit()
    return {"question_id": qq.id, "order_index": order}
