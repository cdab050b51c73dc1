from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from sqlalchemy.orm import Session
from coursegrade.core.database import get_db
from coursegrade.core.auth import require_roles, TokenData
from coursegrade.services import progress as svc

router = APIRouter()

class EnrollmentOut(BaseModel):
    course_id: str
    progress_percent: int
    enrolled_at: datetime
    completed_at: Optional[datetime] = None

class LessonRow(BaseModel):
    lesson_id: str
    title: str
    order_index: int
    is_completed: bool
    unlocked: bool
    completion_percent: int

class CourseProgressOut(EnrollmentOut):
    lessons: List[LessonRow]

class ProgressUpdate(BaseModel):
    course_id: str
    completed_lessons: int
    total_lessons: int
    progress_percent: int
    completed_at: Optional[datetime] = None
    newly_completed: bool = False
    certificate_number: Optional[str] = None
    warnings: List[str] = []

class VideoProgressIn(BaseModel):
    percent: int = Field(ge=0, le=100)
    watched_seconds: Optional[int] = Field(default=None, ge=0)

class LessonProgressOut(BaseModel):
    lesson_id: str
    is_completed: bool
    video_watch_progress: Optional[int] = None
    video_watched_seconds: Optional[int] = None
    text_read: bool
    pdf_viewed: bool
    quiz_passed: bool

def _lesson_out(row) -> LessonProgressOut:
    return LessonProgressOut(lesson_id=row.lesson_id, is_completed=row.is_completed,
                             video_watch_progress=row.video_watch_progress, video_watched_seconds=row.video_watched_seconds,
                             text_read=row.text_read, pdf_viewed=row.pdf_viewed, quiz_passed=row.quiz_passed)

@router.post("/courses/{course_id}/enroll", response_model=EnrollmentOut, status_code=201)
def enroll(course_id: str, user: TokenData = Depends(require_roles("student")), db: Session = Depends(get_db)):
    e = svc.enroll(db, user.sub, course_id)
    return EnrollmentOut(course_id=e.course_id, progress_percent=e.progress, enrolled_at=e.enrolled_at, completed_at=e.completed_at)

@router.get("/courses/{course_id}/progress", response_model=CourseProgressOut)
def course_progress(course_id: str, user: TokenData = Depends(require_roles("student")), db: Session = Depends(get_db)):
    e, lessons = svc.course_overview(db, user.sub, course_id)
    return CourseProgressOut(course_id=e.course_id, progress_percent=e.progress, enrolled_at=e.enrolled_at,
                             completed_at=e.completed_at,
                             lessons=[LessonRow(**vars(s)) for s in lessons])

@router.post("/lessons/{lesson_id}/complete", response_model=ProgressUpdate)
def complete_lesson(lesson_id: str, user: TokenData = Depends(require_roles("student")), db: Session = Depends(get_db)):
    r = svc.mark_lesson_complete(db, user.sub, lesson_id)
    return ProgressUpdate(course_id=r.course_id, completed_lessons=r.completed_lessons, total_lessons=r.total_lessons,
                          progress_percent=r.progress_percent, completed_at=r.completed_at,
                          newly_completed=r.newly_completed, certificate_number=r.certificate_number, warnings=r.warnings)

@router.post("/lessons/{lesson_id}/video-progress", response_model=LessonProgressOut)
def video_progress(lesson_id: str, payload: VideoProgressIn, user: TokenData = Depends(require_roles("student")), db: Session = Depends(get_db)):
    return _lesson_out(svc.record_video_progress(db, user.sub, lesson_id, payload.percent, payload.watched_seconds))

@router.post("/lessons/{lesson_id}/viewed", response_model=LessonProgressOut)
def material_viewed(lesson_id: str, user: TokenData = Depends(require_roles("student")), db: Session = Depends(get_db)):
    return _lesson_out(svc.record_material_viewed(db, user.sub, lesson_id))

@router.get("/lessons/{lesson_id}/unlocked")
def unlocked(lesson_id: str, user: TokenData = Depends(require_roles("student")), db: Session = Depends(get_db)):
    return {"lesson_id": lesson_id, "unlocked": svc.is_lesson_unlocked(db, user.sub, lesson_id)}
