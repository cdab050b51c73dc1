"""
Lesson and course progress.

Lesson completion is explicit (a row in ``lesson_progress``) and gated by
the lesson's own signals: a video lesson needs the video watched past
``VIDEO_COMPLETION_THRESHOLD`` and a lesson with a quiz needs that quiz
passed. Course progress is the rounded share of completed published
lessons, merged into the enrollment with ``max`` so it never goes down.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from coursegrade.core import config
from coursegrade.core.errors import NotFoundError, StorageError, ValidationError
from coursegrade.models.orm import Course, Enrollment, Lesson, LessonProgress, LessonType, Quiz, utcnow
from coursegrade.services.completion import dispatch_completion
from coursegrade.services.grading import round_percent

logger = logging.getLogger(__name__)

@dataclass
class ProgressResult:
    student_id: str
    course_id: str
    completed_lessons: int
    total_lessons: int
    computed_percent: int
    progress_percent: int
    completed_at: Optional[datetime] = None
    newly_completed: bool = False
    certificate_number: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

@dataclass
class LessonStatus:
    lesson_id: str
    title: str
    order_index: int
    is_completed: bool
    unlocked: bool
    completion_percent: int

def course_progress_percent(completed_lessons: int, total_lessons: int) -> int:
    if total_lessons == 0:
        return 0
    return round_percent(completed_lessons, total_lessons)

# ---------- lookups ----------

def get_course(db: Session, course_id: str) -> Course:
    course = db.get(Course, course_id)
    if course is None:
        raise NotFoundError("Course not found")
    return course

def get_lesson(db: Session, lesson_id: str) -> Lesson:
    lesson = db.get(Lesson, lesson_id)
    if lesson is None:
        raise NotFoundError("Lesson not found")
    return lesson

def published_lessons(db: Session, course_id: str) -> List[Lesson]:
    stmt = select(Lesson).where(Lesson.course_id == course_id, Lesson.is_published.is_(True)).order_by(Lesson.order_index, Lesson.id)
    return list(db.scalars(stmt))

def lesson_progress_map(db: Session, student_id: str, lesson_ids: List[str]) -> Dict[str, LessonProgress]:
    if not lesson_ids:
        return {}
    rows = db.scalars(select(LessonProgress).where(LessonProgress.student_id == student_id, LessonProgress.lesson_id.in_(lesson_ids)))
    return {r.lesson_id: r for r in rows}

def lesson_quiz(db: Session, lesson_id: str) -> Optional[Quiz]:
    return db.scalar(select(Quiz).where(Quiz.lesson_id == lesson_id).limit(1))

def find_enrollment(db: Session, student_id: str, course_id: str, for_update: bool = False) -> Optional[Enrollment]:
    stmt = select(Enrollment).where(Enrollment.student_id == student_id, Enrollment.course_id == course_id)
    if for_update:
        stmt = stmt.with_for_update()
    return db.scalar(stmt)

def get_enrollment(db: Session, student_id: str, course_id: str, for_update: bool = False) -> Enrollment:
    enrollment = find_enrollment(db, student_id, course_id, for_update)
    if enrollment is None:
        raise NotFoundError("Student is not enrolled in this course", detail={"course_id": course_id})
    return enrollment

def enroll(db: Session, student_id: str, course_id: str) -> Enrollment:
    get_course(db, course_id)
    existing = find_enrollment(db, student_id, course_id)
    if existing:
        return existing
    enrollment = Enrollment(student_id=student_id, course_id=course_id, progress=0)
    db.add(enrollment)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return get_enrollment(db, student_id, course_id)
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageError("Enrollment could not be saved") from e
    logger.info("Student %s enrolled in course %s", student_id, course_id)
    return enrollment

# ---------- lesson gating ----------

def completion_blockers(lesson: Lesson, progress: Optional[LessonProgress], has_quiz: bool) -> List[str]:
    blockers = []
    if lesson.type == LessonType.VIDEO:
        watched = (progress.video_watch_progress if progress else None) or 0
        if watched < config.VIDEO_COMPLETION_THRESHOLD:
            blockers.append(f"Watch at least {config.VIDEO_COMPLETION_THRESHOLD}% of the video (watched {watched}%)")
    if has_quiz and not (progress and progress.quiz_passed):
        blockers.append("Pass the lesson quiz")
    return blockers

def lesson_completion_percent(lesson: Lesson, progress: Optional[LessonProgress], has_quiz: bool) -> int:
    """Share of the lesson's signals satisfied; 100 once it is completed."""
    if progress is None:
        return 0
    if progress.is_completed:
        return 100
    parts: List[float] = []
    if lesson.type == LessonType.VIDEO:
        threshold = max(config.VIDEO_COMPLETION_THRESHOLD, 1)
        parts.append(min((progress.video_watch_progress or 0) / threshold, 1.0))
    elif lesson.type == LessonType.TEXT:
        parts.append(1.0 if progress.text_read else 0.0)
    elif lesson.type == LessonType.PDF:
        parts.append(1.0 if progress.pdf_viewed else 0.0)
    if has_quiz:
        parts.append(1.0 if progress.quiz_passed else 0.0)
    if not parts:
        return 0
    return int(round(100 * sum(parts) / len(parts)))

def _unlocked_flags(lessons: List[Lesson], progress: Dict[str, LessonProgress]) -> List[bool]:
    flags = []
    for i, lesson in enumerate(lessons):
        if i == 0:
            flags.append(True)
            continue
        prev = progress.get(lessons[i - 1].id)
        flags.append(bool(prev and prev.is_completed))
    return flags

def is_lesson_unlocked(db: Session, student_id: str, lesson_id: str) -> bool:
    """The first published lesson is open; every other one opens when its predecessor is completed."""
    lesson = get_lesson(db, lesson_id)
    lessons = published_lessons(db, lesson.course_id)
    ids = [l.id for l in lessons]
    if lesson_id not in ids:
        return False
    flags = _unlocked_flags(lessons, lesson_progress_map(db, student_id, ids))
    return flags[ids.index(lesson_id)]

# ---------- lesson progress writes ----------

def _lesson_progress_row(db: Session, student_id: str, lesson_id: str) -> LessonProgress:
    row = db.scalar(select(LessonProgress).where(LessonProgress.student_id == student_id,
                                                  LessonProgress.lesson_id == lesson_id).with_for_update())
    if row is None:
        row = LessonProgress(student_id=student_id, lesson_id=lesson_id, is_completed=False,
                             text_read=False, pdf_viewed=False, quiz_passed=False)
        db.add(row)
    return row

def upsert_lesson_progress(db: Session, student_id: str, lesson_id: str,
                           apply: Callable[[LessonProgress], None]) -> LessonProgress:
    """Get-or-create the (student, lesson) row, apply changes and commit."""
    for _ in range(2):
        row = _lesson_progress_row(db, student_id, lesson_id)
        apply(row)
        try:
            db.commit()
            return row
        except IntegrityError:
            # a concurrent insert won; retry against its row
            db.rollback()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError("Lesson progress could not be saved") from e
    raise StorageError("Lesson progress could not be saved")

def _complete(row: LessonProgress, now: datetime) -> None:
    if not row.is_completed:
        row.is_completed = True
        row.completed_at = now
    row.last_accessed_at = now

def apply_quiz_pass(db: Session, student_id: str, lesson_id: str, now: Optional[datetime] = None) -> LessonProgress:
    """Flag the lesson's quiz as passed and the lesson completed. Flushes, does not commit."""
    now = now or utcnow()
    row = _lesson_progress_row(db, student_id, lesson_id)
    row.quiz_passed = True
    _complete(row, now)
    db.flush()
    return row

def record_video_progress(db: Session, student_id: str, lesson_id: str, percent: int,
                          watched_seconds: Optional[int] = None, now: Optional[datetime] = None) -> LessonProgress:
    if not 0 <= percent <= 100:
        raise ValidationError("Video progress must be between 0 and 100")
    lesson = get_lesson(db, lesson_id)
    get_enrollment(db, student_id, lesson.course_id)
    now = now or utcnow()

    def apply(row: LessonProgress) -> None:
        row.video_watch_progress = max(row.video_watch_progress or 0, percent)
        if watched_seconds is not None:
            row.video_watched_seconds = max(row.video_watched_seconds or 0, watched_seconds)
        row.last_accessed_at = now

    return upsert_lesson_progress(db, student_id, lesson_id, apply)

def record_material_viewed(db: Session, student_id: str, lesson_id: str, now: Optional[datetime] = None) -> LessonProgress:
    """Text lessons are read, PDF lessons viewed."""
    lesson = get_lesson(db, lesson_id)
    get_enrollment(db, student_id, lesson.course_id)
    now = now or utcnow()

    def apply(row: LessonProgress) -> None:
        if lesson.type == LessonType.PDF:
            row.pdf_viewed = True
        else:
            row.text_read = True
        row.last_accessed_at = now

    return upsert_lesson_progress(db, student_id, lesson_id, apply)

def mark_lesson_complete(db: Session, student_id: str, lesson_id: str, now: Optional[datetime] = None) -> ProgressResult:
    lesson = get_lesson(db, lesson_id)
    get_enrollment(db, student_id, lesson.course_id)
    progress = lesson_progress_map(db, student_id, [lesson_id]).get(lesson_id)
    blockers = completion_blockers(lesson, progress, lesson_quiz(db, lesson_id) is not None)
    if blockers:
        raise ValidationError("Lesson cannot be completed yet", detail={"blockers": blockers})
    now = now or utcnow()
    upsert_lesson_progress(db, student_id, lesson_id, lambda row: _complete(row, now))
    logger.info("Student %s completed lesson %s", student_id, lesson_id)
    return recompute_course_progress(db, student_id, lesson.course_id, now)

# ---------- course aggregation ----------

def recompute_course_progress(db: Session, student_id: str, course_id: str, now: Optional[datetime] = None) -> ProgressResult:
    lessons = published_lessons(db, course_id)
    progress = lesson_progress_map(db, student_id, [l.id for l in lessons])
    completed = sum(1 for l in lessons if progress.get(l.id) is not None and progress[l.id].is_completed)
    computed = course_progress_percent(completed, len(lessons))
    enrollment = get_enrollment(db, student_id, course_id, for_update=True)
    try:
        merged = max(enrollment.progress or 0, computed)
        if merged != enrollment.progress:
            enrollment.progress = merged
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageError("Course progress could not be saved") from e
    result = ProgressResult(student_id=student_id, course_id=course_id, completed_lessons=completed,
                            total_lessons=len(lessons), computed_percent=computed, progress_percent=merged,
                            completed_at=enrollment.completed_at)
    if computed < merged:
        logger.debug("Kept stored progress %s for %s/%s (computed %s)", merged, student_id, course_id, computed)
    if merged >= 100 and enrollment.completed_at is None:
        outcome = dispatch_completion(db, enrollment, now)
        result.completed_at = outcome.completed_at
        result.newly_completed = True
        result.certificate_number = outcome.certificate_number
        result.warnings.extend(outcome.warnings)
    return result

def refresh_course_progress(db: Session, student_id: str, course_id: str,
                            now: Optional[datetime] = None) -> Tuple[Optional[ProgressResult], List[str]]:
    """Recompute after a grading event. Not being enrolled is not an error here."""
    try:
        return recompute_course_progress(db, student_id, course_id, now), []
    except NotFoundError:
        logger.info("Student %s has no enrollment in course %s; progress not updated", student_id, course_id)
        return None, []
    except StorageError as e:
        logger.error("Progress refresh failed for %s/%s: %s", student_id, course_id, e, exc_info=True)
        return None, ["Course progress will be updated on your next lesson change"]

def course_overview(db: Session, student_id: str, course_id: str) -> Tuple[Enrollment, List[LessonStatus]]:
    enrollment = get_enrollment(db, student_id, course_id)
    lessons = published_lessons(db, course_id)
    progress = lesson_progress_map(db, student_id, [l.id for l in lessons])
    quiz_lessons = set(db.scalars(select(Quiz.lesson_id).where(Quiz.lesson_id.in_([l.id for l in lessons])))) if lessons else set()
    flags = _unlocked_flags(lessons, progress)
    statuses = [
        LessonStatus(lesson_id=l.id, title=l.title, order_index=l.order_index,
                     is_completed=bool(progress.get(l.id) and progress[l.id].is_completed),
                     unlocked=flags[i],
                     completion_percent=lesson_completion_percent(l, progress.get(l.id), l.id in quiz_lessons))
        for i, l in enumerate(lessons)
    ]
    return enrollment, statuses
