import pytest
from sqlalchemy import func, select

from coursegrade.core.errors import NotFoundError, ValidationError
from coursegrade.models.orm import Certificate, Enrollment, LessonProgress, LessonType
from coursegrade.services.progress import (
    course_overview, course_progress_percent, enroll, is_lesson_unlocked, mark_lesson_complete,
    recompute_course_progress, record_material_viewed, record_video_progress,
)


def test_course_progress_percent():
    assert course_progress_percent(0, 0) == 0
    assert course_progress_percent(3, 4) == 75
    assert course_progress_percent(1, 3) == 33


def test_three_of_four_then_completion_issues_one_certificate(db, seed):
    course, lessons = seed.course(lessons=4)
    seed.enroll("stu-1", course.id)
    for lesson in lessons[:3]:
        result = mark_lesson_complete(db, "stu-1", lesson.id)
    assert result.progress_percent == 75
    assert result.newly_completed is False

    result = mark_lesson_complete(db, "stu-1", lessons[3].id)
    assert result.progress_percent == 100
    assert result.newly_completed is True
    assert result.certificate_number.startswith("CERT-")
    enrollment = db.scalar(select(Enrollment).where(Enrollment.student_id == "stu-1"))
    assert enrollment.completed_at is not None

    again = recompute_course_progress(db, "stu-1", course.id)
    assert again.newly_completed is False
    assert db.scalar(select(func.count()).select_from(Certificate)) == 1


def test_progress_never_decreases(db, seed):
    course, lessons = seed.course(lessons=4)
    seed.enroll("stu-1", course.id)
    for lesson in lessons[:3]:
        mark_lesson_complete(db, "stu-1", lesson.id)
    row = db.scalar(select(LessonProgress).where(LessonProgress.lesson_id == lessons[0].id))
    row.is_completed = False
    db.commit()
    result = recompute_course_progress(db, "stu-1", course.id)
    assert result.computed_percent == 50
    assert result.progress_percent == 75
    assert db.scalar(select(Enrollment.progress).where(Enrollment.student_id == "stu-1")) == 75


def test_stale_stored_progress_is_kept(db, seed):
    course, lessons = seed.course(lessons=2)
    seed.enroll("stu-1", course.id, progress=80)
    assert recompute_course_progress(db, "stu-1", course.id).progress_percent == 80


def test_course_without_lessons_has_zero_progress(db, seed):
    course, _ = seed.course(lessons=0)
    seed.enroll("stu-1", course.id)
    result = recompute_course_progress(db, "stu-1", course.id)
    assert (result.total_lessons, result.progress_percent) == (0, 0)


def test_unpublished_lessons_are_not_counted(db, seed):
    course, lessons = seed.course(lessons=2)
    lessons[1].is_published = False
    db.commit()
    seed.enroll("stu-1", course.id)
    result = mark_lesson_complete(db, "stu-1", lessons[0].id)
    assert result.progress_percent == 100


def test_not_enrolled(db, seed):
    course, lessons = seed.course(lessons=1)
    with pytest.raises(NotFoundError):
        mark_lesson_complete(db, "stu-1", lessons[0].id)


def test_video_lesson_needs_threshold(db, seed):
    course, lessons = seed.course(lessons=1, lesson_type=LessonType.VIDEO)
    seed.enroll("stu-1", course.id)
    record_video_progress(db, "stu-1", lessons[0].id, 40, watched_seconds=120)
    with pytest.raises(ValidationError) as exc:
        mark_lesson_complete(db, "stu-1", lessons[0].id)
    assert exc.value.detail["blockers"]
    row = record_video_progress(db, "stu-1", lessons[0].id, 95)
    assert row.video_watch_progress == 95
    assert row.video_watched_seconds == 120
    assert mark_lesson_complete(db, "stu-1", lessons[0].id).progress_percent == 100


def test_video_progress_does_not_regress(db, seed):
    course, lessons = seed.course(lessons=1, lesson_type=LessonType.VIDEO)
    seed.enroll("stu-1", course.id)
    record_video_progress(db, "stu-1", lessons[0].id, 70)
    assert record_video_progress(db, "stu-1", lessons[0].id, 30).video_watch_progress == 70
    with pytest.raises(ValidationError):
        record_video_progress(db, "stu-1", lessons[0].id, 120)


def test_lesson_with_quiz_needs_quiz_passed(db, seed):
    course, lessons = seed.course(lessons=1)
    seed.enroll("stu-1", course.id)
    seed.quiz(lesson_id=lessons[0].id, questions=[("mcq", ["a", "b"], 0)])
    with pytest.raises(ValidationError):
        mark_lesson_complete(db, "stu-1", lessons[0].id)


def test_sequential_unlock(db, seed):
    course, lessons = seed.course(lessons=3)
    seed.enroll("stu-1", course.id)
    assert is_lesson_unlocked(db, "stu-1", lessons[0].id) is True
    assert is_lesson_unlocked(db, "stu-1", lessons[1].id) is False
    mark_lesson_complete(db, "stu-1", lessons[0].id)
    assert is_lesson_unlocked(db, "stu-1", lessons[1].id) is True
    assert is_lesson_unlocked(db, "stu-1", lessons[2].id) is False


def test_course_overview_reports_lesson_percentages(db, seed):
    course, lessons = seed.course(lessons=2)
    seed.enroll("stu-1", course.id)
    record_material_viewed(db, "stu-1", lessons[1].id)
    mark_lesson_complete(db, "stu-1", lessons[0].id)
    enrollment, statuses = course_overview(db, "stu-1", course.id)
    assert enrollment.progress == 50
    assert [(s.is_completed, s.unlocked, s.completion_percent) for s in statuses] == [(True, True, 100), (False, True, 100)]


def test_enroll_is_idempotent(db, seed):
    course, _ = seed.course(lessons=1)
    first = enroll(db, "stu-1", course.id)
    second = enroll(db, "stu-1", course.id)
    assert first.id == second.id
    with pytest.raises(NotFoundError):
        enroll(db, "stu-1", "missing")
