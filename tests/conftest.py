import os
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("NOTIFICATION_BACKEND", "inline")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from coursegrade.core.database import init_db
from coursegrade.models.orm import (
    Course, Enrollment, Lesson, LessonType, QuestionKind, Quiz, QuizQuestion,
)


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool, future=True)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    yield s
    s.close()


class Seeder:
    """Builds courses, lessons and quizzes straight through the ORM."""

    def __init__(self, db):
        self.db = db

    def course(self, lessons=1, lesson_type=LessonType.TEXT, instructor_id="inst-1", title="Course"):
        course = Course(title=title, instructor_id=instructor_id)
        self.db.add(course)
        self.db.flush()
        rows = [Lesson(course_id=course.id, title=f"Lesson {i + 1}", type=lesson_type, order_index=i, is_published=True)
                for i in range(lessons)]
        self.db.add_all(rows)
        self.db.commit()
        return course, rows

    def quiz(self, lesson_id=None, passing_score=70, questions=(), title="Quiz"):
        """``questions`` entries: ("mcq", options, correct_index) or ("qa", expected_answer)."""
        quiz = Quiz(lesson_id=lesson_id, title=title, passing_score=passing_score)
        self.db.add(quiz)
        self.db.flush()
        rows = []
        for i, entry in enumerate(questions):
            if entry[0] == "mcq":
                rows.append(QuizQuestion(quiz_id=quiz.id, question=f"Q{i + 1}", type=QuestionKind.MCQ,
                                         options=list(entry[1]), correct_answer=entry[2], order_index=i))
            else:
                rows.append(QuizQuestion(quiz_id=quiz.id, question=f"Q{i + 1}", type=QuestionKind.QA,
                                         options=[], expected_answer=entry[1], order_index=i))
        self.db.add_all(rows)
        self.db.commit()
        return quiz, rows

    def enroll(self, student_id, course_id, progress=0):
        e = Enrollment(student_id=student_id, course_id=course_id, progress=progress)
        self.db.add(e)
        self.db.commit()
        return e


@pytest.fixture
def seed(db):
    return Seeder(db)
