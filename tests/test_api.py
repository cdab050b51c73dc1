import time

import jwt
import pytest
from fastapi.testclient import TestClient

from coursegrade.core.config import APP_SECRET
from coursegrade.core.database import get_db
from coursegrade.main import app
from coursegrade.models.orm import Quiz


@pytest.fixture
def client(session_factory):
    def override():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def login(client, user_id, *roles):
    r = client.post("/v1/auth/mock-login", json={"user_id": user_id, "roles": list(roles)})
    assert r.status_code == 200
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def course(client):
    """One course with a quiz lesson holding two MCQs and one free-text question."""
    hdr = login(client, "inst-1", "instructor")
    course_id = client.post("/v1/author/courses", headers=hdr, json={"title": "Biology"}).json()["course_id"]
    lesson_id = client.post(f"/v1/author/courses/{course_id}/lessons", headers=hdr, json={"title": "Cells", "type": "quiz"}).json()["lesson_id"]
    client.post(f"/v1/author/courses/{course_id}/lessons", headers=hdr, json={"title": "Genes"})
    quiz_id = client.post(f"/v1/author/lessons/{lesson_id}/quiz", headers=hdr, json={"title": "Cells quiz", "passing_score": 60}).json()["quiz_id"]
    questions = [
        {"question": "Powerhouse?", "type": "mcq", "options": ["Nucleus", "Mitochondria"], "correct_answer": 1},
        {"question": "Has a wall?", "type": "mcq", "options": ["Plant", "Animal"], "correct_answer": 0},
        {"question": "Explain osmosis", "type": "qa", "expected_answer": "water diffusion"},
    ]
    ids = [client.post(f"/v1/author/quizzes/{quiz_id}/questions", headers=hdr, json=q).json()["question_id"] for q in questions]
    return {"instructor": hdr, "course_id": course_id, "lesson_id": lesson_id, "quiz_id": quiz_id, "questions": ids}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_unknown_role_is_rejected(client):
    r = client.post("/v1/auth/mock-login", json={"user_id": "x", "roles": ["wizard"]})
    assert r.status_code == 422


def test_malformed_questions_are_rejected(client, course):
    hdr = course["instructor"]
    url = f"/v1/author/quizzes/{course['quiz_id']}/questions"
    assert client.post(url, headers=hdr, json={"question": "?", "type": "mcq", "options": []}).status_code == 422
    assert client.post(url, headers=hdr, json={"question": "?", "type": "mcq", "options": ["a"], "correct_answer": 2}).status_code == 422
    assert client.post(url, headers=hdr, json={"question": "?", "type": "qa", "options": ["a"]}).status_code == 422


def test_second_quiz_on_lesson_conflicts(client, course):
    r = client.post(f"/v1/author/lessons/{course['lesson_id']}/quiz", headers=course["instructor"], json={"title": "Again"})
    assert r.status_code == 409


def test_student_cannot_author(client):
    hdr = login(client, "stu-1", "student")
    assert client.post("/v1/author/courses", headers=hdr, json={"title": "Nope"}).status_code == 403


def test_quiz_view_hides_answers(client, course):
    hdr = login(client, "stu-1", "student")
    body = client.get(f"/v1/quizzes/{course['quiz_id']}", headers=hdr).json()
    assert [q["kind"] for q in body["questions"]] == ["mcq", "mcq", "qa"]
    assert all("correct_answer" not in q and "expected_answer" not in q for q in body["questions"])


def test_submit_review_and_notify(client, course):
    stu = login(client, "stu-1", "student")
    assert client.post(f"/v1/courses/{course['course_id']}/enroll", headers=stu).status_code == 201
    q1, q2, q3 = course["questions"]
    r = client.post(f"/v1/quizzes/{course['quiz_id']}/attempts", headers=stu,
                    json={"answers": {q1: 1, q2: 0, q3: "water moves across a membrane"}})
    assert r.status_code == 201
    body = r.json()
    assert body["status"] == "pending_review"
    assert body["score_percent"] is None and body["passed"] is None
    assert body["attempts_remaining"] == 2

    inst = course["instructor"]
    pending = client.get("/v1/reviews/pending", headers=inst).json()
    assert [p["attempt_id"] for p in pending] == [body["attempt_id"]]
    assert pending[0]["course_id"] == course["course_id"]
    detail = client.get(f"/v1/reviews/attempts/{body['attempt_id']}", headers=inst).json()
    qa = [a for a in detail["answers"] if a["requires_review"]]
    assert len(qa) == 1 and qa[0]["is_correct"] is None

    r = client.post(f"/v1/reviews/attempts/{body['attempt_id']}", headers=inst,
                    json={"decisions": {qa[0]["answer_id"]: True}, "feedback": "Good"})
    assert r.status_code == 200
    assert r.json()["score_percent"] == 100
    assert r.json()["course_progress"] == 50

    history = client.get(f"/v1/quizzes/{course['quiz_id']}/attempts", headers=stu).json()
    assert history["attempts"][0]["score_percent"] == 100
    assert history["attempts"][0]["feedback"] == "Good"

    notes = client.get("/v1/notifications", headers=stu).json()
    assert notes[0]["title"] == "Quiz Graded"
    assert notes[0]["message"].endswith("Score: 100% - Passed")

    progress = client.get(f"/v1/courses/{course['course_id']}/progress", headers=stu).json()
    assert progress["progress_percent"] == 50
    assert [l["unlocked"] for l in progress["lessons"]] == [True, True]


def test_attempt_limit_returns_conflict(client, course):
    stu = login(client, "stu-1", "student")
    q1, q2, q3 = course["questions"]
    answers = {"answers": {q1: 0, q2: 1, q3: "no idea"}}
    url = f"/v1/quizzes/{course['quiz_id']}/attempts"
    for _ in range(3):
        assert client.post(url, headers=stu, json=answers).status_code == 201
    r = client.post(url, headers=stu, json=answers)
    assert r.status_code == 409
    assert r.json()["error"] == "AttemptLimitExceededError"


def test_incomplete_submission_is_bad_request(client, course):
    stu = login(client, "stu-1", "student")
    r = client.post(f"/v1/quizzes/{course['quiz_id']}/attempts", headers=stu, json={"answers": {course["questions"][0]: 1}})
    assert r.status_code == 400
    assert r.json()["retryable"] is False


def test_complete_course_and_list_certificate(client, course):
    stu = login(client, "stu-2", "student")
    hdr = course["instructor"]
    other = client.post("/v1/author/courses", headers=hdr, json={"title": "Short"}).json()["course_id"]
    lesson = client.post(f"/v1/author/courses/{other}/lessons", headers=hdr, json={"title": "Only"}).json()["lesson_id"]
    client.post(f"/v1/courses/{other}/enroll", headers=stu)
    r = client.post(f"/v1/lessons/{lesson}/complete", headers=stu).json()
    assert r["progress_percent"] == 100 and r["newly_completed"] is True
    certs = client.get("/v1/certificates", headers=stu).json()
    assert [c["certificate_number"] for c in certs] == [r["certificate_number"]]


def test_token_without_subject_is_unauthorized(client):
    token = jwt.encode({"roles": ["student"], "exp": int(time.time()) + 60}, APP_SECRET, algorithm="HS256")
    r = client.get("/v1/notifications", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401


def test_detached_quiz_is_admin_only(client, course, session_factory):
    db = session_factory()
    db.get(Quiz, course["quiz_id"]).lesson_id = None
    db.commit()
    db.close()
    question = {"question": "Extra?", "type": "qa"}
    url = f"/v1/author/quizzes/{course['quiz_id']}/questions"
    assert client.post(url, headers=login(client, "inst-2", "instructor"), json=question).status_code == 403
    assert client.post(url, headers=course["instructor"], json=question).status_code == 403
    assert client.post(url, headers=login(client, "root", "admin"), json=question).status_code == 201
