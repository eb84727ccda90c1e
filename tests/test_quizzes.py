import io
from datetime import datetime, timedelta, timezone

import pytest

from conftest import JPEG_BYTES, PNG_BYTES, bearer


@pytest.fixture
def quiz(client, world):
    resp = client.post("/api/quizzes", json={
        "lessonId": world["free_lesson"]["id"], "title": "Quiz 1", "description": "Solve it",
    }, headers=bearer(world["teacher"]))
    assert resp.status_code == 201
    return resp.get_json()["quiz"]


def _enroll(client, course, student):
    assert client.post(f"/api/courses/{course['id']}/enroll", headers=bearer(student)).status_code == 201


def _submit(client, quiz_id, student, files=None):
    files = files if files is not None else [(io.BytesIO(PNG_BYTES), "page1.png")]
    return client.post(f"/api/quizzes/{quiz_id}/submit", data={"images": files},
                       headers=bearer(student), content_type="multipart/form-data")


def test_new_quiz_fans_out_to_every_enrolled_student(client, world, store):
    s3 = store.create_user("s3@example.com", "x", "Student Three", "student")
    paid = world["paid"]
    for s in (world["s1"], world["s2"], s3):
        _enroll(client, paid, s)
    store.update_enrollment_status(store.list_enrollments_for_course(paid["id"])[0]["id"], "confirmed")
    before = len(store.tables.get("notifications", []))

    resp = client.post("/api/quizzes", json={
        "lessonId": world["paid_lesson"]["id"], "title": "Homework", "description": "d",
    }, headers=bearer(world["teacher"]))
    assert resp.status_code == 201

    created = store.tables["notifications"][before:]
    assert len(created) == 3
    assert {n["user_id"] for n in created} == {world["s1"]["id"], world["s2"]["id"], s3["id"]}
    assert {n["type"] for n in created} == {"new_content"}
    assert {n["related_id"] for n in created} == {paid["id"]}


def test_only_the_owner_creates_quizzes(client, world):
    resp = client.post("/api/quizzes", json={
        "lessonId": world["free_lesson"]["id"], "title": "x", "description": "y",
    }, headers=bearer(world["other_teacher"]))
    assert resp.status_code == 403


def test_duplicate_submission_conflicts_and_keeps_one_row(client, world, store, blobs, quiz):
    _enroll(client, world["free"], world["s1"])
    first = _submit(client, quiz["id"], world["s1"])
    assert first.status_code == 201
    body = first.get_json()["submission"]
    assert body["score"] is None
    assert body["images"][0].startswith("/uploads/quiz-submissions/")

    second = _submit(client, quiz["id"], world["s1"], [(io.BytesIO(JPEG_BYTES), "again.jpg")])
    assert second.status_code == 409
    rows = store.list_submissions_by_quiz(quiz["id"])
    assert len(rows) == 1

    # the rejected upload's blob is gone, the accepted one stays
    stored = [p for p in (blobs.root / "quiz-submissions").rglob("*") if p.is_file()]
    assert len(stored) == 1
    assert stored[0].name.endswith("page1.png")

    teacher_notes = [n for n in store.list_notifications(world["teacher"]["id"]) if n["type"] == "quiz_submission"]
    assert len(teacher_notes) == 1
    assert teacher_notes[0]["metadata"]["quizId"] == quiz["id"]


def test_submission_rejects_non_images_and_too_many_files(client, world, quiz):
    _enroll(client, world["free"], world["s1"])
    fake = _submit(client, quiz["id"], world["s1"], [(io.BytesIO(b"%PDF-1.4 not an image"), "x.png")])
    assert fake.status_code == 400
    many = [(io.BytesIO(PNG_BYTES), f"p{i}.png") for i in range(6)]
    assert _submit(client, quiz["id"], world["s1"], many).status_code == 400


def test_submission_needs_access_active_quiz_and_open_deadline(client, world, store, quiz):
    assert _submit(client, quiz["id"], world["s1"]).status_code == 403

    _enroll(client, world["free"], world["s1"])
    store.update_quiz(quiz["id"], {"is_active": False})
    assert _submit(client, quiz["id"], world["s1"]).status_code == 400

    store.update_quiz(quiz["id"], {"is_active": True,
                                   "deadline": datetime.now(timezone.utc) - timedelta(hours=1)})
    assert _submit(client, quiz["id"], world["s1"]).status_code == 400


def test_grading_notifies_student(client, world, store, quiz):
    _enroll(client, world["free"], world["s1"])
    sub = _submit(client, quiz["id"], world["s1"]).get_json()["submission"]

    url = f"/api/submissions/{sub['id']}/grade"
    assert client.put(url, json={"score": 101}, headers=bearer(world["teacher"])).status_code == 400
    assert client.put(url, json={"score": 90}, headers=bearer(world["other_teacher"])).status_code == 403

    resp = client.put(url, json={"score": 90, "feedback": "<b>Nice</b> work"}, headers=bearer(world["teacher"]))
    assert resp.status_code == 200
    graded = resp.get_json()["submission"]
    assert graded["score"] == 90
    assert graded["feedback"] == "Nice work"
    assert graded["graded_at"]

    notes = store.list_notifications(world["s1"]["id"])
    assert notes[0]["type"] == "grade_received"


def test_submission_visibility(client, world, quiz):
    for s in (world["s1"], world["s2"]):
        _enroll(client, world["free"], s)
        _submit(client, quiz["id"], s)

    url = f"/api/quizzes/{quiz['id']}/submissions"
    own = client.get(url, headers=bearer(world["s1"])).get_json()["submissions"]
    assert [s["student_id"] for s in own] == [world["s1"]["id"]]
    assert len(client.get(url, headers=bearer(world["teacher"])).get_json()["submissions"]) == 2
    assert client.get(url, headers=bearer(world["other_teacher"])).status_code == 403

    mine = client.get("/api/my-submissions", headers=bearer(world["s2"])).get_json()["submissions"]
    assert mine[0]["quiz_title"] == "Quiz 1"


def test_toggle_active_and_delete(client, world, quiz):
    url = f"/api/quizzes/{quiz['id']}"
    off = client.put(f"{url}/active", json={"isActive": False}, headers=bearer(world["teacher"]))
    assert off.get_json()["quiz"]["is_active"] is False
    assert client.delete(url, headers=bearer(world["other_teacher"])).status_code == 403
    assert client.delete(url, headers=bearer(world["teacher"])).status_code == 200
    listing = client.get(f"/api/lessons/{world['free_lesson']['id']}/quizzes", headers=bearer(world["teacher"]))
    assert listing.get_json()["quizzes"] == []


def test_non_finite_lesson_id_is_a_validation_error(client, world):
    resp = client.post("/api/quizzes", json={"lessonId": float("inf"), "title": "Quiz"},
                       headers=bearer(world["teacher"]))
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "validation"
