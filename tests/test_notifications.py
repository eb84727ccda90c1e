import json

import pytest

from conftest import bearer
from notifications import (
    EnrollmentConfirmed, EnrollmentRequest, GradeReceived, NewContent, NewQuestion, Notifier,
    QuizSubmitted, Reply, parse_metadata, payload_from_row, resolve,
)


@pytest.mark.parametrize("metadata", [None, "", "{not json", "[]", "42", '{"courseId": "x"}', b"\xff\xfe"])
@pytest.mark.parametrize("ntype", ["new_question", "reply", "quiz_submission", "grade_received",
                                   "new_content", "enrollment_confirmed", "new_enrollment",
                                   "enrollment_request", "something_else", None])
def test_resolve_never_raises(ntype, metadata):
    path = resolve({"type": ntype, "metadata": metadata, "related_id": None})
    assert isinstance(path, str) and path.startswith("/")


def test_resolve_targets():
    meta = json.dumps({"courseId": 3, "lessonId": 9})
    assert resolve({"type": "new_question", "metadata": meta}) == "/courses/3/lessons/9"
    assert resolve({"type": "reply", "metadata": {"courseId": 3, "lessonId": 9}}) == "/courses/3/lessons/9"
    assert resolve({"type": "reply", "metadata": None}) == "/"
    assert resolve({"type": "quiz_submission", "metadata": '{"quizId": 12}'}) == "/teacher/dashboard?quiz=12"
    assert resolve({"type": "quiz_submission", "metadata": "oops"}) == "/teacher/dashboard"
    assert resolve({"type": "grade_received", "metadata": '{"quizId": 1}'}) == "/student/dashboard"
    assert resolve({"type": "new_content", "related_id": 5}) == "/courses/5"
    assert resolve({"type": "enrollment_confirmed", "related_id": 6}) == "/courses/6"
    assert resolve({"type": "new_enrollment"}, "superadmin") == "/admin/dashboard"
    assert resolve({"type": "enrollment_request"}, "teacher") == "/teacher/dashboard"
    assert resolve({"type": "mystery"}) == "/"


def test_parse_metadata_is_defensive():
    assert parse_metadata('{"a": 1}') == {"a": 1}
    assert parse_metadata("[1, 2]") is None
    assert parse_metadata("{broken") is None
    assert parse_metadata(None) is None


def test_payload_round_trip_through_rows():
    for payload in (
        NewQuestion(course_id=1, lesson_id=2, comment_id=3),
        Reply(course_id=1, lesson_id=2, comment_id=4),
        QuizSubmitted(quiz_id=7, submission_id=8),
        GradeReceived(quiz_id=7, submission_id=8),
        NewContent(course_id=1, quiz_id=7),
        EnrollmentConfirmed(course_id=1, enrollment_id=5),
        EnrollmentRequest(course_id=1, enrollment_id=5),
    ):
        row = {"type": payload.type, "metadata": json.dumps(payload.metadata()), "related_id": payload.related_id}
        assert payload_from_row(row) == payload
    assert payload_from_row({"type": "reply", "metadata": "{}"}) is None


def test_notifier_writes_one_row_per_distinct_recipient(store, world):
    notifier = Notifier(store, "en")
    ids = [world["s1"]["id"], world["s2"]["id"], world["s1"]["id"], None]
    rows = notifier.notify(ids, NewContent(course_id=world["free"]["id"]), "quiz_new",
                           quiz="Q", course="C")
    assert sorted(r["user_id"] for r in rows) == sorted([world["s1"]["id"], world["s2"]["id"]])
    assert rows[0]["title"] == "New quiz available"
    assert rows[0]["message"] == 'A new quiz "Q" was added to C'

    arabic = Notifier(store, "ar").notify([world["s1"]["id"]], NewContent(course_id=1), "quiz_new",
                                          quiz="Q", course="C")
    assert arabic[0]["title"] == "اختبار جديد متاح"


def _seed(store, user, ntype="new_content", related_id=1, metadata=None):
    return store.create_notifications([{
        "user_id": user["id"], "type": ntype, "title": "t", "message": "m",
        "related_id": related_id, "metadata": metadata,
    }])[0]


def test_mark_read_is_idempotent(client, store, world):
    note = _seed(store, world["s1"])
    url = f"/api/notifications/{note['id']}/read"
    first = client.put(url, headers=bearer(world["s1"]))
    second = client.put(url, headers=bearer(world["s1"]))
    assert first.status_code == second.status_code == 200
    assert second.get_json()["notification"]["read"] is True
    assert client.get("/api/notifications/unread-count", headers=bearer(world["s1"])).get_json()["count"] == 0


def test_other_users_notifications_are_not_found(client, store, world):
    note = _seed(store, world["s1"])
    assert client.put(f"/api/notifications/{note['id']}/read", headers=bearer(world["s2"])).status_code == 404
    assert client.post(f"/api/notifications/{note['id']}/open", headers=bearer(world["s2"])).status_code == 404
    assert store.get_notification(note["id"])["read"] is False


def test_list_carries_links_and_unread_filter(client, store, world):
    _seed(store, world["s1"], "new_question", 3, "not-json")
    read = _seed(store, world["s1"], "new_content", 7)
    store.mark_notification_read(read["id"], world["s1"]["id"])

    everything = client.get("/api/notifications", headers=bearer(world["s1"])).get_json()["notifications"]
    assert [n["link"] for n in everything] == ["/courses/7", "/"]
    unread = client.get("/api/notifications?unread=1", headers=bearer(world["s1"])).get_json()["notifications"]
    assert [n["type"] for n in unread] == ["new_question"]


def test_open_marks_read_then_returns_link(client, store, world):
    note = _seed(store, world["admin"], "enrollment_request", 4, {"courseId": 2, "enrollmentId": 4})
    resp = client.post(f"/api/notifications/{note['id']}/open", headers=bearer(world["admin"]))
    assert resp.get_json()["link"] == "/admin/dashboard"
    assert store.get_notification(note["id"])["read"] is True


def test_read_all(client, store, world):
    for _ in range(3):
        _seed(store, world["s2"])
    resp = client.put("/api/notifications/read-all", headers=bearer(world["s2"]))
    assert resp.get_json()["updated"] == 3
    assert store.unread_notification_count(world["s2"]["id"]) == 0
