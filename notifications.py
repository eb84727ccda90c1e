# notifications.py
# -----------------------------------------------------------------------------
# Notification fan-out, typed payloads and deep-link resolution.
# - One payload class per notification type; rows store type + related_id + JSON metadata
# - Rows are written synchronously in the request that triggered them (one per recipient)
# - resolve() maps any row (including legacy rows with broken metadata) to a client path
# -----------------------------------------------------------------------------
import json
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Type

from flask import Blueprint, g, jsonify, request

import messages
from auth import require_auth
from errors import NotFound

HOME = "/"
TEACHER_DASHBOARD = "/teacher/dashboard"
STUDENT_DASHBOARD = "/student/dashboard"
SUPERADMIN_DASHBOARD = "/admin/dashboard"


# =========================
# Typed payloads
# =========================
@dataclass(frozen=True)
class Payload:
    type: ClassVar[str] = ""

    @property
    def related_id(self) -> Optional[int]:
        return None

    def metadata(self) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class NewQuestion(Payload):
    type: ClassVar[str] = "new_question"
    course_id: int
    lesson_id: int
    comment_id: Optional[int] = None

    @property
    def related_id(self) -> Optional[int]:
        return self.course_id

    def metadata(self) -> Dict[str, Any]:
        return {"courseId": self.course_id, "lessonId": self.lesson_id, "commentId": self.comment_id}


@dataclass(frozen=True)
class Reply(NewQuestion):
    type: ClassVar[str] = "reply"


@dataclass(frozen=True)
class QuizSubmitted(Payload):
    type: ClassVar[str] = "quiz_submission"
    quiz_id: int
    submission_id: int

    @property
    def related_id(self) -> Optional[int]:
        return self.submission_id

    def metadata(self) -> Dict[str, Any]:
        return {"quizId": self.quiz_id, "submissionId": self.submission_id}


@dataclass(frozen=True)
class GradeReceived(QuizSubmitted):
    type: ClassVar[str] = "grade_received"


@dataclass(frozen=True)
class NewContent(Payload):
    type: ClassVar[str] = "new_content"
    course_id: int
    quiz_id: Optional[int] = None
    announcement_id: Optional[int] = None

    @property
    def related_id(self) -> Optional[int]:
        return self.course_id

    def metadata(self) -> Dict[str, Any]:
        meta: Dict[str, Any] = {"courseId": self.course_id}
        if self.quiz_id is not None:
            meta["quizId"] = self.quiz_id
        if self.announcement_id is not None:
            meta["announcementId"] = self.announcement_id
        return meta


@dataclass(frozen=True)
class EnrollmentConfirmed(Payload):
    type: ClassVar[str] = "enrollment_confirmed"
    course_id: int
    enrollment_id: Optional[int] = None

    @property
    def related_id(self) -> Optional[int]:
        return self.course_id

    def metadata(self) -> Dict[str, Any]:
        return {"courseId": self.course_id, "enrollmentId": self.enrollment_id}


@dataclass(frozen=True)
class NewEnrollment(Payload):
    type: ClassVar[str] = "new_enrollment"
    course_id: int
    enrollment_id: int

    @property
    def related_id(self) -> Optional[int]:
        return self.enrollment_id

    def metadata(self) -> Dict[str, Any]:
        return {"courseId": self.course_id, "enrollmentId": self.enrollment_id}


@dataclass(frozen=True)
class EnrollmentRequest(NewEnrollment):
    type: ClassVar[str] = "enrollment_request"


PAYLOAD_TYPES: Dict[str, Type[Payload]] = {
    cls.type: cls for cls in (
        NewQuestion, Reply, QuizSubmitted, GradeReceived, NewContent,
        EnrollmentConfirmed, NewEnrollment, EnrollmentRequest,
    )
}


# =========================
# Defensive metadata parsing
# =========================
def parse_metadata(raw: Any) -> Optional[Dict[str, Any]]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str):
        return None
    try:
        data = json.loads(raw)
    except ValueError as e:
        print(f"[notify] unreadable metadata {raw[:80]!r}: {e}")
        return None
    return data if isinstance(data, dict) else None


def _as_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _row_get(row: Any, *keys: str) -> Any:
    for k in keys:
        if isinstance(row, dict):
            if k in row:
                return row[k]
        elif hasattr(row, k):
            return getattr(row, k)
    return None


# =========================
# Deep-link resolution
# =========================
def resolve(notification: Any, viewer_role: Optional[str] = None) -> str:
    """Client navigation target for a notification. Never raises."""
    try:
        return _resolve(notification, viewer_role)
    except Exception as e:
        print(f"[notify] resolve failed: {e}")
        return HOME


def _resolve(notification: Any, viewer_role: Optional[str]) -> str:
    ntype = _row_get(notification, "type")
    meta = parse_metadata(_row_get(notification, "metadata"))

    if ntype in ("new_question", "reply"):
        course_id = _as_id((meta or {}).get("courseId"))
        lesson_id = _as_id((meta or {}).get("lessonId"))
        if course_id is not None and lesson_id is not None:
            return f"/courses/{course_id}/lessons/{lesson_id}"
        return HOME

    if ntype == "quiz_submission":
        quiz_id = _as_id((meta or {}).get("quizId"))
        if quiz_id is not None:
            return f"{TEACHER_DASHBOARD}?quiz={quiz_id}"
        return TEACHER_DASHBOARD

    if ntype == "grade_received":
        return STUDENT_DASHBOARD

    if ntype in ("new_content", "enrollment_confirmed"):
        course_id = _as_id(_row_get(notification, "related_id", "relatedId"))
        if course_id is not None:
            return f"/courses/{course_id}"
        return HOME

    if ntype in ("new_enrollment", "enrollment_request"):
        return SUPERADMIN_DASHBOARD if viewer_role == "superadmin" else TEACHER_DASHBOARD

    return HOME


def payload_from_row(row: Dict[str, Any]) -> Optional[Payload]:
    """Rebuild the typed payload of a stored row; None for legacy or malformed rows."""
    cls = PAYLOAD_TYPES.get(row.get("type") or "")
    meta = parse_metadata(row.get("metadata"))
    if cls is None or meta is None:
        return None
    try:
        if cls in (NewQuestion, Reply):
            return cls(course_id=int(meta["courseId"]), lesson_id=int(meta["lessonId"]),
                       comment_id=_as_id(meta.get("commentId")))
        if cls in (QuizSubmitted, GradeReceived):
            return cls(quiz_id=int(meta["quizId"]), submission_id=int(meta["submissionId"]))
        if cls is NewContent:
            return cls(course_id=int(meta["courseId"]), quiz_id=_as_id(meta.get("quizId")),
                       announcement_id=_as_id(meta.get("announcementId")))
        if cls is EnrollmentConfirmed:
            return cls(course_id=int(meta["courseId"]), enrollment_id=_as_id(meta.get("enrollmentId")))
        return cls(course_id=int(meta["courseId"]), enrollment_id=int(meta["enrollmentId"]))
    except (KeyError, TypeError, ValueError):
        return None


def notification_json(row: Dict[str, Any], viewer_role: Optional[str] = None) -> Dict[str, Any]:
    out = dict(row)
    out["metadata"] = parse_metadata(row.get("metadata"))
    out["link"] = resolve(row, viewer_role)
    return out


# =========================
# Fan-out
# =========================
class Notifier:
    def __init__(self, store, locale: str = messages.DEFAULT_LOCALE):
        self.store = store
        self.locale = locale

    def notify(self, recipients: Iterable[int], payload: Payload, message_key: str,
               **values: Any) -> List[Dict[str, Any]]:
        """One row per distinct recipient, all inserted by a single statement."""
        seen = set()
        user_ids: List[int] = []
        for uid in recipients:
            if uid is None or uid in seen:
                continue
            seen.add(uid)
            user_ids.append(int(uid))
        if not user_ids:
            return []
        title, message = messages.render(message_key, self.locale, **values)
        rows = [{
            "user_id": uid,
            "type": payload.type,
            "title": title[:255],
            "message": message,
            "related_id": payload.related_id,
            "metadata": payload.metadata(),
        } for uid in user_ids]
        return self.store.create_notifications(rows)


# =========================
# Blueprint factory
# =========================
def create_notifications_blueprint(base_path: str, deps: Dict[str, Any],
                                   name: str = "notifications") -> Blueprint:
    """
    Inbox endpoints, polled by the client.
    Required deps: store
    """
    bp = Blueprint(name, __name__, url_prefix=f"{base_path}/api/notifications")
    store = deps["store"]

    def _owned(notification_id: int) -> Dict[str, Any]:
        row = store.get_notification(notification_id)
        if not row or int(row["user_id"]) != g.user_id:
            raise NotFound("Notification not found")
        return row

    @bp.get("")
    @require_auth()
    def list_notifications():
        unread_only = (request.args.get("unread") or "").lower() in ("1", "true", "yes")
        rows = store.list_notifications(g.user_id, unread_only=unread_only)
        return jsonify({"ok": True, "notifications": [notification_json(r, g.role) for r in rows]})

    @bp.get("/unread-count")
    @require_auth()
    def unread_count():
        return jsonify({"ok": True, "count": store.unread_notification_count(g.user_id)})

    @bp.put("/<int:notification_id>/read")
    @require_auth()
    def mark_read(notification_id: int):
        _owned(notification_id)
        row = store.mark_notification_read(notification_id, g.user_id)
        return jsonify({"ok": True, "notification": notification_json(row, g.role)})

    @bp.put("/read-all")
    @require_auth()
    def mark_all_read():
        n = store.mark_all_notifications_read(g.user_id)
        return jsonify({"ok": True, "updated": n})

    @bp.post("/<int:notification_id>/open")
    @require_auth()
    def open_notification(notification_id: int):
        _owned(notification_id)
        row = store.mark_notification_read(notification_id, g.user_id)
        return jsonify({"ok": True, "link": resolve(row, g.role)})

    return bp
