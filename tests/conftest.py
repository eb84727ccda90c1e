import itertools
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from flask import Flask

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from api import register_api  # noqa: E402
from auth import issue_token  # noqa: E402
from blobs import LocalBlobStorage  # noqa: E402

SECRET = "test-secret"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64


class InMemoryStore:
    """Same surface as store.Store, backed by lists. Pair-unique inserts return None on duplicates."""

    def __init__(self):
        self.tables = {}
        self._ids = itertools.count(1)
        self._clock = datetime(2025, 1, 1, tzinfo=timezone.utc)

    # ---- plumbing
    def _now(self):
        self._clock += timedelta(seconds=1)
        return self._clock

    def _rows(self, table):
        return self.tables.setdefault(table, [])

    def _insert(self, table, row, stamp="created_at"):
        row = dict(row)
        row["id"] = next(self._ids)
        if stamp and stamp not in row:
            row[stamp] = self._now()
        self._rows(table).append(row)
        return dict(row)

    def _get(self, table, row_id):
        for r in self._rows(table):
            if r["id"] == row_id:
                return r
        return None

    def _copy(self, row):
        return dict(row) if row is not None else None

    def _update(self, table, row_id, updates, allowed):
        row = self._get(table, row_id)
        if row is None:
            return None
        for k in allowed:
            if k in updates:
                row[k] = updates[k]
        return dict(row)

    def _delete(self, table, row_id):
        self.tables[table] = [r for r in self._rows(table) if r["id"] != row_id]

    # ---- users
    def get_user(self, user_id):
        return self._copy(self._get("users", user_id))

    def get_user_by_email(self, email):
        for u in self._rows("users"):
            if u["email"].lower() == (email or "").lower():
                return dict(u)
        return None

    def create_user(self, email, password_hash, full_name, role, whatsapp_number=None):
        if self.get_user_by_email(email):
            return None
        return self._insert("users", {
            "email": email, "password": password_hash, "full_name": full_name,
            "role": role, "whatsapp_number": whatsapp_number,
        })

    def update_user_password(self, user_id, password_hash):
        self._get("users", user_id)["password"] = password_hash

    def delete_user(self, user_id):
        self._delete("users", user_id)

    def list_user_ids_by_role(self, role):
        return [u["id"] for u in self._rows("users") if u["role"] == role]

    def get_users(self, user_ids):
        ids = {int(i) for i in user_ids}
        return {u["id"]: dict(u) for u in self._rows("users") if u["id"] in ids}

    def teacher_course_counts(self):
        return [
            {"id": u["id"], "email": u["email"], "full_name": u["full_name"],
             "course_count": len(self.course_ids_by_teacher(u["id"]))}
            for u in self._rows("users") if u["role"] == "teacher"
        ]

    def student_enrollment_counts(self):
        return [
            {"id": u["id"], "email": u["email"], "full_name": u["full_name"],
             "enrollment_count": len(self.list_enrollments_for_student(u["id"]))}
            for u in self._rows("users") if u["role"] == "student"
        ]

    # ---- categories
    def list_categories(self):
        return sorted((dict(c) for c in self._rows("course_categories")), key=lambda c: c["name"])

    def get_category(self, category_id):
        return self._copy(self._get("course_categories", category_id))

    def create_category(self, name, description=None):
        if any(c["name"] == name for c in self._rows("course_categories")):
            return None
        return self._insert("course_categories", {"name": name, "description": description}, stamp=None)

    # ---- courses
    def get_course(self, course_id):
        return self._copy(self._get("courses", course_id))

    def get_course_by_slug(self, slug):
        for c in self._rows("courses"):
            if c["slug"] == slug:
                return dict(c)
        return None

    def list_courses(self, category_id=None):
        out = []
        for c in self._rows("courses"):
            if category_id is not None and c["category_id"] != category_id:
                continue
            row = dict(c)
            row["teacher_name"] = (self._get("users", c["teacher_id"]) or {}).get("full_name")
            row["lesson_count"] = len(self.list_lessons(c["id"]))
            row["enrollment_count"] = self.count_course_enrollments(c["id"])
            summary = self.review_summary(c["id"])
            row["average_rating"] = summary["average"]
            row["review_count"] = summary["count"]
            out.append(row)
        return list(reversed(out))

    def list_courses_by_teacher(self, teacher_id):
        return [dict(c) for c in self._rows("courses") if c["teacher_id"] == teacher_id]

    def course_ids_by_teacher(self, teacher_id):
        return [c["id"] for c in self._rows("courses") if c["teacher_id"] == teacher_id]

    def create_course(self, teacher_id, data):
        return self._insert("courses", {
            "teacher_id": teacher_id, "category_id": data["category_id"], "title": data["title"],
            "slug": data.get("slug") or "", "description": data["description"],
            "what_you_will_learn": data.get("what_you_will_learn"),
            "thumbnail_url": data.get("thumbnail_url"), "price": data.get("price"),
            "is_free": bool(data.get("is_free")),
        })

    def update_course(self, course_id, updates):
        return self._update("courses", course_id, updates, (
            "category_id", "title", "slug", "description", "what_you_will_learn",
            "thumbnail_url", "price", "is_free"))

    def delete_course(self, course_id):
        self._delete("courses", course_id)

    def courses_missing_slug(self):
        return [{"id": c["id"], "title": c["title"]} for c in self._rows("courses") if not c.get("slug")]

    def count_course_enrollments(self, course_id):
        return len(self.list_enrollments_for_course(course_id))

    # ---- lessons
    def get_lesson(self, lesson_id):
        return self._copy(self._get("course_lessons", lesson_id))

    def list_lessons(self, course_id):
        rows = [dict(l) for l in self._rows("course_lessons") if l["course_id"] == course_id]
        return sorted(rows, key=lambda l: (l["lesson_order"], l["id"]))

    def max_lesson_order(self, course_id):
        orders = [l["lesson_order"] for l in self._rows("course_lessons") if l["course_id"] == course_id]
        return max(orders) if orders else None

    def create_lesson(self, course_id, title, video_url, lesson_order, duration_minutes=None):
        return self._insert("course_lessons", {
            "course_id": course_id, "title": title, "video_url": video_url,
            "lesson_order": lesson_order, "duration_minutes": duration_minutes,
        })

    def update_lesson(self, lesson_id, updates):
        return self._update("course_lessons", lesson_id, updates,
                            ("title", "video_url", "lesson_order", "duration_minutes"))

    def delete_lesson(self, lesson_id):
        self._delete("course_lessons", lesson_id)

    # ---- enrollments
    def get_enrollment(self, student_id, course_id):
        for e in self._rows("enrollments"):
            if e["student_id"] == student_id and e["course_id"] == course_id:
                return dict(e)
        return None

    def get_enrollment_by_id(self, enrollment_id):
        return self._copy(self._get("enrollments", enrollment_id))

    def create_enrollment(self, student_id, course_id, status):
        if self.get_enrollment(student_id, course_id):
            return None
        return self._insert("enrollments", {
            "student_id": student_id, "course_id": course_id, "purchase_status": status,
        }, stamp="enrolled_at")

    def list_enrollments_for_student(self, student_id):
        return [dict(e) for e in self._rows("enrollments") if e["student_id"] == student_id]

    def list_enrollments_for_course(self, course_id, statuses=None):
        wanted = set(statuses) if statuses is not None else None
        return [
            dict(e) for e in self._rows("enrollments")
            if e["course_id"] == course_id and (wanted is None or e["purchase_status"] in wanted)
        ]

    def list_pending_enrollments(self, course_ids=None):
        ids = set(course_ids) if course_ids is not None else None
        return [
            dict(e) for e in self._rows("enrollments")
            if e["purchase_status"] == "pending" and (ids is None or e["course_id"] in ids)
        ]

    def update_enrollment_status(self, enrollment_id, status):
        return self._update("enrollments", enrollment_id, {"purchase_status": status}, ("purchase_status",))

    # ---- progress
    def get_progress(self, student_id, lesson_id):
        for p in self._rows("lesson_progress"):
            if p["student_id"] == student_id and p["lesson_id"] == lesson_id:
                return dict(p)
        return None

    def list_progress_for_course(self, student_id, course_id):
        lesson_ids = {l["id"] for l in self.list_lessons(course_id)}
        return [dict(p) for p in self._rows("lesson_progress")
                if p["student_id"] == student_id and p["lesson_id"] in lesson_ids]

    def upsert_progress(self, student_id, lesson_id, completed, last_position):
        for p in self._rows("lesson_progress"):
            if p["student_id"] == student_id and p["lesson_id"] == lesson_id:
                if completed and not p["completed"]:
                    p["completed_at"] = self._now()
                p["completed"] = p["completed"] or completed
                if last_position is not None:
                    p["last_position"] = last_position
                return dict(p)
        return self._insert("lesson_progress", {
            "student_id": student_id, "lesson_id": lesson_id, "completed": completed,
            "last_position": last_position or 0,
            "completed_at": self._now() if completed else None,
        }, stamp="updated_at")

    # ---- quizzes
    def get_quiz(self, quiz_id):
        return self._copy(self._get("quizzes", quiz_id))

    def list_quizzes_by_lesson(self, lesson_id):
        return [dict(q) for q in self._rows("quizzes") if q["lesson_id"] == lesson_id]

    def create_quiz(self, lesson_id, title, description, deadline=None):
        return self._insert("quizzes", {
            "lesson_id": lesson_id, "title": title, "description": description,
            "deadline": deadline, "is_active": True,
        })

    def update_quiz(self, quiz_id, updates):
        return self._update("quizzes", quiz_id, updates, ("title", "description", "deadline", "is_active"))

    def delete_quiz(self, quiz_id):
        self._delete("quizzes", quiz_id)

    # ---- submissions
    def get_submission(self, submission_id):
        return self._copy(self._get("quiz_submissions", submission_id))

    def list_submissions_by_quiz(self, quiz_id):
        return [dict(s) for s in self._rows("quiz_submissions") if s["quiz_id"] == quiz_id]

    def list_submissions_by_student(self, student_id):
        out = []
        for s in self._rows("quiz_submissions"):
            if s["student_id"] == student_id:
                quiz = self._get("quizzes", s["quiz_id"]) or {}
                out.append(dict(s, quiz_title=quiz.get("title"), lesson_id=quiz.get("lesson_id")))
        return out

    def create_submission(self, quiz_id, student_id, image_paths):
        if any(s["quiz_id"] == quiz_id and s["student_id"] == student_id
               for s in self._rows("quiz_submissions")):
            return None
        return self._insert("quiz_submissions", {
            "quiz_id": quiz_id, "student_id": student_id, "image_paths": list(image_paths or []) or None,
            "score": None, "feedback": None, "graded_at": None,
        }, stamp="submitted_at")

    def grade_submission(self, submission_id, score, feedback):
        row = self._get("quiz_submissions", submission_id)
        row.update(score=score, feedback=feedback, graded_at=self._now())
        return dict(row)

    def submissions_with_images_before(self, cutoff):
        return [
            {"id": s["id"], "image_paths": list(s["image_paths"]), "submitted_at": s["submitted_at"]}
            for s in self._rows("quiz_submissions")
            if s["submitted_at"] < cutoff and s.get("image_paths")
        ]

    def set_submission_images(self, submission_id, image_paths):
        self._get("quiz_submissions", submission_id)["image_paths"] = list(image_paths or []) or None

    # ---- comments
    def get_comment(self, comment_id):
        return self._copy(self._get("lesson_comments", comment_id))

    def list_comments(self, lesson_id):
        out = []
        for c in self._rows("lesson_comments"):
            if c["lesson_id"] == lesson_id:
                user = self._get("users", c["user_id"]) or {}
                out.append(dict(c, author_name=user.get("full_name"), author_role=user.get("role")))
        return out

    def create_comment(self, lesson_id, user_id, content, parent_comment_id=None):
        return self._insert("lesson_comments", {
            "lesson_id": lesson_id, "user_id": user_id, "content": content,
            "parent_comment_id": parent_comment_id,
        })

    # ---- notifications
    def create_notifications(self, rows):
        return [self._insert("notifications", dict(r, read=False)) for r in rows]

    def list_notifications(self, user_id, unread_only=False):
        rows = [dict(n) for n in self._rows("notifications")
                if n["user_id"] == user_id and (not unread_only or not n["read"])]
        return sorted(rows, key=lambda n: n["id"], reverse=True)

    def get_notification(self, notification_id):
        return self._copy(self._get("notifications", notification_id))

    def mark_notification_read(self, notification_id, user_id):
        row = self._get("notifications", notification_id)
        if row is None or row["user_id"] != user_id:
            return None
        row["read"] = True
        return dict(row)

    def mark_all_notifications_read(self, user_id):
        n = 0
        for row in self._rows("notifications"):
            if row["user_id"] == user_id and not row["read"]:
                row["read"] = True
                n += 1
        return n

    def unread_notification_count(self, user_id):
        return len(self.list_notifications(user_id, unread_only=True))

    # ---- settings
    def get_setting(self, key):
        for s in self._rows("platform_settings"):
            if s["key"] == key:
                return dict(s)
        return None

    def list_settings(self):
        return sorted((dict(s) for s in self._rows("platform_settings")), key=lambda s: s["key"])

    def upsert_setting(self, key, value):
        for s in self._rows("platform_settings"):
            if s["key"] == key:
                s["value"] = value
                return dict(s)
        return self._insert("platform_settings", {"key": key, "value": value}, stamp="updated_at")

    def insert_setting_if_missing(self, key, value):
        if self.get_setting(key):
            return None
        return self.upsert_setting(key, value)

    # ---- reset tokens
    def create_reset_token(self, user_id, token, expires_at):
        return self._insert("password_reset_tokens", {
            "user_id": user_id, "token": token, "expires_at": expires_at, "used": False,
        })

    def consume_reset_token(self, token):
        for t in self._rows("password_reset_tokens"):
            if t["token"] == token and not t["used"]:
                t["used"] = True
                return dict(t)
        return None

    def delete_expired_reset_tokens(self):
        now = datetime.now(timezone.utc)
        gone = [t for t in self._rows("password_reset_tokens") if t["used"] or t["expires_at"] < now]
        for t in gone:
            self._delete("password_reset_tokens", t["id"])
        return len(gone)

    # ---- reviews
    def get_review(self, review_id):
        return self._copy(self._get("course_reviews", review_id))

    def list_reviews(self, course_id):
        return [dict(r) for r in self._rows("course_reviews") if r["course_id"] == course_id]

    def review_summary(self, course_id):
        ratings = [r["rating"] for r in self._rows("course_reviews") if r["course_id"] == course_id]
        avg = round(sum(ratings) / len(ratings), 2) if ratings else None
        return {"average": avg, "count": len(ratings)}

    def create_review(self, course_id, student_id, rating, review):
        if any(r["course_id"] == course_id and r["student_id"] == student_id
               for r in self._rows("course_reviews")):
            return None
        return self._insert("course_reviews", {
            "course_id": course_id, "student_id": student_id, "rating": rating, "review": review,
        })

    def update_review(self, review_id, updates):
        return self._update("course_reviews", review_id, updates, ("rating", "review"))

    def delete_review(self, review_id):
        self._delete("course_reviews", review_id)

    # ---- announcements
    def get_announcement(self, announcement_id):
        return self._copy(self._get("course_announcements", announcement_id))

    def list_announcements(self, course_id):
        return [dict(a) for a in self._rows("course_announcements") if a["course_id"] == course_id]

    def create_announcement(self, course_id, teacher_id, title, content):
        return self._insert("course_announcements", {
            "course_id": course_id, "teacher_id": teacher_id, "title": title, "content": content,
        })

    def update_announcement(self, announcement_id, updates):
        return self._update("course_announcements", announcement_id, updates, ("title", "content"))

    def delete_announcement(self, announcement_id):
        self._delete("course_announcements", announcement_id)

    # ---- reports
    def platform_stats(self):
        users = self._rows("users")
        enrollments = self._rows("enrollments")
        by = lambda s: sum(1 for e in enrollments if e["purchase_status"] == s)  # noqa: E731
        return {
            "teacher_count": sum(1 for u in users if u["role"] == "teacher"),
            "student_count": sum(1 for u in users if u["role"] == "student"),
            "course_count": len(self._rows("courses")),
            "enrollment_count": len(enrollments),
            "pending_count": by("pending"),
            "confirmed_count": by("confirmed"),
            "free_count": by("free"),
        }

    def teacher_rollup(self):
        return self.teacher_course_counts()

    def course_rollup(self):
        return self.list_courses()


class FakeMailer:
    def __init__(self):
        self.sent = []

    def send_password_reset(self, to_email, token, full_name):
        self.sent.append({"to": to_email, "token": token, "name": full_name})
        return True


# ---------------------------------------------------------------------------
# fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStorage(str(tmp_path / "uploads"), "/uploads")


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def app(store, blobs, mailer):
    app = Flask(__name__)
    app.testing = True
    app.config["SECRET_KEY"] = SECRET
    register_api(app, "", {
        "store": store, "blobs": blobs, "mailer": mailer,
        "NOTIFICATION_LOCALE": "en", "DEFAULT_WHATSAPP_NUMBER": "9647801234567",
    })
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def bearer(user):
    return {"Authorization": f"Bearer {issue_token(user, SECRET)}"}


@pytest.fixture
def world(store):
    """A teacher with a free and a paid course (one lesson each), two students and a superadmin."""
    cat = store.create_category("Programming", "code")
    teacher = store.create_user("t@example.com", "x", "Teacher T", "teacher")
    other_teacher = store.create_user("t2@example.com", "x", "Teacher Two", "teacher")
    s1 = store.create_user("s1@example.com", "x", "Student One", "student")
    s2 = store.create_user("s2@example.com", "x", "Student Two", "student")
    admin = store.create_user("admin@example.com", "x", "Super Admin", "superadmin")
    free = store.create_course(teacher["id"], {
        "category_id": cat["id"], "title": "Free Course", "slug": "free-course",
        "description": "d", "price": None, "is_free": True,
    })
    paid = store.create_course(teacher["id"], {
        "category_id": cat["id"], "title": "Paid Course", "slug": "paid-course",
        "description": "d", "price": Decimal("50000"), "is_free": False,
    })
    free_lesson = store.create_lesson(free["id"], "Intro", "https://video.example/a", 1, 10)
    paid_lesson = store.create_lesson(paid["id"], "Deep dive", "dQw4w9WgXcQ", 1, 20)
    return {
        "category": cat, "teacher": teacher, "other_teacher": other_teacher,
        "s1": s1, "s2": s2, "admin": admin,
        "free": free, "paid": paid, "free_lesson": free_lesson, "paid_lesson": paid_lesson,
    }
