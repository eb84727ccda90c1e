# catalog.py
# -----------------------------------------------------------------------------
# Courses, categories, lessons, reviews and announcements.
# - Course detail and lesson listing are public; a valid bearer upgrades the caller
# - Lesson rows drop the video key for callers without a grant (policy.lesson_views)
# - Every mutation re-checks ownership against the row it touches
# -----------------------------------------------------------------------------
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from flask import Blueprint, g, jsonify, request

from auth import optional_auth, require_auth
from errors import Conflict, Forbidden, NotFound, ValidationError, int_param, text_param
from notifications import NewContent
from policy import ACCESS_STATUSES, lesson_views
from slugs import course_path, generate_slug

VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")
MAX_TITLE = 500


def valid_video_ref(value: Any) -> bool:
    """http(s) URL with a host, or a bare 11-character video id."""
    if not isinstance(value, str) or not value.strip():
        return False
    v = value.strip()
    if VIDEO_ID_RE.match(v):
        return True
    p = urlparse(v)
    return p.scheme in ("http", "https") and bool(p.netloc)


def _price(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError("price must be a number")
    try:
        d = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError("price must be a number") from None
    if not d.is_finite() or d < 0:
        raise ValidationError("price must be zero or more")
    return d


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def is_free_course(course: Dict[str, Any]) -> bool:
    price = course.get("price")
    return bool(course.get("is_free")) or price is None or Decimal(str(price)) == 0


def _teacher_card(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not user:
        return None
    return {"id": user["id"], "fullName": user["full_name"], "whatsappNumber": user.get("whatsapp_number")}


# =========================
# Blueprint factory
# =========================
def create_catalog_blueprint(base_path: str, deps: Dict[str, Any], name: str = "catalog") -> Blueprint:
    """
    Required deps: store, notifier, blobs
    """
    bp = Blueprint(name, __name__, url_prefix=f"{base_path}/api")
    store = deps["store"]
    notifier = deps["notifier"]
    blobs = deps["blobs"]

    def _course_or_404(course_id: int) -> Dict[str, Any]:
        course = store.get_course(course_id)
        if not course:
            raise NotFound("Course not found")
        return course

    def _owned_course(course_id: int) -> Dict[str, Any]:
        course = _course_or_404(course_id)
        if not g.policy.owns(course):
            raise Forbidden("You can only manage your own courses")
        return course

    def _owned_lesson(lesson_id: int):
        lesson = store.get_lesson(lesson_id)
        if not lesson:
            raise NotFound("Lesson not found")
        return lesson, _owned_course(lesson["course_id"])

    def _course_payload(course: Dict[str, Any]) -> Dict[str, Any]:
        policy = g.policy
        granted = policy.can_view_content(course)
        lessons = store.list_lessons(course["id"])
        category = store.get_category(course["category_id"]) if course.get("category_id") else None
        return {
            "ok": True,
            "course": course,
            "teacher": _teacher_card(store.get_user(course["teacher_id"])),
            "category": category,
            "lessons": lesson_views(lessons, granted),
            "enrollmentCount": store.count_course_enrollments(course["id"]),
            "rating": store.review_summary(course["id"]),
            "isEnrolled": policy.is_student and policy.is_enrolled(course["id"]),
            "enrollmentStatus": policy.enrollment_status(course["id"]) if policy.is_student else None,
            "canViewContent": granted,
            "path": course_path(course["id"], course["title"], course.get("slug")),
        }

    def _course_fields(data: Dict[str, Any], partial: bool) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if not partial or "title" in data:
            out["title"] = text_param(data.get("title"), "title", max_len=MAX_TITLE)
        if not partial or "description" in data:
            out["description"] = text_param(data.get("description"), "description")
        if not partial or "categoryId" in data:
            category_id = int_param(data.get("categoryId"), "categoryId")
            if not store.get_category(category_id):
                raise ValidationError("Unknown category")
            out["category_id"] = category_id
        if "whatYouWillLearn" in data:
            out["what_you_will_learn"] = text_param(data.get("whatYouWillLearn"), "whatYouWillLearn", required=False)
        if "thumbnailUrl" in data:
            out["thumbnail_url"] = (data.get("thumbnailUrl") or "").strip() or None
        if "price" in data:
            out["price"] = _price(data.get("price"))
        if "isFree" in data:
            out["is_free"] = _flag(data.get("isFree"))
        return out

    # ---------------------------------------------------------------- courses
    @bp.get("/courses")
    def list_courses():
        category_id = int_param(request.args.get("categoryId"), "categoryId", required=False)
        return jsonify({
            "ok": True,
            "courses": store.list_courses(category_id),
            "categories": store.list_categories(),
        })

    @bp.get("/categories")
    def list_categories():
        return jsonify({"ok": True, "categories": store.list_categories()})

    @bp.post("/categories")
    @require_auth("superadmin")
    def create_category():
        data = request.get_json(silent=True) or {}
        name = text_param(data.get("name"), "name", max_len=255)
        description = text_param(data.get("description"), "description", required=False)
        row = store.create_category(name, description)
        if row is None:
            raise Conflict("Category already exists")
        return jsonify({"ok": True, "category": row}), 201

    @bp.get("/courses/<int:course_id>")
    @optional_auth
    def course_detail(course_id: int):
        return jsonify(_course_payload(_course_or_404(course_id)))

    @bp.get("/courses/by-slug/<path:slug>")
    @optional_auth
    def course_by_slug(slug: str):
        course = store.get_course_by_slug(generate_slug(slug))
        if not course:
            raise NotFound("Course not found")
        return jsonify(_course_payload(course))

    @bp.post("/courses")
    @require_auth("teacher")
    def create_course():
        data = request.get_json(silent=True) or {}
        fields = _course_fields(data, partial=False)
        course = store.create_course(g.user_id, fields)
        course = store.update_course(course["id"], {"slug": generate_slug(course["title"], course["id"])})
        print(f"[catalog] teacher {g.user_id} created course {course['id']}")
        return jsonify({"ok": True, "course": course}), 201

    @bp.put("/courses/<int:course_id>")
    @require_auth("teacher")
    def update_course(course_id: int):
        course = _owned_course(course_id)
        data = request.get_json(silent=True) or {}
        fields = _course_fields(data, partial=True)
        if "title" in fields and fields["title"] != course["title"]:
            fields["slug"] = generate_slug(fields["title"], course_id)
        updated = store.update_course(course_id, fields)
        return jsonify({"ok": True, "course": updated})

    @bp.delete("/courses/<int:course_id>")
    @require_auth("teacher", "superadmin")
    def delete_course(course_id: int):
        course = _course_or_404(course_id)
        if not g.policy.can_manage(course):
            raise Forbidden("You can only delete your own courses")
        store.delete_course(course_id)
        print(f"[catalog] user {g.user_id} deleted course {course_id}")
        return jsonify({"ok": True})

    @bp.get("/my-courses")
    @require_auth("teacher")
    def my_courses():
        return jsonify({"ok": True, "courses": store.list_courses_by_teacher(g.user_id)})

    @bp.post("/courses/thumbnail")
    @require_auth("teacher", "superadmin")
    def upload_thumbnail():
        f = request.files.get("image")
        if f is None:
            raise ValidationError("image file is required")
        path = f"thumbnails/{g.user_id}/{blobs.new_name(f.filename)}"
        result = blobs.put(path, f.read(), f.mimetype)
        if not result.ok:
            raise ValidationError(result.error)
        return jsonify({"ok": True, "url": blobs.public_url(path)}), 201

    # ---------------------------------------------------------------- lessons
    @bp.get("/courses/<int:course_id>/lessons")
    @optional_auth
    def list_lessons(course_id: int):
        course = _course_or_404(course_id)
        granted = g.policy.can_view_content(course)
        return jsonify({
            "ok": True,
            "lessons": lesson_views(store.list_lessons(course_id), granted),
            "canViewContent": granted,
        })

    @bp.post("/courses/<int:course_id>/lessons")
    @require_auth("teacher")
    def create_lesson(course_id: int):
        _owned_course(course_id)
        data = request.get_json(silent=True) or {}
        title = text_param(data.get("title"), "title", max_len=MAX_TITLE)
        video = data.get("videoUrl", data.get("youtubeUrl"))
        if not valid_video_ref(video):
            raise ValidationError("videoUrl must be an http(s) URL or an 11-character video id")
        duration = int_param(data.get("durationMinutes"), "durationMinutes", required=False)
        if duration is not None and duration < 0:
            raise ValidationError("durationMinutes must be zero or more")

        current_max = store.max_lesson_order(course_id)
        order = int_param(data.get("lessonOrder"), "lessonOrder", required=False)
        if order is None:
            order = (current_max or 0) + 1
        elif order < 1:
            raise ValidationError("lessonOrder must be positive")
        elif current_max is not None and order <= current_max:
            raise ValidationError(f"lessonOrder must be greater than {current_max}")

        lesson = store.create_lesson(course_id, title, video.strip(), order, duration)
        return jsonify({"ok": True, "lesson": lesson}), 201

    @bp.put("/lessons/<int:lesson_id>")
    @require_auth("teacher")
    def update_lesson(lesson_id: int):
        _owned_lesson(lesson_id)
        data = request.get_json(silent=True) or {}
        updates: Dict[str, Any] = {}
        if "title" in data:
            updates["title"] = text_param(data.get("title"), "title", max_len=MAX_TITLE)
        if "videoUrl" in data or "youtubeUrl" in data:
            video = data.get("videoUrl", data.get("youtubeUrl"))
            if not valid_video_ref(video):
                raise ValidationError("videoUrl must be an http(s) URL or an 11-character video id")
            updates["video_url"] = video.strip()
        if "lessonOrder" in data:
            order = int_param(data.get("lessonOrder"), "lessonOrder")
            if order < 1:
                raise ValidationError("lessonOrder must be positive")
            updates["lesson_order"] = order
        if "durationMinutes" in data:
            duration = int_param(data.get("durationMinutes"), "durationMinutes", required=False)
            if duration is not None and duration < 0:
                raise ValidationError("durationMinutes must be zero or more")
            updates["duration_minutes"] = duration
        return jsonify({"ok": True, "lesson": store.update_lesson(lesson_id, updates)})

    @bp.delete("/lessons/<int:lesson_id>")
    @require_auth("teacher")
    def delete_lesson(lesson_id: int):
        _owned_lesson(lesson_id)
        store.delete_lesson(lesson_id)
        return jsonify({"ok": True})

    # ---------------------------------------------------------------- reviews
    @bp.get("/courses/<int:course_id>/reviews")
    def list_reviews(course_id: int):
        _course_or_404(course_id)
        return jsonify({
            "ok": True,
            "reviews": store.list_reviews(course_id),
            "summary": store.review_summary(course_id),
        })

    def _rating(value: Any) -> int:
        rating = int_param(value, "rating")
        if not 1 <= rating <= 5:
            raise ValidationError("rating must be between 1 and 5")
        return rating

    @bp.post("/courses/<int:course_id>/reviews")
    @require_auth("student")
    def create_review(course_id: int):
        course = _course_or_404(course_id)
        if not g.policy.can_view_content(course):
            raise Forbidden("Only enrolled students can review this course")
        data = request.get_json(silent=True) or {}
        rating = _rating(data.get("rating"))
        text = text_param(data.get("review"), "review", required=False)
        row = store.create_review(course_id, g.user_id, rating, text)
        if row is None:
            raise Conflict("You have already reviewed this course")
        return jsonify({"ok": True, "review": row}), 201

    def _own_review(review_id: int) -> Dict[str, Any]:
        review = store.get_review(review_id)
        if not review:
            raise NotFound("Review not found")
        return review

    @bp.put("/reviews/<int:review_id>")
    @require_auth("student")
    def update_review(review_id: int):
        review = _own_review(review_id)
        if int(review["student_id"]) != g.user_id:
            raise Forbidden("You can only edit your own review")
        data = request.get_json(silent=True) or {}
        updates: Dict[str, Any] = {}
        if "rating" in data:
            updates["rating"] = _rating(data.get("rating"))
        if "review" in data:
            updates["review"] = text_param(data.get("review"), "review", required=False)
        return jsonify({"ok": True, "review": store.update_review(review_id, updates)})

    @bp.delete("/reviews/<int:review_id>")
    @require_auth("student", "superadmin")
    def delete_review(review_id: int):
        review = _own_review(review_id)
        if not g.policy.is_superadmin and int(review["student_id"]) != g.user_id:
            raise Forbidden("You can only delete your own review")
        store.delete_review(review_id)
        return jsonify({"ok": True})

    # ---------------------------------------------------------- announcements
    @bp.get("/courses/<int:course_id>/announcements")
    def list_announcements(course_id: int):
        _course_or_404(course_id)
        return jsonify({"ok": True, "announcements": store.list_announcements(course_id)})

    @bp.post("/courses/<int:course_id>/announcements")
    @require_auth("teacher")
    def create_announcement(course_id: int):
        course = _owned_course(course_id)
        data = request.get_json(silent=True) or {}
        title = text_param(data.get("title"), "title", max_len=255)
        content = text_param(data.get("content"), "content")
        row = store.create_announcement(course_id, g.user_id, title, content)

        students = [e["student_id"] for e in store.list_enrollments_for_course(course_id, ACCESS_STATUSES)]
        notifier.notify(
            students,
            NewContent(course_id=course_id, announcement_id=row["id"]),
            "announcement_new",
            announcement=title, course=course["title"],
        )
        print(f"[catalog] announcement {row['id']} sent to {len(students)} students")
        return jsonify({"ok": True, "announcement": row}), 201

    def _owned_announcement(announcement_id: int) -> Dict[str, Any]:
        row = store.get_announcement(announcement_id)
        if not row:
            raise NotFound("Announcement not found")
        _owned_course(row["course_id"])
        return row

    @bp.put("/announcements/<int:announcement_id>")
    @require_auth("teacher")
    def update_announcement(announcement_id: int):
        _owned_announcement(announcement_id)
        data = request.get_json(silent=True) or {}
        updates: Dict[str, Any] = {}
        if "title" in data:
            updates["title"] = text_param(data.get("title"), "title", max_len=255)
        if "content" in data:
            updates["content"] = text_param(data.get("content"), "content")
        return jsonify({"ok": True, "announcement": store.update_announcement(announcement_id, updates)})

    @bp.delete("/announcements/<int:announcement_id>")
    @require_auth("teacher")
    def delete_announcement(announcement_id: int):
        _owned_announcement(announcement_id)
        store.delete_announcement(announcement_id)
        return jsonify({"ok": True})

    return bp
