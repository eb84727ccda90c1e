# enrollment.py
# -----------------------------------------------------------------------------
# Enrollment entry, student dashboards, lesson access and progress.
# Entry state is fixed at creation: free courses -> "free", paid -> "pending".
# "confirmed" is only ever set by the superadmin status route (admin.py).
# -----------------------------------------------------------------------------
from typing import Any, Dict, List

from flask import Blueprint, g, jsonify, request

from auth import require_auth
from catalog import is_free_course
from errors import Conflict, Forbidden, NotFound, ValidationError, int_param
from notifications import EnrollmentRequest, NewEnrollment
from policy import ACCESS_STATUSES, lesson_views


def completion_percent(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return int(completed * 100 / total + 0.5)


def create_enrollment_blueprint(base_path: str, deps: Dict[str, Any], name: str = "enrollment") -> Blueprint:
    """
    Required deps: store, notifier
    """
    bp = Blueprint(name, __name__, url_prefix=f"{base_path}/api")
    store = deps["store"]
    notifier = deps["notifier"]

    def _course_or_404(course_id: int) -> Dict[str, Any]:
        course = store.get_course(course_id)
        if not course:
            raise NotFound("Course not found")
        return course

    def _progress_summary(student_id: int, course_id: int) -> Dict[str, Any]:
        lessons = store.list_lessons(course_id)
        rows = {p["lesson_id"]: p for p in store.list_progress_for_course(student_id, course_id)}
        done = sum(1 for l in lessons if (rows.get(l["id"]) or {}).get("completed"))
        return {
            "lessons": lessons,
            "progress": rows,
            "completedLessons": done,
            "totalLessons": len(lessons),
            "percentage": completion_percent(done, len(lessons)),
        }

    # ----------------------------------------------------------------- enroll
    @bp.post("/courses/<int:course_id>/enroll")
    @require_auth("student")
    def enroll(course_id: int):
        course = _course_or_404(course_id)
        free = is_free_course(course)
        status = "free" if free else "pending"

        enrollment = store.create_enrollment(g.user_id, course_id, status)
        if enrollment is None:
            raise Conflict("Already enrolled in this course")
        print(f"[enroll] student {g.user_id} -> course {course_id} ({status})")

        people = store.get_users([g.user_id, course["teacher_id"]])
        student_name = (people.get(g.user_id) or {}).get("full_name", "")
        teacher_name = (people.get(course["teacher_id"]) or {}).get("full_name", "")
        payload_cls = NewEnrollment if free else EnrollmentRequest
        payload = payload_cls(course_id=course_id, enrollment_id=enrollment["id"])

        notifier.notify(
            [course["teacher_id"]], payload,
            "enrollment_free" if free else "enrollment_request",
            student=student_name, course=course["title"],
        )
        admins = [uid for uid in store.list_user_ids_by_role("superadmin") if uid != course["teacher_id"]]
        notifier.notify(
            admins, payload,
            "enrollment_admin_free" if free else "enrollment_admin_pending",
            student=student_name, course=course["title"], teacher=teacher_name,
        )

        message = ("Enrolled successfully" if free
                   else "Enrollment request sent. Contact us on WhatsApp to complete the payment.")
        return jsonify({"ok": True, "enrollment": enrollment, "message": message}), 201

    @bp.get("/enrollments/my-courses")
    @require_auth("student")
    def my_courses():
        out: List[Dict[str, Any]] = []
        for e in store.list_enrollments_for_student(g.user_id):
            if e["purchase_status"] not in ACCESS_STATUSES:
                continue
            course = store.get_course(e["course_id"])
            if not course:
                continue
            summary = _progress_summary(g.user_id, course["id"])
            out.append({
                "enrollment": e,
                "course": course,
                "totalLessons": summary["totalLessons"],
                "completedLessons": summary["completedLessons"],
                "progress": summary["percentage"],
            })
        return jsonify({"ok": True, "courses": out})

    @bp.get("/enrollments/pending")
    @require_auth("teacher", "superadmin")
    def pending():
        if g.policy.is_superadmin:
            rows = store.list_pending_enrollments()
        else:
            rows = store.list_pending_enrollments(sorted(g.policy.owned_course_ids))
        return jsonify({"ok": True, "enrollments": rows})

    # ---------------------------------------------------------------- lessons
    def _lesson_with_course(lesson_id: int):
        lesson = store.get_lesson(lesson_id)
        if not lesson:
            raise NotFound("Lesson not found")
        return lesson, _course_or_404(lesson["course_id"])

    @bp.get("/lessons/<int:lesson_id>")
    @require_auth()
    def lesson_detail(lesson_id: int):
        lesson, course = _lesson_with_course(lesson_id)
        if not g.policy.can_view_content(course):
            raise Forbidden("You do not have access to this lesson")
        progress = store.get_progress(g.user_id, lesson_id) if g.policy.is_student else None
        return jsonify({
            "ok": True,
            "lesson": lesson,
            "course": course,
            "lessons": lesson_views(store.list_lessons(course["id"]), True),
            "quizzes": store.list_quizzes_by_lesson(lesson_id),
            "progress": progress,
        })

    @bp.post("/lessons/<int:lesson_id>/progress")
    @require_auth("student")
    def update_progress(lesson_id: int):
        _, course = _lesson_with_course(lesson_id)
        if not g.policy.can_view_content(course):
            raise Forbidden("You do not have access to this lesson")
        data = request.get_json(silent=True) or {}
        completed = data.get("completed", False)
        if not isinstance(completed, bool):
            raise ValidationError("completed must be true or false")
        position = int_param(data.get("lastPosition"), "lastPosition", required=False)
        if position is not None and position < 0:
            raise ValidationError("lastPosition must be zero or more")
        row = store.upsert_progress(g.user_id, lesson_id, completed, position)
        return jsonify({"ok": True, "progress": row})

    @bp.get("/courses/<int:course_id>/progress")
    @require_auth("student")
    def course_progress(course_id: int):
        course = _course_or_404(course_id)
        summary = _progress_summary(g.user_id, course_id)
        lessons = [{
            "id": l["id"],
            "title": l["title"],
            "lesson_order": l["lesson_order"],
            "completed": bool((summary["progress"].get(l["id"]) or {}).get("completed")),
            "last_position": (summary["progress"].get(l["id"]) or {}).get("last_position", 0),
        } for l in summary["lessons"]]
        return jsonify({
            "ok": True,
            "courseId": course["id"],
            "enrollmentStatus": g.policy.enrollment_status(course_id),
            "lessons": lessons,
            "completedLessons": summary["completedLessons"],
            "totalLessons": summary["totalLessons"],
            "percentage": summary["percentage"],
        })

    return bp
