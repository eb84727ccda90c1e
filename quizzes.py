# quizzes.py
# -----------------------------------------------------------------------------
# Quizzes, image submissions and grading.
# - One submission per (quiz, student), enforced by the table's unique pair
# - Submission images live in blob storage; rows keep the blob paths
# -----------------------------------------------------------------------------
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from flask import Blueprint, g, jsonify, request

from auth import require_auth
from errors import Conflict, Forbidden, NotFound, ValidationError, int_param, text_param
from notifications import GradeReceived, NewContent, QuizSubmitted

MAX_IMAGES = 5


def parse_deadline(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError("deadline must be an ISO date-time")
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        raise ValidationError("deadline must be an ISO date-time") from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def create_quizzes_blueprint(base_path: str, deps: Dict[str, Any], name: str = "quizzes") -> Blueprint:
    """
    Required deps: store, notifier, blobs
    """
    bp = Blueprint(name, __name__, url_prefix=f"{base_path}/api")
    store = deps["store"]
    notifier = deps["notifier"]
    blobs = deps["blobs"]

    def _submission_json(row: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(row)
        out["images"] = [blobs.public_url(p) for p in (row.get("image_paths") or [])]
        return out

    def _lesson_course(lesson_id: int):
        lesson = store.get_lesson(lesson_id)
        if not lesson:
            raise NotFound("Lesson not found")
        course = store.get_course(lesson["course_id"])
        if not course:
            raise NotFound("Course not found")
        return lesson, course

    def _quiz_context(quiz_id: int):
        quiz = store.get_quiz(quiz_id)
        if not quiz:
            raise NotFound("Quiz not found")
        lesson, course = _lesson_course(quiz["lesson_id"])
        return quiz, lesson, course

    def _owned_quiz(quiz_id: int):
        quiz, lesson, course = _quiz_context(quiz_id)
        if not g.policy.owns(course):
            raise Forbidden("You can only manage quizzes in your own courses")
        return quiz, lesson, course

    # ------------------------------------------------------------------ CRUD
    @bp.post("/quizzes")
    @require_auth("teacher")
    def create_quiz():
        data = request.get_json(silent=True) or {}
        lesson_id = int_param(data.get("lessonId"), "lessonId")
        title = text_param(data.get("title"), "title", max_len=500)
        description = text_param(data.get("description"), "description")
        deadline = parse_deadline(data.get("deadline"))

        lesson, course = _lesson_course(lesson_id)
        if not g.policy.owns(course):
            raise Forbidden("You can only create quizzes for your own courses")

        quiz = store.create_quiz(lesson_id, title, description, deadline)
        # every enrolled student, pending included
        students = [e["student_id"] for e in store.list_enrollments_for_course(course["id"])]
        notifier.notify(
            students,
            NewContent(course_id=course["id"], quiz_id=quiz["id"]),
            "quiz_new",
            quiz=title, course=course["title"],
        )
        print(f"[quiz] quiz {quiz['id']} on lesson {lesson_id}, notified {len(students)} students")
        return jsonify({"ok": True, "quiz": quiz}), 201

    @bp.get("/lessons/<int:lesson_id>/quizzes")
    @require_auth()
    def list_quizzes(lesson_id: int):
        _, course = _lesson_course(lesson_id)
        if g.policy.is_student and not g.policy.can_view_content(course):
            raise Forbidden("You do not have access to this lesson")
        return jsonify({"ok": True, "quizzes": store.list_quizzes_by_lesson(lesson_id)})

    @bp.put("/quizzes/<int:quiz_id>")
    @require_auth("teacher")
    def update_quiz(quiz_id: int):
        _owned_quiz(quiz_id)
        data = request.get_json(silent=True) or {}
        updates: Dict[str, Any] = {}
        if "title" in data:
            updates["title"] = text_param(data.get("title"), "title", max_len=500)
        if "description" in data:
            updates["description"] = text_param(data.get("description"), "description")
        if "deadline" in data:
            updates["deadline"] = parse_deadline(data.get("deadline"))
        if "isActive" in data:
            if not isinstance(data["isActive"], bool):
                raise ValidationError("isActive must be true or false")
            updates["is_active"] = data["isActive"]
        return jsonify({"ok": True, "quiz": store.update_quiz(quiz_id, updates)})

    @bp.put("/quizzes/<int:quiz_id>/active")
    @require_auth("teacher")
    def set_active(quiz_id: int):
        _owned_quiz(quiz_id)
        data = request.get_json(silent=True) or {}
        if not isinstance(data.get("isActive"), bool):
            raise ValidationError("isActive must be true or false")
        return jsonify({"ok": True, "quiz": store.update_quiz(quiz_id, {"is_active": data["isActive"]})})

    @bp.delete("/quizzes/<int:quiz_id>")
    @require_auth("teacher")
    def delete_quiz(quiz_id: int):
        _owned_quiz(quiz_id)
        store.delete_quiz(quiz_id)
        return jsonify({"ok": True})

    # ----------------------------------------------------------- submissions
    @bp.post("/quizzes/<int:quiz_id>/submit")
    @require_auth("student")
    def submit(quiz_id: int):
        quiz, _, course = _quiz_context(quiz_id)
        if not g.policy.can_view_content(course):
            raise Forbidden("You do not have access to this quiz")
        if not quiz.get("is_active", True):
            raise ValidationError("This quiz is closed")
        if quiz.get("deadline") and datetime.now(timezone.utc) > _aware(quiz["deadline"]):
            raise ValidationError("The deadline for this quiz has passed")

        files = [f for f in request.files.getlist("images") if f and f.filename]
        if len(files) > MAX_IMAGES:
            raise ValidationError(f"At most {MAX_IMAGES} images are allowed")

        stored: List[str] = []

        def _discard():
            for p in stored:
                try:
                    blobs.delete(p)
                except OSError as e:
                    print(f"[quiz] could not remove {p}: {e}")

        for f in files:
            path = f"quiz-submissions/{quiz_id}/{g.user_id}/{blobs.new_name(f.filename)}"
            result = blobs.put(path, f.read(), f.mimetype)
            if not result.ok:
                _discard()
                raise ValidationError(f"{f.filename}: {result.error}")
            stored.append(path)

        submission = store.create_submission(quiz_id, g.user_id, stored)
        if submission is None:
            _discard()
            raise Conflict("You have already submitted this quiz")

        student = store.get_user(g.user_id) or {}
        notifier.notify(
            [course["teacher_id"]],
            QuizSubmitted(quiz_id=quiz_id, submission_id=submission["id"]),
            "quiz_submission",
            student=student.get("full_name", ""), quiz=quiz["title"],
        )
        print(f"[quiz] submission {submission['id']} with {len(stored)} images")
        return jsonify({"ok": True, "submission": _submission_json(submission)}), 201

    @bp.get("/quizzes/<int:quiz_id>/submissions")
    @require_auth()
    def list_submissions(quiz_id: int):
        _, _, course = _quiz_context(quiz_id)
        rows = store.list_submissions_by_quiz(quiz_id)
        if g.policy.is_student:
            rows = [r for r in rows if int(r["student_id"]) == g.user_id]
        elif not g.policy.can_manage(course):
            raise Forbidden("You can only view submissions for your own courses")
        else:
            people = store.get_users(r["student_id"] for r in rows)
            for r in rows:
                r["student_name"] = (people.get(r["student_id"]) or {}).get("full_name")
        return jsonify({"ok": True, "submissions": [_submission_json(r) for r in rows]})

    @bp.get("/my-submissions")
    @require_auth("student")
    def my_submissions():
        rows = store.list_submissions_by_student(g.user_id)
        return jsonify({"ok": True, "submissions": [_submission_json(r) for r in rows]})

    @bp.put("/submissions/<int:submission_id>/grade")
    @require_auth("teacher")
    def grade(submission_id: int):
        submission = store.get_submission(submission_id)
        if not submission:
            raise NotFound("Submission not found")
        quiz, _, _ = _owned_quiz(submission["quiz_id"])

        data = request.get_json(silent=True) or {}
        score = int_param(data.get("score"), "score")
        if not 0 <= score <= 100:
            raise ValidationError("score must be between 0 and 100")
        feedback = text_param(data.get("feedback"), "feedback", required=False)

        graded = store.grade_submission(submission_id, score, feedback)
        notifier.notify(
            [submission["student_id"]],
            GradeReceived(quiz_id=quiz["id"], submission_id=submission_id),
            "quiz_graded",
            quiz=quiz["title"], score=score,
        )
        return jsonify({"ok": True, "submission": _submission_json(graded)})

    return bp
