# comments.py
# Two-level lesson Q&A: students ask, the owning teacher replies.
from typing import Any, Dict, Iterable, List, Optional

from flask import Blueprint, g, jsonify, request

from auth import require_auth
from errors import Forbidden, NotFound, ValidationError, text_param
from notifications import NewQuestion, Reply

MAX_COMMENT = 5000


def visible_comments(comments: Iterable[Dict[str, Any]], viewer_id: int,
                     role: Optional[str]) -> List[Dict[str, Any]]:
    """
    Teachers and the superadmin see the whole lesson thread.
    A student sees their own comments plus replies under their own top-level questions.
    """
    comments = list(comments)
    if role in ("teacher", "superadmin"):
        return comments
    mine = {
        c["id"] for c in comments
        if c["user_id"] == viewer_id and c.get("parent_comment_id") is None
    }
    return [
        c for c in comments
        if c["user_id"] == viewer_id
        or (c.get("parent_comment_id") is not None and c["parent_comment_id"] in mine)
    ]


def _comment_json(c: Dict[str, Any]) -> Dict[str, Any]:
    out = {k: v for k, v in c.items() if k not in ("author_name", "author_role")}
    out["user"] = {"id": c["user_id"], "fullName": c.get("author_name"), "role": c.get("author_role")}
    return out


def create_comments_blueprint(base_path: str, deps: Dict[str, Any], name: str = "comments") -> Blueprint:
    """
    Required deps: store, notifier
    """
    bp = Blueprint(name, __name__, url_prefix=f"{base_path}/api")
    store = deps["store"]
    notifier = deps["notifier"]

    def _lesson_course(lesson_id: int):
        lesson = store.get_lesson(lesson_id)
        if not lesson:
            raise NotFound("Lesson not found")
        course = store.get_course(lesson["course_id"])
        if not course:
            raise NotFound("Course not found")
        return lesson, course

    @bp.get("/lessons/<int:lesson_id>/comments")
    @require_auth()
    def list_comments(lesson_id: int):
        _lesson_course(lesson_id)
        rows = visible_comments(store.list_comments(lesson_id), g.user_id, g.role)
        return jsonify({"ok": True, "comments": [_comment_json(c) for c in rows]})

    @bp.post("/lessons/<int:lesson_id>/comments")
    @require_auth("student")
    def ask(lesson_id: int):
        lesson, course = _lesson_course(lesson_id)
        if not g.policy.can_view_content(course):
            raise Forbidden("You do not have access to this lesson")
        data = request.get_json(silent=True) or {}
        content = text_param(data.get("comment"), "comment", max_len=MAX_COMMENT)

        comment = store.create_comment(lesson_id, g.user_id, content)
        student = store.get_user(g.user_id) or {}
        notifier.notify(
            [course["teacher_id"]],
            NewQuestion(course_id=course["id"], lesson_id=lesson_id, comment_id=comment["id"]),
            "question_new",
            student=student.get("full_name", ""), lesson=lesson["title"],
        )
        return jsonify({"ok": True, "comment": comment}), 201

    @bp.post("/comments/<int:comment_id>/reply")
    @require_auth("teacher")
    def reply(comment_id: int):
        parent = store.get_comment(comment_id)
        if not parent:
            raise NotFound("Comment not found")
        if parent.get("parent_comment_id") is not None:
            raise ValidationError("Replies can only be posted on a top-level question")
        lesson, course = _lesson_course(parent["lesson_id"])
        if not g.policy.owns(course):
            raise Forbidden("You can only reply to questions on your own courses")
        data = request.get_json(silent=True) or {}
        content = text_param(data.get("comment"), "comment", max_len=MAX_COMMENT)

        row = store.create_comment(lesson["id"], g.user_id, content, parent_comment_id=comment_id)
        teacher = store.get_user(g.user_id) or {}
        notifier.notify(
            [parent["user_id"]],
            Reply(course_id=course["id"], lesson_id=lesson["id"], comment_id=row["id"]),
            "question_reply",
            teacher=teacher.get("full_name", ""), lesson=lesson["title"],
        )
        return jsonify({"ok": True, "comment": row}), 201

    return bp
