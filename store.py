# store.py
# One method per entity operation, over the fetch_one / fetch_all / execute / execute_returning
# helpers built in main.py. Pair-unique inserts return None when the row already exists.
import json
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

ACCESS_STATUSES = ("confirmed", "free")

_COURSE_FIELDS = (
    "category_id", "title", "slug", "description", "what_you_will_learn",
    "thumbnail_url", "price", "is_free",
)
_LESSON_FIELDS = ("title", "video_url", "lesson_order", "duration_minutes")
_QUIZ_FIELDS = ("title", "description", "deadline", "is_active")
_REVIEW_FIELDS = ("rating", "review")
_ANNOUNCEMENT_FIELDS = ("title", "content")


def _set_clause(updates: Dict[str, Any], allowed: Iterable[str]):
    cols = [k for k in allowed if k in updates]
    sql = ", ".join(f"{c} = %s" for c in cols)
    return sql, [updates[c] for c in cols]


class Store:
    def __init__(self, fetch_one: Callable, fetch_all: Callable,
                 execute: Callable, execute_returning: Callable):
        self.fetch_one = fetch_one
        self.fetch_all = fetch_all
        self.execute = execute
        self.execute_returning = execute_returning

    def _first(self, sql: str, params=()) -> Optional[Dict[str, Any]]:
        rows = self.execute_returning(sql, params)
        return rows[0] if rows else None

    def _update(self, table: str, row_id: int, updates: Dict[str, Any],
                allowed: Iterable[str], touch: bool = False) -> Optional[Dict[str, Any]]:
        set_sql, params = _set_clause(updates, allowed)
        if touch:
            set_sql = f"{set_sql}, updated_at = now()" if set_sql else "updated_at = now()"
        if not set_sql:
            return self.fetch_one(f"SELECT * FROM {table} WHERE id = %s;", (row_id,))
        return self._first(
            f"UPDATE {table} SET {set_sql} WHERE id = %s RETURNING *;",
            tuple(params) + (row_id,),
        )

    # ------------------------------------------------------------------ users
    def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        return self.fetch_one("SELECT * FROM users WHERE id = %s;", (user_id,))

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.fetch_one("SELECT * FROM users WHERE lower(email) = lower(%s);", (email,))

    def create_user(self, email: str, password_hash: str, full_name: str, role: str,
                    whatsapp_number: Optional[str] = None) -> Optional[Dict[str, Any]]:
        return self._first("""
            INSERT INTO users (email, password, full_name, role, whatsapp_number)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (email) DO NOTHING
            RETURNING *;
        """, (email, password_hash, full_name, role, whatsapp_number))

    def update_user_password(self, user_id: int, password_hash: str) -> None:
        self.execute("UPDATE users SET password = %s WHERE id = %s;", (password_hash, user_id))

    def delete_user(self, user_id: int) -> None:
        self.execute("DELETE FROM users WHERE id = %s;", (user_id,))

    def list_user_ids_by_role(self, role: str) -> List[int]:
        rows = self.fetch_all("SELECT id FROM users WHERE role = %s ORDER BY id;", (role,))
        return [r["id"] for r in rows]

    def get_users(self, user_ids: Iterable[int]) -> Dict[int, Dict[str, Any]]:
        ids = sorted({int(i) for i in user_ids})
        if not ids:
            return {}
        rows = self.fetch_all("SELECT * FROM users WHERE id = ANY(%s);", (ids,))
        return {r["id"]: r for r in rows}

    # ------------------------------------------------------------- categories
    def list_categories(self) -> List[Dict[str, Any]]:
        return self.fetch_all("SELECT * FROM course_categories ORDER BY name;")

    def get_category(self, category_id: int) -> Optional[Dict[str, Any]]:
        return self.fetch_one("SELECT * FROM course_categories WHERE id = %s;", (category_id,))

    def create_category(self, name: str, description: Optional[str] = None) -> Optional[Dict[str, Any]]:
        return self._first("""
            INSERT INTO course_categories (name, description)
            VALUES (%s, %s)
            ON CONFLICT (name) DO NOTHING
            RETURNING *;
        """, (name, description))

    # ---------------------------------------------------------------- courses
    def get_course(self, course_id: int) -> Optional[Dict[str, Any]]:
        return self.fetch_one("SELECT * FROM courses WHERE id = %s;", (course_id,))

    def get_course_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        return self.fetch_one(
            "SELECT * FROM courses WHERE slug = %s ORDER BY id LIMIT 1;", (slug,))

    def list_courses(self, category_id: Optional[int] = None) -> List[Dict[str, Any]]:
        sql = """
            SELECT c.*,
                   u.full_name AS teacher_name,
                   (SELECT COUNT(*) FROM course_lessons l WHERE l.course_id = c.id) AS lesson_count,
                   (SELECT COUNT(*) FROM enrollments e WHERE e.course_id = c.id) AS enrollment_count,
                   (SELECT AVG(r.rating)::float FROM course_reviews r WHERE r.course_id = c.id) AS average_rating,
                   (SELECT COUNT(*) FROM course_reviews r WHERE r.course_id = c.id) AS review_count
              FROM courses c
              JOIN users u ON u.id = c.teacher_id
        """
        if category_id is not None:
            return self.fetch_all(sql + " WHERE c.category_id = %s ORDER BY c.created_at DESC;", (category_id,))
        return self.fetch_all(sql + " ORDER BY c.created_at DESC;")

    def list_courses_by_teacher(self, teacher_id: int) -> List[Dict[str, Any]]:
        return self.fetch_all("""
            SELECT c.*,
                   (SELECT COUNT(*) FROM course_lessons l WHERE l.course_id = c.id) AS lesson_count,
                   (SELECT COUNT(*) FROM enrollments e WHERE e.course_id = c.id) AS enrollment_count
              FROM courses c
             WHERE c.teacher_id = %s
             ORDER BY c.created_at DESC;
        """, (teacher_id,))

    def course_ids_by_teacher(self, teacher_id: int) -> List[int]:
        rows = self.fetch_all("SELECT id FROM courses WHERE teacher_id = %s;", (teacher_id,))
        return [r["id"] for r in rows]

    def create_course(self, teacher_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._first("""
            INSERT INTO courses
                (teacher_id, category_id, title, slug, description, what_you_will_learn,
                 thumbnail_url, price, is_free)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *;
        """, (
            teacher_id, data["category_id"], data["title"], data.get("slug") or "",
            data["description"], data.get("what_you_will_learn"), data.get("thumbnail_url"),
            data.get("price"), bool(data.get("is_free")),
        ))

    def update_course(self, course_id: int, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update("courses", course_id, updates, _COURSE_FIELDS)

    def delete_course(self, course_id: int) -> None:
        self.execute("DELETE FROM courses WHERE id = %s;", (course_id,))

    def courses_missing_slug(self) -> List[Dict[str, Any]]:
        return self.fetch_all("SELECT id, title FROM courses WHERE slug IS NULL OR slug = '' ORDER BY id;")

    def count_course_enrollments(self, course_id: int) -> int:
        row = self.fetch_one("SELECT COUNT(*) AS n FROM enrollments WHERE course_id = %s;", (course_id,))
        return int((row or {}).get("n") or 0)

    # ---------------------------------------------------------------- lessons
    def get_lesson(self, lesson_id: int) -> Optional[Dict[str, Any]]:
        return self.fetch_one("SELECT * FROM course_lessons WHERE id = %s;", (lesson_id,))

    def list_lessons(self, course_id: int) -> List[Dict[str, Any]]:
        return self.fetch_all("""
            SELECT * FROM course_lessons
             WHERE course_id = %s
             ORDER BY lesson_order, id;
        """, (course_id,))

    def max_lesson_order(self, course_id: int) -> Optional[int]:
        row = self.fetch_one(
            "SELECT MAX(lesson_order) AS m FROM course_lessons WHERE course_id = %s;", (course_id,))
        m = (row or {}).get("m")
        return int(m) if m is not None else None

    def create_lesson(self, course_id: int, title: str, video_url: str, lesson_order: int,
                      duration_minutes: Optional[int] = None) -> Dict[str, Any]:
        return self._first("""
            INSERT INTO course_lessons (course_id, title, video_url, lesson_order, duration_minutes)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING *;
        """, (course_id, title, video_url, lesson_order, duration_minutes))

    def update_lesson(self, lesson_id: int, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update("course_lessons", lesson_id, updates, _LESSON_FIELDS)

    def delete_lesson(self, lesson_id: int) -> None:
        self.execute("DELETE FROM course_lessons WHERE id = %s;", (lesson_id,))

    # ------------------------------------------------------------ enrollments
    def get_enrollment(self, student_id: int, course_id: int) -> Optional[Dict[str, Any]]:
        return self.fetch_one(
            "SELECT * FROM enrollments WHERE student_id = %s AND course_id = %s;",
            (student_id, course_id))

    def get_enrollment_by_id(self, enrollment_id: int) -> Optional[Dict[str, Any]]:
        return self.fetch_one("SELECT * FROM enrollments WHERE id = %s;", (enrollment_id,))

    def create_enrollment(self, student_id: int, course_id: int, status: str) -> Optional[Dict[str, Any]]:
        return self._first("""
            INSERT INTO enrollments (student_id, course_id, purchase_status)
            VALUES (%s, %s, %s)
            ON CONFLICT (student_id, course_id) DO NOTHING
            RETURNING *;
        """, (student_id, course_id, status))

    def list_enrollments_for_student(self, student_id: int) -> List[Dict[str, Any]]:
        return self.fetch_all("""
            SELECT * FROM enrollments
             WHERE student_id = %s
             ORDER BY enrolled_at DESC;
        """, (student_id,))

    def list_enrollments_for_course(self, course_id: int,
                                    statuses: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
        if statuses is None:
            return self.fetch_all(
                "SELECT * FROM enrollments WHERE course_id = %s ORDER BY id;", (course_id,))
        return self.fetch_all("""
            SELECT * FROM enrollments
             WHERE course_id = %s AND purchase_status = ANY(%s)
             ORDER BY id;
        """, (course_id, list(statuses)))

    def list_pending_enrollments(self, course_ids: Optional[Iterable[int]] = None) -> List[Dict[str, Any]]:
        sql = """
            SELECT e.*,
                   s.full_name AS student_name, s.email AS student_email,
                   s.whatsapp_number AS student_whatsapp,
                   c.title AS course_title, c.price AS course_price
              FROM enrollments e
              JOIN users s ON s.id = e.student_id
              JOIN courses c ON c.id = e.course_id
             WHERE e.purchase_status = 'pending'
        """
        if course_ids is None:
            return self.fetch_all(sql + " ORDER BY e.enrolled_at DESC;")
        ids = list(course_ids)
        if not ids:
            return []
        return self.fetch_all(sql + " AND e.course_id = ANY(%s) ORDER BY e.enrolled_at DESC;", (ids,))

    def update_enrollment_status(self, enrollment_id: int, status: str) -> Optional[Dict[str, Any]]:
        return self._first(
            "UPDATE enrollments SET purchase_status = %s WHERE id = %s RETURNING *;",
            (status, enrollment_id))

    # --------------------------------------------------------------- progress
    def get_progress(self, student_id: int, lesson_id: int) -> Optional[Dict[str, Any]]:
        return self.fetch_one(
            "SELECT * FROM lesson_progress WHERE student_id = %s AND lesson_id = %s;",
            (student_id, lesson_id))

    def list_progress_for_course(self, student_id: int, course_id: int) -> List[Dict[str, Any]]:
        return self.fetch_all("""
            SELECT p.*
              FROM lesson_progress p
              JOIN course_lessons l ON l.id = p.lesson_id
             WHERE p.student_id = %s AND l.course_id = %s;
        """, (student_id, course_id))

    def upsert_progress(self, student_id: int, lesson_id: int, completed: bool,
                        last_position: Optional[int]) -> Dict[str, Any]:
        # completed never flips back; completed_at is stamped only on the false -> true edge
        return self._first("""
            INSERT INTO lesson_progress (student_id, lesson_id, completed, last_position, completed_at)
            VALUES (%s, %s, %s, COALESCE(%s, 0), CASE WHEN %s THEN now() END)
            ON CONFLICT (student_id, lesson_id) DO UPDATE SET
                completed = lesson_progress.completed OR EXCLUDED.completed,
                last_position = COALESCE(%s, lesson_progress.last_position),
                completed_at = CASE
                    WHEN lesson_progress.completed THEN lesson_progress.completed_at
                    WHEN EXCLUDED.completed THEN now()
                    ELSE NULL
                END,
                updated_at = now()
            RETURNING *;
        """, (student_id, lesson_id, completed, last_position, completed, last_position))

    # ---------------------------------------------------------------- quizzes
    def get_quiz(self, quiz_id: int) -> Optional[Dict[str, Any]]:
        return self.fetch_one("SELECT * FROM quizzes WHERE id = %s;", (quiz_id,))

    def list_quizzes_by_lesson(self, lesson_id: int) -> List[Dict[str, Any]]:
        return self.fetch_all(
            "SELECT * FROM quizzes WHERE lesson_id = %s ORDER BY created_at, id;", (lesson_id,))

    def create_quiz(self, lesson_id: int, title: str, description: str,
                    deadline: Optional[datetime] = None) -> Dict[str, Any]:
        return self._first("""
            INSERT INTO quizzes (lesson_id, title, description, deadline)
            VALUES (%s, %s, %s, %s)
            RETURNING *;
        """, (lesson_id, title, description, deadline))

    def update_quiz(self, quiz_id: int, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update("quizzes", quiz_id, updates, _QUIZ_FIELDS)

    def delete_quiz(self, quiz_id: int) -> None:
        self.execute("DELETE FROM quizzes WHERE id = %s;", (quiz_id,))

    # ------------------------------------------------------------ submissions
    def get_submission(self, submission_id: int) -> Optional[Dict[str, Any]]:
        return self.fetch_one("SELECT * FROM quiz_submissions WHERE id = %s;", (submission_id,))

    def list_submissions_by_quiz(self, quiz_id: int) -> List[Dict[str, Any]]:
        return self.fetch_all("""
            SELECT * FROM quiz_submissions
             WHERE quiz_id = %s
             ORDER BY submitted_at DESC;
        """, (quiz_id,))

    def list_submissions_by_student(self, student_id: int) -> List[Dict[str, Any]]:
        return self.fetch_all("""
            SELECT s.*, q.title AS quiz_title, q.lesson_id
              FROM quiz_submissions s
              JOIN quizzes q ON q.id = s.quiz_id
             WHERE s.student_id = %s
             ORDER BY s.submitted_at DESC;
        """, (student_id,))

    def create_submission(self, quiz_id: int, student_id: int,
                          image_paths: Optional[List[str]]) -> Optional[Dict[str, Any]]:
        return self._first("""
            INSERT INTO quiz_submissions (quiz_id, student_id, image_paths)
            VALUES (%s, %s, %s)
            ON CONFLICT (quiz_id, student_id) DO NOTHING
            RETURNING *;
        """, (quiz_id, student_id, image_paths or None))

    def grade_submission(self, submission_id: int, score: int,
                         feedback: Optional[str]) -> Optional[Dict[str, Any]]:
        return self._first("""
            UPDATE quiz_submissions
               SET score = %s, feedback = %s, graded_at = now()
             WHERE id = %s
            RETURNING *;
        """, (score, feedback, submission_id))

    def submissions_with_images_before(self, cutoff: datetime) -> List[Dict[str, Any]]:
        return self.fetch_all("""
            SELECT id, image_paths, submitted_at
              FROM quiz_submissions
             WHERE submitted_at < %s
               AND image_paths IS NOT NULL
               AND cardinality(image_paths) > 0
             ORDER BY id;
        """, (cutoff,))

    def set_submission_images(self, submission_id: int, image_paths: Optional[List[str]]) -> None:
        self.execute("UPDATE quiz_submissions SET image_paths = %s WHERE id = %s;",
                     (image_paths or None, submission_id))

    # --------------------------------------------------------------- comments
    def get_comment(self, comment_id: int) -> Optional[Dict[str, Any]]:
        return self.fetch_one("SELECT * FROM lesson_comments WHERE id = %s;", (comment_id,))

    def list_comments(self, lesson_id: int) -> List[Dict[str, Any]]:
        return self.fetch_all("""
            SELECT c.*, u.full_name AS author_name, u.role AS author_role
              FROM lesson_comments c
              LEFT JOIN users u ON u.id = c.user_id
             WHERE c.lesson_id = %s
             ORDER BY c.created_at, c.id;
        """, (lesson_id,))

    def create_comment(self, lesson_id: int, user_id: int, content: str,
                       parent_comment_id: Optional[int] = None) -> Dict[str, Any]:
        return self._first("""
            INSERT INTO lesson_comments (lesson_id, user_id, content, parent_comment_id)
            VALUES (%s, %s, %s, %s)
            RETURNING *;
        """, (lesson_id, user_id, content, parent_comment_id))

    # ---------------------------------------------------------- notifications
    def create_notifications(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not rows:
            return []
        values_sql = ", ".join(["(%s, %s, %s, %s, %s, %s::jsonb)"] * len(rows))
        params: List[Any] = []
        for r in rows:
            meta = r.get("metadata")
            params.extend([
                r["user_id"], r["type"], r["title"], r["message"], r.get("related_id"),
                json.dumps(meta, ensure_ascii=False) if meta is not None else None,
            ])
        return self.execute_returning(f"""
            INSERT INTO notifications (user_id, type, title, message, related_id, metadata)
            VALUES {values_sql}
            RETURNING *;
        """, tuple(params))

    def list_notifications(self, user_id: int, unread_only: bool = False) -> List[Dict[str, Any]]:
        if unread_only:
            return self.fetch_all("""
                SELECT * FROM notifications
                 WHERE user_id = %s AND read = FALSE
                 ORDER BY created_at DESC, id DESC;
            """, (user_id,))
        return self.fetch_all("""
            SELECT * FROM notifications
             WHERE user_id = %s
             ORDER BY created_at DESC, id DESC;
        """, (user_id,))

    def get_notification(self, notification_id: int) -> Optional[Dict[str, Any]]:
        return self.fetch_one("SELECT * FROM notifications WHERE id = %s;", (notification_id,))

    def mark_notification_read(self, notification_id: int, user_id: int) -> Optional[Dict[str, Any]]:
        # Already-read rows still match, so a repeat call returns the row unchanged.
        return self._first("""
            UPDATE notifications SET read = TRUE
             WHERE id = %s AND user_id = %s
            RETURNING *;
        """, (notification_id, user_id))

    def mark_all_notifications_read(self, user_id: int) -> int:
        rows = self.execute_returning("""
            UPDATE notifications SET read = TRUE
             WHERE user_id = %s AND read = FALSE
            RETURNING id;
        """, (user_id,))
        return len(rows)

    def unread_notification_count(self, user_id: int) -> int:
        row = self.fetch_one(
            "SELECT COUNT(*) AS n FROM notifications WHERE user_id = %s AND read = FALSE;", (user_id,))
        return int((row or {}).get("n") or 0)

    # --------------------------------------------------------------- settings
    def get_setting(self, key: str) -> Optional[Dict[str, Any]]:
        return self.fetch_one("SELECT * FROM platform_settings WHERE key = %s;", (key,))

    def list_settings(self) -> List[Dict[str, Any]]:
        return self.fetch_all("SELECT * FROM platform_settings ORDER BY key;")

    def upsert_setting(self, key: str, value: str) -> Dict[str, Any]:
        return self._first("""
            INSERT INTO platform_settings (key, value)
            VALUES (%s, %s)
            ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = now()
            RETURNING *;
        """, (key, value))

    def insert_setting_if_missing(self, key: str, value: str) -> Optional[Dict[str, Any]]:
        return self._first("""
            INSERT INTO platform_settings (key, value)
            VALUES (%s, %s)
            ON CONFLICT (key) DO NOTHING
            RETURNING *;
        """, (key, value))

    # ----------------------------------------------------------- reset tokens
    def create_reset_token(self, user_id: int, token: str, expires_at: datetime) -> Dict[str, Any]:
        return self._first("""
            INSERT INTO password_reset_tokens (user_id, token, expires_at)
            VALUES (%s, %s, %s)
            RETURNING *;
        """, (user_id, token, expires_at))

    def consume_reset_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Flip used=true atomically; a second redemption finds nothing."""
        return self._first("""
            UPDATE password_reset_tokens SET used = TRUE
             WHERE token = %s AND used = FALSE
            RETURNING *;
        """, (token,))

    def delete_expired_reset_tokens(self) -> int:
        rows = self.execute_returning(
            "DELETE FROM password_reset_tokens WHERE expires_at < now() OR used = TRUE RETURNING id;")
        return len(rows)

    # ---------------------------------------------------------------- reviews
    def get_review(self, review_id: int) -> Optional[Dict[str, Any]]:
        return self.fetch_one("SELECT * FROM course_reviews WHERE id = %s;", (review_id,))

    def list_reviews(self, course_id: int) -> List[Dict[str, Any]]:
        return self.fetch_all("""
            SELECT r.*, u.full_name AS student_name
              FROM course_reviews r
              LEFT JOIN users u ON u.id = r.student_id
             WHERE r.course_id = %s
             ORDER BY r.created_at DESC;
        """, (course_id,))

    def review_summary(self, course_id: int) -> Dict[str, Any]:
        row = self.fetch_one("""
            SELECT AVG(rating)::float AS average, COUNT(*) AS count
              FROM course_reviews WHERE course_id = %s;
        """, (course_id,)) or {}
        avg = row.get("average")
        return {"average": round(float(avg), 2) if avg is not None else None,
                "count": int(row.get("count") or 0)}

    def create_review(self, course_id: int, student_id: int, rating: int,
                      review: Optional[str]) -> Optional[Dict[str, Any]]:
        return self._first("""
            INSERT INTO course_reviews (course_id, student_id, rating, review)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (course_id, student_id) DO NOTHING
            RETURNING *;
        """, (course_id, student_id, rating, review))

    def update_review(self, review_id: int, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update("course_reviews", review_id, updates, _REVIEW_FIELDS, touch=True)

    def delete_review(self, review_id: int) -> None:
        self.execute("DELETE FROM course_reviews WHERE id = %s;", (review_id,))

    # ---------------------------------------------------------- announcements
    def get_announcement(self, announcement_id: int) -> Optional[Dict[str, Any]]:
        return self.fetch_one("SELECT * FROM course_announcements WHERE id = %s;", (announcement_id,))

    def list_announcements(self, course_id: int) -> List[Dict[str, Any]]:
        return self.fetch_all("""
            SELECT * FROM course_announcements
             WHERE course_id = %s
             ORDER BY created_at DESC;
        """, (course_id,))

    def create_announcement(self, course_id: int, teacher_id: int, title: str,
                            content: str) -> Dict[str, Any]:
        return self._first("""
            INSERT INTO course_announcements (course_id, teacher_id, title, content)
            VALUES (%s, %s, %s, %s)
            RETURNING *;
        """, (course_id, teacher_id, title, content))

    def update_announcement(self, announcement_id: int, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update("course_announcements", announcement_id, updates, _ANNOUNCEMENT_FIELDS)

    def delete_announcement(self, announcement_id: int) -> None:
        self.execute("DELETE FROM course_announcements WHERE id = %s;", (announcement_id,))

    # ---------------------------------------------------------------- reports
    def platform_stats(self) -> Dict[str, Any]:
        row = self.fetch_one("""
            SELECT
              (SELECT COUNT(*) FROM users WHERE role = 'teacher') AS teacher_count,
              (SELECT COUNT(*) FROM users WHERE role = 'student') AS student_count,
              (SELECT COUNT(*) FROM courses) AS course_count,
              (SELECT COUNT(*) FROM enrollments) AS enrollment_count,
              (SELECT COUNT(*) FROM enrollments WHERE purchase_status = 'pending') AS pending_count,
              (SELECT COUNT(*) FROM enrollments WHERE purchase_status = 'confirmed') AS confirmed_count,
              (SELECT COUNT(*) FROM enrollments WHERE purchase_status = 'free') AS free_count;
        """) or {}
        return {k: int(v or 0) for k, v in row.items()}

    def teacher_rollup(self) -> List[Dict[str, Any]]:
        return self.fetch_all("""
            SELECT u.id, u.email, u.full_name,
                   COUNT(DISTINCT c.id) AS course_count,
                   COUNT(DISTINCT e.student_id) AS student_count,
                   COUNT(e.id) FILTER (WHERE e.purchase_status = 'pending') AS pending_count,
                   COUNT(e.id) FILTER (WHERE e.purchase_status = 'confirmed') AS confirmed_count,
                   COUNT(e.id) FILTER (WHERE e.purchase_status = 'free') AS free_count
              FROM users u
              LEFT JOIN courses c ON c.teacher_id = u.id
              LEFT JOIN enrollments e ON e.course_id = c.id
             WHERE u.role = 'teacher'
             GROUP BY u.id, u.email, u.full_name
             ORDER BY u.full_name;
        """)

    def course_rollup(self) -> List[Dict[str, Any]]:
        return self.fetch_all("""
            SELECT c.id, c.title, c.teacher_id, u.full_name AS teacher_name, c.is_free, c.price,
                   (SELECT COUNT(*) FROM course_lessons l WHERE l.course_id = c.id) AS lesson_count,
                   (SELECT COUNT(*) FROM enrollments e WHERE e.course_id = c.id) AS enrollment_count,
                   (SELECT COUNT(*) FROM enrollments e
                     WHERE e.course_id = c.id AND e.purchase_status = 'pending') AS pending_count,
                   (SELECT COUNT(*) FROM enrollments e
                     WHERE e.course_id = c.id AND e.purchase_status IN ('confirmed', 'free')) AS active_count,
                   (SELECT AVG(r.rating)::float FROM course_reviews r WHERE r.course_id = c.id) AS average_rating,
                   (SELECT COUNT(*) FROM quiz_submissions s
                      JOIN quizzes q ON q.id = s.quiz_id
                      JOIN course_lessons l ON l.id = q.lesson_id
                     WHERE l.course_id = c.id) AS submission_count,
                   (SELECT COUNT(*) FROM quiz_submissions s
                      JOIN quizzes q ON q.id = s.quiz_id
                      JOIN course_lessons l ON l.id = q.lesson_id
                     WHERE l.course_id = c.id AND s.graded_at IS NULL) AS ungraded_count
              FROM courses c
              JOIN users u ON u.id = c.teacher_id
             ORDER BY c.created_at DESC;
        """)

    def student_enrollment_counts(self) -> List[Dict[str, Any]]:
        return self.fetch_all("""
            SELECT u.id, u.email, u.full_name, u.role, u.whatsapp_number, u.created_at,
                   COUNT(e.id) AS enrollment_count
              FROM users u
              LEFT JOIN enrollments e ON e.student_id = u.id
             WHERE u.role = 'student'
             GROUP BY u.id
             ORDER BY u.created_at DESC;
        """)

    def teacher_course_counts(self) -> List[Dict[str, Any]]:
        return self.fetch_all("""
            SELECT u.id, u.email, u.full_name, u.role, u.whatsapp_number, u.created_at,
                   COUNT(c.id) AS course_count
              FROM users u
              LEFT JOIN courses c ON c.teacher_id = u.id
             WHERE u.role = 'teacher'
             GROUP BY u.id
             ORDER BY u.created_at DESC;
        """)
