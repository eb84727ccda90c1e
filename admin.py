# admin.py: superadmin console backend (accounts, enrollment confirmation, reports, settings)
from typing import Any, Dict, Iterable, Optional, Tuple
from urllib.parse import quote

from flask import Blueprint, g, jsonify, request
from werkzeug.security import generate_password_hash

from auth import require_auth
from errors import NotFound, ValidationError, text_param
from notifications import EnrollmentConfirmed
from slugs import generate_slug

WHATSAPP_SETTING = "whatsapp_number"
STATUS_TARGETS = ("confirmed", "pending")

DEFAULT_CATEGORIES: Tuple[Tuple[str, str], ...] = (
    ("Programming", "Software development, coding, and programming languages"),
    ("Mathematics", "Algebra, calculus, geometry, and mathematical concepts"),
    ("Science", "Physics, chemistry, biology, and scientific principles"),
    ("Languages", "Foreign languages and language learning"),
    ("Business", "Business management, marketing, and entrepreneurship"),
    ("Design", "Graphic design, UI/UX, and creative arts"),
)


# =============================================================================
# Seeding / maintenance (used by the CLI in main.py)
# =============================================================================
def seed_defaults(store, superadmin_email: str, superadmin_password: str,
                  whatsapp_number: str,
                  categories: Iterable[Tuple[str, str]] = DEFAULT_CATEGORIES) -> Dict[str, int]:
    """Idempotent: existing categories, accounts and settings are left untouched."""
    created = {"categories": 0, "superadmin": 0, "settings": 0}
    for name, description in categories:
        if store.create_category(name, description) is not None:
            created["categories"] += 1
            print(f"[seed] category {name}")
    if superadmin_email and superadmin_password:
        row = store.create_user(superadmin_email.strip().lower(),
                                generate_password_hash(superadmin_password),
                                "Super Admin", "superadmin")
        if row is not None:
            created["superadmin"] = 1
            print(f"[seed] superadmin {row['email']} created, change its password")
    if whatsapp_number and store.insert_setting_if_missing(WHATSAPP_SETTING, whatsapp_number) is not None:
        created["settings"] += 1
        print("[seed] default WhatsApp number set")
    return created


def backfill_slugs(store) -> int:
    n = 0
    for row in store.courses_missing_slug():
        slug = generate_slug(row["title"], row["id"])
        store.update_course(row["id"], {"slug": slug})
        print(f"[seed] course {row['id']} -> {slug}")
        n += 1
    return n


def whatsapp_digits(number: Optional[str]) -> str:
    return "".join(ch for ch in (number or "") if ch.isdigit())


def purchase_link(number: str, course_title: str, price: Any) -> str:
    text = (f'Hello! I\'m interested in purchasing the course "{course_title}" for ${price}. '
            f"Please provide payment details.")
    return f"https://wa.me/{whatsapp_digits(number)}?text={quote(text, safe='')}"


# =============================================================================
# Blueprint factory
# =============================================================================
def create_admin_blueprint(base_path: str, deps: Dict[str, Any], name: str = "admin") -> Blueprint:
    """
    Routes under {base_path}/api/admin plus the public WhatsApp helpers.
    Required deps: store, notifier
    Optional deps: DEFAULT_WHATSAPP_NUMBER
    """
    bp = Blueprint(name, __name__, url_prefix=f"{base_path}/api")
    store = deps["store"]
    notifier = deps["notifier"]
    default_whatsapp = deps.get("DEFAULT_WHATSAPP_NUMBER") or ""

    def _whatsapp_number() -> str:
        row = store.get_setting(WHATSAPP_SETTING)
        return (row or {}).get("value") or default_whatsapp

    def _delete_with_role(user_id: int, role: str, label: str):
        user = store.get_user(user_id)
        if not user or user["role"] != role:
            raise NotFound(f"{label} not found")
        store.delete_user(user_id)
        print(f"[admin] superadmin {g.user_id} deleted {role} {user_id}")
        return jsonify({"ok": True, "message": f"{label} deleted successfully"})

    # ---------------------------------------------------------------- accounts
    @bp.get("/admin/teachers")
    @require_auth("superadmin")
    def teachers():
        rows = [{k: v for k, v in r.items() if k != "password"} for r in store.teacher_course_counts()]
        return jsonify({"ok": True, "teachers": rows})

    @bp.get("/admin/students")
    @require_auth("superadmin")
    def students():
        rows = [{k: v for k, v in r.items() if k != "password"} for r in store.student_enrollment_counts()]
        return jsonify({"ok": True, "students": rows})

    @bp.delete("/admin/teachers/<int:user_id>")
    @require_auth("superadmin")
    def delete_teacher(user_id: int):
        return _delete_with_role(user_id, "teacher", "Teacher")

    @bp.delete("/admin/students/<int:user_id>")
    @require_auth("superadmin")
    def delete_student(user_id: int):
        return _delete_with_role(user_id, "student", "Student")

    # -------------------------------------------------------------- enrollments
    @bp.put("/admin/enrollments/<int:enrollment_id>/status")
    @require_auth("superadmin")
    def set_enrollment_status(enrollment_id: int):
        data = request.get_json(silent=True) or {}
        status = data.get("status")
        if status not in STATUS_TARGETS:
            raise ValidationError("status must be one of: confirmed, pending")
        enrollment = store.get_enrollment_by_id(enrollment_id)
        if not enrollment:
            raise NotFound("Enrollment not found")
        if enrollment["purchase_status"] == "free":
            raise ValidationError("Free enrollments have no payment to confirm")

        previous = enrollment["purchase_status"]
        updated = store.update_enrollment_status(enrollment_id, status)
        print(f"[admin] enrollment {enrollment_id}: {previous} -> {status}")

        if status == "confirmed" and previous != "confirmed":
            course = store.get_course(enrollment["course_id"]) or {}
            notifier.notify(
                [enrollment["student_id"]],
                EnrollmentConfirmed(course_id=enrollment["course_id"], enrollment_id=enrollment_id),
                "enrollment_confirmed",
                course=course.get("title", ""),
            )
        return jsonify({"ok": True, "enrollment": updated})

    # ------------------------------------------------------------------ reports
    @bp.get("/admin/stats")
    @require_auth("superadmin")
    def stats():
        return jsonify({"ok": True, "stats": store.platform_stats()})

    @bp.get("/admin/reports/teachers")
    @require_auth("superadmin")
    def teacher_report():
        return jsonify({"ok": True, "teachers": store.teacher_rollup()})

    @bp.get("/admin/reports/courses")
    @require_auth("superadmin")
    def course_report():
        return jsonify({"ok": True, "courses": store.course_rollup()})

    # ----------------------------------------------------------------- settings
    @bp.get("/admin/settings")
    @require_auth("superadmin")
    def settings():
        return jsonify({"ok": True, "settings": store.list_settings()})

    @bp.put("/admin/settings/<key>")
    @require_auth("superadmin")
    def put_setting(key: str):
        data = request.get_json(silent=True) or {}
        value = text_param(data.get("value"), "value")
        if key == WHATSAPP_SETTING and len(whatsapp_digits(value)) < 10:
            raise ValidationError("WhatsApp number must be at least 10 digits")
        return jsonify({"ok": True, "setting": store.upsert_setting(key, value)})

    # ------------------------------------------------------------------- public
    @bp.get("/whatsapp-number")
    def whatsapp_number():
        return jsonify({"ok": True, "whatsappNumber": _whatsapp_number()})

    @bp.get("/courses/<int:course_id>/whatsapp-link")
    def whatsapp_link(course_id: int):
        course = store.get_course(course_id)
        if not course:
            raise NotFound("Course not found")
        number = _whatsapp_number()
        if not whatsapp_digits(number):
            raise NotFound("No WhatsApp number configured")
        return jsonify({"ok": True, "url": purchase_link(number, course["title"], course.get("price"))})

    return bp
