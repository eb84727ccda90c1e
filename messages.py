# messages.py
# Notification texts, Arabic and English. Keys match notification payload kinds.
from typing import Any, Dict, Tuple

MESSAGES: Dict[str, Dict[str, Tuple[str, str]]] = {
    "ar": {
        "enrollment_free": (
            "طالب جديد مسجل",
            '{student} سجل في دورتك "{course}"',
        ),
        "enrollment_request": (
            "طلب تسجيل جديد",
            '{student} طلب التسجيل في "{course}". يرجى التحقق من واتساب لتأكيد الدفع.',
        ),
        "enrollment_admin_free": (
            "تنبيه تسجيل جديد",
            '{student} سجل في دورة "{course}" مع المعلم {teacher}. تم منح الطالب الوصول مباشرة لأنها دورة مجانية.',
        ),
        "enrollment_admin_pending": (
            "تنبيه تسجيل جديد",
            '{student} سجل في دورة "{course}" مع المعلم {teacher}. التسجيل بانتظار تأكيد الدفع.',
        ),
        "enrollment_confirmed": (
            "تم تأكيد التسجيل",
            'تم تأكيد تسجيلك في "{course}". يمكنك الآن الوصول إلى جميع الدروس.',
        ),
        "quiz_new": (
            "اختبار جديد متاح",
            'تم إضافة اختبار جديد "{quiz}" إلى {course}',
        ),
        "quiz_submission": (
            "إرسال اختبار جديد",
            '{student} أرسل "{quiz}"',
        ),
        "quiz_graded": (
            "تم تقييم الاختبار",
            'تم تقييم اختبارك "{quiz}". الدرجة: {score}%',
        ),
        "question_new": (
            "سؤال جديد",
            '{student} طرح سؤالاً على "{lesson}"',
        ),
        "question_reply": (
            "رد المعلم",
            '{teacher} رد على سؤالك في "{lesson}"',
        ),
        "announcement_new": (
            "إعلان جديد: {announcement}",
            "لديك إعلان جديد في دورة {course}",
        ),
    },
    "en": {
        "enrollment_free": (
            "New student enrolled",
            '{student} enrolled in your course "{course}"',
        ),
        "enrollment_request": (
            "New enrollment request",
            '{student} requested to enroll in "{course}". Check WhatsApp to confirm the payment.',
        ),
        "enrollment_admin_free": (
            "New enrollment alert",
            '{student} enrolled in "{course}" with teacher {teacher}. Access was granted immediately because the course is free.',
        ),
        "enrollment_admin_pending": (
            "New enrollment alert",
            '{student} enrolled in "{course}" with teacher {teacher}. The enrollment is waiting for payment confirmation.',
        ),
        "enrollment_confirmed": (
            "Enrollment confirmed",
            'Your enrollment in "{course}" has been confirmed. You can now access all lessons.',
        ),
        "quiz_new": (
            "New quiz available",
            'A new quiz "{quiz}" was added to {course}',
        ),
        "quiz_submission": (
            "New quiz submission",
            '{student} submitted "{quiz}"',
        ),
        "quiz_graded": (
            "Quiz graded",
            'Your quiz "{quiz}" was graded. Score: {score}%',
        ),
        "question_new": (
            "New question",
            '{student} asked a question on "{lesson}"',
        ),
        "question_reply": (
            "Teacher replied",
            '{teacher} replied to your question on "{lesson}"',
        ),
        "announcement_new": (
            "New announcement: {announcement}",
            "You have a new announcement in {course}",
        ),
    },
}

DEFAULT_LOCALE = "ar"


def render(key: str, locale: str = DEFAULT_LOCALE, **values: Any) -> Tuple[str, str]:
    table = MESSAGES.get(locale) or MESSAGES[DEFAULT_LOCALE]
    title_tpl, message_tpl = table[key]
    return title_tpl.format(**values), message_tpl.format(**values)
