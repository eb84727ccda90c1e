# slugs.py
import re
import unicodedata
from typing import Optional

_SEPARATORS = re.compile(r"[\s_]+")
_ARABIC_DIACRITICS = re.compile(r"[\u064B-\u065F\u0670]")
# Arabic blocks (base, supplement, extended-A, presentation forms A/B), Latin, digits, hyphen
_DISALLOWED = re.compile(
    r"[^\u0600-\u06FF\u0750-\u077F\u08A0-\u08FF\uFB50-\uFDFF\uFE70-\uFEFFa-z0-9\-]"
)
_HYPHENS = re.compile(r"-+")


def generate_slug(text: Optional[str], course_id: Optional[int] = None) -> str:
    """
    Human-readable slug that keeps Arabic letters as-is:
      "مقدمة في البرمجة" -> "مقدمة-في-البرمجة", "Intro_to  Python" -> "intro-to-python".
    Falls back to course-{id} (or "course") when nothing survives.
    """
    s = unicodedata.normalize("NFC", text or "").strip().lower()
    s = _SEPARATORS.sub("-", s)
    s = _ARABIC_DIACRITICS.sub("", s)
    s = _DISALLOWED.sub("", s)
    s = _HYPHENS.sub("-", s).strip("-")
    if s:
        return s
    return f"course-{course_id}" if course_id else "course"


def course_path(course_id: int, title: str, slug: Optional[str] = None) -> str:
    return f"/courses/{course_id}/{slug or generate_slug(title, course_id)}"
