# policy.py
# Capabilities of the caller, computed once per request from the verified session.
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional

ROLES = ("student", "teacher", "superadmin")
ACCESS_STATUSES = frozenset({"confirmed", "free"})
VIDEO_FIELD = "video_url"


@dataclass(frozen=True)
class AccessPolicy:
    role: Optional[str] = None
    user_id: Optional[int] = None
    owned_course_ids: FrozenSet[int] = field(default_factory=frozenset)
    # course_id -> purchase_status, students only
    enrollments: Mapping[int, str] = field(default_factory=dict)

    @classmethod
    def anonymous(cls) -> "AccessPolicy":
        return cls()

    @classmethod
    def for_session(cls, session: Dict[str, Any], store) -> "AccessPolicy":
        role = session.get("role")
        user_id = int(session["id"])
        owned: FrozenSet[int] = frozenset()
        enrolled: Dict[int, str] = {}
        if role == "teacher":
            owned = frozenset(int(i) for i in store.course_ids_by_teacher(user_id))
        elif role == "student":
            for e in store.list_enrollments_for_student(user_id):
                enrolled[int(e["course_id"])] = e["purchase_status"]
        return cls(role=role, user_id=user_id, owned_course_ids=owned, enrollments=enrolled)

    # ---- role checks ----
    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_superadmin(self) -> bool:
        return self.role == "superadmin"

    @property
    def is_teacher(self) -> bool:
        return self.role == "teacher"

    @property
    def is_student(self) -> bool:
        return self.role == "student"

    # ---- course capabilities ----
    def owns(self, course: Optional[Dict[str, Any]]) -> bool:
        if not course or not self.is_teacher:
            return False
        return int(course["teacher_id"]) == self.user_id

    def enrollment_status(self, course_id: int) -> Optional[str]:
        return self.enrollments.get(int(course_id))

    def is_enrolled(self, course_id: int) -> bool:
        return int(course_id) in self.enrollments

    def can_view_content(self, course: Optional[Dict[str, Any]]) -> bool:
        """Grant predicate: superadmin, the owning teacher, or a confirmed/free student."""
        if not course or not self.authenticated:
            return False
        if self.is_superadmin:
            return True
        if self.is_teacher:
            return self.owns(course)
        if self.is_student:
            return self.enrollment_status(course["id"]) in ACCESS_STATUSES
        return False

    def can_manage(self, course: Optional[Dict[str, Any]]) -> bool:
        return self.is_superadmin or self.owns(course)


def lesson_view(lesson: Dict[str, Any], granted: bool) -> Dict[str, Any]:
    """Copy of a lesson row; without a grant the video key is absent, not null."""
    out = dict(lesson)
    if not granted:
        out.pop(VIDEO_FIELD, None)
    return out


def lesson_views(lessons: Iterable[Dict[str, Any]], granted: bool) -> List[Dict[str, Any]]:
    return [lesson_view(l, granted) for l in lessons]
