# errors.py
import html
from typing import Any, Dict, Optional

import bleach
from flask import jsonify
from werkzeug.exceptions import HTTPException


# =========================
# Error taxonomy
# =========================
class ApiError(Exception):
    status = 500
    code = "internal"
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if code:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.message, "code": self.code}


class Unauthorized(ApiError):
    status = 401
    code = "unauthorized"
    default_message = "Authentication required"


class Forbidden(ApiError):
    status = 403
    code = "forbidden"
    default_message = "Insufficient permissions"


class NotFound(ApiError):
    status = 404
    code = "not_found"
    default_message = "Not found"


class Conflict(ApiError):
    status = 409
    code = "conflict"
    default_message = "Already exists"


class ValidationError(ApiError):
    status = 400
    code = "validation"
    default_message = "Invalid request"


class InternalError(ApiError):
    status = 500
    code = "internal"
    default_message = "Something went wrong"


# =========================
# Flask wiring
# =========================
def register_error_handlers(app) -> None:
    """Map every failure to a JSON body. Internal details are logged, never echoed."""

    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):
        if e.status >= 500:
            print(f"[api] {e.code}: {e.message}")
            return jsonify(InternalError().to_dict()), e.status
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        return jsonify({"ok": False, "error": e.description, "code": e.name.lower().replace(" ", "_")}), e.code

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):
        print(f"[api] unhandled {type(e).__name__}: {e}")
        return jsonify(InternalError().to_dict()), 500


def int_param(value: Any, field: str, required: bool = True) -> Optional[int]:
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a whole number")
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"{field} must be a whole number") from None


def text_param(value: Any, field: str, required: bool = True,
               max_len: Optional[int] = None) -> Optional[str]:
    """Free text with markup stripped, returned as plain text (entities decoded)."""
    if value is None:
        value = ""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be text")
    cleaned = html.unescape(bleach.clean(value, tags=[], strip=True)).strip()
    if not cleaned:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if max_len is not None and len(cleaned) > max_len:
        raise ValidationError(f"{field} must be at most {max_len} characters")
    return cleaned
