# auth.py
import re
import secrets
import time
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Callable, Dict, Optional

from authlib.jose import jwt
from authlib.jose.errors import JoseError
from flask import Blueprint, current_app, g, jsonify, request
from werkzeug.security import check_password_hash, generate_password_hash

from errors import Conflict, Forbidden, NotFound, Unauthorized, ValidationError
from policy import ROLES, AccessPolicy

SESSION_TTL_DAYS = 7
RESET_TOKEN_TTL = timedelta(hours=1)
PASSWORD_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789!@#$%"
GENERATED_PASSWORD_LENGTH = 12
MIN_PASSWORD_LENGTH = 6
MIN_WHATSAPP_DIGITS = 10
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
RESET_NOTICE = "If an account exists with this email, you will receive reset instructions"


# =========================
# Session credentials
# =========================
def issue_token(user: Dict[str, Any], secret: str, ttl_days: int = SESSION_TTL_DAYS,
                now: Optional[int] = None) -> str:
    iat = int(now if now is not None else time.time())
    claims = {
        "id": int(user["id"]),
        "email": user["email"],
        "role": user["role"],
        "fullName": user["full_name"],
        "iat": iat,
        "exp": iat + ttl_days * 86400,
    }
    return jwt.encode({"alg": "HS256"}, claims, secret).decode("ascii")


def verify_token(token: str, secret: str) -> Optional[Dict[str, Any]]:
    """Claims of a valid, unexpired token signed with `secret`; None otherwise."""
    if not token:
        return None
    try:
        claims = jwt.decode(token, secret)
        claims.validate(now=int(time.time()))
    except (JoseError, ValueError) as e:
        print(f"[auth] token rejected: {e}")
        return None
    if claims.get("role") not in ROLES or claims.get("id") is None:
        return None
    return dict(claims)


def generate_password(length: int = GENERATED_PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def _bearer() -> Optional[str]:
    header = request.headers.get("Authorization") or ""
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def _platform() -> Dict[str, Any]:
    return current_app.extensions["learning_platform"]


def _attach_session(claims: Optional[Dict[str, Any]]) -> None:
    if claims is None:
        g.session_user = None
        g.user_id = None
        g.role = None
        g.policy = AccessPolicy.anonymous()
        return
    g.session_user = claims
    g.user_id = int(claims["id"])
    g.role = claims["role"]
    g.policy = AccessPolicy.for_session(claims, _platform()["store"])


def require_auth(*roles: str) -> Callable:
    """Verify the bearer credential, enforce the role allow-list, attach g.policy."""
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            token = _bearer()
            if not token:
                raise Unauthorized("Authentication required")
            claims = verify_token(token, current_app.config["SECRET_KEY"])
            if claims is None:
                raise Unauthorized("Invalid or expired token")
            if roles and claims["role"] not in roles:
                raise Forbidden("Insufficient permissions")
            _attach_session(claims)
            return fn(*args, **kwargs)
        return wrapper
    return decorator


def optional_auth(fn: Callable) -> Callable:
    """Public endpoints: a valid credential upgrades the caller, anything else is anonymous."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        token = _bearer()
        claims = verify_token(token, current_app.config["SECRET_KEY"]) if token else None
        _attach_session(claims)
        return fn(*args, **kwargs)
    return wrapper


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": user["id"],
        "email": user["email"],
        "fullName": user["full_name"],
        "role": user["role"],
        "whatsappNumber": user.get("whatsapp_number"),
    }


def _string(value: Any, field: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be text")
    return value


def _clean_email(value: Any) -> str:
    email = (value or "").strip().lower() if isinstance(value, str) else ""
    if not email or not EMAIL_RE.match(email):
        raise ValidationError("A valid email is required")
    return email


def _clean_whatsapp(value: Any, required: bool) -> Optional[str]:
    raw = (value or "").strip() if isinstance(value, str) else ""
    if not raw:
        if required:
            raise ValidationError("WhatsApp number is required", code="auth.phone_required")
        return None
    if len(re.sub(r"\D", "", raw)) < MIN_WHATSAPP_DIGITS:
        raise ValidationError("WhatsApp number must be at least 10 digits", code="auth.phone_min_length")
    return raw


def _check_password_rules(password: Any) -> str:
    if not isinstance(password, str) or not password:
        raise ValidationError("Password is required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError("Password must be at least 6 characters")
    return password


# =========================
# Blueprint factory
# =========================
def create_auth_blueprint(base_path: str, deps: Dict[str, Any], name: str = "auth") -> Blueprint:
    """
    Registration, login, teacher provisioning and password reset.
    Required deps: store, mailer
    Optional deps: REQUIRE_WHATSAPP (bool, default False)
    """
    bp = Blueprint(name, __name__, url_prefix=f"{base_path}/api/auth")
    store = deps["store"]
    mailer = deps["mailer"]
    require_whatsapp = bool(deps.get("REQUIRE_WHATSAPP", False))

    def _session_response(user: Dict[str, Any]):
        token = issue_token(user, current_app.config["SECRET_KEY"])
        return jsonify({"ok": True, "token": token, "user": public_user(user)})

    @bp.post("/register")
    def register():
        data = request.get_json(silent=True) or {}
        email = _clean_email(data.get("email"))
        password = _check_password_rules(data.get("password"))
        full_name = _string(data.get("fullName"), "fullName").strip()
        if not full_name:
            raise ValidationError("Full name is required")
        whatsapp = _clean_whatsapp(data.get("whatsappNumber"), require_whatsapp)

        # Self-registration always yields a student, whatever the body says.
        user = store.create_user(email, generate_password_hash(password), full_name,
                                 "student", whatsapp)
        if user is None:
            raise Conflict("Email already registered")
        print(f"[auth] registered student {user['id']}")
        return _session_response(user)

    @bp.post("/login")
    def login():
        data = request.get_json(silent=True) or {}
        identifier = _string(data.get("email"), "email").strip()
        password = _string(data.get("password"), "password")
        if not identifier or not password:
            raise ValidationError("Email and password are required")
        user = store.get_user_by_email(identifier)
        # Same error for unknown account and wrong password.
        if not user or not check_password_hash(user["password"], password):
            raise Unauthorized("Invalid email or password")
        return _session_response(user)

    @bp.get("/me")
    @require_auth()
    def me():
        user = store.get_user(g.user_id)
        if not user:
            raise NotFound("User not found")
        return jsonify({"ok": True, "user": public_user(user)})

    @bp.post("/create-teacher")
    @require_auth("superadmin")
    def create_teacher():
        data = request.get_json(silent=True) or {}
        email = _clean_email(data.get("email"))
        full_name = _string(data.get("fullName"), "fullName").strip()
        if not full_name:
            raise ValidationError("Email and full name are required")
        whatsapp = _clean_whatsapp(data.get("whatsappNumber"), False)

        password = generate_password()
        user = store.create_user(email, generate_password_hash(password), full_name,
                                 "teacher", whatsapp)
        if user is None:
            raise Conflict("Email already registered")
        print(f"[auth] superadmin {g.user_id} created teacher {user['id']}")
        # Shown once; only the hash is stored.
        return jsonify({"ok": True, "teacher": public_user(user), "password": password})

    @bp.post("/request-reset")
    def request_reset():
        data = request.get_json(silent=True) or {}
        email = _string(data.get("email"), "email").strip()
        if not email:
            raise ValidationError("Email is required")
        user = store.get_user_by_email(email)
        if user:
            token = secrets.token_hex(32)
            expires_at = datetime.now(timezone.utc) + RESET_TOKEN_TTL
            store.create_reset_token(user["id"], token, expires_at)
            try:
                mailer.send_password_reset(user["email"], token, user["full_name"])
            except Exception as e:
                print(f"[auth] reset mail for user {user['id']} failed: {e}")
        return jsonify({"ok": True, "message": RESET_NOTICE})

    @bp.post("/reset-password")
    def reset_password():
        data = request.get_json(silent=True) or {}
        token = _string(data.get("token"), "token").strip()
        password = data.get("password")
        if not token or not password:
            raise ValidationError("Token and password are required")
        password = _check_password_rules(password)

        row = store.consume_reset_token(token)
        if not row:
            raise ValidationError("Invalid or expired reset token")
        expires_at = row["expires_at"]
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if datetime.now(timezone.utc) > expires_at:
            raise ValidationError("Reset token has expired")

        store.update_user_password(row["user_id"], generate_password_hash(password))
        return jsonify({"ok": True, "message": "Password reset successfully"})

    return bp
