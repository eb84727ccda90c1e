# main.py: Abraj learning platform API, BASE_PATH-aware (psycopg3 + pooling)
# Blueprints live in their own modules; this file owns config, the DB pool and the CLI.

import os
from contextlib import contextmanager
from urllib.parse import urlparse, parse_qs, unquote
from typing import Optional

import click
from flask import Flask, jsonify, send_from_directory

# Database (psycopg 3)
from psycopg_pool import ConnectionPool
from psycopg.rows import dict_row

from admin import backfill_slugs, seed_defaults
from api import register_api
from blobs import LocalBlobStorage
from cleanup import DEFAULT_RETENTION_DAYS, purge_reset_tokens, start_daily_sweep, sweep_quiz_images
from mailer import ResetMailer
from schema import ensure_schema
from store import Store

# =============================================================================
# BASE_PATH & Flask app
# =============================================================================
BASE_PATH = (os.getenv("BASE_PATH", "") or "").rstrip("/")

app = Flask(__name__)
app.url_map.strict_slashes = False
app.config.update(
    SECRET_KEY=os.getenv("SECRET_KEY", "dev-secret"),
    MAX_CONTENT_LENGTH=32 * 1024 * 1024,
)
if app.config["SECRET_KEY"] == "dev-secret":
    print("[Auth] SECRET_KEY not set; using the development secret. Do not deploy like this.", flush=True)

# =============================================================================
# Config
# =============================================================================
INSTANCE_CONNECTION_NAME = os.getenv("INSTANCE_CONNECTION_NAME")
DB_USER = os.getenv("DB_USER")
DB_PASS = os.getenv("DB_PASS") or os.getenv("DB_PASSWORD")  # support either name
DB_NAME = os.getenv("DB_NAME")

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_URL_LOCAL = os.getenv("DATABASE_URL_LOCAL")
DB_HOST_OVERRIDE = os.getenv("DB_HOST")
DB_PORT_OVERRIDE = os.getenv("DB_PORT")
FORCE_TCP = os.getenv("FORCE_TCP", "").lower() in {"1", "true", "yes"}

UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads"))
UPLOAD_URL_PREFIX = (os.getenv("UPLOAD_URL_PREFIX") or f"{BASE_PATH}/uploads").rstrip("/")
NOTIFICATION_LOCALE = (os.getenv("NOTIFICATION_LOCALE", "ar") or "ar").lower()

RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
RESEND_FROM_EMAIL = os.getenv("RESEND_FROM_EMAIL", "onboarding@resend.dev")
APP_URL = os.getenv("APP_URL", "http://localhost:5000")

ENABLE_CLEANUP_SCHEDULER = os.getenv("ENABLE_CLEANUP_SCHEDULER", "").lower() in {"1", "true", "yes"}
QUIZ_IMAGE_RETENTION_DAYS = int(os.getenv("QUIZ_IMAGE_RETENTION_DAYS", str(DEFAULT_RETENTION_DAYS)))

SUPERADMIN_EMAIL = os.getenv("SUPERADMIN_EMAIL", "admin@eduplatform.com")
SUPERADMIN_PASSWORD = os.getenv("SUPERADMIN_PASSWORD", "")
DEFAULT_WHATSAPP_NUMBER = os.getenv("DEFAULT_WHATSAPP_NUMBER", "9647801234567")
REQUIRE_WHATSAPP = os.getenv("REQUIRE_WHATSAPP", "").lower() in {"1", "true", "yes"}


def _on_managed_runtime() -> bool:
    # GAE or Cloud Run, etc.
    return os.getenv("GAE_ENV", "").startswith("standard") or bool(os.getenv("K_SERVICE"))

def _log_choice(kwargs: dict, origin: str):
    if "host" in kwargs and isinstance(kwargs["host"], str) and kwargs["host"].startswith("/cloudsql/"):
        print(f"[DB] {origin}: Unix socket -> {kwargs['host']}")
    else:
        host = kwargs.get("host", "localhost")
        port = kwargs.get("port", 5432)
        print(f"[DB] {origin}: TCP -> {host}:{port}")

def _parse_database_url(url: str) -> dict:
    if not url:
        raise ValueError("Empty DATABASE_URL")
    # Normalize SA-style scheme to plain postgres for psycopg usage
    for pref in ("postgresql+psycopg://", "postgres+psycopg://",
                 "postgresql+psycopg2://", "postgres+psycopg2://"):
        if url.startswith(pref):
            url = "postgresql://" + url.split("://", 1)[1]
            break

    p = urlparse(url)
    if p.scheme not in ("postgresql", "postgres"):
        raise ValueError(f"Unsupported scheme '{p.scheme}'")
    qs = parse_qs(p.query or "", keep_blank_values=True)
    host = qs["host"][0] if qs.get("host") else p.hostname
    dbname = (p.path or "").lstrip("/") or (qs["dbname"][0] if qs.get("dbname") else "")
    if not dbname:
        raise ValueError("DATABASE_URL missing dbname")
    kwargs = {
        "dbname": dbname,
        "user": unquote(p.username or ""),
        "password": unquote(p.password or ""),
        "connect_timeout": 10,
        "options": "-c search_path=public",
    }
    if host:
        kwargs["host"] = host
    if p.port and not (isinstance(host, str) and host.startswith("/")):
        kwargs["port"] = p.port
    if qs.get("sslmode"):
        kwargs["sslmode"] = qs["sslmode"][0]
    return kwargs

def _tcp_kwargs() -> dict:
    if not all([DB_NAME, DB_USER, DB_PASS]):
        raise RuntimeError("DB_NAME, DB_USER, DB_PASS must be set for TCP mode.")
    return {
        "host": DB_HOST_OVERRIDE or "127.0.0.1",
        "port": int(DB_PORT_OVERRIDE or "5432"),
        "dbname": DB_NAME,
        "user": DB_USER,
        "password": DB_PASS,
        "sslmode": "disable",
        "connect_timeout": 10,
        "options": "-c search_path=public",
    }

def _socket_kwargs() -> dict:
    if not all([INSTANCE_CONNECTION_NAME, DB_NAME, DB_USER, DB_PASS]):
        raise RuntimeError("INSTANCE_CONNECTION_NAME, DB_NAME, DB_USER, DB_PASS must be set for socket mode.")
    return {
        "host": f"/cloudsql/{INSTANCE_CONNECTION_NAME}",
        "dbname": DB_NAME,
        "user": DB_USER,
        "password": DB_PASS,
        "connect_timeout": 10,
        "options": "-c search_path=public",
    }

def _connection_kwargs() -> dict:
    managed = _on_managed_runtime()

    if FORCE_TCP and not managed:
        kwargs = _tcp_kwargs(); _log_choice(kwargs, "FORCE_TCP"); return kwargs

    for origin, url in (("DATABASE_URL_LOCAL", None if managed else DATABASE_URL_LOCAL),
                        ("DATABASE_URL", DATABASE_URL)):
        if not url:
            continue
        try:
            kwargs = _parse_database_url(url)
        except ValueError as e:
            print(f"[DB] Ignoring {origin}: {e}")
            continue
        host = kwargs.get("host")
        if not managed and isinstance(host, str) and host.startswith("/cloudsql/"):
            print(f"[DB] {origin} targets /cloudsql/ but we are local; ignoring.")
            continue
        _log_choice(kwargs, f"Using {origin} (parsed)")
        return kwargs

    if managed:
        kwargs = _socket_kwargs(); _log_choice(kwargs, "Managed runtime"); return kwargs

    kwargs = _tcp_kwargs(); _log_choice(kwargs, "Local dev"); return kwargs

# =============================================================================
# psycopg3 Connection Pool + helpers
# =============================================================================
_pg_pool: Optional[ConnectionPool] = None

def _to_conninfo(kwargs: dict) -> str:
    parts = []
    for k, v in kwargs.items():
        if v is None:
            continue
        s = str(v)
        if any(ch.isspace() for ch in s) or "'" in s or '"' in s:
            s = "'" + s.replace("'", r"\'") + "'"
        parts.append(f"{k}={s}")
    return " ".join(parts)

def init_pool():
    global _pg_pool
    if _pg_pool is not None:
        return
    _pg_pool = ConnectionPool(conninfo=_to_conninfo(_connection_kwargs()), min_size=1, max_size=10)

@contextmanager
def get_conn():
    if _pg_pool is None:
        init_pool()
    with _pg_pool.connection() as conn:
        yield conn

def fetch_all(q, params=None):
    with get_conn() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(q, params or ())
            return cur.fetchall()

def fetch_one(q, params=None):
    rows = fetch_all(q, params)
    return rows[0] if rows else None

def execute(q, params=None):
    with get_conn() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(q, params or ())
        conn.commit()

def execute_returning(q, params=None):
    with get_conn() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(q, params or ())
            rows = cur.fetchall()
        conn.commit()
        return rows

# =============================================================================
# Collaborators + API
# =============================================================================
store = Store(fetch_one, fetch_all, execute, execute_returning)
blobs = LocalBlobStorage(UPLOAD_DIR, UPLOAD_URL_PREFIX)
mailer = ResetMailer(RESEND_API_KEY, RESEND_FROM_EMAIL, APP_URL)

register_api(app, BASE_PATH, {
    "store": store,
    "blobs": blobs,
    "mailer": mailer,
    "NOTIFICATION_LOCALE": NOTIFICATION_LOCALE,
    "DEFAULT_WHATSAPP_NUMBER": DEFAULT_WHATSAPP_NUMBER,
    "REQUIRE_WHATSAPP": REQUIRE_WHATSAPP,
})

_schema_ready = False

@app.before_request
def _ensure_schema_once():
    global _schema_ready
    if not _schema_ready:
        ensure_schema(execute)
        _schema_ready = True

@app.get(f"{BASE_PATH}/healthz")
def healthz():
    try:
        row = fetch_one("SELECT 1 AS ok;")
        ok = bool(row and row.get("ok") == 1)
        return jsonify({"ok": ok}), (200 if ok else 500)
    except Exception as e:
        print(f"[DB] health check failed: {e}")
        return jsonify({"ok": False}), 500

@app.get(f"{UPLOAD_URL_PREFIX}/<path:path>")
def uploads(path: str):
    return send_from_directory(UPLOAD_DIR, path)

def run_cleanup():
    result = sweep_quiz_images(store, blobs, QUIZ_IMAGE_RETENTION_DAYS)
    purge_reset_tokens(store)
    return result

# One scheduler per deployment: set this on a single worker, or use the CLI from cron.
if ENABLE_CLEANUP_SCHEDULER:
    start_daily_sweep(run_cleanup)

# =============================================================================
# CLI (flask --app main <command>)
# =============================================================================
@app.cli.command("init-db")
def init_db_command():
    """Create every table that is missing."""
    ensure_schema(execute)
    click.echo("schema ready")

@app.cli.command("seed")
@click.option("--backfill-slugs", "backfill", is_flag=True, help="Regenerate empty course slugs.")
def seed_command(backfill: bool):
    """Default categories, the superadmin account and the WhatsApp number."""
    ensure_schema(execute)
    created = seed_defaults(store, SUPERADMIN_EMAIL, SUPERADMIN_PASSWORD, DEFAULT_WHATSAPP_NUMBER)
    click.echo(f"seeded: {created}")
    if not SUPERADMIN_PASSWORD:
        click.echo("SUPERADMIN_PASSWORD not set; superadmin account skipped")
    if backfill:
        click.echo(f"slugs backfilled: {backfill_slugs(store)}")

@app.cli.command("cleanup-quiz-images")
@click.option("--days", type=int, default=None, help="Retention window in days.")
def cleanup_command(days: Optional[int]):
    """Delete quiz submission images older than the retention window and stale reset tokens."""
    result = sweep_quiz_images(store, blobs, days if days is not None else QUIZ_IMAGE_RETENTION_DAYS)
    click.echo(f"cleanup: {result}")
    click.echo(f"reset tokens removed: {purge_reset_tokens(store)}")

# =============================================================================
# Local dev entry
# =============================================================================
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, debug=True)
